'''
SOCKS5 dialing for the transport plus the process wide protocol registry.

Once a SOCKS proxy is configured, `register_protocol('http', ...)` makes
every transport in the process dial its `http` sockets through it, not only
the transport that asked for it. Absolute request URIs must still end up
going through the proxy, and connections have to look identical to the pool
regardless of which transport opened them, hence the global registry.
Tests (or callers that really want isolation) can pass a backend directly
to the transport instead.
'''
import logging
import threading
from collections.abc import Iterable

import httpcore
from socksio import socks5

logger = logging.getLogger(__name__)

_MAX_REPLY_BYTES = 4096

_PROTOCOLS: dict[str, httpcore.NetworkBackend] = {}
_PROTOCOLS_LOCK = threading.Lock()


def register_protocol(scheme: str, backend: httpcore.NetworkBackend) -> None:
    with _PROTOCOLS_LOCK:
        _PROTOCOLS[scheme.lower()] = backend
    logger.debug(f'Registered network backend {backend!r} for scheme [{scheme}]')


def unregister_protocol(scheme: str) -> None:
    with _PROTOCOLS_LOCK:
        _PROTOCOLS.pop(scheme.lower(), None)


def get_protocol(scheme: str) -> httpcore.NetworkBackend:
    '''
    Returns the network backend registered for `scheme`, or a plain
    synchronous socket backend when nothing was registered.
    '''
    with _PROTOCOLS_LOCK:
        backend = _PROTOCOLS.get(scheme.lower())
    return backend if backend is not None else httpcore.SyncBackend()


class RegisteredProtocolBackend(httpcore.NetworkBackend):
    '''
    Resolves the registered backend for `scheme` on every dial, so a
    registration done after the transport was built still applies.
    '''
    def __init__(self, scheme: str = 'http') -> None:
        self.scheme = scheme

    def connect_tcp(
        self,
        host: str,
        port: int,
        timeout: float | None = None,
        local_address: str | None = None,
        socket_options: Iterable | None = None,
    ) -> httpcore.NetworkStream:
        return get_protocol(self.scheme).connect_tcp(
            host,
            port,
            timeout=timeout,
            local_address=local_address,
            socket_options=socket_options,
        )

    def connect_unix_socket(
        self,
        path: str,
        timeout: float | None = None,
        socket_options: Iterable | None = None,
    ) -> httpcore.NetworkStream:
        return get_protocol(self.scheme).connect_unix_socket(
            path, timeout=timeout, socket_options=socket_options
        )

    def sleep(self, seconds: float) -> None:
        get_protocol(self.scheme).sleep(seconds)


class SocksBackend(httpcore.NetworkBackend):
    '''
    Network backend that opens every TCP connection through a SOCKS5
    proxy, optionally authenticating with a username/password.

    The returned stream is tunneled to the requested host, so plain HTTP,
    TLS upgrades and an HTTP proxy on top of it all work unchanged.
    '''
    def __init__(
        self,
        proxy_host: str,
        proxy_port: int,
        username: str | None = None,
        password: str | None = None,
        *,
        inner: httpcore.NetworkBackend | None = None,
    ) -> None:
        self.proxy_host = proxy_host
        self.proxy_port = proxy_port if proxy_port > 0 else 1080
        self.username = username
        self.password = password
        self._inner = inner or httpcore.SyncBackend()

    def __repr__(self) -> str:
        return f'SocksBackend({self.proxy_host}:{self.proxy_port})'

    @property
    def auth(self) -> tuple[bytes, bytes] | None:
        if not self.username:
            return None
        return (
            self.username.encode('utf-8'),
            (self.password or '').encode('utf-8'),
        )

    def connect_tcp(
        self,
        host: str,
        port: int,
        timeout: float | None = None,
        local_address: str | None = None,
        socket_options: Iterable | None = None,
    ) -> httpcore.NetworkStream:
        stream = self._inner.connect_tcp(
            self.proxy_host,
            self.proxy_port,
            timeout=timeout,
            local_address=local_address,
            socket_options=socket_options,
        )
        try:
            socks5_handshake(stream, host, port, auth=self.auth, timeout=timeout)
        except BaseException:
            stream.close()
            raise
        return stream

    def connect_unix_socket(
        self,
        path: str,
        timeout: float | None = None,
        socket_options: Iterable | None = None,
    ) -> httpcore.NetworkStream:
        raise httpcore.UnsupportedProtocol(
            'Unix sockets cannot be tunneled through a SOCKS proxy'
        )

    def sleep(self, seconds: float) -> None:
        self._inner.sleep(seconds)


def _exchange(
    conn: socks5.SOCKS5Connection,
    stream: httpcore.NetworkStream,
    timeout: float | None,
):
    stream.write(conn.data_to_send(), timeout=timeout)
    incoming = stream.read(max_bytes=_MAX_REPLY_BYTES, timeout=timeout)
    if not incoming:
        raise httpcore.ProxyError('SOCKS proxy closed the connection during handshake')
    return conn.receive_data(incoming)


def socks5_handshake(
    stream: httpcore.NetworkStream,
    host: str | bytes,
    port: int,
    *,
    auth: tuple[bytes, bytes] | None = None,
    timeout: float | None = None,
) -> None:
    '''
    Negotiate a SOCKS5 CONNECT to `host:port` over an already
    connected stream to the proxy.

    Raises
    ------
    httpcore.ProxyError
        If the proxy refuses the auth method, the credentials
        or the connection to the target host.
    '''
    if isinstance(host, bytes):
        host = host.decode('ascii')

    conn = socks5.SOCKS5Connection()
    method = (
        socks5.SOCKS5AuthMethod.NO_AUTH_REQUIRED if auth is None
        else socks5.SOCKS5AuthMethod.USERNAME_PASSWORD
    )

    conn.send(socks5.SOCKS5AuthMethodsRequest([method]))
    reply = _exchange(conn, stream, timeout)
    if not isinstance(reply, socks5.SOCKS5AuthReply) or reply.method != method:
        raise httpcore.ProxyError(
            f'SOCKS proxy rejected auth method {method.name}'
        )

    if auth is not None:
        username, password = auth
        conn.send(socks5.SOCKS5UsernamePasswordRequest(username, password))
        reply = _exchange(conn, stream, timeout)
        if not isinstance(reply, socks5.SOCKS5UsernamePasswordReply) or not reply.success:
            raise httpcore.ProxyError('SOCKS proxy rejected username/password')

    conn.send(
        socks5.SOCKS5CommandRequest.from_address(
            socks5.SOCKS5Command.CONNECT, (host, port)
        )
    )
    reply = _exchange(conn, stream, timeout)
    if not isinstance(reply, socks5.SOCKS5Reply):
        raise httpcore.ProxyError('Unexpected reply from SOCKS proxy')
    if reply.reply_code != socks5.SOCKS5ReplyCode.SUCCEEDED:
        raise httpcore.ProxyError(
            f'SOCKS proxy could not connect to {host}:{port}: {reply.reply_code.name}'
        )
