import contextlib
import socket
import ssl
import time
from collections.abc import Iterator, Mapping

import httpcore
import httpx

from estransport.http._proxy import ProxyConfig
from estransport.http._retry import RetryPolicy
from estransport.http._socks import RegisteredProtocolBackend
from estransport.http._tracking import ConnectionTracker


def default_socket_options(keepalive: bool = True) -> list[tuple]:
    '''
    socket options for the transport's TCP connections. Nagle's algorithm
    is always disabled.

    Parameters
    ----------
    keepalive : bool, optional
        Also enable TCP keepalive on idle connections, by default True

    Returns
    -------
    list[SockOpt]
    '''
    opts = [(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)]
    if not keepalive:
        return opts

    opts.append((socket.SOL_SOCKET, socket.SO_KEEPALIVE, 1))
    # keepalive idle time, interval and count where the platform has them
    for name, value in (('TCP_KEEPIDLE', 60), ('TCP_KEEPINTVL', 10), ('TCP_KEEPCNT', 5)):
        if hasattr(socket, name):
            opts.append((socket.IPPROTO_TCP, getattr(socket, name), value))

    return opts


def default_ssl_context() -> ssl.SSLContext:
    '''
    TLS 1.2+ context with hostname verification, used when the
    target (or an absolute request URI) is https.
    '''
    ctx = ssl.create_default_context(purpose=ssl.Purpose.SERVER_AUTH)
    ctx.minimum_version = ssl.TLSVersion.TLSv1_2
    ctx.check_hostname = True
    ctx.verify_mode = ssl.CERT_REQUIRED
    ctx.options |= ssl.OP_NO_COMPRESSION
    return ctx


# most specific first
_HTTPCORE_ERRORS: tuple[tuple[type[Exception], type[httpx.TransportError]], ...] = (
    (httpcore.ConnectTimeout, httpx.ConnectTimeout),
    (httpcore.ReadTimeout, httpx.ReadTimeout),
    (httpcore.WriteTimeout, httpx.WriteTimeout),
    (httpcore.PoolTimeout, httpx.PoolTimeout),
    (httpcore.TimeoutException, httpx.TimeoutException),
    (httpcore.ConnectError, httpx.ConnectError),
    (httpcore.ReadError, httpx.ReadError),
    (httpcore.WriteError, httpx.WriteError),
    (httpcore.NetworkError, httpx.NetworkError),
    (httpcore.ProxyError, httpx.ProxyError),
    (httpcore.UnsupportedProtocol, httpx.UnsupportedProtocol),
    (httpcore.RemoteProtocolError, httpx.RemoteProtocolError),
    (httpcore.LocalProtocolError, httpx.LocalProtocolError),
    (httpcore.ProtocolError, httpx.ProtocolError),
)


@contextlib.contextmanager
def map_httpcore_errors(request: httpx.Request | None = None) -> Iterator[None]:
    '''
    Re-raise httpcore errors as their httpx counterparts so callers
    only ever deal with `httpx.TransportError`.
    '''
    try:
        yield
    except Exception as exc:
        for core_error, httpx_error in _HTTPCORE_ERRORS:
            if isinstance(exc, core_error):
                raise httpx_error(str(exc), request=request) from exc
        raise


class _ResponseStream(httpx.SyncByteStream):
    def __init__(self, stream, request: httpx.Request) -> None:
        self._stream = stream
        self._request = request

    def __iter__(self) -> Iterator[bytes]:
        with map_httpcore_errors(self._request):
            for part in self._stream:
                yield part

    def close(self) -> None:
        close = getattr(self._stream, 'close', None)
        if callable(close):
            close()


class EsHttpTransport(httpx.BaseTransport):
    '''
    The connection layer of `TransportClient`: single connection httpcore
    pools (optionally behind an HTTP proxy and/or dialed through SOCKS)
    with Nagle disabled, retrying failed attempts as allowed by the retry
    policy.

    Sockets are dialed per URL scheme: a scheme without an explicit backend
    goes through whatever is registered for it in the protocol registry, so
    a SOCKS dialer registered for `http` never carries `https` traffic.

    Not meant for concurrent calls, each pool only ever holds one
    connection and the tracker remembers only the latest one.
    '''
    def __init__(
        self,
        *,
        retry: RetryPolicy | None = None,
        http_proxy: ProxyConfig | None = None,
        network_backends: Mapping[str, httpcore.NetworkBackend] | None = None,
        tracker: ConnectionTracker | None = None,
        socket_options: list[tuple] | None = None,
        ssl_context: ssl.SSLContext | None = None,
    ) -> None:
        self.retry: RetryPolicy = retry or RetryPolicy()
        self.tracker: ConnectionTracker = tracker or ConnectionTracker()

        self._http_proxy = http_proxy
        self._backends = dict(network_backends or {})
        self._socket_options = (
            socket_options if socket_options is not None
            else default_socket_options()
        )
        self._ssl_context = ssl_context or default_ssl_context()
        self._pools: dict[str, httpcore.ConnectionPool] = {}

    def backend_for(self, scheme: str) -> httpcore.NetworkBackend:
        backend = self._backends.get(scheme)
        if backend is None:
            backend = RegisteredProtocolBackend(scheme)
        return backend

    def pool_for(self, scheme: str) -> httpcore.ConnectionPool:
        pool = self._pools.get(scheme)
        if pool is not None:
            return pool

        options = dict(
            ssl_context=self._ssl_context,
            max_connections=1,
            max_keepalive_connections=1,
            socket_options=self._socket_options,
            network_backend=self.backend_for(scheme),
        )
        if self._http_proxy is not None:
            pool = httpcore.HTTPProxy(
                proxy_url=self._http_proxy.url,
                proxy_auth=self._http_proxy.auth,
                **options,
            )
        else:
            pool = httpcore.ConnectionPool(**options)

        self._pools[scheme] = pool
        return pool

    def handle_request(self, request: httpx.Request) -> httpx.Response:
        execution_count = 0
        while True:
            execution_count += 1
            try:
                return self._send(request)
            except httpx.TransportError as exc:
                if not self.retry.should_retry(request, exc, execution_count):
                    raise
                delay = self.retry.get_timeout(execution_count)
                if delay:
                    time.sleep(delay)

    def _send(self, request: httpx.Request) -> httpx.Response:
        core_request = httpcore.Request(
            method=request.method,
            url=httpcore.URL(
                scheme=request.url.raw_scheme,
                host=request.url.raw_host,
                port=request.url.port,
                target=request.url.raw_path,
            ),
            headers=request.headers.raw,
            content=request.stream,
            extensions=request.extensions,
        )
        with map_httpcore_errors(request):
            pool = self.pool_for(request.url.scheme)
            core_response = pool.handle_request(core_request)

        self.tracker.acquired(core_response.extensions.get('network_stream'))

        return httpx.Response(
            status_code=core_response.status,
            headers=core_response.headers,
            stream=_ResponseStream(core_response.stream, request),
            extensions=core_response.extensions,
        )

    def close(self) -> None:
        pools = list(self._pools.values())
        self._pools.clear()
        for pool in pools:
            pool.close()
