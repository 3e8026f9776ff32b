import logging
import ssl
import time
from collections.abc import Mapping
from typing import Self

import httpcore
import httpx

from estransport._logging import TRACE
from estransport.errors import TransportError
from estransport.http._body import ResponseBody
from estransport.http._proxy import ProxyResolver
from estransport.http._retry import CountingRetryPolicy
from estransport.http._tracking import ConnectionTracker
from estransport.http._transport import EsHttpTransport
from estransport.request import Method, Request, Response
from estransport.settings import Settings, has_text
from estransport.stats import Stats

logger = logging.getLogger(__name__)


def prefix_uri(uri: str) -> str:
    return uri if '://' in uri else f'http://{uri}'


def prefix_path(path: str) -> str:
    return path if path.startswith('/') else f'/{path}'


def _parse_target(uri: str, request: object) -> httpx.URL:
    try:
        url = httpx.URL(prefix_uri(uri))
    except (httpx.InvalidURL, ValueError) as exc:
        raise TransportError(f'Invalid target URI {request}', request) from exc
    if not url.host:
        raise TransportError(f'Invalid target URI {request}', request)
    return url


class TransportClient:
    '''
    Executes REST requests against a single, already resolved host.

    One call at a time: the underlying pool holds a single connection and
    the stats are not locked, use one instance per concurrent caller. A
    response body still open when the next call starts is closed (with a
    warning) so that its connection can be reused.

    Parameters
    ----------
    settings : Settings
    host : str
        The target node, `http://` is assumed when no scheme is given
    system_props : Mapping[str, str] | None, optional
        System wide proxy properties, by default read from the environment
        (only when `settings.use_system_properties` is set)
    network_backend : httpcore.NetworkBackend | None, optional
        Dial sockets through this backend instead of the process wide
        protocol registry. A SOCKS proxy is then layered on top of it
        and nothing is registered globally.
    ssl_context : ssl.SSLContext | None, optional
        TLS settings for https targets

    Raises
    ------
    TransportError
        If `host` is not a valid target
    '''
    def __init__(
        self,
        settings: Settings,
        host: str,
        *,
        system_props: Mapping[str, str] | None = None,
        network_backend: httpcore.NetworkBackend | None = None,
        ssl_context: ssl.SSLContext | None = None,
    ) -> None:
        self._stats = Stats()
        self._host: httpx.URL = _parse_target(host, host)

        setup = ProxyResolver(settings, system_props).resolve(
            register=network_backend is None,
            inner_backend=network_backend,
        )
        self.proxy_info: str = setup.proxy_info

        # SOCKS only ever dials the http scheme
        backends = None
        if network_backend is not None:
            backends = {
                'http': setup.network_backend or network_backend,
                'https': network_backend,
            }

        self.tracker = ConnectionTracker()
        self._last_response: httpx.Response | None = None
        transport = EsHttpTransport(
            retry=CountingRetryPolicy(self._stats, attempts=settings.http_retries),
            http_proxy=setup.http_proxy,
            network_backends=backends,
            tracker=self.tracker,
            ssl_context=ssl_context,
        )
        self._client = httpx.Client(
            transport=transport,
            timeout=httpx.Timeout(settings.http_timeout),
            follow_redirects=False,
            trust_env=False,
        )

        # credentials can only be set on a fully built client
        if setup.credentials is not None:
            setup.credentials.install(self._client)

    @property
    def host(self) -> httpx.URL:
        return self._host

    def build_request(self, request: Request) -> httpx.Request:
        '''
        Translate a `Request` into the httpx request that will be sent.

        Parameters
        ----------
        request : Request

        Returns
        -------
        httpx.Request

        Raises
        ------
        TransportError
            If the method is unknown or the target URI is malformed
        '''
        method = Method.parse(request.method)

        target = _parse_target(request.uri, request) if has_text(request.uri) else self._host
        # the path replaces whatever path the absolute uri carried, a query
        # embedded in it comes first and params are appended to it
        path, _, query = prefix_path(request.path or '').partition('?')
        query = '&'.join(part for part in (query, request.params) if has_text(part))
        try:
            url = target.copy_with(path=path)
            if query:
                url = url.copy_with(query=query.encode('utf-8'))
        except (httpx.InvalidURL, ValueError) as exc:
            raise TransportError(f'Invalid target URI {request}', request) from exc

        content = request.body_bytes()
        if content and not method.accepts_body:
            logger.debug(f'Ignoring body of {method.value} request {request}')
            content = None

        # bytes content is sent with a Content-Length, never chunked
        return self._client.build_request(method.value, url, content=content or None)

    def execute(self, request: Request) -> Response:
        '''
        Execute `request`, retrying network failures as configured.

        The returned body streams from the connection and must be closed
        by the caller.

        Raises
        ------
        TransportError
            For an unknown method or a malformed target URI
        httpx.TransportError
            When the call still fails after all retries
        '''
        http_request = self.build_request(request)

        if logger.isEnabledFor(TRACE):
            logger.log(
                TRACE,
                f'Tx {self.proxy_info}[{http_request.method}]@[{request.uri}]'
                f'[{request.path}] w/ payload [{request.body_bytes()!r}]'
            )

        self._release_last_response()

        start = time.perf_counter()
        try:
            response = self._client.send(http_request, stream=True)
        finally:
            self._stats.net_total_time_ms += (time.perf_counter() - start) * 1000
        self._last_response = response

        if logger.isEnabledFor(TRACE):
            try:
                response.read()
            except BaseException:
                response.close()
                raise
            logger.log(
                TRACE,
                f'Rx {self.proxy_info}@[{self.tracker.local_address()}] '
                f'[{response.status_code}-{response.reason_phrase}] [{response.text}]'
            )

        return Response(
            status=response.status_code,
            body=ResponseBody(response),
            uri=request.uri or request.path,
        )

    def _release_last_response(self) -> None:
        # the pool holds a single connection, an unclosed body would block it
        last, self._last_response = self._last_response, None
        if last is None or last.is_closed:
            return
        logger.warning(
            f'Previous response [{last.request.method} {last.request.url}] '
            'was not closed, releasing its connection. Always close response bodies'
        )
        last.close()

    def stats(self) -> Stats:
        return self._stats.copy()

    def close(self) -> None:
        try:
            self._client.close()
        except Exception as exc:
            logger.warning(f'Exception closing underlying HTTP manager: {exc!r}')

    def __enter__(self) -> Self:
        return self

    def __exit__(self, *args) -> None:
        self.close()
