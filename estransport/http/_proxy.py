'''
Proxy resolution for the transport.

Explicit `es.net.proxy.*` settings win over the system wide defaults, which
are only consulted when `use_system_properties` is enabled. HTTP and SOCKS
proxies are resolved independently; SOCKS sits below HTTP (it dials the
sockets) so both can be active at once.
'''
import dataclasses as dc
import enum
import logging
from collections.abc import Mapping

import httpcore
import httpx

from estransport import settings as cfg
from estransport.http._socks import SocksBackend, register_protocol

logger = logging.getLogger(__name__)


class ProxyKind(enum.Enum):
    HTTP = 'HTTP'
    SOCKS = 'SOCKS'


@dc.dataclass(slots=True, frozen=True)
class ProxyConfig:
    kind: ProxyKind
    host: str
    port: int = -1
    user: str | None = None
    password: str | None = None
    preemptive_auth: bool = False

    @property
    def address(self) -> str:
        return f'{self.host}:{self.port}'

    @property
    def auth(self) -> tuple[str, str] | None:
        if not cfg.has_text(self.user):
            return None
        return (self.user, self.password or '')

    @property
    def url(self) -> str:
        scheme = 'http' if self.kind is ProxyKind.HTTP else 'socks5'
        if self.port > 0:
            return f'{scheme}://{self.host}:{self.port}'
        return f'{scheme}://{self.host}'

    def describe(self) -> str:
        return f'[{self.kind.value} proxy {self.address}]'


@dc.dataclass(slots=True, frozen=True)
class ProxyCredentials:
    '''
    Credentials for an authenticated HTTP proxy. The same user/password
    pair is presented to the proxy and to the origin server, and it is
    sent preemptively rather than after a 401/407 challenge.

    Must be installed on a fully constructed client.
    '''
    username: str
    password: str

    def install(self, client: httpx.Client) -> None:
        # httpx.BasicAuth always sends the Authorization header up front
        client.auth = httpx.BasicAuth(self.username, self.password)


@dc.dataclass(slots=True)
class ProxySetup:
    '''
    The routing configuration computed for a transport.

    `network_backend` is the SOCKS dialer (if any) and `credentials`
    must be installed on the client after it has been built.
    '''
    http_proxy: ProxyConfig | None = None
    socks_proxy: ProxyConfig | None = None
    network_backend: httpcore.NetworkBackend | None = None
    credentials: ProxyCredentials | None = None

    @property
    def proxy_info(self) -> str:
        # SOCKS is set up first, mirror that in the logs
        return ''.join(
            proxy.describe()
            for proxy in (self.socks_proxy, self.http_proxy)
            if proxy is not None
        )


def _port(value: str | int | None) -> int:
    try:
        return int(value) if value is not None else -1
    except ValueError:
        logger.warning(f'Ignoring invalid proxy port [{value}]')
        return -1


class ProxyResolver:
    '''
    Computes the HTTP and SOCKS proxy configuration of a transport.

    Parameters
    ----------
    settings : Settings
    system_props : Mapping[str, str] | None, optional
        The system wide proxy properties, by default derived from the
        environment with `settings.system_properties()` when needed
    '''
    def __init__(
        self,
        settings: cfg.Settings,
        system_props: Mapping[str, str] | None = None,
    ) -> None:
        self.settings = settings
        self._system_props = system_props

    @property
    def system_props(self) -> Mapping[str, str]:
        if not self.settings.use_system_properties:
            return {}
        if self._system_props is None:
            self._system_props = cfg.system_properties()
        return self._system_props

    def resolve_http(self) -> ProxyConfig | None:
        settings = self.settings
        props = self.system_props

        host = props.get(cfg.HTTP_PROXY_HOST)
        port = _port(props.get(cfg.HTTP_PROXY_PORT))

        if cfg.has_text(settings.proxy_http_host):
            host = settings.proxy_http_host
        if settings.proxy_http_port > 0:
            port = settings.proxy_http_port

        if not cfg.has_text(host):
            return None

        user = settings.proxy_http_user
        if cfg.has_text(user):
            if not cfg.has_text(settings.proxy_http_password):
                logger.warning(
                    'HTTP proxy user specified but no/empty password defined - '
                    f'double check the [{cfg.ES_NET_PROXY_HTTP_PASS}] property'
                )
            logger.debug(f'Using authenticated HTTP proxy [{host}:{port}]')
            return ProxyConfig(
                ProxyKind.HTTP,
                host,
                port,
                user,
                settings.proxy_http_password,
                preemptive_auth=True,
            )

        logger.debug(f'Using HTTP proxy [{host}:{port}]')
        return ProxyConfig(ProxyKind.HTTP, host, port)

    def resolve_socks(self) -> ProxyConfig | None:
        settings = self.settings
        props = self.system_props

        host = props.get(cfg.SOCKS_PROXY_HOST)
        port = _port(props.get(cfg.SOCKS_PROXY_PORT))
        user = props.get(cfg.SOCKS_USERNAME)
        password = props.get(cfg.SOCKS_PASSWORD)

        if cfg.has_text(settings.proxy_socks_host):
            host = settings.proxy_socks_host
        if settings.proxy_socks_port > 0:
            port = settings.proxy_socks_port
        if cfg.has_text(settings.proxy_socks_user):
            user = settings.proxy_socks_user
        if cfg.has_text(settings.proxy_socks_password):
            password = settings.proxy_socks_password

        if not cfg.has_text(host):
            return None

        if cfg.has_text(user):
            if not cfg.has_text(password):
                logger.warning(
                    'SOCKS proxy user specified but no/empty password defined - '
                    f'double check the [{cfg.ES_NET_PROXY_SOCKS_PASS}] property'
                )
            logger.debug(f'Using authenticated SOCKS proxy [{host}:{port}]')
        else:
            user = password = None
            logger.debug(f'Using SOCKS proxy [{host}:{port}]')

        return ProxyConfig(ProxyKind.SOCKS, host, port, user, password)

    def resolve(
        self,
        *,
        register: bool = True,
        inner_backend: httpcore.NetworkBackend | None = None,
    ) -> ProxySetup:
        '''
        Resolve both proxy kinds.

        When a SOCKS proxy is found and `register` is set, its dialer is
        registered for the `http` scheme process wide, affecting every
        transport in the process from then on.

        Parameters
        ----------
        register : bool, optional
            Register the SOCKS dialer globally, by default True
        inner_backend : httpcore.NetworkBackend | None, optional
            The backend the SOCKS dialer connects to the proxy with,
            by default plain sockets

        Returns
        -------
        ProxySetup
        '''
        setup = ProxySetup()

        socks = self.resolve_socks()
        if socks is not None:
            setup.socks_proxy = socks
            setup.network_backend = SocksBackend(
                socks.host,
                socks.port,
                socks.user,
                socks.password,
                inner=inner_backend,
            )
            if register:
                register_protocol('http', setup.network_backend)

        http = self.resolve_http()
        if http is not None:
            setup.http_proxy = http
            if http.auth is not None:
                setup.credentials = ProxyCredentials(*http.auth)

        return setup
