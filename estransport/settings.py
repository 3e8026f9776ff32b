'''
**estransport.settings**

The flat bag of resolved values the transport consumes. Loading and merging
the connector configuration happens elsewhere; this module only knows how to
read the handful of `es.*` keys the transport cares about and how to derive
the system wide proxy defaults from the process environment.
'''
import dataclasses as dc
import re
import urllib.parse
import urllib.request
from collections.abc import Mapping

ES_HTTP_RETRIES = 'es.http.retries'
ES_HTTP_TIMEOUT = 'es.http.timeout'
ES_NET_USE_SYSTEM_PROPS = 'es.net.proxy.http.use.system.props'
ES_NET_PROXY_HTTP_HOST = 'es.net.proxy.http.host'
ES_NET_PROXY_HTTP_PORT = 'es.net.proxy.http.port'
ES_NET_PROXY_HTTP_USER = 'es.net.proxy.http.user'
ES_NET_PROXY_HTTP_PASS = 'es.net.proxy.http.pass'
ES_NET_PROXY_SOCKS_HOST = 'es.net.proxy.socks.host'
ES_NET_PROXY_SOCKS_PORT = 'es.net.proxy.socks.port'
ES_NET_PROXY_SOCKS_USER = 'es.net.proxy.socks.user'
ES_NET_PROXY_SOCKS_PASS = 'es.net.proxy.socks.pass'

HTTP_PROXY_HOST = 'http.proxyHost'
HTTP_PROXY_PORT = 'http.proxyPort'
SOCKS_PROXY_HOST = 'socksProxyHost'
SOCKS_PROXY_PORT = 'socksProxyPort'
SOCKS_USERNAME = 'socks.username'
SOCKS_PASSWORD = 'socks.password'

_TIME_UNITS = {
    'ms': 0.001,
    's': 1.0,
    'm': 60.0,
    'h': 3600.0,
}
_TIME_RE = re.compile(r'^\s*(\d+(?:\.\d+)?)\s*(ms|s|m|h)?\s*$', re.IGNORECASE)


def has_text(value: str | None) -> bool:
    return bool(value and str(value).strip())


def parse_time(value: str | float | int) -> float:
    '''
    Parse a duration into seconds. Plain numbers are seconds, strings may
    carry one of the `ms`, `s`, `m` or `h` suffixes (`"1m"`, `"500ms"`).

    Parameters
    ----------
    value : str | float | int

    Returns
    -------
    float

    Raises
    ------
    ValueError
        If the value is not a recognizable duration
    '''
    if isinstance(value, (int, float)):
        return float(value)

    match = _TIME_RE.match(value)
    if not match:
        raise ValueError(f'Cannot parse time value [{value}]')

    amount, unit = match.groups()
    return float(amount) * _TIME_UNITS[(unit or 's').lower()]


def parse_bool(value: str | bool) -> bool:
    if isinstance(value, bool):
        return value
    return value.strip().lower() in ('true', 'yes', 'on', '1')


def _int_value(mapping: Mapping[str, str], key: str, default: int) -> int:
    raw = mapping.get(key)
    if not has_text(raw):
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f'Invalid integer [{raw}] for [{key}]') from exc


@dc.dataclass(slots=True)
class Settings:
    '''
    Resolved transport settings. A port of `-1` means "not set".
    '''
    http_retries: int = 3
    http_timeout: float = 60.0
    use_system_properties: bool = True

    proxy_http_host: str | None = None
    proxy_http_port: int = -1
    proxy_http_user: str | None = None
    proxy_http_password: str | None = None

    proxy_socks_host: str | None = None
    proxy_socks_port: int = -1
    proxy_socks_user: str | None = None
    proxy_socks_password: str | None = None

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, str]) -> 'Settings':
        '''
        Build the settings from the connector's flat `es.*` properties,
        falling back to the dataclass defaults for missing keys.

        Parameters
        ----------
        mapping : Mapping[str, str]

        Returns
        -------
        Settings
        '''
        defaults = cls()

        timeout = mapping.get(ES_HTTP_TIMEOUT)
        try:
            http_timeout = parse_time(timeout) if has_text(timeout) else defaults.http_timeout
        except ValueError as exc:
            raise ValueError(f'Invalid time [{timeout}] for [{ES_HTTP_TIMEOUT}]') from exc

        use_system = mapping.get(ES_NET_USE_SYSTEM_PROPS)

        return cls(
            http_retries=_int_value(mapping, ES_HTTP_RETRIES, defaults.http_retries),
            http_timeout=http_timeout,
            use_system_properties=(
                parse_bool(use_system) if has_text(use_system)
                else defaults.use_system_properties
            ),
            proxy_http_host=mapping.get(ES_NET_PROXY_HTTP_HOST),
            proxy_http_port=_int_value(mapping, ES_NET_PROXY_HTTP_PORT, -1),
            proxy_http_user=mapping.get(ES_NET_PROXY_HTTP_USER),
            proxy_http_password=mapping.get(ES_NET_PROXY_HTTP_PASS),
            proxy_socks_host=mapping.get(ES_NET_PROXY_SOCKS_HOST),
            proxy_socks_port=_int_value(mapping, ES_NET_PROXY_SOCKS_PORT, -1),
            proxy_socks_user=mapping.get(ES_NET_PROXY_SOCKS_USER),
            proxy_socks_password=mapping.get(ES_NET_PROXY_SOCKS_PASS),
        )


def system_properties(proxies: Mapping[str, str] | None = None) -> dict[str, str]:
    '''
    Derive the system wide proxy properties from the environment
    (`http_proxy`, `all_proxy`, `socks_proxy`, ... as understood by
    `urllib.request.getproxies`).

    Parameters
    ----------
    proxies : Mapping[str, str] | None, optional
        scheme -> proxy url mapping, by default the one
        reported by `urllib.request.getproxies()`

    Returns
    -------
    dict[str, str]
        keyed by `http.proxyHost`, `http.proxyPort`, `socksProxyHost`,
        `socksProxyPort`, `socks.username` and `socks.password`
    '''
    if proxies is None:
        proxies = urllib.request.getproxies()

    props: dict[str, str] = {}

    if http_url := proxies.get('http'):
        parsed = urllib.parse.urlsplit(
            http_url if '://' in http_url else f'http://{http_url}'
        )
        if parsed.hostname:
            props[HTTP_PROXY_HOST] = parsed.hostname
        if parsed.port:
            props[HTTP_PROXY_PORT] = str(parsed.port)

    for key in ('socks', 'all'):
        socks_url = proxies.get(key)
        if not socks_url:
            continue
        parsed = urllib.parse.urlsplit(
            socks_url if '://' in socks_url else f'socks5://{socks_url}'
        )
        if not parsed.scheme.startswith('socks') or not parsed.hostname:
            continue
        props[SOCKS_PROXY_HOST] = parsed.hostname
        if parsed.port:
            props[SOCKS_PROXY_PORT] = str(parsed.port)
        if parsed.username:
            props[SOCKS_USERNAME] = urllib.parse.unquote(parsed.username)
        if parsed.password:
            props[SOCKS_PASSWORD] = urllib.parse.unquote(parsed.password)
        break

    return props
