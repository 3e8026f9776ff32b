import logging

import httpx

from estransport import settings as cfg
from estransport.http import _socks
from estransport.http._proxy import ProxyCredentials, ProxyKind, ProxyResolver
from estransport.http._socks import SocksBackend
from estransport.settings import Settings

SYSTEM_PROPS = {
    cfg.HTTP_PROXY_HOST: "sys-http",
    cfg.HTTP_PROXY_PORT: "8080",
    cfg.SOCKS_PROXY_HOST: "sys-socks",
    cfg.SOCKS_PROXY_PORT: "1080",
    cfg.SOCKS_USERNAME: "sys-user",
    cfg.SOCKS_PASSWORD: "sys-pass",
}


def test_no_proxy_configured():
    setup = ProxyResolver(Settings(use_system_properties=False)).resolve()

    assert setup.http_proxy is None
    assert setup.socks_proxy is None
    assert setup.credentials is None
    assert setup.proxy_info == ""
    assert _socks._PROTOCOLS == {}


def test_system_defaults_used_when_enabled():
    resolver = ProxyResolver(Settings(use_system_properties=True), SYSTEM_PROPS)

    http = resolver.resolve_http()
    socks = resolver.resolve_socks()

    assert (http.host, http.port) == ("sys-http", 8080)
    assert (socks.host, socks.port, socks.user, socks.password) == (
        "sys-socks", 1080, "sys-user", "sys-pass",
    )


def test_system_defaults_ignored_when_disabled():
    resolver = ProxyResolver(Settings(use_system_properties=False), SYSTEM_PROPS)

    assert resolver.resolve_http() is None
    assert resolver.resolve_socks() is None


def test_explicit_http_settings_win_over_system_defaults():
    settings = Settings(proxy_http_host="explicit-http", proxy_http_port=3128)

    http = ProxyResolver(settings, SYSTEM_PROPS).resolve_http()

    assert http.kind is ProxyKind.HTTP
    assert (http.host, http.port) == ("explicit-http", 3128)
    assert http.url == "http://explicit-http:3128"


def test_explicit_socks_settings_win_over_system_defaults():
    settings = Settings(
        proxy_socks_host="explicit-socks",
        proxy_socks_port=9050,
        proxy_socks_user="me",
        proxy_socks_password="mine",
    )

    socks = ProxyResolver(settings, SYSTEM_PROPS).resolve_socks()

    assert (socks.host, socks.port, socks.user, socks.password) == (
        "explicit-socks", 9050, "me", "mine",
    )


def test_explicit_port_alone_overrides_system_port():
    settings = Settings(proxy_http_port=9999)

    http = ProxyResolver(settings, SYSTEM_PROPS).resolve_http()

    assert (http.host, http.port) == ("sys-http", 9999)


def test_http_proxy_credentials_are_preemptive():
    settings = Settings(
        use_system_properties=False,
        proxy_http_host="proxy",
        proxy_http_port=3128,
        proxy_http_user="bob",
        proxy_http_password="secret",
    )

    setup = ProxyResolver(settings).resolve()

    assert setup.http_proxy.preemptive_auth is True
    assert setup.http_proxy.auth == ("bob", "secret")
    assert setup.credentials == ProxyCredentials("bob", "secret")
    assert setup.proxy_info == "[HTTP proxy proxy:3128]"


def test_credentials_install_origin_auth():
    client = httpx.Client()
    try:
        ProxyCredentials("bob", "secret").install(client)
        request = client.build_request("GET", "http://es:9200/")
        auth_flow = client.auth.sync_auth_flow(request)
        assert next(auth_flow).headers["Authorization"] == "Basic Ym9iOnNlY3JldA=="
    finally:
        client.close()


def test_http_user_without_password_warns_but_proceeds(caplog):
    settings = Settings(
        use_system_properties=False,
        proxy_http_host="proxy",
        proxy_http_user="bob",
    )

    with caplog.at_level(logging.WARNING, logger="estransport.http._proxy"):
        setup = ProxyResolver(settings).resolve()

    assert cfg.ES_NET_PROXY_HTTP_PASS in caplog.text
    assert setup.credentials == ProxyCredentials("bob", "")


def test_socks_user_without_password_warns_but_proceeds(caplog):
    settings = Settings(
        use_system_properties=False,
        proxy_socks_host="socks",
        proxy_socks_user="bob",
    )

    with caplog.at_level(logging.WARNING, logger="estransport.http._proxy"):
        socks = ProxyResolver(settings).resolve_socks()

    assert cfg.ES_NET_PROXY_SOCKS_PASS in caplog.text
    assert socks.user == "bob"
    assert socks.password is None


def test_socks_without_user_does_not_warn(caplog):
    settings = Settings(use_system_properties=False, proxy_socks_host="socks")

    with caplog.at_level(logging.WARNING, logger="estransport.http._proxy"):
        ProxyResolver(settings).resolve_socks()

    assert caplog.records == []


def test_socks_proxy_is_registered_globally():
    settings = Settings(
        use_system_properties=False,
        proxy_socks_host="socks",
        proxy_socks_port=1081,
    )

    setup = ProxyResolver(settings).resolve()

    registered = _socks.get_protocol("http")
    assert registered is setup.network_backend
    assert isinstance(registered, SocksBackend)
    assert (registered.proxy_host, registered.proxy_port) == ("socks", 1081)
    assert setup.proxy_info == "[SOCKS proxy socks:1081]"


def test_socks_registration_can_be_skipped():
    settings = Settings(use_system_properties=False, proxy_socks_host="socks")

    setup = ProxyResolver(settings).resolve(register=False)

    assert isinstance(setup.network_backend, SocksBackend)
    assert _socks._PROTOCOLS == {}


def test_http_and_socks_coexist():
    settings = Settings(
        use_system_properties=False,
        proxy_http_host="proxy",
        proxy_http_port=3128,
        proxy_socks_host="socks",
        proxy_socks_port=1080,
    )

    setup = ProxyResolver(settings).resolve(register=False)

    assert setup.http_proxy is not None
    assert setup.socks_proxy is not None
    assert setup.proxy_info == "[SOCKS proxy socks:1080][HTTP proxy proxy:3128]"
