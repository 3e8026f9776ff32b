'''
**estransport.http**
---------

The transport execution engine: `TransportClient` dispatches single REST
calls over a one-connection httpcore pool, retries network failures through
`CountingRetryPolicy`, routes traffic through HTTP and/or SOCKS proxies
resolved by `ProxyResolver`, and hands back `ResponseBody` streams that can
be re-read when they were buffered in memory.
'''
from estransport.http._body import ResponseBody
from estransport.http._client import TransportClient, prefix_path, prefix_uri
from estransport.http._proxy import (
    ProxyConfig,
    ProxyCredentials,
    ProxyKind,
    ProxyResolver,
    ProxySetup,
)
from estransport.http._retry import CountingRetryPolicy, RetryPolicy
from estransport.http._socks import (
    RegisteredProtocolBackend,
    SocksBackend,
    get_protocol,
    register_protocol,
    unregister_protocol,
)
from estransport.http._tracking import ConnectionTracker
from estransport.http._transport import (
    EsHttpTransport,
    default_socket_options,
    default_ssl_context,
)

__all__ = [
    'ResponseBody',
    'TransportClient',
    'prefix_path',
    'prefix_uri',
    'ProxyConfig',
    'ProxyCredentials',
    'ProxyKind',
    'ProxyResolver',
    'ProxySetup',
    'CountingRetryPolicy',
    'RetryPolicy',
    'RegisteredProtocolBackend',
    'SocksBackend',
    'get_protocol',
    'register_protocol',
    'unregister_protocol',
    'ConnectionTracker',
    'EsHttpTransport',
    'default_socket_options',
    'default_ssl_context',
]
