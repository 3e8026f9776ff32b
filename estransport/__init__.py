'''
**estransport**

HTTP request-execution transport used by the connector to talk to a single
search-engine node.
'''
from estransport._logging import TRACE
from estransport.errors import IllegalStateError, TransportError
from estransport.http import ResponseBody, TransportClient
from estransport.request import Method, Request, Response
from estransport.settings import Settings, system_properties
from estransport.stats import Stats

__all__ = [
    'TRACE',
    'IllegalStateError',
    'TransportError',
    'ResponseBody',
    'TransportClient',
    'Method',
    'Request',
    'Response',
    'Settings',
    'system_properties',
    'Stats',
]
