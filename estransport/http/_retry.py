'''
retry policy for the transport's network calls

A failed attempt is retried only when it cannot have reached the server as a
complete request: the connection could not be opened, the request could not
be fully written, or the server hung up without sending any response. Once a
request went out, read failures are surfaced so that non idempotent calls
(`_bulk`, index) are never replayed. Unresolvable or unreachable hosts, TLS
failures and timeouts are not retried either. Every retry actually taken
bumps the shared `Stats.net_retries` counter.
'''
import errno
import logging
import random
import socket
import ssl

import httpx

from estransport.stats import Stats

logger = logging.getLogger(__name__)

# the request never made it to the server in full
_RETRYABLE_ERRORS = (
    httpx.ConnectError,
    httpx.WriteError,
    httpx.RemoteProtocolError,
)

# interrupted calls are surfaced as-is
_FATAL_ERRORS = (
    httpx.TimeoutException,
    httpx.ProxyError,
    httpx.UnsupportedProtocol,
)

_UNREACHABLE = {
    getattr(errno, 'EHOSTUNREACH', None),
    getattr(errno, 'ENETUNREACH', None),
} - {None}


def _causes(exc: BaseException):
    seen = set()
    current = exc.__cause__ or exc.__context__
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        yield current
        current = current.__cause__ or current.__context__


def is_unrecoverable(exc: BaseException) -> bool:
    '''
    Whether the low level failure behind `exc` will not go away by dialing
    again: unknown host, no route to host or a TLS failure.
    '''
    for cause in _causes(exc):
        if isinstance(cause, (socket.gaierror, ssl.SSLError)):
            return True
        if isinstance(cause, OSError) and cause.errno in _UNREACHABLE:
            return True
    return False


class RetryPolicy:

    def __init__(
        self,
        *,
        attempts: int = 3,
        delay: float = 0.0,
        jitter: float = 0.1,
        max_delay: float = 30.0,
    ) -> None:
        '''
        Parameters
        ----------
        attempts : int, optional
            The maximum number of retries after the first execution, by default 3
        delay : float, optional
            The base delay between attempts, by default 0.0 (retry immediately)
        jitter : float, optional
            The jitter factor to apply to the delay, by default 0.1
        max_delay : float, optional
            Upper bound of a single wait, by default 30.0
        '''
        self.attempts: int = attempts
        self.delay: float = delay
        self.jitter: float = jitter
        self.max_delay: float = max_delay

    def get_timeout(self, attempt_no: int) -> float:
        '''
        Seconds to wait before re-executing after failed attempt
        `attempt_no`, linear in the attempt number and capped.
        '''
        if self.delay <= 0:
            return 0.0

        wait = min(self.delay * attempt_no, self.max_delay)
        if self.jitter:
            spread = wait * self.jitter
            wait += random.uniform(-spread, spread)
        return max(0.0, wait)

    def should_retry(
        self,
        request: httpx.Request,
        exc: Exception,
        execution_count: int,
    ) -> bool:
        '''
        Parameters
        ----------
        request : httpx.Request
            The request that failed
        exc : Exception
            The failure of the last execution
        execution_count : int
            How many times the request has been executed so far (1 based)

        Returns
        -------
        bool
        '''
        if execution_count > self.attempts:
            return False
        if isinstance(exc, _FATAL_ERRORS):
            return False
        if not isinstance(exc, _RETRYABLE_ERRORS):
            return False
        return not is_unrecoverable(exc)


class CountingRetryPolicy(RetryPolicy):
    '''
    A `RetryPolicy` that records each retry it grants in `Stats`.
    '''

    def __init__(self, stats: Stats, **kwargs) -> None:
        super().__init__(**kwargs)
        self.stats: Stats = stats

    def should_retry(
        self,
        request: httpx.Request,
        exc: Exception,
        execution_count: int,
    ) -> bool:
        if not super().should_retry(request, exc, execution_count):
            return False

        self.stats.net_retries += 1
        logger.debug(
            f'Retrying {request.method} {request.url} '
            f'(attempt {execution_count}/{self.attempts}) after: {exc!r}'
        )
        return True
