class TransportError(Exception):
    '''
    Raised for configuration-level failures of a request (unknown method,
    malformed target URI). Never retried.

    Parent: Exception
    '''
    def __init__(self, message: str, request: object | None = None) -> None:
        super().__init__(message)
        self.request = request


class IllegalStateError(RuntimeError):
    '''
    Raised when the client ends up in a state it cannot recover from,
    such as a buffered response body that can no longer be re-derived.

    Parent: RuntimeError
    '''
