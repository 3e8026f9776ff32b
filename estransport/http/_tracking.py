import httpcore


class ConnectionTracker:
    '''
    Remembers the network stream that served the most recent call so the
    local socket address can show up in trace logs.

    The tracker only observes: it never closes, wraps or delays the stream
    it is handed. It holds one slot, matching the one call at a time usage
    of a transport instance.
    '''
    __slots__ = ('_stream',)

    def __init__(self) -> None:
        self._stream: httpcore.NetworkStream | None = None

    def acquired(self, stream: httpcore.NetworkStream | None) -> httpcore.NetworkStream | None:
        self._stream = stream
        return stream

    @property
    def stream(self) -> httpcore.NetworkStream | None:
        return self._stream

    def local_address(self) -> str | None:
        '''
        The local IP address of the last tracked connection, if the
        underlying stream exposes one.

        Returns
        -------
        str | None
        '''
        if self._stream is None:
            return None
        client_addr = self._stream.get_extra_info('client_addr')
        if not client_addr:
            return None
        return str(client_addr[0])
