import contextlib
import io
from collections.abc import Iterator

import httpx

from estransport.errors import IllegalStateError


def is_buffered(response: httpx.Response) -> bool:
    '''
    Whether the body of `response` has already been read into memory.
    '''
    try:
        response.content
    except httpx.ResponseNotRead:
        return False
    return True


class _ChunkReader(io.RawIOBase):
    '''
    Raw stream over an iterator of byte chunks, pulled lazily.
    '''
    def __init__(self, chunks: Iterator[bytes]) -> None:
        super().__init__()
        self._chunks = chunks
        self._pending = b''

    def readable(self) -> bool:
        return True

    def readinto(self, buffer) -> int:
        while not self._pending:
            chunk = next(self._chunks, None)
            if chunk is None:
                return 0
            self._pending = chunk

        size = min(len(buffer), len(self._pending))
        buffer[:size] = self._pending[:size]
        self._pending = self._pending[size:]
        return size


class ResponseBody(io.RawIOBase):
    '''
    Readable stream over the payload of a transport response.

    The body is streamed from the connection unless the transport already
    buffered it in memory, in which case it is `reusable` and `copy()` hands
    out independent streams over the same bytes. Closing the body always
    releases the connection back to the pool.
    '''
    def __init__(self, response: httpx.Response) -> None:
        super().__init__()
        self._response = response
        self.reusable: bool = is_buffered(response)

        self._source: io.RawIOBase | io.BytesIO
        if self.reusable:
            self._source = io.BytesIO(response.content)
        else:
            self._source = _ChunkReader(response.iter_bytes())

    @property
    def response(self) -> httpx.Response:
        return self._response

    def readable(self) -> bool:
        return True

    def readinto(self, buffer) -> int:
        if self.closed:
            raise ValueError('I/O operation on closed response body')
        return self._source.readinto(buffer)

    def copy(self) -> io.BytesIO | None:
        '''
        A fresh stream over the buffered body, or `None` when the body
        is streamed from the socket and cannot be read twice.

        Returns
        -------
        io.BytesIO | None

        Raises
        ------
        IllegalStateError
            If the buffered content can no longer be retrieved
        '''
        if not self.reusable:
            return None
        try:
            return io.BytesIO(self._response.content)
        except httpx.ResponseNotRead as exc:
            raise IllegalStateError(
                f'Cannot re-read buffered body of {self._response!r}'
            ) from exc

    def close(self) -> None:
        if self.closed:
            return
        try:
            # the connection release below is what matters
            with contextlib.suppress(Exception):
                self._source.close()
        finally:
            try:
                self._response.close()
            finally:
                super().close()
