import dataclasses as dc
import enum
from types import MappingProxyType
from typing import TYPE_CHECKING, Self

from estransport.errors import TransportError

if TYPE_CHECKING:
    from estransport.http._body import ResponseBody


class Method(enum.Enum):
    DELETE = 'DELETE'
    HEAD = 'HEAD'
    GET = 'GET'
    POST = 'POST'
    PUT = 'PUT'

    @property
    def accepts_body(self) -> bool:
        return _BODY_CAPABLE[self]

    @classmethod
    def parse(cls, value: 'Method | str') -> 'Method':
        '''
        Resolve a request method, rejecting anything that is not one
        of the supported verbs.

        Raises
        ------
        TransportError
        '''
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).upper())
        except ValueError:
            raise TransportError(f'Unknown request method {value}') from None


_BODY_CAPABLE = MappingProxyType({
    Method.DELETE: False,
    Method.HEAD: False,
    Method.GET: False,
    Method.POST: True,
    Method.PUT: True,
})


@dc.dataclass(slots=True, frozen=True)
class Request:
    '''
    A single REST call. When `uri` is missing, `path` is resolved
    against the host the transport was created for.
    '''
    method: Method | str
    path: str = ''
    uri: str | None = None
    params: str | None = None
    body: bytes | bytearray | memoryview | str | None = None

    def body_bytes(self) -> bytes | None:
        if self.body is None:
            return None
        if isinstance(self.body, str):
            return self.body.encode('utf-8')
        return bytes(self.body)

    def __str__(self) -> str:
        method = self.method.value if isinstance(self.method, Method) else self.method
        return f'{method}@{self.uri or ""}{self.path}'


@dc.dataclass(slots=True)
class Response:
    status: int
    body: 'ResponseBody'
    uri: str | None = None

    @property
    def is_successful(self) -> bool:
        return 200 <= self.status < 300

    def close(self) -> None:
        self.body.close()

    def __enter__(self) -> Self:
        return self

    def __exit__(self, *args) -> None:
        self.close()
