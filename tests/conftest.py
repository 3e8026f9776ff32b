"""Shared fixtures and scripted network backends for the transport tests."""

from __future__ import annotations

import time
from collections.abc import Iterable

import httpcore
import pytest

from estransport.http import _socks
from estransport.settings import Settings


def http_response(
    body: bytes = b"ok",
    status: int = 200,
    reason: str = "OK",
    headers: dict[str, str] | None = None,
) -> bytes:
    lines = [f"HTTP/1.1 {status} {reason}"]
    all_headers = {"Content-Length": str(len(body)), "Connection": "close"}
    all_headers.update(headers or {})
    lines.extend(f"{name}: {value}" for name, value in all_headers.items())
    return ("\r\n".join(lines) + "\r\n\r\n").encode("ascii") + body


class ScriptedStream(httpcore.NetworkStream):
    """
    Network stream replaying canned reads (an exception entry is raised
    instead) and recording writes. TLS is a no-op.
    """

    def __init__(self, reads: Iterable[bytes]) -> None:
        self._reads = list(reads)
        self.sent = bytearray()
        self.closed = False

    def read(self, max_bytes: int, timeout: float | None = None) -> bytes:
        if not self._reads:
            return b""
        chunk = self._reads.pop(0)
        if isinstance(chunk, BaseException):
            raise chunk
        return chunk

    def write(self, buffer: bytes, timeout: float | None = None) -> None:
        self.sent.extend(buffer)

    def start_tls(self, ssl_context, server_hostname=None, timeout=None) -> ScriptedStream:
        self.tls_hostname = server_hostname
        return self

    def close(self) -> None:
        self.closed = True

    def get_extra_info(self, info: str):
        if info == "client_addr":
            return ("10.0.0.7", 51000)
        return None


class ScriptedBackend(httpcore.NetworkBackend):
    """
    Each dial consumes the next script entry: an exception is raised,
    a list of byte chunks becomes the reads of a new stream.
    """

    def __init__(self, *scripts, delay: float = 0.0) -> None:
        self.scripts = list(scripts)
        self.delay = delay
        self.dials: list[tuple[str, int]] = []
        self.streams: list[ScriptedStream] = []

    def connect_tcp(
        self,
        host,
        port,
        timeout=None,
        local_address=None,
        socket_options=None,
    ) -> ScriptedStream:
        self.dials.append((host, port))
        if self.delay:
            time.sleep(self.delay)
        script = self.scripts.pop(0)
        if isinstance(script, BaseException):
            raise script
        stream = ScriptedStream(script)
        self.streams.append(stream)
        return stream

    def connect_unix_socket(self, path, timeout=None, socket_options=None):
        raise NotImplementedError

    def sleep(self, seconds: float) -> None:
        time.sleep(seconds)

    @property
    def sent(self) -> bytes:
        return bytes(self.streams[-1].sent)


@pytest.fixture(autouse=True)
def clean_protocol_registry(monkeypatch):
    monkeypatch.setattr(_socks, "_PROTOCOLS", {})


@pytest.fixture
def settings() -> Settings:
    return Settings(use_system_properties=False, http_retries=3, http_timeout=5.0)
