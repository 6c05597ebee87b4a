"""Pytest configuration and fixtures for http-desync tests."""

import asyncio
from typing import Dict, List, Optional, Tuple

import pytest

from http_desync.core.config import ScanConfig, NetworkConfig
from http_desync.core.exceptions import DialError, ReadError
from http_desync.core.models import Target
from http_desync.network.raw_socket import OracleResult


HEX = b"0123456789abcdefABCDEF"

RESPONSE_OK = b"HTTP/1.1 200 OK\r\nContent-Length: 2\r\nConnection: close\r\n\r\nok"
RESPONSE_BAD = b"HTTP/1.1 400 Bad Request\r\nContent-Length: 0\r\nConnection: close\r\n\r\n"


# ============================================================================
# Configuration
# ============================================================================


@pytest.fixture
def state_path(tmp_path) -> str:
    return str(tmp_path / "smuggles.state")


@pytest.fixture
def fast_config(state_path) -> ScanConfig:
    """Small, fast scan configuration for testing."""
    return ScanConfig(
        workers=2,
        methods=["POST"],
        headers=["Connection: close"],
        delay=0.3,
        state_file=state_path,
        checkpoint_interval=60.0,
        enabled=["standard"],
        network=NetworkConfig(baseline_timeout=2.0, close_timeout=0.5),
        quiet=True,
    )


@pytest.fixture
def sample_target() -> Target:
    return Target.parse("http://backend.test/api?x=1")


# ============================================================================
# Scripted oracle
# ============================================================================


def request_kind(request: bytes) -> str:
    """Classify a built request by its declared Content-Length."""
    for length, kind in (
        (b"Content-Length: 4\r\n", "clte"),
        (b"Content-Length: 7\r\n", "clte_verify"),
        (b"Content-Length: 6\r\n", "tecl"),
        (b"Content-Length: 5\r\n", "tecl_verify"),
    ):
        if length in request:
            return kind
    return "baseline"


class FakeOracle:
    """Oracle double driven by a per-URL script.

    A script maps a request kind (see ``request_kind``) to one of ``ok``,
    ``timeout``, ``read-error`` or ``dial-error``. Unscripted kinds answer
    ``ok``.
    """

    def __init__(
        self,
        scripts: Optional[Dict[str, Dict[str, str]]] = None,
        elapsed: float = 0.05,
    ):
        self.scripts = scripts or {}
        self.elapsed = elapsed
        self.sent: List[Tuple[str, str, float]] = []

    def kinds(self, url: str) -> List[str]:
        return [kind for sent_url, kind, _ in self.sent if sent_url == url]

    async def send(self, target: Target, request: bytes, timeout: float) -> OracleResult:
        kind = request_kind(request)
        self.sent.append((target.url, kind, timeout))
        await asyncio.sleep(0)

        outcome = self.scripts.get(target.url, {}).get(kind, "ok")
        if outcome == "timeout":
            return OracleResult(data=b"", elapsed=timeout, timed_out=True)
        if outcome == "read-error":
            raise ReadError(target.url, "connection reset by peer")
        if outcome == "dial-error":
            raise DialError(target.url, "connection refused")
        return OracleResult(data=RESPONSE_OK, elapsed=self.elapsed)


# Scripts for the four interesting target behaviours
CLTE_SCRIPT = {"clte": "timeout"}
TECL_SCRIPT = {"tecl": "timeout"}
INCONCLUSIVE_SCRIPT = {"clte": "timeout", "clte_verify": "timeout"}
BROKEN_SCRIPT = {"clte": "read-error", "tecl": "read-error"}


@pytest.fixture
def fake_oracle_factory():
    def factory(scripts=None, elapsed=0.05) -> FakeOracle:
        return FakeOracle(scripts, elapsed)
    return factory


# ============================================================================
# In-process desync server
# ============================================================================


def parse_chunked(body: bytes) -> str:
    """Chunked-decode a complete body: ``complete``, ``incomplete`` or ``invalid``."""
    pos = 0
    while True:
        end = body.find(b"\r\n", pos)
        line = body[pos:] if end < 0 else body[pos:end]
        if any(c not in HEX for c in line):
            return "invalid"
        if end < 0:
            return "incomplete"
        if not line:
            return "invalid"
        size = int(line, 16)
        pos = end + 2
        if size == 0:
            return "complete" if body[pos:pos + 2] == b"\r\n" else "incomplete"
        if len(body) < pos + size + 2:
            return "incomplete"
        pos += size + 2


async def read_chunked(reader: asyncio.StreamReader) -> Optional[int]:
    """Chunked-decode from a stream. Returns bytes consumed, or None when invalid."""
    consumed = 0
    while True:
        line = b""
        while not line.endswith(b"\r\n"):
            c = await reader.readexactly(1)
            consumed += 1
            if c not in b"\r\n" and c not in HEX:
                return None
            line += c
        if line == b"\r\n":
            return None
        size = int(line[:-2], 16)
        if size == 0:
            await reader.readexactly(2)
            return consumed + 2
        await reader.readexactly(size + 2)
        consumed += size + 2


class DesyncServer:
    """Local HTTP endpoint modelling a front-end/back-end pair.

    Modes:
        safe: both hops honour Content-Length
        clte: front-end forwards Content-Length bytes, back-end decodes chunked
        tecl: front-end decodes chunked, back-end waits for Content-Length bytes
        hang: accepts the request and never answers
    """

    def __init__(self, mode: str = "safe"):
        self.mode = mode
        self.requests = 0
        self._server: Optional[asyncio.AbstractServer] = None
        self._port: Optional[int] = None

    @property
    def port(self) -> int:
        return self._port

    @property
    def url(self) -> str:
        return f"http://127.0.0.1:{self.port}/"

    async def __aenter__(self) -> "DesyncServer":
        self._server = await asyncio.start_server(self._handle, "127.0.0.1", 0)
        self._port = self._server.sockets[0].getsockname()[1]
        return self

    async def __aexit__(self, *exc) -> None:
        self._server.close()
        await self._server.wait_closed()

    async def _hang(self, reader: asyncio.StreamReader) -> None:
        # Wait for the client to give up and close
        await reader.read()

    async def _handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self.requests += 1
        try:
            head = await reader.readuntil(b"\r\n\r\n")
            headers = [line.lower() for line in head.decode("latin-1").split("\r\n")[1:] if line]
            chunked = "transfer-encoding: chunked" in headers
            length = 0
            for line in headers:
                if line.startswith("content-length:"):
                    length = int(line.split(":", 1)[1])

            response = RESPONSE_OK
            if self.mode == "hang":
                await self._hang(reader)
                return
            if self.mode == "clte" and chunked:
                verdict = parse_chunked(await reader.readexactly(length))
                if verdict == "incomplete":
                    await self._hang(reader)
                    return
                if verdict == "invalid":
                    response = RESPONSE_BAD
            elif self.mode == "tecl" and chunked:
                forwarded = await read_chunked(reader)
                if forwarded is None:
                    response = RESPONSE_BAD
                elif forwarded < length:
                    await self._hang(reader)
                    return
            else:
                await reader.readexactly(length)

            writer.write(response)
            await writer.drain()
        except (asyncio.IncompleteReadError, ConnectionError):
            pass
        finally:
            writer.close()


@pytest.fixture
def desync_server():
    """Factory for DesyncServer; use as ``async with desync_server("clte") as server``."""
    return DesyncServer
