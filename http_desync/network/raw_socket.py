"""Raw socket timing oracle for desync detection.

Standard HTTP libraries (requests, httpx, aiohttp) validate and normalize
requests, making them unsuitable for HTTP smuggling testing. This module
writes bytes exactly as built and reports only two things: whether the
response arrived before a deadline, and how long it took. Responses are never
parsed.
"""

import asyncio
import socket
import ssl
import time
from typing import Optional, Tuple
from dataclasses import dataclass

from http_desync.core.config import NetworkConfig
from http_desync.core.exceptions import DialError, WriteError, ReadError
from http_desync.core.models import Target
from http_desync.utils.logging import get_logger


logger = get_logger("http_desync.oracle")


@dataclass
class OracleResult:
    """Outcome of one request sent through the oracle."""

    data: bytes
    elapsed: float
    timed_out: bool = False


def create_ssl_context() -> ssl.SSLContext:
    """TLS context with certificate verification disabled."""
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
    context.check_hostname = False
    context.verify_mode = ssl.CERT_NONE
    context.set_alpn_protocols(["http/1.1"])
    return context


class ConnectionOracle:
    """Sends one raw request per connection and races the reply against a deadline."""

    def __init__(self, config: Optional[NetworkConfig] = None):
        self.config = config or NetworkConfig()
        self._ssl_context: Optional[ssl.SSLContext] = None

    @property
    def ssl_context(self) -> ssl.SSLContext:
        if self._ssl_context is None:
            self._ssl_context = create_ssl_context()
        return self._ssl_context

    async def _dial(
        self, target: Target, timeout: float
    ) -> Tuple[asyncio.StreamReader, asyncio.StreamWriter]:
        ssl_context = self.ssl_context if target.use_ssl else None
        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(
                    target.host,
                    target.port,
                    ssl=ssl_context,
                    server_hostname=target.host if ssl_context else None,
                ),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            raise DialError(target.url, f"connect timed out after {timeout:.3f}s")
        except (OSError, ValueError) as e:
            raise DialError(target.url, str(e) or e.__class__.__name__)

        # Disable Nagle
        sock = writer.get_extra_info("socket")
        if sock is not None:
            sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)

        return reader, writer

    async def _close(self, writer: asyncio.StreamWriter) -> None:
        writer.close()
        try:
            await asyncio.wait_for(writer.wait_closed(), timeout=self.config.close_timeout)
        except (OSError, asyncio.TimeoutError):
            pass

    async def send(self, target: Target, request: bytes, timeout: float) -> OracleResult:
        """Send a request and wait for the server to finish answering.

        The connection is dialled with ``timeout`` as its connect bound. After
        the write, reading to EOF races a ``timeout`` deadline. If the deadline
        wins, the connection is closed so the pending read fails and is reaped.

        Returns:
            OracleResult with the bytes received, or ``timed_out`` set

        Raises:
            DialError: connection could not be established
            WriteError: request could not be written
            ReadError: the read failed before the deadline
        """
        start = time.monotonic()
        reader, writer = await self._dial(target, timeout)

        try:
            try:
                writer.write(request)
                await asyncio.wait_for(writer.drain(), timeout=timeout)
            except asyncio.TimeoutError:
                raise WriteError(target.url, f"write timed out after {timeout:.3f}s")
            except OSError as e:
                raise WriteError(target.url, str(e) or e.__class__.__name__)

            read_task = asyncio.ensure_future(reader.read())
            done, _ = await asyncio.wait({read_task}, timeout=timeout)

            if read_task in done:
                error = read_task.exception()
                if error is not None:
                    raise ReadError(target.url, str(error) or error.__class__.__name__)
                result = OracleResult(
                    data=read_task.result(),
                    elapsed=time.monotonic() - start,
                )
            else:
                writer.close()
                read_task.cancel()
                await asyncio.gather(read_task, return_exceptions=True)
                result = OracleResult(
                    data=b"",
                    elapsed=time.monotonic() - start,
                    timed_out=True,
                )
        finally:
            await self._close(writer)

        if self.config.debug:
            logger.debug(
                "request sent",
                url=target.url,
                elapsed_ms=round(result.elapsed * 1000),
                timed_out=result.timed_out,
                request=request.decode("utf-8", errors="replace"),
            )

        return result
