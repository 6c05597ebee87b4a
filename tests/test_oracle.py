"""Tests for the raw connection oracle against local servers."""

import socket
import ssl

import pytest

from http_desync.core.config import NetworkConfig
from http_desync.core.exceptions import BaselineTimeoutError, DialError
from http_desync.core.models import Target
from http_desync.detection.baseline import BaselineCalibrator, detection_timeout
from http_desync.network.raw_socket import ConnectionOracle, create_ssl_context
from http_desync.payloads.builder import build_baseline, build_clte, build_clte_verify


TE = "Transfer-Encoding: chunked"


def free_port() -> int:
    with socket.socket() as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


class TestConnectionOracle:
    """Tests for send()."""

    @pytest.mark.asyncio
    async def test_reads_to_eof(self, desync_server):
        async with desync_server("safe") as server:
            target = Target.parse(server.url)
            result = await ConnectionOracle().send(target, build_baseline(target), 2.0)
        assert not result.timed_out
        assert result.data.startswith(b"HTTP/1.1 200 OK")
        assert 0 <= result.elapsed < 2.0

    @pytest.mark.asyncio
    async def test_deadline(self, desync_server):
        async with desync_server("hang") as server:
            target = Target.parse(server.url)
            result = await ConnectionOracle().send(target, build_baseline(target), 0.2)
        assert result.timed_out
        assert result.data == b""
        assert result.elapsed >= 0.2

    @pytest.mark.asyncio
    async def test_dial_refused(self):
        target = Target.parse(f"http://127.0.0.1:{free_port()}/")
        with pytest.raises(DialError) as exc_info:
            await ConnectionOracle().send(target, build_baseline(target), 1.0)
        assert exc_info.value.phase == "dial"
        assert exc_info.value.url == target.url

    @pytest.mark.asyncio
    async def test_unencodable_host(self):
        """Hosts the resolver cannot encode surface as dial errors."""
        target = Target(
            url="http://a..b/", scheme="http", host="a..b", port=80, path="/"
        )
        with pytest.raises(DialError):
            await ConnectionOracle().send(target, build_baseline(target), 1.0)

    @pytest.mark.asyncio
    async def test_clte_backend(self, desync_server):
        """The CL.TE probe hangs on a CL.TE pair; its verification does not."""
        async with desync_server("clte") as server:
            target = Target.parse(server.url)
            oracle = ConnectionOracle(NetworkConfig(debug=True))
            probe = await oracle.send(target, build_clte("POST", target, TE), 0.3)
            verify = await oracle.send(target, build_clte_verify("POST", target, TE), 0.3)
        assert probe.timed_out
        assert not verify.timed_out
        assert verify.data.startswith(b"HTTP/1.1 400")

    def test_ssl_context_unverified(self):
        context = create_ssl_context()
        assert context.check_hostname is False
        assert context.verify_mode == ssl.CERT_NONE


class TestBaselineCalibrator:
    """Tests for baseline measurement."""

    @pytest.mark.asyncio
    async def test_measure(self, desync_server):
        async with desync_server("safe") as server:
            calibrator = BaselineCalibrator(ConnectionOracle(), ["Connection: close"], 2.0)
            elapsed = await calibrator.measure(Target.parse(server.url))
        assert 0 <= elapsed < 2.0

    @pytest.mark.asyncio
    async def test_ceiling(self, desync_server):
        async with desync_server("hang") as server:
            calibrator = BaselineCalibrator(ConnectionOracle(), ceiling=0.2)
            with pytest.raises(BaselineTimeoutError):
                await calibrator.measure(Target.parse(server.url))

    def test_detection_timeout(self):
        assert detection_timeout(0.05, 5.0) == pytest.approx(5.05)
        with pytest.raises(ValueError):
            detection_timeout(0.0, 0.0)
