"""Baseline latency calibration.

A target's baseline is the time a plain GET takes end to end. The detection
timeout for every test against that target is the baseline plus the
configured delay, so slow services are not mistaken for hanging ones.
"""

from typing import Sequence

from http_desync.core.exceptions import BaselineTimeoutError
from http_desync.core.models import Target
from http_desync.network.raw_socket import ConnectionOracle
from http_desync.payloads.builder import build_baseline


class BaselineCalibrator:
    """Measures the normal round-trip latency of a target."""

    def __init__(
        self,
        oracle: ConnectionOracle,
        headers: Sequence[str] = (),
        ceiling: float = 30.0,
    ):
        self.oracle = oracle
        self.headers = list(headers)
        self.ceiling = ceiling

    async def measure(self, target: Target) -> float:
        """Return the elapsed seconds of one baseline request.

        Raises:
            TransportError: the request failed
            BaselineTimeoutError: no complete response under the ceiling
        """
        request = build_baseline(target, self.headers)
        result = await self.oracle.send(target, request, self.ceiling)
        if result.timed_out:
            raise BaselineTimeoutError(target.url, self.ceiling)
        return result.elapsed


def detection_timeout(baseline: float, delay: float) -> float:
    """Timeout for detection requests against a target with this baseline."""
    timeout = baseline + delay
    if timeout <= 0:
        raise ValueError(f"timeout must be positive, got {timeout}")
    return timeout
