# =============================================================================
# KVM Client -- Latency Prober
# =============================================================================
#
# One HTTP round trip against the device's latency endpoint per probe. The
# last sample is kept; None means the last probe failed.
# =============================================================================

from __future__ import annotations

import asyncio
import time
from typing import Any, Callable

import httpx

from ._logging import logger
from .constants import (
    LATENCY_GOOD_MS,
    LATENCY_PATH,
    LATENCY_WARNING_MS,
    PROBE_INTERVAL,
    PROBE_TIMEOUT,
)
from .types import LatencyGrade


def _monotonic_ms() -> float:
    return time.perf_counter() * 1000


def _wall_ms() -> float:
    return time.time() * 1000


class LatencyProber:
    """Measure round-trip latency to the device.

    In ``"elapsed"`` mode the sample is the wall-clock duration of the
    request. In ``"echo"`` mode the server returns ``{"timestamp": T}``
    (milliseconds since the epoch) and the sample is ``now - T``.

    Args:
        client: ``httpx.AsyncClient``, usually with ``base_url`` set.
        path: Latency endpoint path or URL.
        mode: ``"elapsed"`` or ``"echo"``.
        on_sample: Called with every published sample (``None`` = unknown).
        clock: Millisecond clock; monotonic for elapsed, epoch for echo.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        path: str = LATENCY_PATH,
        mode: str = "elapsed",
        on_sample: Callable[[float | None], Any] | None = None,
        clock: Callable[[], float] | None = None,
        timeout: float = PROBE_TIMEOUT,
    ) -> None:
        if mode not in ("elapsed", "echo"):
            raise ValueError(f"Unknown latency mode: {mode!r}")
        self._client = client
        self._path = path
        self._mode = mode
        self._on_sample = on_sample
        self._clock = clock or (_wall_ms if mode == "echo" else _monotonic_ms)
        self._timeout = timeout
        self._latency_ms: float | None = None

    @property
    def latency_ms(self) -> float | None:
        return self._latency_ms

    def grade(self) -> LatencyGrade:
        latency = self._latency_ms
        if latency is None:
            return LatencyGrade.UNKNOWN
        if latency < LATENCY_GOOD_MS:
            return LatencyGrade.GOOD
        if latency < LATENCY_WARNING_MS:
            return LatencyGrade.WARNING
        return LatencyGrade.BAD

    async def probe(self) -> float | None:
        """Run one round trip and publish the result."""
        start = self._clock()
        try:
            response = await self._client.get(self._path, timeout=self._timeout)
            response.raise_for_status()
            data = response.json()
            end = self._clock()
            if self._mode == "echo":
                latency = end - float(data["timestamp"])
            else:
                latency = end - start
        except (httpx.HTTPError, ValueError, KeyError, TypeError) as exc:
            logger.warning("Latency probe failed: %s", exc)
            self._publish(None)
            return None

        if latency < 0:
            logger.debug("Negative latency %.1fms (clock skew), clamping", latency)
            latency = 0.0
        self._publish(round(latency, 1))
        return self._latency_ms

    async def run(self, interval: float = PROBE_INTERVAL) -> None:
        """Probe every *interval* seconds until cancelled."""
        while True:
            await self.probe()
            await asyncio.sleep(interval)

    def _publish(self, value: float | None) -> None:
        self._latency_ms = value
        if self._on_sample is not None:
            try:
                self._on_sample(value)
            except Exception as exc:
                logger.error("Latency callback error: %s", exc)
