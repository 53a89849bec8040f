# =============================================================================
# KVM Client -- Timer Service
# =============================================================================
#
# Channel reconnects and stream reloads are scheduled through a TimerService
# so callers can swap the event-loop clock for a manually advanced one.
# =============================================================================

from __future__ import annotations

import asyncio
from typing import Any, Callable, Protocol


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class TimerService(Protocol):
    """Clock plus one-shot callbacks, all on the calling event loop."""

    def now(self) -> float:
        """Monotonic time in seconds."""
        ...

    def call_later(self, delay: float, callback: Callable[[], Any]) -> TimerHandle:
        """Run *callback* once after *delay* seconds."""
        ...


class LoopTimerService:
    """TimerService backed by the running asyncio loop."""

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def now(self) -> float:
        return self.loop.time()

    def call_later(
        self, delay: float, callback: Callable[[], Any]
    ) -> asyncio.TimerHandle:
        return self.loop.call_later(delay, callback)
