# =============================================================================
# KVM Client -- Stream Watchdog
# =============================================================================
#
# Watches the MJPEG video stream and reloads it when it errors, delivers an
# empty frame, or stops delivering frames. A dead stream fires error/empty
# events repeatedly; the in-flight flag keeps reloads from overlapping.
# =============================================================================

from __future__ import annotations

import time
from typing import Callable, Protocol

from ._logging import logger
from .constants import (
    STREAM_CHECK_INTERVAL,
    STREAM_RECONNECT_DELAY,
    STREAM_STALL_TIMEOUT,
)
from .timers import LoopTimerService, TimerHandle, TimerService
from .types import StreamHealth


class StreamSurface(Protocol):
    """Anything with a settable source address; ``""`` drops the transport."""

    src: str


class StreamWatchdog:
    """Debounced recovery for a continuously loading stream.

    The stream reports back through :meth:`on_load` and :meth:`on_error`.

    Args:
        timers: Timer service for the reload delay and the stall check.
        reconnect_delay: Seconds between dropping and re-setting the address.
        stall_timeout: Seconds without a good frame before reloading;
            ``None`` disables stall detection.
        check_interval: Period of the stall check started by :meth:`start`.
        token_clock: Wall clock (seconds) used for cache-busting tokens.
    """

    def __init__(
        self,
        timers: TimerService | None = None,
        *,
        reconnect_delay: float = STREAM_RECONNECT_DELAY,
        stall_timeout: float | None = STREAM_STALL_TIMEOUT,
        check_interval: float = STREAM_CHECK_INTERVAL,
        token_clock: Callable[[], float] = time.time,
    ) -> None:
        self._timers = timers or LoopTimerService()
        self._reconnect_delay = reconnect_delay
        self._stall_timeout = stall_timeout
        self._check_interval = check_interval
        self._token_clock = token_clock

        self._stream: StreamSurface | None = None
        self._base_address = ""
        self._health = StreamHealth()
        self._watch_since: float | None = None
        self._last_token = 0
        self._check_timer: TimerHandle | None = None
        self._restore_timer: TimerHandle | None = None

    @property
    def health(self) -> StreamHealth:
        return self._health

    @property
    def reconnecting(self) -> bool:
        return self._health.reconnecting

    # -- Attach / detach ------------------------------------------------------

    def attach(self, stream: StreamSurface, base_address: str) -> None:
        """Start watching *stream* and point it at a fresh address."""
        self._cancel_restore()
        self._stream = stream
        self._base_address = base_address
        self._health = StreamHealth()
        self._watch_since = self._timers.now()
        stream.src = self._fresh_address()

    def detach(self) -> None:
        self.stop()
        self._cancel_restore()
        self._health.reconnecting = False
        self._stream = None

    def start(self) -> None:
        """Arm the periodic stall check."""
        if self._check_timer is None and self._stall_timeout is not None:
            self._check_timer = self._timers.call_later(
                self._check_interval, self._on_check_timer
            )

    def stop(self) -> None:
        if self._check_timer is not None:
            self._check_timer.cancel()
            self._check_timer = None

    # -- Stream signals -------------------------------------------------------

    def on_load(self, width: int, height: int) -> None:
        if width <= 0 or height <= 0:
            self._reconnect("delivered an empty frame")
            return
        self._health.last_frame_at = self._timers.now()

    def on_error(self, error: BaseException | None = None) -> None:
        if error is not None:
            logger.debug("Video stream error: %s", error)
        self._reconnect("failed")

    def check_stall(self) -> bool:
        """Reload the stream if no frame arrived within the stall timeout."""
        if self._stream is None or self._stall_timeout is None:
            return False
        if self._health.reconnecting:
            return False
        since = self._watch_since or 0.0
        if self._health.last_frame_at is not None:
            since = max(since, self._health.last_frame_at)
        if self._timers.now() - since < self._stall_timeout:
            return False
        return self._reconnect("stalled")

    def reload(self) -> bool:
        """Force a reload, e.g. when the capture device comes back."""
        return self._reconnect("reload requested")

    # -- Internal -------------------------------------------------------------

    def _reconnect(self, reason: str) -> bool:
        if self._stream is None:
            return False
        if self._health.reconnecting:
            logger.debug("Video stream %s, reload already in flight", reason)
            return False

        self._health.reconnecting = True
        self._health.attempts += 1
        logger.warning(
            "Video stream %s, reloading (attempt %d)", reason, self._health.attempts
        )
        self._stream.src = ""
        self._restore_timer = self._timers.call_later(
            self._reconnect_delay, self._restore
        )
        return True

    def _cancel_restore(self) -> None:
        if self._restore_timer is not None:
            self._restore_timer.cancel()
            self._restore_timer = None

    def _restore(self) -> None:
        self._restore_timer = None
        if self._stream is not None:
            self._stream.src = self._fresh_address()
            self._watch_since = self._timers.now()
        self._health.reconnecting = False

    def _fresh_address(self) -> str:
        token = max(int(self._token_clock() * 1000), self._last_token + 1)
        self._last_token = token
        sep = "&" if "?" in self._base_address else "?"
        return f"{self._base_address}{sep}{token}"

    def _on_check_timer(self) -> None:
        self._check_timer = None
        self.check_stall()
        self.start()
