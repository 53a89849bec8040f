# =============================================================================
# KVM Client -- Client Facade
# =============================================================================
#
# Builds the session, input tracker, video watchdog and latency prober for
# one device and wires them together. Async context manager.
# =============================================================================

from __future__ import annotations

import asyncio
from typing import Any, Callable

import httpx

from ._logging import logger
from .input_tracker import InputTracker
from .latency import LatencyProber
from .mjpeg import MjpegStream
from .session import Connector, Notifier, SessionManager
from .timers import LoopTimerService, TimerService
from .types import ClientConfig, DeviceStatus, SessionState, Severity
from .watchdog import StreamWatchdog


class KVMClient:
    """Remote-control client for one KVM device.

    Args:
        config: Endpoints and timings.
        notifier: Receives ``(message, severity)`` for everything the user
            should see: device notices and video availability changes.
        timers: Timer service shared by the session and the watchdog.
        connector: Channel opener (default: websockets).
        http: ``httpx.AsyncClient`` for the video stream and latency probe;
            one is created (and closed on stop) when omitted.
        on_latency: Called with each latency sample (``None`` = unknown).
        video: Watch the MJPEG stream. Default True.

    Example::

        async with KVMClient(ClientConfig("http://kvm.local")) as kvm:
            kvm.input.key_combination(["ctrl", "alt"], ["delete"])
    """

    def __init__(
        self,
        config: ClientConfig,
        *,
        notifier: Notifier | None = None,
        timers: TimerService | None = None,
        connector: Connector | None = None,
        http: httpx.AsyncClient | None = None,
        on_latency: Callable[[float | None], Any] | None = None,
        video: bool = True,
    ) -> None:
        self._config = config
        self._notifier = notifier
        self._timers = timers or LoopTimerService()
        self._owns_http = http is None
        self._http = http or httpx.AsyncClient(base_url=config.base_url)
        self._video_enabled = video
        self._video_available: bool | None = None

        assert config.ws_url is not None
        self.session = SessionManager(
            config.ws_url,
            timers=self._timers,
            connector=connector,
            reconnect_delay=config.reconnect_delay,
            notifier=self._notify,
            on_device_status=self._handle_device_status,
        )
        self.input = InputTracker(self.session)
        self.session.add_state_listener(self.input.on_session_state)

        self.watchdog = StreamWatchdog(
            self._timers,
            reconnect_delay=config.stream_reconnect_delay,
            stall_timeout=config.stall_timeout,
            check_interval=config.stream_check_interval,
        )
        self.stream = MjpegStream(
            self._http,
            on_load=self.watchdog.on_load,
            on_error=self.watchdog.on_error,
        )
        self.latency = LatencyProber(
            self._http,
            path=config.latency_path,
            mode=config.latency_mode,
            on_sample=on_latency,
        )
        self._probe_task: asyncio.Task[None] | None = None

    # -- Context manager ------------------------------------------------------

    async def __aenter__(self) -> KVMClient:
        await self.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.stop()

    # -- Properties -----------------------------------------------------------

    @property
    def config(self) -> ClientConfig:
        return self._config

    @property
    def state(self) -> SessionState:
        return self.session.state

    @property
    def video_available(self) -> bool | None:
        """Last reported capture-device availability, None before any report."""
        return self._video_available

    # -- Lifecycle ------------------------------------------------------------

    async def start(self) -> None:
        await self.session.start()
        if self._video_enabled:
            self.watchdog.attach(self.stream, self._config.video_url)
            self.watchdog.start()
        if self._config.probe_interval > 0:
            self._probe_task = asyncio.create_task(
                self.latency.run(self._config.probe_interval)
            )
        logger.info("KVM client started for %s", self._config.base_url)

    async def stop(self) -> None:
        if self._probe_task is not None:
            self._probe_task.cancel()
            await asyncio.gather(self._probe_task, return_exceptions=True)
            self._probe_task = None
        self.watchdog.detach()
        await self.stream.aclose()
        await self.session.stop()
        if self._owns_http:
            await self._http.aclose()

    # -- Internal -------------------------------------------------------------

    def _notify(self, message: str, severity: Severity) -> None:
        if self._notifier is None:
            logger.info("[%s] %s", severity.value, message)
            return
        self._notifier(message, severity)

    def _handle_device_status(self, status: DeviceStatus) -> None:
        was_available = self._video_available
        self._video_available = status.video_available

        if status.video_available:
            if not was_available:
                if self._video_enabled:
                    self.watchdog.reload()
                self._notify(status.message or "Video device connected", Severity.SUCCESS)
        elif was_available:
            self._notify(
                status.message or "Video device disconnected", Severity.WARNING
            )
