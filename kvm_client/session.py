# =============================================================================
# KVM Client -- Session Manager
# =============================================================================
#
# Owns the input WebSocket: connect, fixed-delay reconnect, pending queue
# flush, inbound dispatch. Every channel callback is turned into an event on
# one asyncio.Queue and handled by a single task, in arrival order.
# =============================================================================

from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable, Protocol, Union

import websockets.asyncio.client
from websockets.exceptions import ConnectionClosed

from ._logging import logger
from .constants import (
    CONNECTION_TIMEOUT,
    MAX_MESSAGE_SIZE,
    RECONNECT_DELAY,
    WS_CLOSE_GOING_AWAY,
    WS_CLOSE_NORMAL,
)
from .errors import KVMConnectionError, KVMProtocolError, KVMTimeoutError
from .pending_queue import PendingQueue
from .protocol import MessageCodec
from .timers import LoopTimerService, TimerHandle, TimerService
from .types import (
    INPUT_MESSAGE_TYPES,
    DeviceStatus,
    InputMessage,
    Notice,
    SessionState,
    SessionStats,
    Severity,
)


class Channel(Protocol):
    """The subset of a websockets ClientConnection the session uses."""

    async def send(self, message: str) -> None: ...

    async def close(self, code: int = 1000, reason: str = "") -> None: ...

    def __aiter__(self) -> AsyncIterator[str | bytes]: ...


Connector = Callable[[str], Awaitable[Channel]]
Notifier = Callable[[str, Severity], Any]


async def websocket_connector(url: str) -> Channel:
    """Open *url* with the websockets asyncio client."""
    return await websockets.asyncio.client.connect(
        url,
        max_size=MAX_MESSAGE_SIZE,
        open_timeout=CONNECTION_TIMEOUT,
    )


# -- Channel events -----------------------------------------------------------


@dataclass(slots=True)
class _Opened:
    generation: int
    channel: Channel


@dataclass(slots=True)
class _Frame:
    generation: int
    data: str | bytes


@dataclass(slots=True)
class _Closed:
    generation: int
    reason: str


@dataclass(slots=True)
class _Failed:
    generation: int
    error: BaseException


@dataclass(slots=True)
class _TimerFired:
    pass


@dataclass(slots=True)
class _Pump:
    pass


_Event = Union[_Opened, _Frame, _Closed, _Failed, _TimerFired, _Pump]


class SessionManager:
    """Persistent input channel with queuing and unconditional reconnect.

    ``send()`` never blocks and never fails: while the channel is not open
    messages go to the :class:`PendingQueue`, which is flushed in order as
    soon as the channel opens. Loss of the channel is never surfaced as an
    error; the session waits *reconnect_delay* and tries again, forever.

    Args:
        url: WebSocket URL of the input endpoint.
        codec: Wire codec (default :class:`MessageCodec`).
        queue: Pending queue (default unbounded).
        timers: Timer service for the reconnect delay.
        connector: Coroutine function opening a channel for a URL.
        reconnect_delay: Fixed delay in seconds between attempts.
        notifier: Receives ``(message, severity)`` for inbound notices.
        on_device_status: Receives decoded ``device_status`` messages.
    """

    def __init__(
        self,
        url: str,
        *,
        codec: MessageCodec | None = None,
        queue: PendingQueue | None = None,
        timers: TimerService | None = None,
        connector: Connector | None = None,
        reconnect_delay: float = RECONNECT_DELAY,
        notifier: Notifier | None = None,
        on_device_status: Callable[[DeviceStatus], Any] | None = None,
    ) -> None:
        self._url = url
        self._codec = codec or MessageCodec()
        self._queue = queue if queue is not None else PendingQueue()
        self._timers = timers or LoopTimerService()
        self._connector = connector or websocket_connector
        self._reconnect_delay = reconnect_delay
        self._notifier = notifier
        self._on_device_status = on_device_status

        # State
        self._state = SessionState.DISCONNECTED
        self._channel: Channel | None = None
        self._generation = 0
        self._outbox: deque[InputMessage] = deque()
        self._pump_pending = False
        self._stopped = False
        self._stats = SessionStats()
        self._listeners: list[Callable[[SessionState], Any]] = []

        # Event loop plumbing
        self._events: asyncio.Queue[_Event] = asyncio.Queue()
        self._open_event = asyncio.Event()
        self._reconnect_timer: TimerHandle | None = None
        self._loop_task: asyncio.Task[None] | None = None
        self._connect_task: asyncio.Task[None] | None = None
        self._reader_task: asyncio.Task[None] | None = None
        self._background_tasks: set[asyncio.Task[Any]] = set()

    def _fire_task(self, coro: Any) -> asyncio.Task[Any]:
        """Schedule a coroutine with a strong reference to prevent GC."""
        task = asyncio.ensure_future(coro)
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)
        return task

    # -- Properties -----------------------------------------------------------

    @property
    def url(self) -> str:
        return self._url

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_open(self) -> bool:
        return self._state is SessionState.OPEN

    @property
    def pending(self) -> int:
        """Messages waiting for the channel to open."""
        return self._queue.size

    @property
    def stats(self) -> SessionStats:
        return self._stats

    def add_state_listener(self, listener: Callable[[SessionState], Any]) -> None:
        self._listeners.append(listener)

    # -- Lifecycle ------------------------------------------------------------

    async def start(self) -> None:
        """Start the event task and open the channel."""
        if self._stopped:
            raise KVMConnectionError("Session has been stopped")
        if self._loop_task is None:
            self._loop_task = asyncio.create_task(self._run())
        self.connect()

    async def stop(self) -> None:
        """Tear down the channel and stop scheduling work.

        Queued messages are discarded; there is no graceful drain.
        """
        self._stopped = True
        self._cancel_reconnect_timer()

        tasks: list[asyncio.Task[Any]] = []
        pending = {self._connect_task, self._reader_task, self._loop_task}
        pending.update(self._background_tasks)
        for task in pending:
            if task is not None and not task.done():
                task.cancel()
                tasks.append(task)
        self._connect_task = None
        self._reader_task = None
        self._loop_task = None
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        channel = self._channel
        self._channel = None
        if channel is not None:
            await self._close_quietly(channel, "Client shutdown", WS_CLOSE_NORMAL)

        self._queue.clear()
        self._outbox.clear()
        self._open_event.clear()
        self._set_state(SessionState.DISCONNECTED)

    def connect(self) -> None:
        """Open the channel. No-op while CONNECTING or OPEN."""
        if self._stopped:
            raise KVMConnectionError("Session has been stopped")
        if self._state in (SessionState.CONNECTING, SessionState.OPEN):
            return
        self._begin_connect()

    async def wait_until_open(self, timeout: float | None = None) -> None:
        """Block until the channel is open and the pending queue flushed."""
        try:
            await asyncio.wait_for(self._open_event.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            raise KVMTimeoutError(f"Channel not open after {timeout}s") from None

    async def flush(self) -> None:
        """Wait until every event posted so far has been handled."""
        if self._loop_task is None:
            return
        await self._events.join()

    # -- Send -----------------------------------------------------------------

    def send(self, message: InputMessage) -> None:
        """Submit an input message; fire-and-forget.

        Sent right away when the channel is open, queued otherwise.
        """
        if not isinstance(message, INPUT_MESSAGE_TYPES):
            raise KVMProtocolError(f"Not an input message: {message!r}")
        if self._stopped:
            logger.debug("Session stopped, dropping %s", type(message).__name__)
            return

        if self._state is SessionState.OPEN:
            self._outbox.append(message)
            if not self._pump_pending:
                self._pump_pending = True
                self._post(_Pump())
        else:
            self._requeue(message)

    def _requeue(self, message: InputMessage) -> None:
        if self._queue.enqueue(message):
            self._stats.messages_queued += 1
        else:
            logger.warning(
                "Pending queue full, dropped %s", type(message).__name__
            )

    # -- Internal: event loop -------------------------------------------------

    def _post(self, event: _Event) -> None:
        self._events.put_nowait(event)

    async def _run(self) -> None:
        while True:
            event = await self._events.get()
            try:
                await self._handle(event)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Session event handler failed")
            finally:
                self._events.task_done()

    async def _handle(self, event: _Event) -> None:
        if isinstance(event, _Pump):
            self._pump_pending = False
            await self._pump()
        elif isinstance(event, _Frame):
            if event.generation == self._generation:
                self._handle_frame(event.data)
        elif isinstance(event, _Opened):
            await self._handle_opened(event)
        elif isinstance(event, (_Closed, _Failed)):
            self._handle_lost(event)
        elif isinstance(event, _TimerFired):
            self._handle_timer()

    # -- Internal: connect ----------------------------------------------------

    def _begin_connect(self) -> None:
        self._cancel_reconnect_timer()
        self._generation += 1
        self._set_state(SessionState.CONNECTING)
        self._connect_task = self._fire_task(self._open_channel(self._generation))

    async def _open_channel(self, generation: int) -> None:
        logger.debug("Connecting to %s", self._url)
        try:
            channel = await self._connector(self._url)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self._post(_Failed(generation, exc))
            return
        self._post(_Opened(generation, channel))

    async def _handle_opened(self, event: _Opened) -> None:
        if (
            event.generation != self._generation
            or self._state is not SessionState.CONNECTING
        ):
            self._fire_task(self._close_quietly(event.channel, "Stale connection"))
            return

        self._channel = event.channel
        self._stats.opened_since = self._timers.now()
        self._set_state(SessionState.OPEN)
        logger.info("Input channel open (%d queued)", self._queue.size)
        self._reader_task = self._fire_task(
            self._read(event.generation, event.channel)
        )
        await self._pump()
        if self._state is SessionState.OPEN:
            self._open_event.set()

    # -- Internal: outbound ---------------------------------------------------

    async def _pump(self) -> None:
        """Write queued messages first, then the outbox, strictly in order."""
        channel = self._channel
        while (
            channel is not None
            and self._channel is channel
            and self._state is SessionState.OPEN
        ):
            if self._queue.size:
                message = self._queue.peek()
                from_queue = True
            elif self._outbox:
                message = self._outbox[0]
                from_queue = False
            else:
                return

            if not await self._transmit(channel, message):
                return
            if from_queue:
                self._queue.pop()
            else:
                self._outbox.popleft()

    async def _transmit(self, channel: Channel, message: InputMessage) -> bool:
        frame = self._codec.encode(message)
        try:
            await channel.send(frame)
        except Exception as exc:
            logger.debug("Send failed: %s", exc)
            self._post(_Failed(self._generation, exc))
            return False
        self._stats.messages_sent += 1
        return True

    # -- Internal: inbound ----------------------------------------------------

    async def _read(self, generation: int, channel: Channel) -> None:
        try:
            async for data in channel:
                self._post(_Frame(generation, data))
        except asyncio.CancelledError:
            return
        except ConnectionClosed as exc:
            self._post(_Closed(generation, str(exc)))
        except Exception as exc:
            self._post(_Failed(generation, exc))
        else:
            self._post(_Closed(generation, "closed by peer"))

    def _handle_frame(self, data: str | bytes) -> None:
        self._stats.messages_received += 1
        message = self._codec.decode(data)
        if message is None:
            self._stats.frames_dropped += 1
            return

        if isinstance(message, Notice):
            if self._notifier is not None:
                self._invoke(self._notifier, message.message, message.severity)
        elif isinstance(message, DeviceStatus):
            if self._on_device_status is not None:
                self._invoke(self._on_device_status, message)
        else:
            logger.debug("Ignoring inbound message type %r", message.type)

    def _invoke(self, fn: Callable[..., Any], *args: Any) -> None:
        try:
            result = fn(*args)
            if asyncio.iscoroutine(result):
                self._fire_task(result)
        except Exception as exc:
            logger.error("Session callback error: %s", exc)

    # -- Internal: reconnection -----------------------------------------------

    def _handle_lost(self, event: _Closed | _Failed) -> None:
        if event.generation != self._generation:
            return
        if self._state not in (SessionState.CONNECTING, SessionState.OPEN):
            return

        if isinstance(event, _Failed):
            logger.warning("Input channel error: %s", event.error)
        else:
            logger.info("Input channel closed: %s", event.reason)

        channel = self._channel
        self._channel = None
        if self._reader_task is not None and not self._reader_task.done():
            self._reader_task.cancel()
        self._reader_task = None

        # Messages accepted while open but not yet written keep their order
        # behind anything left over in the pending queue.
        while self._outbox:
            self._requeue(self._outbox.popleft())

        self._open_event.clear()
        self._set_state(SessionState.RECONNECTING)
        self._schedule_reconnect()

        # A dead peer can hold close() until its timeout; never wait for it here.
        if channel is not None:
            self._fire_task(self._close_quietly(channel, "Reconnecting"))

    def _schedule_reconnect(self) -> None:
        if self._stopped or self._reconnect_timer is not None:
            return
        logger.info("Reconnecting in %.1fs", self._reconnect_delay)
        self._reconnect_timer = self._timers.call_later(
            self._reconnect_delay, self._on_reconnect_timer
        )

    def _on_reconnect_timer(self) -> None:
        self._post(_TimerFired())

    def _handle_timer(self) -> None:
        self._reconnect_timer = None
        if self._stopped or self._state is not SessionState.RECONNECTING:
            return
        self._stats.reconnect_count += 1
        self._begin_connect()

    def _cancel_reconnect_timer(self) -> None:
        if self._reconnect_timer is not None:
            self._reconnect_timer.cancel()
            self._reconnect_timer = None

    async def _close_quietly(
        self, channel: Channel, reason: str, code: int = WS_CLOSE_GOING_AWAY
    ) -> None:
        try:
            await channel.close(code, reason)
        except Exception as exc:
            logger.debug("Channel close failed: %s", exc)

    # -- State management -----------------------------------------------------

    def _set_state(self, new_state: SessionState) -> None:
        if new_state == self._state:
            return
        old = self._state
        self._state = new_state
        logger.debug("State: %s -> %s", old.value, new_state.value)
        for listener in list(self._listeners):
            self._invoke(listener, new_state)
