"""Shared fakes: manual timers, in-memory channels, a scripted connector."""

import asyncio
import json

import pytest
import pytest_asyncio

from kvm_client.session import SessionManager


class ManualTimers:
    """TimerService whose clock only moves when a test calls ``advance``."""

    def __init__(self, start: float = 0.0):
        self._now = start
        self._handles: list["_ManualHandle"] = []

    def now(self) -> float:
        return self._now

    def call_later(self, delay, callback):
        handle = _ManualHandle(self._now + delay, callback)
        self._handles.append(handle)
        return handle

    @property
    def pending(self) -> int:
        return sum(1 for h in self._handles if not h.cancelled)

    def advance(self, seconds: float) -> None:
        target = self._now + seconds
        while True:
            due = [h for h in self._handles if not h.cancelled and h.when <= target]
            if not due:
                break
            handle = min(due, key=lambda h: h.when)
            self._handles.remove(handle)
            self._now = handle.when
            handle.callback()
        self._now = target
        self._handles = [h for h in self._handles if not h.cancelled]


class _ManualHandle:
    def __init__(self, when, callback):
        self.when = when
        self.callback = callback
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class FakeChannel:
    """In-memory stand-in for a websockets ClientConnection."""

    def __init__(self):
        self.sent: list[str] = []
        self.closed = False
        self.fail_sends = False
        self._inbox: asyncio.Queue = asyncio.Queue()

    @property
    def sent_json(self) -> list[dict]:
        return [json.loads(s) for s in self.sent]

    async def send(self, message: str) -> None:
        if self.fail_sends:
            raise ConnectionError("send failed")
        self.sent.append(message)

    async def close(self, code: int = 1000, reason: str = "") -> None:
        self.closed = True
        self._inbox.put_nowait(None)

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self._inbox.get()
        if item is None:
            raise StopAsyncIteration
        if isinstance(item, BaseException):
            raise item
        return item

    # -- test controls --

    def feed(self, data) -> None:
        self._inbox.put_nowait(data)

    def drop(self) -> None:
        """Peer closes the connection."""
        self._inbox.put_nowait(None)

    def fail(self, exc: BaseException) -> None:
        self._inbox.put_nowait(exc)


class FakeConnector:
    """Connector returning a new FakeChannel per call; can refuse calls."""

    def __init__(self):
        self.channels: list[FakeChannel] = []
        self.calls = 0
        self.refuse = 0
        self.channel_factory = FakeChannel

    @property
    def latest(self) -> FakeChannel:
        return self.channels[-1]

    async def __call__(self, url: str) -> FakeChannel:
        self.calls += 1
        if self.refuse > 0:
            self.refuse -= 1
            raise OSError("connection refused")
        channel = self.channel_factory()
        self.channels.append(channel)
        return channel


class Notices:
    def __init__(self):
        self.items: list[tuple[str, str]] = []

    def __call__(self, message, severity):
        self.items.append((message, severity.value))


async def settle(session: SessionManager, rounds: int = 10) -> None:
    """Let background tasks post their events and the session handle them."""
    for _ in range(rounds):
        await asyncio.sleep(0)
        await session.flush()


async def eventually(predicate, timeout: float = 1.0) -> None:
    """Yield to the loop until *predicate* holds."""
    async def poll():
        while not predicate():
            await asyncio.sleep(0.01)

    await asyncio.wait_for(poll(), timeout)


def make_jpeg(width: int, height: int) -> bytes:
    """Smallest header layout the size parser walks: SOI, APP0, SOF0, SOS, EOI."""
    app0 = b"\xff\xe0\x00\x10" + b"JFIF\x00" + b"\x01\x01\x00\x00\x01\x00\x01\x00\x00"
    sof0 = (
        b"\xff\xc0\x00\x11\x08"
        + height.to_bytes(2, "big")
        + width.to_bytes(2, "big")
        + b"\x03\x01\x22\x00\x02\x11\x01\x03\x11\x01"
    )
    sos = b"\xff\xda\x00\x02\x12\x34"
    return b"\xff\xd8" + app0 + sof0 + sos + b"\xff\xd9"


def part(jpeg: bytes) -> bytes:
    """One multipart/x-mixed-replace section."""
    return b"--frame\r\nContent-Type: image/jpeg\r\n\r\n" + jpeg + b"\r\n"


@pytest.fixture
def timers():
    return ManualTimers()


@pytest.fixture
def connector():
    return FakeConnector()


@pytest.fixture
def notices():
    return Notices()


@pytest_asyncio.fixture
async def session(timers, connector, notices):
    s = SessionManager(
        "ws://kvm.test/ws/input",
        timers=timers,
        connector=connector,
        reconnect_delay=2.0,
        notifier=notices,
    )
    yield s
    await s.stop()


@pytest.fixture
def settled():
    return settle
