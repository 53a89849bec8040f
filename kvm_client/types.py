# =============================================================================
# KVM Client -- Type Definitions
# =============================================================================

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union

from .constants import (
    INPUT_WS_PATH,
    LATENCY_PATH,
    PROBE_INTERVAL,
    RECONNECT_DELAY,
    STREAM_CHECK_INTERVAL,
    STREAM_RECONNECT_DELAY,
    STREAM_STALL_TIMEOUT,
    VIDEO_STREAM_PATH,
)


class SessionState(str, Enum):
    """Input channel lifecycle state.

    Flow: DISCONNECTED -> CONNECTING -> OPEN -> RECONNECTING -> CONNECTING.
    There is no terminal state; the cycle runs until the session is stopped.
    """

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    OPEN = "open"
    RECONNECTING = "reconnecting"


class MouseButton(str, Enum):
    LEFT = "left"
    MIDDLE = "middle"
    RIGHT = "right"


class Modifier(str, Enum):
    CTRL = "ctrl"
    SHIFT = "shift"
    ALT = "alt"
    META = "meta"


class Severity(str, Enum):
    """Severity attached to a user-facing notice."""

    SUCCESS = "success"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class LatencyGrade(str, Enum):
    GOOD = "good"
    WARNING = "warning"
    BAD = "bad"
    UNKNOWN = "unknown"


# -- Outbound input messages --------------------------------------------------


@dataclass(frozen=True, slots=True)
class KeyPress:
    key: str


@dataclass(frozen=True, slots=True)
class KeyCombination:
    modifiers: tuple[str, ...]
    keys: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class MouseClick:
    button: MouseButton


@dataclass(frozen=True, slots=True)
class MousePress:
    button: MouseButton


@dataclass(frozen=True, slots=True)
class MouseRelease:
    button: MouseButton


@dataclass(frozen=True, slots=True)
class MouseWheel:
    delta: int


@dataclass(frozen=True, slots=True)
class MouseMove:
    """Relative pointer motion; ``x``/``y`` carry dx/dy."""

    x: int
    y: int
    buttons: tuple[MouseButton, ...] = ()


@dataclass(frozen=True, slots=True)
class MouseAbsolute:
    """Absolute pointer position, both axes in ``[0, ABSOLUTE_MAX]``."""

    x: int
    y: int
    buttons: tuple[MouseButton, ...] = ()


@dataclass(frozen=True, slots=True)
class Text:
    text: str


InputMessage = Union[
    KeyPress,
    KeyCombination,
    MouseClick,
    MousePress,
    MouseRelease,
    MouseWheel,
    MouseMove,
    MouseAbsolute,
    Text,
]

INPUT_MESSAGE_TYPES = (
    KeyPress,
    KeyCombination,
    MouseClick,
    MousePress,
    MouseRelease,
    MouseWheel,
    MouseMove,
    MouseAbsolute,
    Text,
)


# -- Inbound messages ---------------------------------------------------------


@dataclass(frozen=True, slots=True)
class DeviceStatus:
    """Device/peripheral status pushed by the server.

    Attributes:
        video_available: Whether a capture device is present.
        message: Optional human-readable description.
        raw: The full decoded frame.
    """

    video_available: bool
    message: str | None = None
    raw: dict[str, Any] = field(default_factory=dict, compare=False)


@dataclass(frozen=True, slots=True)
class Notice:
    """A human-readable notice with a severity (info/warning/error)."""

    severity: Severity
    message: str


@dataclass(frozen=True, slots=True)
class UnknownMessage:
    """Any inbound type this client does not understand; ignored."""

    type: str
    raw: dict[str, Any] = field(default_factory=dict, compare=False)


InboundMessage = Union[DeviceStatus, Notice, UnknownMessage]


# -- Stats / health -----------------------------------------------------------


@dataclass
class SessionStats:
    """Counters for the input session."""

    messages_sent: int = 0
    messages_queued: int = 0
    messages_received: int = 0
    frames_dropped: int = 0
    reconnect_count: int = 0
    opened_since: float | None = None


@dataclass
class StreamHealth:
    """Video stream health as tracked by :class:`StreamWatchdog`.

    Attributes:
        last_frame_at: Timer-service time of the last good frame.
        reconnecting: True while a reconnect sequence is in flight.
        attempts: Reconnects started since attach (informational).
    """

    last_frame_at: float | None = None
    reconnecting: bool = False
    attempts: int = 0


# -- Configuration ------------------------------------------------------------


@dataclass
class ClientConfig:
    """Configuration for :class:`KVMClient`.

    Attributes:
        base_url: HTTP origin of the device, e.g. ``"http://kvm.local"``.
        ws_url: WebSocket URL of the input channel; derived from
            *base_url* when omitted.
        video_path: Path of the MJPEG stream.
        latency_path: Path of the latency endpoint.
        reconnect_delay: Fixed delay before reopening the input channel.
        stream_reconnect_delay: Delay between dropping and reloading the stream.
        stall_timeout: Seconds without a frame before the stream is reloaded.
        stream_check_interval: Period of the stall check.
        probe_interval: Period of the latency probe.
        latency_mode: ``"elapsed"`` (round trip) or ``"echo"`` (now minus the
            timestamp echoed by the server).
    """

    base_url: str
    ws_url: str | None = None
    video_path: str = VIDEO_STREAM_PATH
    latency_path: str = LATENCY_PATH
    reconnect_delay: float = RECONNECT_DELAY
    stream_reconnect_delay: float = STREAM_RECONNECT_DELAY
    stall_timeout: float = STREAM_STALL_TIMEOUT
    stream_check_interval: float = STREAM_CHECK_INTERVAL
    probe_interval: float = PROBE_INTERVAL
    latency_mode: str = "elapsed"

    def __post_init__(self) -> None:
        self.base_url = self.base_url.rstrip("/")
        if self.ws_url is None:
            self.ws_url = _ws_origin(self.base_url) + INPUT_WS_PATH
        if self.latency_mode not in ("elapsed", "echo"):
            raise ValueError(f"Unknown latency mode: {self.latency_mode!r}")

    @classmethod
    def from_base_url(cls, base_url: str, **kwargs: Any) -> ClientConfig:
        return cls(base_url=base_url, **kwargs)

    @property
    def video_url(self) -> str:
        return self.base_url + self.video_path


def _ws_origin(base_url: str) -> str:
    if base_url.startswith("https://"):
        return "wss://" + base_url[len("https://") :]
    if base_url.startswith("http://"):
        return "ws://" + base_url[len("http://") :]
    return base_url
