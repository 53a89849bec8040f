"""Python control client for IP-KVM devices.

Usage::

    from kvm_client import ClientConfig, KVMClient

    async with KVMClient(ClientConfig("http://kvm.local")) as kvm:
        kvm.input.text("hello")
        kvm.input.key_combination(["ctrl", "alt"], ["delete"])
        print(kvm.latency.latency_ms)

Input is fire-and-forget: while the channel is down messages are queued
and delivered in order on reconnect.
"""

from .client import KVMClient
from .constants import CLIENT_VERSION as __version__
from .errors import (
    KVMConnectionError,
    KVMError,
    KVMProtocolError,
    KVMTimeoutError,
)
from .input_tracker import InputTracker
from .keymap import KeyEvent
from .latency import LatencyProber
from .pending_queue import PendingQueue
from .protocol import MessageCodec
from .session import SessionManager
from .timers import LoopTimerService
from .types import (
    ClientConfig,
    DeviceStatus,
    KeyCombination,
    KeyPress,
    LatencyGrade,
    Modifier,
    MouseAbsolute,
    MouseButton,
    MouseClick,
    MouseMove,
    MousePress,
    MouseRelease,
    MouseWheel,
    Notice,
    SessionState,
    Severity,
    Text,
)
from .watchdog import StreamWatchdog

__all__ = [
    "__version__",
    "KVMClient",
    "ClientConfig",
    "SessionManager",
    "SessionState",
    "PendingQueue",
    "MessageCodec",
    "InputTracker",
    "KeyEvent",
    "StreamWatchdog",
    "LatencyProber",
    "LatencyGrade",
    "LoopTimerService",
    "DeviceStatus",
    "Notice",
    "Severity",
    "MouseButton",
    "Modifier",
    "KeyPress",
    "KeyCombination",
    "MouseClick",
    "MousePress",
    "MouseRelease",
    "MouseWheel",
    "MouseMove",
    "MouseAbsolute",
    "Text",
    "KVMError",
    "KVMConnectionError",
    "KVMProtocolError",
    "KVMTimeoutError",
]
