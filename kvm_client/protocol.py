# =============================================================================
# KVM Client -- Wire Protocol Codec
# =============================================================================
#
# One JSON object per WebSocket text frame, discriminated by "type".
#
# Outgoing (client -> device):
#   key_press, key_combination, mouse_click, mouse_press, mouse_release,
#   mouse_wheel, mouse_move, mouse_absolute, text
#
# Incoming (device -> client):
#   device_status, info, warning, error -- anything else decodes to
#   UnknownMessage and is ignored by the session.
# =============================================================================

from __future__ import annotations

import json
from typing import Any

from ._logging import logger
from .constants import MAX_MESSAGE_SIZE
from .errors import KVMProtocolError
from .types import (
    DeviceStatus,
    InboundMessage,
    InputMessage,
    KeyCombination,
    KeyPress,
    MouseAbsolute,
    MouseClick,
    MouseMove,
    MousePress,
    MouseRelease,
    MouseWheel,
    Notice,
    Severity,
    Text,
    UnknownMessage,
)

_NOTICE_TYPES = {
    "info": Severity.INFO,
    "warning": Severity.WARNING,
    "error": Severity.ERROR,
}

try:
    import orjson

    def _json_loads(data: str | bytes) -> Any:
        return orjson.loads(data)

    def _json_dumps(obj: Any) -> str:
        return orjson.dumps(obj).decode()

except ImportError:

    def _json_loads(data: str | bytes) -> Any:
        return json.loads(data)

    def _json_dumps(obj: Any) -> str:
        return json.dumps(obj, separators=(",", ":"))


class MessageCodec:
    """Encode input messages and decode device messages.

    Encoding is strict: an object that is not one of the input message
    types raises :class:`KVMProtocolError`. Decoding is lenient: frames
    that are not valid JSON objects are logged and decoded to ``None``,
    unknown types decode to :class:`UnknownMessage`.
    """

    def encode(self, message: InputMessage) -> str:
        return _json_dumps(self.to_dict(message))

    def to_dict(self, message: InputMessage) -> dict[str, Any]:
        if isinstance(message, KeyPress):
            return {"type": "key_press", "key": message.key}
        if isinstance(message, KeyCombination):
            return {
                "type": "key_combination",
                "modifiers": list(message.modifiers),
                "keys": list(message.keys),
            }
        if isinstance(message, MouseClick):
            return {"type": "mouse_click", "button": message.button.value}
        if isinstance(message, MousePress):
            return {"type": "mouse_press", "button": message.button.value}
        if isinstance(message, MouseRelease):
            return {"type": "mouse_release", "button": message.button.value}
        if isinstance(message, MouseWheel):
            return {"type": "mouse_wheel", "delta": message.delta}
        if isinstance(message, MouseMove):
            return {
                "type": "mouse_move",
                "x": message.x,
                "y": message.y,
                "buttons": [b.value for b in message.buttons],
            }
        if isinstance(message, MouseAbsolute):
            return {
                "type": "mouse_absolute",
                "x": message.x,
                "y": message.y,
                "buttons": [b.value for b in message.buttons],
            }
        if isinstance(message, Text):
            return {"type": "text", "text": message.text}
        raise KVMProtocolError(f"Cannot encode {type(message).__name__}")

    def decode(self, data: str | bytes) -> InboundMessage | None:
        """Decode one inbound frame, or return ``None`` if it is malformed."""
        if len(data) > MAX_MESSAGE_SIZE:
            logger.warning("Message exceeds max size (%d bytes), dropping", len(data))
            return None

        try:
            parsed = _json_loads(data)
        except (json.JSONDecodeError, ValueError) as e:
            logger.warning("Failed to parse inbound frame: %s", e)
            return None

        if not isinstance(parsed, dict):
            logger.warning("Inbound frame is not an object, dropping")
            return None

        msg_type = parsed.get("type")
        if not isinstance(msg_type, str):
            logger.warning("Inbound frame has no type, dropping")
            return None

        if msg_type == "device_status":
            return self._decode_device_status(parsed)

        severity = _NOTICE_TYPES.get(msg_type)
        if severity is not None:
            message = parsed.get("message")
            return Notice(severity, "" if message is None else str(message))

        return UnknownMessage(msg_type, raw=parsed)

    def _decode_device_status(self, parsed: dict[str, Any]) -> DeviceStatus:
        # {"type": "device_status", "video": {"available": bool, "message": str}}
        video = parsed.get("video")
        if not isinstance(video, dict):
            video = {}
        message = video.get("message")
        return DeviceStatus(
            video_available=bool(video.get("available", False)),
            message=None if message is None else str(message),
            raw=parsed,
        )
