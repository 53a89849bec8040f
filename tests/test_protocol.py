"""Tests for the wire protocol codec."""

import json

import pytest

from kvm_client.errors import KVMProtocolError
from kvm_client.protocol import MessageCodec
from kvm_client.types import (
    DeviceStatus,
    KeyCombination,
    KeyPress,
    MouseAbsolute,
    MouseButton,
    MouseMove,
    MouseRelease,
    MouseWheel,
    Notice,
    Severity,
    Text,
    UnknownMessage,
)


def _encode(message) -> dict:
    return json.loads(MessageCodec().encode(message))


class TestEncode:
    def test_key_press(self):
        assert _encode(KeyPress("a")) == {"type": "key_press", "key": "a"}

    def test_key_combination(self):
        msg = KeyCombination(("ctrl", "alt"), ("delete",))
        assert _encode(msg) == {
            "type": "key_combination",
            "modifiers": ["ctrl", "alt"],
            "keys": ["delete"],
        }

    def test_mouse_release(self):
        assert _encode(MouseRelease(MouseButton.RIGHT)) == {
            "type": "mouse_release",
            "button": "right",
        }

    def test_mouse_wheel(self):
        assert _encode(MouseWheel(-1)) == {"type": "mouse_wheel", "delta": -1}

    def test_mouse_move_carries_buttons(self):
        msg = MouseMove(3, -4, (MouseButton.LEFT,))
        assert _encode(msg) == {"type": "mouse_move", "x": 3, "y": -4, "buttons": ["left"]}

    def test_mouse_absolute(self):
        msg = MouseAbsolute(0, 32767)
        assert _encode(msg) == {
            "type": "mouse_absolute",
            "x": 0,
            "y": 32767,
            "buttons": [],
        }

    def test_text(self):
        assert _encode(Text("hi there")) == {"type": "text", "text": "hi there"}

    def test_encoding_is_compact(self):
        frame = MessageCodec().encode(KeyPress("a"))
        assert " " not in frame

    def test_unknown_object_raises(self):
        with pytest.raises(KVMProtocolError):
            MessageCodec().encode(object())


class TestDecode:
    def test_error_notice(self):
        msg = MessageCodec().decode('{"type":"error","message":"disk full"}')
        assert msg == Notice(Severity.ERROR, "disk full")

    def test_warning_without_message(self):
        msg = MessageCodec().decode('{"type":"warning"}')
        assert msg == Notice(Severity.WARNING, "")

    def test_device_status(self):
        msg = MessageCodec().decode(
            '{"type":"device_status","video":{"available":false,"message":"unplugged"}}'
        )
        assert isinstance(msg, DeviceStatus)
        assert msg.video_available is False
        assert msg.message == "unplugged"

    def test_device_status_without_video(self):
        msg = MessageCodec().decode('{"type":"device_status"}')
        assert msg == DeviceStatus(video_available=False)

    def test_unknown_type(self):
        msg = MessageCodec().decode('{"type":"snapshot","fps":30}')
        assert isinstance(msg, UnknownMessage)
        assert msg.type == "snapshot"
        assert msg.raw["fps"] == 30

    def test_bytes_frame(self):
        msg = MessageCodec().decode(b'{"type":"info","message":"ok"}')
        assert msg == Notice(Severity.INFO, "ok")

    @pytest.mark.parametrize(
        "frame",
        ["not json", "[1, 2]", '"error"', '{"message":"no type"}', '{"type": 5}'],
    )
    def test_malformed_frames_decode_to_none(self, frame):
        assert MessageCodec().decode(frame) is None

    def test_oversized_frame_dropped(self):
        frame = '{"type":"info","message":"' + "x" * 1_048_576 + '"}'
        assert MessageCodec().decode(frame) is None
