"""Tests for the KVMClient facade (session + input + video wiring)."""

import asyncio

import httpx
import pytest
import pytest_asyncio

from kvm_client.client import KVMClient
from kvm_client.types import ClientConfig, MouseButton, SessionState

from tests.conftest import eventually, make_jpeg, part, settle


class TestClientConfig:
    def test_ws_url_from_http(self):
        config = ClientConfig("http://kvm.test/")
        assert config.base_url == "http://kvm.test"
        assert config.ws_url == "ws://kvm.test/ws/input"
        assert config.video_url == "http://kvm.test/video.mjpg"

    def test_ws_url_from_https(self):
        assert ClientConfig("https://kvm.test").ws_url == "wss://kvm.test/ws/input"

    def test_explicit_ws_url_kept(self):
        config = ClientConfig("http://kvm.test", ws_url="ws://other:8080/ws/input")
        assert config.ws_url == "ws://other:8080/ws/input"

    def test_defaults(self):
        config = ClientConfig.from_base_url("http://kvm.test")
        assert config.reconnect_delay == 2.0
        assert config.latency_mode == "elapsed"

    def test_invalid_latency_mode(self):
        with pytest.raises(ValueError):
            ClientConfig("http://kvm.test", latency_mode="icmp")


@pytest_asyncio.fixture
async def kvm(timers, connector, notices):
    client = KVMClient(
        ClientConfig("http://kvm.test", probe_interval=0),
        notifier=notices,
        timers=timers,
        connector=connector,
        video=False,
    )
    await client.start()
    await client.session.wait_until_open(1.0)
    yield client
    await client.stop()


class TestInputOverSession:
    @pytest.mark.asyncio
    async def test_input_reaches_channel(self, kvm, connector):
        kvm.input.key_combination(["ctrl", "alt"], ["delete"])
        await kvm.session.flush()
        assert connector.latest.sent_json == [
            {"type": "key_combination", "modifiers": ["ctrl", "alt"], "keys": ["delete"]}
        ]

    @pytest.mark.asyncio
    async def test_channel_loss_releases_held_buttons(self, kvm, connector, timers):
        kvm.input.press("left")
        kvm.input.press("right")
        await kvm.session.flush()
        connector.latest.drop()
        await settle(kvm.session)

        assert kvm.state is SessionState.RECONNECTING
        assert kvm.input.buttons == frozenset()
        assert kvm.session.pending == 2

        timers.advance(2.0)
        await kvm.session.wait_until_open(1.0)

        released = connector.latest.sent_json
        assert len(released) == 2
        assert {m["type"] for m in released} == {"mouse_release"}
        assert {m["button"] for m in released} == {"left", "right"}

    @pytest.mark.asyncio
    async def test_no_release_sent_when_nothing_held(self, kvm, connector, timers):
        connector.latest.drop()
        await settle(kvm.session)
        timers.advance(2.0)
        await kvm.session.wait_until_open(1.0)
        assert connector.latest.sent == []


class TestDeviceStatus:
    @pytest.mark.asyncio
    async def test_transitions_notify_once(self, kvm, connector, notices):
        channel = connector.latest
        available = '{"type":"device_status","video":{"available":true}}'
        unavailable = '{"type":"device_status","video":{"available":false}}'

        for frame in (available, available, unavailable, unavailable, available):
            channel.feed(frame)
        await settle(kvm.session)

        assert notices.items == [
            ("Video device connected", "success"),
            ("Video device disconnected", "warning"),
            ("Video device connected", "success"),
        ]
        assert kvm.video_available is True

    @pytest.mark.asyncio
    async def test_initially_unavailable_is_silent(self, kvm, connector, notices):
        connector.latest.feed('{"type":"device_status","video":{"available":false}}')
        await settle(kvm.session)
        assert notices.items == []
        assert kvm.video_available is False

    @pytest.mark.asyncio
    async def test_server_message_used(self, kvm, connector, notices):
        connector.latest.feed(
            '{"type":"device_status","video":{"available":true,"message":"HDMI locked"}}'
        )
        await settle(kvm.session)
        assert notices.items == [("HDMI locked", "success")]


class HangingStream(httpx.AsyncByteStream):
    """One frame, then nothing until cancelled."""

    def __init__(self, jpeg: bytes):
        self._jpeg = jpeg

    async def __aiter__(self):
        yield part(self._jpeg)
        await asyncio.Event().wait()


class TestVideo:
    @pytest.mark.asyncio
    async def test_device_returning_reloads_stream(self, timers, connector, notices):
        requests = []

        def handler(request):
            requests.append(str(request.url))
            return httpx.Response(200, stream=HangingStream(make_jpeg(1280, 720)))

        http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        kvm = KVMClient(
            ClientConfig("http://kvm.test", probe_interval=0),
            notifier=notices,
            timers=timers,
            connector=connector,
            http=http,
        )
        try:
            await kvm.start()
            await kvm.session.wait_until_open(1.0)
            await eventually(lambda: kvm.stream.frames == 1)
            assert kvm.watchdog.health.last_frame_at is not None

            connector.latest.feed('{"type":"device_status","video":{"available":true}}')
            await settle(kvm.session)

            assert kvm.watchdog.health.attempts == 1
            assert kvm.stream.src == ""

            timers.advance(1.0)
            assert kvm.stream.src.startswith("http://kvm.test/video.mjpg?")
            await eventually(lambda: len(requests) == 2)
            assert requests[0] != requests[1]
        finally:
            await kvm.stop()
            await http.aclose()


class TestStop:
    @pytest.mark.asyncio
    async def test_context_manager_stops_everything(self, timers, connector):
        async with KVMClient(
            ClientConfig("http://kvm.test", probe_interval=0),
            timers=timers,
            connector=connector,
            video=False,
        ) as kvm:
            await kvm.session.wait_until_open(1.0)
            kvm.input.press(MouseButton.LEFT)

        assert kvm.state is SessionState.DISCONNECTED
        assert connector.latest.closed is True
        assert timers.pending == 0
