# =============================================================================
# KVM Client -- MJPEG Stream Reader
# =============================================================================
#
# Reads a multipart/x-mixed-replace JPEG stream over HTTP and reports every
# frame's dimensions (load) or any transport failure (error). Used as the
# StreamSurface watched by StreamWatchdog.
# =============================================================================

from __future__ import annotations

import asyncio
from typing import Any, Callable

import httpx

from ._logging import logger
from .constants import MAX_JPEG_FRAME
from .errors import KVMConnectionError, KVMError, KVMProtocolError

_SOI = b"\xff\xd8"
_EOI = b"\xff\xd9"

# Start-of-frame markers carrying the image size (all SOFn except DHT/JPG/DAC)
_SOF_MARKERS = frozenset(
    {0xC0, 0xC1, 0xC2, 0xC3, 0xC5, 0xC6, 0xC7, 0xC9, 0xCA, 0xCB, 0xCD, 0xCE, 0xCF}
)
_STANDALONE_MARKERS = frozenset({0x01, *range(0xD0, 0xD8)})


def jpeg_size(data: bytes) -> tuple[int, int] | None:
    """Return ``(width, height)`` from the SOF header, or None if absent."""
    if not data.startswith(_SOI):
        return None
    i = 2
    n = len(data)
    while i + 4 <= n:
        if data[i] != 0xFF:
            return None
        marker = data[i + 1]
        if marker == 0xFF:
            i += 1
            continue
        if marker in _STANDALONE_MARKERS:
            i += 2
            continue
        if marker in (0xD9, 0xDA):
            return None
        length = int.from_bytes(data[i + 2 : i + 4], "big")
        if marker in _SOF_MARKERS:
            if i + 9 > n:
                return None
            height = int.from_bytes(data[i + 5 : i + 7], "big")
            width = int.from_bytes(data[i + 7 : i + 9], "big")
            return width, height
        i += 2 + length
    return None


def extract_frames(buffer: bytearray) -> list[bytes]:
    """Pop every complete JPEG out of *buffer*, leaving any partial tail."""
    frames: list[bytes] = []
    while True:
        start = buffer.find(_SOI)
        if start < 0:
            # keep a trailing 0xFF, it may be the first half of a marker
            del buffer[: max(0, len(buffer) - 1)]
            return frames
        end = buffer.find(_EOI, start + 2)
        if end < 0:
            del buffer[:start]
            return frames
        frames.append(bytes(buffer[start : end + 2]))
        del buffer[: end + 2]


class MjpegStream:
    """An MJPEG feed whose ``src`` can be cleared and re-set.

    Args:
        client: Shared ``httpx.AsyncClient``.
        on_load: Called with ``(width, height)`` for every frame.
        on_error: Called with the exception when the feed fails or ends.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        on_load: Callable[[int, int], Any],
        on_error: Callable[[BaseException], Any],
    ) -> None:
        self._client = client
        self._on_load = on_load
        self._on_error = on_error
        self._src = ""
        self._task: asyncio.Task[None] | None = None
        self.frames = 0

    @property
    def src(self) -> str:
        return self._src

    @src.setter
    def src(self, value: str) -> None:
        self._cancel()
        self._src = value
        if value:
            self._task = asyncio.ensure_future(self._read(value))

    async def aclose(self) -> None:
        task = self._task
        self._cancel()
        self._src = ""
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    def _cancel(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    async def _read(self, url: str) -> None:
        try:
            async with self._client.stream("GET", url, timeout=None) as response:
                response.raise_for_status()
                buffer = bytearray()
                async for chunk in response.aiter_bytes():
                    buffer.extend(chunk)
                    for frame in extract_frames(buffer):
                        self._frame(frame)
                    if len(buffer) > MAX_JPEG_FRAME:
                        raise KVMProtocolError("JPEG frame exceeds maximum size")
            raise KVMConnectionError("Video stream ended")
        except asyncio.CancelledError:
            return
        except (httpx.HTTPError, KVMError) as exc:
            logger.debug("MJPEG read from %s failed: %s", url, exc)
            self._on_error(exc)
        except Exception as exc:
            logger.exception("MJPEG reader for %s crashed", url)
            self._on_error(exc)

    def _frame(self, frame: bytes) -> None:
        size = jpeg_size(frame)
        if size is None:
            raise KVMProtocolError("Frame has no JPEG size header")
        self.frames += 1
        self._on_load(*size)
