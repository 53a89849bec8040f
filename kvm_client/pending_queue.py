# =============================================================================
# KVM Client -- Pending Queue
# =============================================================================
#
# Buffers outgoing input messages while the channel is down and hands them
# back in enqueue order once it opens. Never reorders, never deduplicates.
# =============================================================================

from __future__ import annotations

from collections import deque
from typing import Any

from ._logging import logger
from .types import InputMessage


class PendingQueue:
    """FIFO of input messages that could not be sent yet.

    The session drains it with :meth:`peek` / :meth:`pop` so a message is
    only removed once it has actually been written to the channel.

    Args:
        max_size: Maximum number of buffered messages, ``None`` for
            unbounded (the default).
    """

    def __init__(self, *, max_size: int | None = None) -> None:
        self._max_size = max_size
        self._queue: deque[InputMessage] = deque()
        self._dropped = 0

    def __len__(self) -> int:
        return len(self._queue)

    @property
    def size(self) -> int:
        return len(self._queue)

    @property
    def dropped(self) -> int:
        return self._dropped

    def enqueue(self, message: InputMessage) -> bool:
        """Append a message. Returns False only when a size cap is hit."""
        if self._max_size is not None and len(self._queue) >= self._max_size:
            self._dropped += 1
            logger.debug("Pending queue full (%d), dropping message", self._max_size)
            return False
        self._queue.append(message)
        return True

    def peek(self) -> InputMessage | None:
        return self._queue[0] if self._queue else None

    def pop(self) -> InputMessage:
        return self._queue.popleft()

    def clear(self) -> None:
        """Discard all queued messages."""
        self._queue.clear()

    def get_stats(self) -> dict[str, Any]:
        return {
            "size": len(self._queue),
            "capacity": self._max_size,
            "dropped": self._dropped,
        }
