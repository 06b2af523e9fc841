"""Outbound message queue for the connection manager.

This module provides:
- QueuedMessage: A message waiting for a connection
- OutboundQueue: Bounded FIFO queue that drops the oldest entry when full

Messages sent while the socket is not connected are buffered here and
flushed in enqueue order on the next successful connection. The queue is
session-scoped: it survives disconnect()/connect() cycles within a process
but is never persisted.
"""

from __future__ import annotations

import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Iterator

logger = logging.getLogger(__name__)

DEFAULT_MAX_SIZE = 100


@dataclass
class QueuedMessage:
    """A message waiting to be sent.

    Attributes:
        payload: JSON-serializable wire event.
        enqueued_at: Unix timestamp when the message was queued.
        attempts: Number of flushes that tried to send it.
    """

    payload: dict[str, Any]
    enqueued_at: float = field(default_factory=time.time)
    attempts: int = 0

    @property
    def type(self) -> str | None:
        """Wire type of the payload, if any."""
        value = self.payload.get("type")
        return value if isinstance(value, str) else None

    def __repr__(self) -> str:
        return f"QueuedMessage({self.type!r}, attempts={self.attempts})"


class OutboundQueue:
    """Bounded FIFO queue of QueuedMessage.

    When the bound is reached, the oldest message is dropped to make room
    for the new one.

    Attributes:
        max_size: Maximum number of messages kept.
    """

    def __init__(self, max_size: int = DEFAULT_MAX_SIZE) -> None:
        if max_size < 1:
            raise ValueError("max_size must be >= 1")
        self._messages: deque[QueuedMessage] = deque()
        self._max_size = max_size
        self._dropped = 0

    @property
    def max_size(self) -> int:
        return self._max_size

    def put(self, payload: dict[str, Any]) -> QueuedMessage:
        """Append a payload to the tail of the queue.

        Args:
            payload: The wire event to queue.

        Returns:
            The QueuedMessage created for it.
        """
        message = QueuedMessage(payload=payload)
        self.requeue(message)
        return message

    def requeue(self, message: QueuedMessage) -> None:
        """Append an existing message, keeping its attempt count."""
        if len(self._messages) >= self._max_size:
            dropped = self._messages.popleft()
            self._dropped += 1
            logger.warning(
                "Outbound queue full (max_size=%d), dropping oldest: %s",
                self._max_size,
                dropped,
            )
        self._messages.append(message)
        logger.debug("Queued %s (queue size: %d)", message, len(self._messages))

    def push_front(self, messages: list[QueuedMessage]) -> None:
        """Put messages back at the head, preserving their order.

        Used when frames handed to the socket could not be written. The
        bound still applies; the newest tail entries are dropped first so
        the returned messages keep their place.
        """
        for message in reversed(messages):
            self._messages.appendleft(message)
        while len(self._messages) > self._max_size:
            dropped = self._messages.pop()
            self._dropped += 1
            logger.warning("Outbound queue full, dropping %s", dropped)

    def drain(self) -> list[QueuedMessage]:
        """Remove and return every message in FIFO order."""
        messages = list(self._messages)
        self._messages.clear()
        return messages

    def clear(self) -> int:
        """Remove all messages.

        Returns:
            Number of messages removed.
        """
        count = len(self._messages)
        self._messages.clear()
        if count:
            logger.info("Cleared %d queued messages", count)
        return count

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self) -> Iterator[QueuedMessage]:
        """Iterate in FIFO order (does not remove)."""
        return iter(list(self._messages))

    def __bool__(self) -> bool:
        return bool(self._messages)

    def stats(self) -> dict[str, int]:
        """Get queue statistics."""
        return {
            "size": len(self._messages),
            "max_size": self._max_size,
            "dropped": self._dropped,
        }
