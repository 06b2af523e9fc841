"""Typed publish/subscribe surface of the connection manager.

This module provides:
- ConnectionEvent: The closed set of events a ConnectionManager emits
- EventEmitter: Handler registry with per-handler fault isolation

Handler signatures:
    CONNECTED, DISCONNECTED, RECONNECTING, CONNECTION_TIMEOUT: ()
    RECONNECTION_ATTEMPT: (attempt: int)
    CONNECTION_STATE_CHANGED: (new: ConnectionState, old: ConnectionState)
    MESSAGE: (event: WireEvent)
    ERROR: (error: Exception)
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)

Handler = Callable[..., Any]


class ConnectionEvent(str, Enum):
    """Events emitted by ConnectionManager."""

    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    RECONNECTING = "reconnecting"
    RECONNECTION_ATTEMPT = "reconnection_attempt"
    CONNECTION_TIMEOUT = "connection_timeout"
    CONNECTION_STATE_CHANGED = "connection_state_changed"
    MESSAGE = "message"
    ERROR = "error"


class EventEmitter:
    """Registry of handlers keyed by ConnectionEvent.

    Event names may be given as ConnectionEvent members or their string
    values; anything else is rejected with ValueError at registration.
    """

    def __init__(self) -> None:
        self._handlers: dict[ConnectionEvent, list[Handler]] = {
            event: [] for event in ConnectionEvent
        }

    def on(self, event: ConnectionEvent | str, handler: Handler) -> None:
        """Register a handler. The same handler may be registered once per event."""
        handlers = self._handlers[ConnectionEvent(event)]
        if handler not in handlers:
            handlers.append(handler)

    def off(self, event: ConnectionEvent | str, handler: Handler) -> None:
        """Remove a handler; unknown handlers are ignored."""
        handlers = self._handlers[ConnectionEvent(event)]
        if handler in handlers:
            handlers.remove(handler)

    def emit(self, event: ConnectionEvent, *args: Any) -> None:
        """Call every handler of an event in registration order.

        A handler that raises is logged and skipped; the remaining
        handlers still run.
        """
        # Copy so handlers may unregister themselves while running
        for handler in list(self._handlers[event]):
            try:
                handler(*args)
            except Exception:
                logger.exception("Error in %s handler %r", event.value, handler)

    def handler_count(self, event: ConnectionEvent | str) -> int:
        return len(self._handlers[ConnectionEvent(event)])

    def clear(self) -> None:
        """Remove every handler."""
        for handlers in self._handlers.values():
            handlers.clear()
