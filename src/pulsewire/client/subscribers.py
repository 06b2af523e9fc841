"""Capability interface for components consuming the realtime stream.

This module provides:
- RealtimeSubscriber: Protocol every attached store must implement
- MessageRouter: Subscriber dispatching ``message`` events by wire type

Stores are attached to a ConnectionManager with ``subscribe()``, which
checks the interface at composition time instead of probing for optional
hooks when events arrive.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from pulsewire.client.events import ConnectionEvent

if TYPE_CHECKING:
    from pulsewire.client.connection import ConnectionManager
    from pulsewire.client.protocol import WireEvent

logger = logging.getLogger(__name__)


@runtime_checkable
class RealtimeSubscriber(Protocol):
    """A component that registers its own handlers on a connection."""

    def attach(self, connection: ConnectionManager) -> None:
        """Register handlers on the connection."""
        ...

    def detach(self, connection: ConnectionManager) -> None:
        """Remove every handler registered by attach()."""
        ...


class MessageRouter:
    """Dispatch typed wire events to handlers registered per type.

    Usage:
        router = MessageRouter()
        router.route("game.start", game_store.on_game_start)
        router.route("game.ended", game_store.on_game_ended)
        connection.subscribe(router)
    """

    def __init__(self) -> None:
        self._routes: dict[str, list[Callable[[Any], None]]] = {}

    def route(self, event_type: str, handler: Callable[[Any], None]) -> None:
        """Call ``handler(event)`` for every event of ``event_type``."""
        self._routes.setdefault(event_type, []).append(handler)

    def unroute(self, event_type: str, handler: Callable[[Any], None]) -> None:
        handlers = self._routes.get(event_type)
        if handlers and handler in handlers:
            handlers.remove(handler)
            if not handlers:
                del self._routes[event_type]

    @property
    def routed_types(self) -> set[str]:
        return set(self._routes)

    def attach(self, connection: ConnectionManager) -> None:
        connection.on(ConnectionEvent.MESSAGE, self.dispatch)

    def detach(self, connection: ConnectionManager) -> None:
        connection.off(ConnectionEvent.MESSAGE, self.dispatch)

    def dispatch(self, event: WireEvent) -> None:
        """Deliver an event to the handlers of its type."""
        handlers = self._routes.get(event.type)
        if not handlers:
            logger.debug("No route for %s", event.type)
            return
        for handler in list(handlers):
            try:
                handler(event)
            except Exception:
                logger.exception("Error routing %s to %r", event.type, handler)
