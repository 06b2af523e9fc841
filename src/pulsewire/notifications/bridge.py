"""Feed realtime wire events into the notification arbiter.

This module provides:
- NotificationBridge: RealtimeSubscriber turning ``message.new`` and
  ``game.start`` frames into websocket-sourced notifications
- envelope_from_event: The frame -> envelope mapping

Notification ids match the ones the push service uses for the same
event ("message-<id>", "game-<session id>"), so the arbiter can pair a
socket delivery with its push twin.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from pulsewire.client.events import ConnectionEvent
from pulsewire.client.protocol import GameStartEvent, MessageNewEvent, WireEvent
from pulsewire.core.types import NotificationSource
from pulsewire.notifications.types import NotificationEnvelope, NotificationKind

if TYPE_CHECKING:
    from pulsewire.client.connection import ConnectionManager
    from pulsewire.notifications.arbiter import NotificationArbiter

logger = logging.getLogger(__name__)

MESSAGE_PREVIEW_LENGTH = 120


def message_notification_id(message_id: int) -> str:
    return f"message-{message_id}"


def game_notification_id(game_session_id: int) -> str:
    return f"game-{game_session_id}"


def envelope_from_event(event: WireEvent) -> NotificationEnvelope | None:
    """Build the notification for a wire event.

    Args:
        event: A decoded frame.

    Returns:
        The envelope, or None if the event type does not notify.
    """
    if isinstance(event, MessageNewEvent):
        body = event.content
        if len(body) > MESSAGE_PREVIEW_LENGTH:
            body = body[: MESSAGE_PREVIEW_LENGTH - 1] + "…"
        return NotificationEnvelope(
            id=message_notification_id(event.id),
            type=NotificationKind.MESSAGE.value,
            title=event.sender.display_name,
            body=body,
            data={"message_id": event.id, "sequence_number": event.sequence_number},
            source=NotificationSource.WEBSOCKET,
            conversation_id=event.conversation_id,
            sender_id=event.sender_id,
        )

    if isinstance(event, GameStartEvent):
        return NotificationEnvelope(
            id=game_notification_id(event.game_session_id),
            type=NotificationKind.GAME_INVITE.value,
            title="Game invite",
            body=f"Best of {event.best_of}, your move!",
            data={"game_session_id": event.game_session_id, "best_of": event.best_of},
            source=NotificationSource.WEBSOCKET,
            conversation_id=event.conversation_id,
            sender_id=event.initiator_id,
        )

    return None


class NotificationBridge:
    """Subscriber forwarding notifying frames to a NotificationArbiter.

    Usage:
        bridge = NotificationBridge(arbiter, user_id=42)
        connection.subscribe(bridge)
    """

    def __init__(self, arbiter: NotificationArbiter, user_id: int | None = None) -> None:
        """Initialize the bridge.

        Args:
            arbiter: Where notifications are sent.
            user_id: The local user; their own messages and games do not notify.
        """
        self._arbiter = arbiter
        self.user_id = user_id

    def attach(self, connection: ConnectionManager) -> None:
        connection.on(ConnectionEvent.MESSAGE, self.on_message)

    def detach(self, connection: ConnectionManager) -> None:
        connection.off(ConnectionEvent.MESSAGE, self.on_message)

    def on_message(self, event: WireEvent) -> None:
        """Handle a ``message`` event from the connection."""
        envelope = envelope_from_event(event)
        if envelope is None:
            return
        if self.user_id is not None and envelope.sender_id == self.user_id:
            logger.debug("Skipping notification for own %s", event.type)
            return
        self._arbiter.handle_websocket_notification(envelope)
