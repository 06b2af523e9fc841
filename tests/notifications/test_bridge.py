"""Tests for NotificationBridge."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from pulsewire.client.connection import ConnectionManager
from pulsewire.client.events import ConnectionEvent
from pulsewire.client.protocol import (
    ChatJoinedEvent,
    GameStartEvent,
    MessageNewEvent,
    Sender,
    SenderProfile,
)
from pulsewire.core.config import ServerConfig
from pulsewire.core.scheduler import ManualScheduler
from pulsewire.core.types import NotificationSource
from pulsewire.notifications.arbiter import NotificationArbiter
from pulsewire.notifications.bridge import (
    MESSAGE_PREVIEW_LENGTH,
    NotificationBridge,
    envelope_from_event,
)
from pulsewire.notifications.types import NotificationEnvelope, NotificationKind


def message_new(sender_id: int = 3, content: str = "hello") -> MessageNewEvent:
    return MessageNewEvent(
        id=11,
        conversation_id=7,
        sender_id=sender_id,
        content=content,
        sequence_number=42,
        client_nonce="n-1",
        sent_at="t",
        created_at="t",
        sender=Sender(id=sender_id, name="alice", profile=SenderProfile(display_name="Alice")),
    )


def game_start(initiator_id: int = 3) -> GameStartEvent:
    return GameStartEvent(
        conversation_id=7,
        game_session_id=99,
        initiator_id=initiator_id,
        best_of=3,
        started_at="t",
    )


class TestEnvelopeFromEvent:
    """Tests for the frame -> notification mapping."""

    def test_message_new(self) -> None:
        """message.new becomes a message notification keyed by message id."""
        result = envelope_from_event(message_new())

        assert result is not None
        assert result.id == "message-11"
        assert result.type == NotificationKind.MESSAGE.value
        assert result.title == "Alice"
        assert result.body == "hello"
        assert result.conversation_id == 7
        assert result.sender_id == 3
        assert result.source is NotificationSource.WEBSOCKET

    def test_long_message_truncated(self) -> None:
        """Long message bodies are shortened for display."""
        result = envelope_from_event(message_new(content="x" * 500))

        assert result is not None
        assert len(result.body) == MESSAGE_PREVIEW_LENGTH

    def test_game_start(self) -> None:
        """game.start becomes a game invite keyed by session id."""
        result = envelope_from_event(game_start())

        assert result is not None
        assert result.id == "game-99"
        assert result.is_game_invite
        assert result.data["best_of"] == 3

    def test_other_events_ignored(self) -> None:
        """Events without a notification map to None."""
        assert envelope_from_event(ChatJoinedEvent(conversation_id=1, user_id=2, joined_at="t")) is None


class TestNotificationBridge:
    """Tests for forwarding events to the arbiter."""

    @pytest.fixture
    def arbiter(self) -> MagicMock:
        """Mock arbiter."""
        return MagicMock(spec=NotificationArbiter)

    def test_forwards_message(self, arbiter: MagicMock) -> None:
        """Messages from others reach the arbiter as websocket notifications."""
        bridge = NotificationBridge(arbiter, user_id=1)

        bridge.on_message(message_new(sender_id=3))

        arbiter.handle_websocket_notification.assert_called_once()
        [forwarded] = arbiter.handle_websocket_notification.call_args.args
        assert isinstance(forwarded, NotificationEnvelope)
        assert forwarded.id == "message-11"

    def test_skips_own_messages(self, arbiter: MagicMock) -> None:
        """The user's own messages and games do not notify."""
        bridge = NotificationBridge(arbiter, user_id=3)

        bridge.on_message(message_new(sender_id=3))
        bridge.on_message(game_start(initiator_id=3))

        arbiter.handle_websocket_notification.assert_not_called()

    def test_ignores_other_events(self, arbiter: MagicMock) -> None:
        """Non-notifying events are ignored."""
        bridge = NotificationBridge(arbiter)

        bridge.on_message(ChatJoinedEvent(conversation_id=1, user_id=2, joined_at="t"))

        arbiter.handle_websocket_notification.assert_not_called()

    def test_subscribed_to_connection(self) -> None:
        """Subscribed bridge turns connection messages into displays."""
        scheduler = ManualScheduler()
        arbiter = NotificationArbiter(scheduler=scheduler)
        connection = ConnectionManager(ServerConfig(server_url="ws://localhost/ws"), scheduler=scheduler)
        bridge = NotificationBridge(arbiter, user_id=1)
        connection.subscribe(bridge)

        connection._events.emit(ConnectionEvent.MESSAGE, message_new())
        connection._events.emit(ConnectionEvent.MESSAGE, message_new())

        assert [n.id for n in arbiter.get_displayed_notifications()] == ["message-11"]

        connection.unsubscribe(bridge)
        connection._events.emit(ConnectionEvent.MESSAGE, game_start())
        assert len(arbiter.get_displayed_notifications()) == 1
