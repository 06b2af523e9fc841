"""Notification types shared by the arbiter, bridge and display sinks.

This module provides:
- NotificationKind: Business categories of notifications
- NotificationEnvelope: Channel-independent notification
- DisplayOptions: How a notification is presented, per source
- PendingDisplay, DisplayState: A push notification waiting out its delay
- DisplayedNotification: A notification currently shown
- NotificationListener, CallbackListener: Arbiter observers
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from pulsewire.core.types import NotificationSource

if TYPE_CHECKING:
    from pulsewire.core.scheduler import TimerHandle


class NotificationKind(str, Enum):
    """Known notification categories."""

    GAME_INVITE = "game_invite"
    MESSAGE = "message"
    MATCH = "match"
    GIFT = "gift"


class Priority(str, Enum):
    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"


@dataclass
class NotificationEnvelope:
    """A notification, whatever channel delivered it.

    Identity for deduplication is ``id`` alone: the same id from two
    sources is the same logical event.

    Attributes:
        id: Business id (invite id, message id...); None when malformed.
        type: Category, usually a NotificationKind value.
        title: Short headline.
        body: Notification text.
        data: Free-form payload for the UI.
        source: Delivering channel.
        timestamp: Unix timestamp of receipt.
        conversation_id: Related conversation, if any.
        sender_id: Sending user, if any.
    """

    id: str | None
    type: str
    title: str
    body: str
    data: dict[str, Any] = field(default_factory=dict)
    source: NotificationSource = NotificationSource.LOCAL
    timestamp: float = field(default_factory=time.time)
    conversation_id: int | None = None
    sender_id: int | None = None

    @classmethod
    def from_dict(
        cls,
        payload: dict[str, Any],
        source: NotificationSource = NotificationSource.PUSH,
    ) -> NotificationEnvelope:
        """Build an envelope from a push payload.

        Accepts camelCase keys as sent by mobile push services. A missing
        or empty id yields ``id=None``.
        """
        raw_id = payload.get("id")
        return cls(
            id=str(raw_id) if raw_id not in (None, "") else None,
            type=str(payload.get("type", NotificationKind.MESSAGE.value)),
            title=str(payload.get("title", "")),
            body=str(payload.get("body", "")),
            data=dict(payload.get("data") or {}),
            source=source,
            conversation_id=payload.get("conversation_id", payload.get("conversationId")),
            sender_id=payload.get("sender_id", payload.get("senderId")),
        )

    @property
    def is_game_invite(self) -> bool:
        return self.type == NotificationKind.GAME_INVITE.value

    def __repr__(self) -> str:
        return f"NotificationEnvelope({self.id!r}, type={self.type!r}, source={self.source.value})"


@dataclass
class DisplayOptions:
    """Presentation settings for a displayed notification.

    Attributes:
        show_in_app: Show an in-app banner.
        show_system_push: Also show a system notification.
        auto_hide: Hide automatically after hide_delay.
        hide_delay: Seconds before auto-hide.
        priority: Display priority.
    """

    show_in_app: bool = True
    show_system_push: bool = False
    auto_hide: bool = True
    hide_delay: float = 5.0
    priority: Priority = Priority.NORMAL


DEFAULT_DISPLAY_OPTIONS: dict[NotificationSource, DisplayOptions] = {
    NotificationSource.WEBSOCKET: DisplayOptions(
        show_system_push=False, hide_delay=5.0, priority=Priority.HIGH
    ),
    # Push only arrives while the app is backgrounded or offline
    NotificationSource.PUSH: DisplayOptions(
        show_system_push=True, hide_delay=8.0, priority=Priority.NORMAL
    ),
    NotificationSource.LOCAL: DisplayOptions(
        show_system_push=False, hide_delay=3.0, priority=Priority.NORMAL
    ),
}


class DisplayState(Enum):
    PENDING = auto()
    SHOWN = auto()
    SUPPRESSED = auto()


@dataclass
class PendingDisplay:
    """A push notification held back for the priority delay.

    Attributes:
        envelope: The held notification.
        scheduled_at: Scheduler time the timer was armed.
        timer: The priority-delay timer.
        state: PENDING until it fires (SHOWN) or is pre-empted (SUPPRESSED).
    """

    envelope: NotificationEnvelope
    scheduled_at: float
    timer: TimerHandle | None = None
    state: DisplayState = DisplayState.PENDING

    def suppress(self) -> None:
        """Cancel the timer; the notification will not be shown."""
        if self.timer is not None:
            self.timer.cancel()
            self.timer = None
        self.state = DisplayState.SUPPRESSED


@dataclass
class DisplayedNotification:
    """A notification the arbiter decided to show.

    Attributes:
        id: Key in the displayed set (the envelope id, or a generated one
            for envelopes without id).
        envelope: What is shown.
        shown_at: Scheduler time of display.
        options: Presentation settings used.
    """

    id: str
    envelope: NotificationEnvelope
    shown_at: float
    options: DisplayOptions = field(default_factory=DisplayOptions)


@runtime_checkable
class NotificationListener(Protocol):
    """Observer of arbiter decisions (the UI layer)."""

    def on_notification_received(self, envelope: NotificationEnvelope) -> None: ...

    def on_notification_displayed(self, notification: DisplayedNotification) -> None: ...

    def on_notification_hidden(self, notification_id: str) -> None: ...


@dataclass
class CallbackListener:
    """NotificationListener built from optional callables."""

    on_received: Callable[[NotificationEnvelope], None] | None = None
    on_displayed: Callable[[DisplayedNotification], None] | None = None
    on_hidden: Callable[[str], None] | None = None

    def on_notification_received(self, envelope: NotificationEnvelope) -> None:
        if self.on_received:
            self.on_received(envelope)

    def on_notification_displayed(self, notification: DisplayedNotification) -> None:
        if self.on_displayed:
            self.on_displayed(notification)

    def on_notification_hidden(self, notification_id: str) -> None:
        if self.on_hidden:
            self.on_hidden(notification_id)
