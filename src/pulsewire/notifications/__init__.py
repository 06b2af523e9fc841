"""Notification arbitration between the realtime socket and push delivery.

Architecture:
    ConnectionManager ─message─► NotificationBridge ─┐
    push service ────────────────────────────────────┼─► NotificationArbiter ─► listeners
    app ─────────────────────────────────────────────┘

Components:
- **NotificationArbiter**: Dedup by id, push priority delay, auto-hide
- **NotificationBridge**: Turns ``message.new`` / ``game.start`` frames into notifications
- **SystemNotifier**: Listener rendering native OS notifications
"""

from pulsewire.notifications.arbiter import NotificationArbiter
from pulsewire.notifications.bridge import NotificationBridge, envelope_from_event
from pulsewire.notifications.system import SystemNotification, SystemNotifier, send_notification
from pulsewire.notifications.types import (
    DEFAULT_DISPLAY_OPTIONS,
    CallbackListener,
    DisplayedNotification,
    DisplayOptions,
    DisplayState,
    NotificationEnvelope,
    NotificationKind,
    NotificationListener,
    PendingDisplay,
    Priority,
)

__all__ = [
    "DEFAULT_DISPLAY_OPTIONS",
    "CallbackListener",
    "DisplayOptions",
    "DisplayState",
    "DisplayedNotification",
    "NotificationArbiter",
    "NotificationBridge",
    "NotificationEnvelope",
    "NotificationKind",
    "NotificationListener",
    "PendingDisplay",
    "Priority",
    "SystemNotification",
    "SystemNotifier",
    "envelope_from_event",
    "send_notification",
]
