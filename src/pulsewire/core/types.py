"""Shared types for pulsewire.

This module defines enums used by both the connection manager and the
notification arbiter.
"""

from __future__ import annotations

from enum import Enum


class ConnectionState(str, Enum):
    """State of the realtime connection.

    Exactly one value holds at a time. Transitions are driven by
    ConnectionManager (connect, socket open/close, backoff timer, disconnect).
    """

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    ERROR = "error"


class NotificationSource(str, Enum):
    """Channel a notification envelope was delivered through."""

    WEBSOCKET = "websocket"
    PUSH = "push"
    LOCAL = "local"
