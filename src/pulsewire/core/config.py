"""Shared configuration classes for pulsewire.

This module defines configuration classes used by the connection manager,
the notification arbiter and the CLI. All durations are in seconds.
"""

from __future__ import annotations

from dataclasses import dataclass
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit


@dataclass
class ServerConfig:
    """Configuration for connecting to the realtime server.

    Attributes:
        server_url: Base URL of the server (e.g., "https://chat.example.com/ws").
            http(s) schemes are converted to ws(s).
        token: Authentication token, sent as the ``token`` query parameter.
        verify_ssl: Whether to verify SSL certificates (default True).
        open_timeout: Seconds to wait for the socket to open.
    """

    server_url: str
    token: str | None = None
    verify_ssl: bool = True
    open_timeout: float = 10.0

    def __post_init__(self) -> None:
        """Normalize server URL."""
        self.server_url = self.server_url.rstrip("/")

    @property
    def ws_url(self) -> str:
        """Get the WebSocket URL without credentials.

        Returns:
            URL with http/https replaced by ws/wss.
        """
        url = self.server_url
        if url.startswith("https://"):
            url = "wss://" + url[8:]
        elif url.startswith("http://"):
            url = "ws://" + url[7:]
        return url

    @property
    def connection_url(self) -> str:
        """Get the URL used to open the socket.

        Derived from the current token on every call, so a rotated token
        is picked up by the next connection attempt.

        Returns:
            WebSocket URL with the token as a query parameter.
        """
        if not self.token:
            return self.ws_url
        parts = urlsplit(self.ws_url)
        query = [(k, v) for k, v in parse_qsl(parts.query) if k != "token"]
        query.append(("token", self.token))
        return urlunsplit(parts._replace(query=urlencode(query)))

    @property
    def is_secure(self) -> bool:
        """Check if using WSS."""
        return self.ws_url.startswith("wss://")


@dataclass
class ConnectionConfig:
    """Tuning for ConnectionManager.

    Attributes:
        heartbeat_interval: Seconds between liveness probes.
        heartbeat_timeout: Seconds to wait for server traffic after a probe.
        reconnection_delay: Base backoff delay.
        max_reconnection_delay: Backoff ceiling.
        max_reconnection_attempts: Attempts before giving up.
        message_queue_max_size: Outbound queue bound (oldest dropped first).
        max_send_attempts: Flushes a queued message survives before it is dropped.
        auto_reconnect: Reconnect automatically after an unexpected close.
        jitter: Fraction of the delay added at random (0 disables).
    """

    heartbeat_interval: float = 25.0
    heartbeat_timeout: float = 60.0
    reconnection_delay: float = 1.0
    max_reconnection_delay: float = 8.0
    max_reconnection_attempts: int = 5
    message_queue_max_size: int = 100
    max_send_attempts: int = 3
    auto_reconnect: bool = True
    jitter: float = 0.0

    def __post_init__(self) -> None:
        """Validate values."""
        if self.heartbeat_interval <= 0 or self.heartbeat_timeout <= 0:
            raise ValueError("heartbeat_interval and heartbeat_timeout must be positive")
        if self.reconnection_delay < 0 or self.max_reconnection_delay < self.reconnection_delay:
            raise ValueError("max_reconnection_delay must be >= reconnection_delay >= 0")
        if self.max_reconnection_attempts < 0:
            raise ValueError("max_reconnection_attempts must be >= 0")
        if self.message_queue_max_size < 1:
            raise ValueError("message_queue_max_size must be >= 1")
        if self.max_send_attempts < 1:
            raise ValueError("max_send_attempts must be >= 1")
        if not 0.0 <= self.jitter <= 1.0:
            raise ValueError("jitter must be between 0 and 1")


@dataclass
class ArbiterConfig:
    """Tuning for NotificationArbiter.

    Attributes:
        dedup_window: Seconds during which a repeated id is suppressed.
        priority_delay: Seconds a push notification is held back.
        cleanup_interval: Seconds between periodic history cleanups.
    """

    dedup_window: float = 5.0
    priority_delay: float = 1.0
    cleanup_interval: float = 30.0

    def __post_init__(self) -> None:
        if self.dedup_window <= 0 or self.priority_delay < 0:
            raise ValueError("dedup_window must be positive and priority_delay >= 0")
        if self.priority_delay > self.dedup_window:
            raise ValueError("priority_delay must not exceed dedup_window")
