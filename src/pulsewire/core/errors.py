"""Exception hierarchy for pulsewire.

Transport and protocol faults are recovered locally and reported through the
event surface; these classes travel as event payloads. Only programmer errors
are raised across the public API.
"""

from __future__ import annotations


class PulsewireError(Exception):
    """Base exception for pulsewire errors."""


class TransportError(PulsewireError):
    """The underlying socket failed to open, errored or closed unexpectedly."""


class HeartbeatTimeoutError(TransportError):
    """No server traffic arrived within the heartbeat timeout."""

    def __init__(self, timeout: float) -> None:
        self.timeout = timeout
        super().__init__(f"No server traffic within {timeout:.1f}s of heartbeat")


class ReconnectionExhaustedError(TransportError):
    """Reconnection attempts reached the configured ceiling."""

    def __init__(self, attempts: int) -> None:
        self.attempts = attempts
        super().__init__(f"Gave up after {attempts} reconnection attempts")


class ProtocolError(PulsewireError):
    """Base exception for wire protocol errors."""


class InvalidFrameError(ProtocolError):
    """Raised when a frame is not valid JSON or misses required fields."""


class UnknownEventTypeError(ProtocolError):
    """Raised when a frame carries a type this client does not model."""

    def __init__(self, event_type: str) -> None:
        self.event_type = event_type
        super().__init__(f"Unknown event type: {event_type!r}")
