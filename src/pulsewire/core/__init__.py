"""Core module - Shared configuration, errors, scheduling and types."""

from pulsewire.core.config import ArbiterConfig, ConnectionConfig, ServerConfig
from pulsewire.core.errors import (
    HeartbeatTimeoutError,
    InvalidFrameError,
    ProtocolError,
    PulsewireError,
    ReconnectionExhaustedError,
    TransportError,
    UnknownEventTypeError,
)
from pulsewire.core.scheduler import AsyncioScheduler, ManualScheduler, Scheduler, TimerHandle
from pulsewire.core.types import ConnectionState, NotificationSource

__all__ = [
    # Config
    "ArbiterConfig",
    "ConnectionConfig",
    "ServerConfig",
    # Errors
    "HeartbeatTimeoutError",
    "InvalidFrameError",
    "ProtocolError",
    "PulsewireError",
    "ReconnectionExhaustedError",
    "TransportError",
    "UnknownEventTypeError",
    # Scheduling
    "AsyncioScheduler",
    "ManualScheduler",
    "Scheduler",
    "TimerHandle",
    # Types
    "ConnectionState",
    "NotificationSource",
]
