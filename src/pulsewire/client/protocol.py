"""Wire protocol for the realtime socket.

This module provides:
- WireEvent subclasses for every frame type, discriminated by ``type``
- decode_frame / parse_event: JSON text frame -> typed event
- encode_event: typed event or plain dict -> JSON text frame

Frame format:
    {"type": "message.new", "id": 1, "conversation_id": 7, ...}

Frames are flat JSON objects. Fields not modelled by an event class are
kept in ``extra`` so nothing the server sends is lost.
"""

from __future__ import annotations

import json
import uuid
from dataclasses import MISSING, dataclass, field, fields
from datetime import UTC, datetime
from enum import Enum
from typing import Any, ClassVar

from pulsewire.core.errors import InvalidFrameError, UnknownEventTypeError


class GameChoice(str, Enum):
    """Moves of a rock-paper-scissors round."""

    ROCK = "rock"
    PAPER = "paper"
    SCISSORS = "scissors"


def _utcnow_iso() -> str:
    return datetime.now(UTC).isoformat()


@dataclass
class WireEvent:
    """Base class for typed frames.

    Subclasses set ``type`` and declare their wire fields as dataclass
    fields; fields without a default are required on decode.
    """

    type: ClassVar[str] = ""

    extra: dict[str, Any] = field(default_factory=dict, kw_only=True, repr=False)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> WireEvent:
        """Build the event from a decoded frame.

        Raises:
            InvalidFrameError: If a required field is missing.
        """
        kwargs: dict[str, Any] = {}
        known = {"type", "extra"}
        missing = []
        for f in fields(cls):
            if f.name == "extra":
                continue
            known.add(f.name)
            if f.name in data:
                kwargs[f.name] = cls._convert(f.name, data[f.name])
            elif f.default is MISSING and f.default_factory is MISSING:
                missing.append(f.name)
        if missing:
            raise InvalidFrameError(
                f"{cls.type} frame missing required fields: {', '.join(missing)}"
            )
        kwargs["extra"] = {k: v for k, v in data.items() if k not in known}
        return cls(**kwargs)

    @classmethod
    def _convert(cls, name: str, value: Any) -> Any:
        """Hook for nested field conversion."""
        return value

    def to_message(self) -> dict[str, Any]:
        """Convert to a JSON-serializable frame."""
        message: dict[str, Any] = {"type": self.type}
        for f in fields(self):
            if f.name == "extra":
                continue
            value = getattr(self, f.name)
            if value is None:
                continue
            message[f.name] = _to_json(value)
        message.update(self.extra)
        return message


def _to_json(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, WireModel):
        return value.to_dict()
    if isinstance(value, dict):
        return {str(k): _to_json(v) for k, v in value.items()}
    return value


class WireModel:
    """Marker for nested objects that serialize themselves."""

    def to_dict(self) -> dict[str, Any]:
        raise NotImplementedError


# =============================================================================
# Client -> server
# =============================================================================


@dataclass
class HeartbeatEvent(WireEvent):
    """Liveness probe (client -> server); the server may echo it."""

    type: ClassVar[str] = "heartbeat"

    timestamp: int

    @classmethod
    def now(cls) -> HeartbeatEvent:
        """Create a heartbeat stamped with the current time in milliseconds."""
        return cls(timestamp=int(datetime.now(UTC).timestamp() * 1000))


@dataclass
class ChatJoinEvent(WireEvent):
    type: ClassVar[str] = "chat.join"

    conversation_id: int
    user_id: int


@dataclass
class MessageSendEvent(WireEvent):
    type: ClassVar[str] = "message.send"

    conversation_id: int
    content: str
    client_nonce: str
    sent_at: str

    @classmethod
    def create(cls, conversation_id: int, content: str) -> MessageSendEvent:
        """Create a message with a fresh nonce and send timestamp."""
        return cls(
            conversation_id=conversation_id,
            content=content,
            client_nonce=uuid.uuid4().hex,
            sent_at=_utcnow_iso(),
        )


@dataclass
class GamePlayEvent(WireEvent):
    type: ClassVar[str] = "game.play"

    game_session_id: int
    round_number: int
    choice: GameChoice
    player_id: int

    @classmethod
    def _convert(cls, name: str, value: Any) -> Any:
        if name == "choice":
            try:
                return GameChoice(value)
            except ValueError as e:
                raise InvalidFrameError(f"Invalid game choice: {value!r}") from e
        return value


# =============================================================================
# Server -> client
# =============================================================================


@dataclass
class ChatJoinedEvent(WireEvent):
    type: ClassVar[str] = "chat.joined"

    conversation_id: int
    user_id: int
    joined_at: str


@dataclass
class MessageAckEvent(WireEvent):
    """Server acknowledgement of a message.send, matched by client_nonce."""

    type: ClassVar[str] = "message.ack"

    client_nonce: str
    message_id: int
    sequence_number: int
    sent_at: str


@dataclass
class SenderProfile(WireModel):
    display_name: str
    primary_photo_url: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"display_name": self.display_name}
        if self.primary_photo_url is not None:
            data["primary_photo_url"] = self.primary_photo_url
        return data


@dataclass
class Sender(WireModel):
    id: int
    name: str
    profile: SenderProfile | None = None

    @classmethod
    def from_dict(cls, data: Any) -> Sender:
        if not isinstance(data, dict) or "id" not in data or "name" not in data:
            raise InvalidFrameError("message.new sender requires id and name")
        profile = data.get("profile")
        if isinstance(profile, dict) and "display_name" in profile:
            profile = SenderProfile(
                display_name=profile["display_name"],
                primary_photo_url=profile.get("primary_photo_url"),
            )
        else:
            profile = None
        return cls(id=data["id"], name=data["name"], profile=profile)

    @property
    def display_name(self) -> str:
        """Profile display name, falling back to the account name."""
        if self.profile:
            return self.profile.display_name
        return self.name

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"id": self.id, "name": self.name}
        if self.profile is not None:
            data["profile"] = self.profile.to_dict()
        return data


@dataclass
class MessageNewEvent(WireEvent):
    type: ClassVar[str] = "message.new"

    id: int
    conversation_id: int
    sender_id: int
    content: str
    sequence_number: int
    client_nonce: str
    sent_at: str
    created_at: str
    sender: Sender

    @classmethod
    def _convert(cls, name: str, value: Any) -> Any:
        if name == "sender":
            return Sender.from_dict(value)
        return value


@dataclass
class GameStartEvent(WireEvent):
    type: ClassVar[str] = "game.start"

    conversation_id: int
    game_session_id: int
    initiator_id: int
    best_of: int
    started_at: str


@dataclass
class GameEndedEvent(WireEvent):
    type: ClassVar[str] = "game.ended"

    game_session_id: int
    final_scores: dict[int, int]
    completed_at: str
    winner_id: int | None = None

    @classmethod
    def _convert(cls, name: str, value: Any) -> Any:
        if name == "final_scores":
            if not isinstance(value, dict):
                raise InvalidFrameError("game.ended final_scores must be an object")
            try:
                return {int(k): int(v) for k, v in value.items()}
            except (TypeError, ValueError) as e:
                raise InvalidFrameError(f"Invalid final_scores: {value!r}") from e
        return value


EVENT_TYPES: dict[str, type[WireEvent]] = {
    cls.type: cls
    for cls in (
        HeartbeatEvent,
        ChatJoinEvent,
        ChatJoinedEvent,
        MessageSendEvent,
        MessageAckEvent,
        MessageNewEvent,
        GameStartEvent,
        GamePlayEvent,
        GameEndedEvent,
    )
}


def parse_event(data: Any) -> WireEvent:
    """Turn a decoded JSON object into a typed event.

    Args:
        data: Decoded frame.

    Returns:
        The matching WireEvent subclass instance.

    Raises:
        InvalidFrameError: If the frame is not an object, has no type or
            misses required fields.
        UnknownEventTypeError: If the type is not modelled.
    """
    if not isinstance(data, dict):
        raise InvalidFrameError(f"Frame must be a JSON object, got {type(data).__name__}")
    event_type = data.get("type")
    if not isinstance(event_type, str) or not event_type:
        raise InvalidFrameError("Frame has no type")
    cls = EVENT_TYPES.get(event_type)
    if cls is None:
        raise UnknownEventTypeError(event_type)
    return cls.from_dict(data)


def decode_frame(raw: str | bytes) -> WireEvent:
    """Decode a text frame into a typed event.

    Raises:
        InvalidFrameError: If the frame is not valid JSON or not a valid event.
        UnknownEventTypeError: If the type is not modelled.
    """
    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise InvalidFrameError("Frame is not valid UTF-8") from e
    try:
        data = json.loads(raw)
    except (ValueError, RecursionError) as e:
        # ValueError covers JSONDecodeError and oversized integer literals
        raise InvalidFrameError(f"Invalid JSON frame: {raw[:100]}") from e
    return parse_event(data)


def encode_event(event: WireEvent | dict[str, Any]) -> str:
    """Serialize an event to a text frame.

    Raises:
        TypeError: If the payload is not JSON-serializable.
        ValueError: If the payload contains circular references or NaN.
    """
    payload = event.to_message() if isinstance(event, WireEvent) else event
    return json.dumps(payload, allow_nan=False)
