"""WebSocket frame models keyed by an explicit ``type`` discriminator."""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from .errors import InvalidRequestError
from .models import Match, Message, MessageType


class MatchEvent(BaseModel):
    type: Literal["match"] = "match"
    match_id: int
    party_a: int
    party_b: int


class ChatEvent(BaseModel):
    type: Literal["chat"] = "chat"
    match_id: int
    message_id: int
    sender_id: int
    content: str
    message_type: MessageType
    media_url: str | None = None
    timestamp: datetime


class TypingEvent(BaseModel):
    type: Literal["typing"] = "typing"
    match_id: int
    party_id: int
    is_typing: bool


class PresenceEvent(BaseModel):
    type: Literal["presence"] = "presence"
    party_id: int
    online: bool


class ConnectedEvent(BaseModel):
    type: Literal["connected"] = "connected"
    party_id: int
    online_matches: list[int] = Field(default_factory=list)


class ErrorEvent(BaseModel):
    type: Literal["error"] = "error"
    kind: str
    detail: str


Event = Annotated[
    Union[MatchEvent, ChatEvent, TypingEvent, PresenceEvent, ConnectedEvent, ErrorEvent],
    Field(discriminator="type"),
]


class ChatFrame(BaseModel):
    """Client request to send a chat message on a match."""

    type: Literal["chat"]
    match_id: int
    content: str = Field(min_length=1, max_length=1000)
    message_type: MessageType = MessageType.TEXT
    media_url: str | None = None


class TypingFrame(BaseModel):
    type: Literal["typing"]
    match_id: int
    is_typing: bool


ClientFrame = Annotated[Union[ChatFrame, TypingFrame], Field(discriminator="type")]

_event_adapter: TypeAdapter[Any] = TypeAdapter(Event)
_client_frame_adapter: TypeAdapter[Any] = TypeAdapter(ClientFrame)


def match_event(match: Match) -> MatchEvent:
    return MatchEvent(match_id=match.match_id, party_a=match.party_a_id, party_b=match.party_b_id)


def chat_event(message: Message) -> ChatEvent:
    return ChatEvent(
        match_id=message.match_id,
        message_id=message.message_id,
        sender_id=message.sender_id,
        content=message.content,
        message_type=message.message_type,
        media_url=message.media_url,
        timestamp=message.created_at,
    )


def encode_event(event: BaseModel) -> dict[str, Any]:
    return event.model_dump(mode="json")


def decode_event(payload: dict[str, Any]) -> BaseModel:
    return _event_adapter.validate_python(payload)


def decode_client_frame(payload: Any) -> ChatFrame | TypingFrame:
    """Validate an inbound frame, raising InvalidRequestError on bad input."""
    try:
        return _client_frame_adapter.validate_python(payload)
    except ValidationError as exc:
        raise InvalidRequestError(f"Malformed frame: {exc.error_count()} validation error(s)") from exc
