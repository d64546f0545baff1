from datetime import datetime, timezone

import pytest

from swipematch.backend.errors import InvalidRequestError
from swipematch.backend.events import (
    ChatEvent,
    ChatFrame,
    MatchEvent,
    TypingFrame,
    chat_event,
    decode_client_frame,
    decode_event,
    encode_event,
    match_event,
)
from swipematch.backend.models import Match, Message, MessageType

_NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def test_match_event_wire_shape() -> None:
    match = Match(match_id=9, party_a_id=2, party_b_id=5, created_at=_NOW)

    assert encode_event(match_event(match)) == {"type": "match", "match_id": 9, "party_a": 2, "party_b": 5}


def test_chat_event_wire_shape() -> None:
    message = Message(
        message_id=3,
        match_id=9,
        sender_id=2,
        sender_name="alice",
        content="hello",
        message_type=MessageType.TEXT,
        media_url=None,
        created_at=_NOW,
    )

    payload = encode_event(chat_event(message))

    assert payload["type"] == "chat"
    assert payload["sender_id"] == 2
    assert payload["content"] == "hello"
    assert payload["message_type"] == "text"
    assert payload["timestamp"].startswith("2024-05-01T12:00:00")


def test_decode_event_dispatches_on_type() -> None:
    decoded = decode_event({"type": "match", "match_id": 1, "party_a": 1, "party_b": 2})

    assert isinstance(decoded, MatchEvent)
    assert not isinstance(decoded, ChatEvent)


def test_decode_client_frame_returns_tagged_variant() -> None:
    chat = decode_client_frame({"type": "chat", "match_id": 4, "content": "hi"})
    typing = decode_client_frame({"type": "typing", "match_id": 4, "is_typing": False})

    assert isinstance(chat, ChatFrame)
    assert chat.message_type is MessageType.TEXT
    assert isinstance(typing, TypingFrame)
    assert typing.is_typing is False


@pytest.mark.parametrize(
    "payload",
    [
        {"type": "presence", "party_id": 1, "online": True},
        {"type": "chat", "match_id": 4, "content": ""},
        {"type": "chat", "match_id": 4, "content": "x" * 1001},
        {"type": "typing", "match_id": 4},
        {"match_id": 4},
        "not-an-object",
    ],
)
def test_decode_client_frame_rejects_bad_frames(payload) -> None:
    with pytest.raises(InvalidRequestError):
        decode_client_frame(payload)
