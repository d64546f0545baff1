"""Domain records for parties, interests, matches and messages."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any


class Direction(str, Enum):
    LEFT = "left"
    RIGHT = "right"


class MessageType(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    AUDIO = "audio"


def canonical_pair(first_id: int, second_id: int) -> tuple[int, int]:
    """Order two party ids so an unordered pair has one storable form."""
    if first_id < second_id:
        return first_id, second_id
    return second_id, first_id


@dataclass(frozen=True)
class Party:
    party_id: int
    name: str
    created_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.party_id, "name": self.name, "created_at": self.created_at.isoformat()}


@dataclass(frozen=True)
class Interest:
    actor_id: int
    target_id: int
    direction: Direction
    created_at: datetime


@dataclass(frozen=True)
class Match:
    match_id: int
    party_a_id: int
    party_b_id: int
    created_at: datetime

    def participants(self) -> tuple[int, int]:
        return self.party_a_id, self.party_b_id

    def includes(self, party_id: int) -> bool:
        return party_id in (self.party_a_id, self.party_b_id)

    def counterpart_of(self, party_id: int) -> int:
        return self.party_b_id if party_id == self.party_a_id else self.party_a_id

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.match_id,
            "party_a": self.party_a_id,
            "party_b": self.party_b_id,
            "created_at": self.created_at.isoformat(),
        }


@dataclass(frozen=True)
class Message:
    message_id: int
    match_id: int
    sender_id: int
    sender_name: str
    content: str
    message_type: MessageType
    media_url: str | None
    created_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.message_id,
            "match_id": self.match_id,
            "sender_id": self.sender_id,
            "sender_name": self.sender_name,
            "content": self.content,
            "message_type": self.message_type.value,
            "media_url": self.media_url,
            "created_at": self.created_at.isoformat(),
        }


@dataclass(frozen=True)
class SwipeOutcome:
    interest: Interest
    match: Match | None
    created: bool

    @property
    def is_match(self) -> bool:
        return self.match is not None
