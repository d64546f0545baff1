"""Shared set of parties with at least one open realtime channel."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Protocol

from .errors import TransientStoreError

ONLINE_PARTIES_KEY = "online:users"


class PresenceSet(Protocol):
    def add(self, party_id: int) -> None:
        """Mark the party online."""

    def remove(self, party_id: int) -> None:
        """Mark the party offline."""

    def contains(self, party_id: int) -> bool:
        """Return True when the party is online."""

    def members(self) -> set[int]:
        """Return all online parties."""


@dataclass
class InMemoryPresence:
    _members: set[int] = field(default_factory=set, init=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False)

    def add(self, party_id: int) -> None:
        with self._lock:
            self._members.add(party_id)

    def remove(self, party_id: int) -> None:
        with self._lock:
            self._members.discard(party_id)

    def contains(self, party_id: int) -> bool:
        with self._lock:
            return party_id in self._members

    def members(self) -> set[int]:
        with self._lock:
            return set(self._members)


@dataclass
class RedisPresence:
    redis_url: str
    key: str = ONLINE_PARTIES_KEY

    def __post_init__(self) -> None:
        import redis

        self._client = redis.Redis.from_url(self.redis_url, decode_responses=True)

    def _call(self, method: str, *args: object) -> object:
        import redis

        try:
            return getattr(self._client, method)(self.key, *args)
        except redis.RedisError as exc:
            raise TransientStoreError(f"Presence set unavailable: {exc}") from exc

    def add(self, party_id: int) -> None:
        self._call("sadd", party_id)

    def remove(self, party_id: int) -> None:
        self._call("srem", party_id)

    def contains(self, party_id: int) -> bool:
        return bool(self._call("sismember", party_id))

    def members(self) -> set[int]:
        return {int(member) for member in self._call("smembers")}


def create_presence(redis_url: str | None) -> PresenceSet:
    if redis_url:
        return RedisPresence(redis_url=redis_url)
    return InMemoryPresence()
