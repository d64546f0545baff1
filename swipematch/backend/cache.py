"""Key-value cache backends and the invalidator used on every write path."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Protocol

from .errors import TransientStoreError

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 300


def profile_key(party_id: int) -> str:
    return f"user:profile:{party_id}"


def swipe_deck_key(party_id: int) -> str:
    return f"profiles:swipe:{party_id}"


def matches_key(party_id: int) -> str:
    return f"user:matches:{party_id}"


def match_messages_key(match_id: int) -> str:
    return f"match:messages:{match_id}"


class KeyValueCache(Protocol):
    def get(self, key: str) -> str | None:
        """Return the cached value or None on a miss."""

    def set(self, key: str, value: str, ttl_seconds: int) -> None:
        """Store a value that expires after ``ttl_seconds``."""

    def delete(self, *keys: str) -> None:
        """Remove keys; missing keys are ignored."""


@dataclass
class InMemoryCache:
    clock: Callable[[], float] = time.monotonic
    _entries: dict[str, tuple[str, float]] = field(default_factory=dict, init=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False)

    def get(self, key: str) -> str | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if expires_at <= self.clock():
                del self._entries[key]
                return None
            return value

    def set(self, key: str, value: str, ttl_seconds: int) -> None:
        with self._lock:
            self._entries[key] = (value, self.clock() + ttl_seconds)

    def delete(self, *keys: str) -> None:
        with self._lock:
            for key in keys:
                self._entries.pop(key, None)


@dataclass
class RedisCache:
    redis_url: str

    def __post_init__(self) -> None:
        import redis

        self._client = redis.Redis.from_url(self.redis_url, decode_responses=True)

    @contextmanager
    def _guard(self) -> Iterator[None]:
        import redis

        try:
            yield
        except redis.RedisError as exc:
            raise TransientStoreError(f"Cache unavailable: {exc}") from exc

    def get(self, key: str) -> str | None:
        with self._guard():
            return self._client.get(key)

    def set(self, key: str, value: str, ttl_seconds: int) -> None:
        with self._guard():
            self._client.set(key, value, ex=ttl_seconds)

    def delete(self, *keys: str) -> None:
        if not keys:
            return
        with self._guard():
            self._client.delete(*keys)


class CacheInvalidator:
    """Deletes derived cache entries after a write without failing the write.

    Deletes are retried a bounded number of times. A key that still cannot be
    removed is logged and left to expire through its TTL.
    """

    def __init__(self, cache: KeyValueCache, attempts: int = 2) -> None:
        self._cache = cache
        self._attempts = max(attempts, 1)

    def invalidate(self, *keys: str) -> bool:
        if not keys:
            return True
        for attempt in range(1, self._attempts + 1):
            try:
                self._cache.delete(*keys)
                return True
            except TransientStoreError as exc:
                logger.warning(
                    "Cache invalidation attempt %d/%d failed for %s: %s",
                    attempt,
                    self._attempts,
                    ", ".join(keys),
                    exc,
                )
        logger.error("Giving up on cache invalidation for %s; entries expire by TTL", ", ".join(keys))
        return False


def read_through(
    cache: KeyValueCache,
    key: str,
    ttl_seconds: int,
    load: Callable[[], Any],
    encode: Callable[[Any], str],
    decode: Callable[[str], Any],
) -> Any:
    """Return a cached value, falling back to ``load`` on a miss or cache failure."""
    try:
        cached = cache.get(key)
    except TransientStoreError as exc:
        logger.warning("Cache read failed for %s: %s", key, exc)
        cached = None
    if cached is not None:
        return decode(cached)

    value = load()
    try:
        cache.set(key, encode(value), ttl_seconds)
    except TransientStoreError as exc:
        logger.warning("Cache write failed for %s: %s", key, exc)
    return value


def create_cache(redis_url: str | None) -> KeyValueCache:
    if redis_url:
        return RedisCache(redis_url=redis_url)
    return InMemoryCache()
