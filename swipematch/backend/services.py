"""Swipe, chat and presence use cases wired to ledger, cache and fanout."""

from __future__ import annotations

import json
import logging
from typing import Any, Callable, TypeVar

from fastapi.concurrency import run_in_threadpool

from .cache import (
    CacheInvalidator,
    KeyValueCache,
    match_messages_key,
    matches_key,
    profile_key,
    read_through,
    swipe_deck_key,
)
from .errors import ConflictError, InvalidRequestError, NotAuthorizedError, NotFoundError, TransientStoreError
from .events import PresenceEvent, TypingEvent, chat_event, match_event
from .fanout import FanoutDispatcher
from .ledger import InterestLedger, parse_direction
from .matching import MatchDetector
from .models import Direction, Match, Message, MessageType, SwipeOutcome
from .presence import PresenceSet
from .retry import retry_transient
from .store import SwipeStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_MESSAGE_LENGTH = 1000
CACHED_MESSAGE_PAGE_SIZE = 100
CACHED_CANDIDATE_COUNT = 100


class _StoreBackedService:
    def __init__(
        self,
        store: SwipeStore,
        cache: KeyValueCache,
        dispatcher: FanoutDispatcher,
        cache_ttl_seconds: int = 300,
        retry_attempts: int = 3,
        retry_backoff_seconds: float = 0.05,
    ) -> None:
        self._store = store
        self._cache = cache
        self._invalidator = CacheInvalidator(cache)
        self._dispatcher = dispatcher
        self._cache_ttl = cache_ttl_seconds
        self._retry_attempts = retry_attempts
        self._retry_backoff = retry_backoff_seconds

    async def _retry(self, operation: Callable[[], T]) -> T:
        return await retry_transient(
            operation,
            attempts=self._retry_attempts,
            backoff_seconds=self._retry_backoff,
        )

    async def _invalidate(self, *keys: str) -> bool:
        return await run_in_threadpool(self._invalidator.invalidate, *keys)

    async def _participant_match(self, match_id: int, party_id: int) -> Match:
        match = await self._retry(lambda: self._store.get_match(match_id))
        if match is None:
            raise NotFoundError(f"Match {match_id} not found")
        if not match.includes(party_id):
            raise NotAuthorizedError("Not a participant of this match")
        return match


class SwipeService(_StoreBackedService):
    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._ledger = InterestLedger(self._store)
        self._detector = MatchDetector(self._store)

    async def swipe(self, actor_id: int, target_id: int, direction: str | Direction) -> SwipeOutcome:
        parsed = parse_direction(direction)
        try:
            interest, _ = await self._retry(
                lambda: self._ledger.record_interest(actor_id=actor_id, target_id=target_id, direction=parsed)
            )
        except ConflictError as exc:
            # The stored right interest may come from an attempt that failed before its match step.
            if parsed is Direction.RIGHT and exc.existing is not None and exc.existing.direction is Direction.RIGHT:
                await self._form_match(actor_id, target_id)
            raise
        await self._invalidate(swipe_deck_key(actor_id), profile_key(actor_id))

        if parsed is not Direction.RIGHT:
            return SwipeOutcome(interest=interest, match=None, created=False)

        match, created = await self._form_match(actor_id, target_id)
        return SwipeOutcome(interest=interest, match=match, created=created)

    async def _form_match(self, actor_id: int, target_id: int) -> tuple[Match | None, bool]:
        match, created = await self._retry(lambda: self._detector.try_form_match(actor_id, target_id))
        if match is not None and created:
            await self._invalidate(matches_key(match.party_a_id), matches_key(match.party_b_id))
            await self._dispatcher.deliver(match.participants(), match_event(match))
        return match, created

    async def list_matches(self, party_id: int) -> list[dict[str, Any]]:
        def load() -> list[dict[str, Any]]:
            entries = []
            for match in self._store.list_matches_for(party_id):
                counterpart_id = match.counterpart_of(party_id)
                counterpart = self._store.get_party(counterpart_id)
                entries.append(
                    {
                        "id": match.match_id,
                        "counterpart_id": counterpart_id,
                        "counterpart_name": counterpart.name if counterpart is not None else None,
                        "created_at": match.created_at.isoformat(),
                    }
                )
            return entries

        return await self._retry(
            lambda: read_through(self._cache, matches_key(party_id), self._cache_ttl, load, json.dumps, json.loads)
        )

    async def get_match(self, match_id: int, party_id: int) -> Match:
        return await self._participant_match(match_id, party_id)

    async def list_candidates(self, party_id: int, limit: int, offset: int) -> list[dict[str, Any]]:
        if offset > 0 or limit > CACHED_CANDIDATE_COUNT:
            parties = await self._retry(lambda: self._store.list_swipe_candidates(party_id, limit, offset))
            return [party.to_dict() for party in parties]

        def load() -> list[dict[str, Any]]:
            parties = self._store.list_swipe_candidates(party_id, CACHED_CANDIDATE_COUNT, 0)
            return [party.to_dict() for party in parties]

        deck = await self._retry(
            lambda: read_through(self._cache, swipe_deck_key(party_id), self._cache_ttl, load, json.dumps, json.loads)
        )
        return deck[:limit]


class ChatService(_StoreBackedService):
    async def send_message(
        self,
        sender_id: int,
        match_id: int,
        content: str,
        message_type: str | MessageType = MessageType.TEXT,
        media_url: str | None = None,
    ) -> Message:
        if not content or len(content) > MAX_MESSAGE_LENGTH:
            raise InvalidRequestError(f"Message content must be 1 to {MAX_MESSAGE_LENGTH} characters")
        try:
            parsed_type = MessageType(message_type)
        except ValueError as exc:
            raise InvalidRequestError(f"Invalid message type: {message_type!r}") from exc

        await self._participant_match(match_id, sender_id)
        message = await self._retry(
            lambda: self._store.insert_message(
                match_id=match_id,
                sender_id=sender_id,
                content=content,
                message_type=parsed_type,
                media_url=media_url,
            )
        )
        await self._invalidate(match_messages_key(match_id))
        await self._dispatcher.deliver_to_match(match_id, chat_event(message), exclude_party_id=sender_id)
        return message

    async def list_messages(self, match_id: int, party_id: int, page: int, limit: int) -> list[dict[str, Any]]:
        await self._participant_match(match_id, party_id)
        offset = page * limit
        if offset + limit > CACHED_MESSAGE_PAGE_SIZE:
            messages = await self._retry(lambda: self._store.list_messages(match_id, limit, offset))
            return [message.to_dict() for message in messages]

        def load() -> list[dict[str, Any]]:
            messages = self._store.list_messages(match_id, CACHED_MESSAGE_PAGE_SIZE, 0)
            return [message.to_dict() for message in messages]

        cached = await self._retry(
            lambda: read_through(
                self._cache, match_messages_key(match_id), self._cache_ttl, load, json.dumps, json.loads
            )
        )
        return cached[offset : offset + limit]

    async def delete_message(self, message_id: int, party_id: int) -> None:
        message = await self._retry(lambda: self._store.get_message(message_id))
        if message is None:
            raise NotFoundError(f"Message {message_id} not found")
        if message.sender_id != party_id:
            raise NotAuthorizedError("Only the sender can delete this message")
        await self._retry(lambda: self._store.delete_message(message_id))
        await self._invalidate(match_messages_key(message.match_id))

    async def latest_message(self, match_id: int, party_id: int) -> Message | None:
        await self._participant_match(match_id, party_id)
        return await self._retry(lambda: self._store.latest_message(match_id))

    async def unread_count(self, match_id: int, party_id: int) -> int:
        await self._participant_match(match_id, party_id)
        return await self._retry(lambda: self._store.count_messages_from_others(match_id, party_id))

    async def send_typing(self, match_id: int, party_id: int, is_typing: bool) -> None:
        await self._participant_match(match_id, party_id)
        event = TypingEvent(match_id=match_id, party_id=party_id, is_typing=is_typing)
        await self._dispatcher.deliver_to_match(match_id, event, exclude_party_id=party_id)


class PresenceService:
    """Announces online/offline transitions to a party's matched counterparts."""

    def __init__(self, store: SwipeStore, presence: PresenceSet, dispatcher: FanoutDispatcher) -> None:
        self._store = store
        self._presence = presence
        self._dispatcher = dispatcher

    def counterparts(self, party_id: int) -> list[int]:
        return [match.counterpart_of(party_id) for match in self._store.list_matches_for(party_id)]

    def online_counterparts(self, party_id: int) -> list[int]:
        try:
            online = self._presence.members()
            counterparts = self.counterparts(party_id)
        except TransientStoreError as exc:
            logger.warning("Could not read online counterparts of party %d: %s", party_id, exc)
            return []
        return [counterpart for counterpart in counterparts if counterpart in online]

    def is_online(self, party_id: int) -> bool:
        return self._presence.contains(party_id)

    def online_parties(self) -> list[int]:
        return sorted(self._presence.members())

    async def announce(self, party_id: int, online: bool) -> None:
        try:
            recipients = await run_in_threadpool(self.counterparts, party_id)
        except TransientStoreError as exc:
            logger.warning("Skipping presence announcement for party %d: %s", party_id, exc)
            return
        if not recipients:
            return
        await self._dispatcher.deliver(recipients, PresenceEvent(party_id=party_id, online=online))
