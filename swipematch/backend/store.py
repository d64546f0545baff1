"""Persistence interfaces and implementations for parties, interests, matches and messages."""

from __future__ import annotations

import itertools
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Protocol

from swipematch.backend.errors import InvalidRequestError, TransientStoreError
from swipematch.backend.models import (
    Direction,
    Interest,
    Match,
    Message,
    MessageType,
    Party,
    canonical_pair,
)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SwipeStore(Protocol):
    def create_party(self, name: str) -> Party:
        """Persist a party and return it with its assigned id."""

    def get_party(self, party_id: int) -> Party | None:
        """Return the party or None when unknown."""

    def insert_interest(self, actor_id: int, target_id: int, direction: Direction) -> tuple[Interest, bool]:
        """Insert the interest unless the pair exists; return the stored row and whether it was inserted."""

    def get_interest(self, actor_id: int, target_id: int) -> Interest | None:
        """Return the directional interest for the pair, if recorded."""

    def insert_match_if_absent(self, party_a_id: int, party_b_id: int) -> tuple[Match, bool]:
        """Insert the canonical match unless it exists; return the stored row and whether it was inserted."""

    def get_match(self, match_id: int) -> Match | None:
        """Return the match or None when unknown."""

    def find_match_participants(self, match_id: int) -> tuple[int, int] | None:
        """Return (party_a_id, party_b_id) for the match."""

    def list_matches_for(self, party_id: int) -> list[Match]:
        """Return matches involving the party, newest first."""

    def list_swipe_candidates(self, party_id: int, limit: int, offset: int) -> list[Party]:
        """Return parties the given party has not swiped on yet."""

    def insert_message(
        self,
        match_id: int,
        sender_id: int,
        content: str,
        message_type: MessageType,
        media_url: str | None,
    ) -> Message:
        """Persist a chat message and return it with sender details."""

    def get_message(self, message_id: int) -> Message | None:
        """Return the message or None when unknown."""

    def list_messages(self, match_id: int, limit: int, offset: int) -> list[Message]:
        """Return messages of a match, newest first."""

    def latest_message(self, match_id: int) -> Message | None:
        """Return the newest message of a match."""

    def delete_message(self, message_id: int) -> None:
        """Delete a message by id."""

    def count_messages_from_others(self, match_id: int, party_id: int) -> int:
        """Count messages in the match not sent by the party."""


@dataclass
class InMemorySwipeStore:
    def __post_init__(self) -> None:
        self._lock = threading.Lock()
        self._party_ids = itertools.count(1)
        self._match_ids = itertools.count(1)
        self._message_ids = itertools.count(1)
        self._parties: dict[int, Party] = {}
        self._interests: dict[tuple[int, int], Interest] = {}
        self._matches: dict[int, Match] = {}
        self._matches_by_pair: dict[tuple[int, int], Match] = {}
        self._messages: dict[int, Message] = {}

    def create_party(self, name: str) -> Party:
        with self._lock:
            party = Party(party_id=next(self._party_ids), name=name, created_at=_utc_now())
            self._parties[party.party_id] = party
        return party

    def get_party(self, party_id: int) -> Party | None:
        return self._parties.get(party_id)

    def insert_interest(self, actor_id: int, target_id: int, direction: Direction) -> tuple[Interest, bool]:
        key = (actor_id, target_id)
        with self._lock:
            existing = self._interests.get(key)
            if existing is not None:
                return existing, False
            interest = Interest(actor_id=actor_id, target_id=target_id, direction=direction, created_at=_utc_now())
            self._interests[key] = interest
        return interest, True

    def get_interest(self, actor_id: int, target_id: int) -> Interest | None:
        return self._interests.get((actor_id, target_id))

    def insert_match_if_absent(self, party_a_id: int, party_b_id: int) -> tuple[Match, bool]:
        pair = canonical_pair(party_a_id, party_b_id)
        with self._lock:
            existing = self._matches_by_pair.get(pair)
            if existing is not None:
                return existing, False
            match = Match(match_id=next(self._match_ids), party_a_id=pair[0], party_b_id=pair[1], created_at=_utc_now())
            self._matches[match.match_id] = match
            self._matches_by_pair[pair] = match
        return match, True

    def get_match(self, match_id: int) -> Match | None:
        return self._matches.get(match_id)

    def find_match_participants(self, match_id: int) -> tuple[int, int] | None:
        match = self._matches.get(match_id)
        if match is None:
            return None
        return match.participants()

    def list_matches_for(self, party_id: int) -> list[Match]:
        with self._lock:
            matches = [match for match in self._matches.values() if match.includes(party_id)]
        return sorted(matches, key=lambda match: (match.created_at, match.match_id), reverse=True)

    def list_swipe_candidates(self, party_id: int, limit: int, offset: int) -> list[Party]:
        with self._lock:
            swiped = {target for actor, target in self._interests if actor == party_id}
            candidates = [
                party
                for party_key, party in sorted(self._parties.items())
                if party_key != party_id and party_key not in swiped
            ]
        return candidates[offset : offset + limit]

    def insert_message(
        self,
        match_id: int,
        sender_id: int,
        content: str,
        message_type: MessageType,
        media_url: str | None,
    ) -> Message:
        sender = self._parties.get(sender_id)
        if match_id not in self._matches or sender is None:
            raise InvalidRequestError("Unknown match or sender")
        with self._lock:
            message = Message(
                message_id=next(self._message_ids),
                match_id=match_id,
                sender_id=sender_id,
                sender_name=sender.name,
                content=content,
                message_type=message_type,
                media_url=media_url,
                created_at=_utc_now(),
            )
            self._messages[message.message_id] = message
        return message

    def get_message(self, message_id: int) -> Message | None:
        return self._messages.get(message_id)

    def list_messages(self, match_id: int, limit: int, offset: int) -> list[Message]:
        with self._lock:
            messages = [message for message in self._messages.values() if message.match_id == match_id]
        messages.sort(key=lambda message: (message.created_at, message.message_id), reverse=True)
        return messages[offset : offset + limit]

    def latest_message(self, match_id: int) -> Message | None:
        messages = self.list_messages(match_id=match_id, limit=1, offset=0)
        return messages[0] if messages else None

    def delete_message(self, message_id: int) -> None:
        with self._lock:
            self._messages.pop(message_id, None)

    def count_messages_from_others(self, match_id: int, party_id: int) -> int:
        with self._lock:
            return sum(
                1
                for message in self._messages.values()
                if message.match_id == match_id and message.sender_id != party_id
            )


_MESSAGE_COLUMNS = """
    m.id, m.match_id, m.sender_id, p.name, m.content, m.message_type, m.media_url, m.created_at
"""


def _interest_from_row(row: tuple) -> Interest:
    actor_id, target_id, direction, created_at = row
    return Interest(actor_id=actor_id, target_id=target_id, direction=Direction(direction), created_at=created_at)


def _match_from_row(row: tuple) -> Match:
    match_id, party_a_id, party_b_id, created_at = row
    return Match(match_id=match_id, party_a_id=party_a_id, party_b_id=party_b_id, created_at=created_at)


def _message_from_row(row: tuple) -> Message:
    message_id, match_id, sender_id, sender_name, content, message_type, media_url, created_at = row
    return Message(
        message_id=message_id,
        match_id=match_id,
        sender_id=sender_id,
        sender_name=sender_name,
        content=content,
        message_type=MessageType(message_type),
        media_url=media_url,
        created_at=created_at,
    )


@dataclass
class PostgresSwipeStore:
    database_url: str

    def _connect(self) -> Any:
        import psycopg

        return psycopg.connect(self.database_url)

    @contextmanager
    def _transaction(self) -> Iterator[Any]:
        import psycopg

        try:
            with self._connect() as conn:
                yield conn
        except psycopg.errors.ForeignKeyViolation as exc:
            raise InvalidRequestError("Referenced party or match does not exist") from exc
        except (psycopg.OperationalError, psycopg.InterfaceError) as exc:
            raise TransientStoreError(f"Database unavailable: {exc}") from exc

    def create_party(self, name: str) -> Party:
        with self._transaction() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "INSERT INTO parties (name, created_at) VALUES (%s, %s) RETURNING id, name, created_at",
                    (name, _utc_now()),
                )
                party_id, stored_name, created_at = cur.fetchone()
            conn.commit()
        return Party(party_id=party_id, name=stored_name, created_at=created_at)

    def get_party(self, party_id: int) -> Party | None:
        with self._transaction() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT id, name, created_at FROM parties WHERE id = %s", (party_id,))
                row = cur.fetchone()
        if row is None:
            return None
        return Party(party_id=row[0], name=row[1], created_at=row[2])

    def insert_interest(self, actor_id: int, target_id: int, direction: Direction) -> tuple[Interest, bool]:
        with self._transaction() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO interests (actor_id, target_id, direction, created_at)
                    VALUES (%s, %s, %s, %s)
                    ON CONFLICT (actor_id, target_id) DO NOTHING
                    RETURNING actor_id, target_id, direction, created_at
                    """,
                    (actor_id, target_id, direction.value, _utc_now()),
                )
                row = cur.fetchone()
                created = row is not None
                if row is None:
                    cur.execute(
                        """
                        SELECT actor_id, target_id, direction, created_at
                        FROM interests
                        WHERE actor_id = %s AND target_id = %s
                        """,
                        (actor_id, target_id),
                    )
                    row = cur.fetchone()
            conn.commit()
        return _interest_from_row(row), created

    def get_interest(self, actor_id: int, target_id: int) -> Interest | None:
        with self._transaction() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    SELECT actor_id, target_id, direction, created_at
                    FROM interests
                    WHERE actor_id = %s AND target_id = %s
                    """,
                    (actor_id, target_id),
                )
                row = cur.fetchone()
        return None if row is None else _interest_from_row(row)

    def insert_match_if_absent(self, party_a_id: int, party_b_id: int) -> tuple[Match, bool]:
        pair = canonical_pair(party_a_id, party_b_id)
        with self._transaction() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO matches (party_a_id, party_b_id, created_at)
                    VALUES (%s, %s, %s)
                    ON CONFLICT (party_a_id, party_b_id) DO NOTHING
                    RETURNING id, party_a_id, party_b_id, created_at
                    """,
                    (pair[0], pair[1], _utc_now()),
                )
                row = cur.fetchone()
                created = row is not None
                if row is None:
                    cur.execute(
                        """
                        SELECT id, party_a_id, party_b_id, created_at
                        FROM matches
                        WHERE party_a_id = %s AND party_b_id = %s
                        """,
                        pair,
                    )
                    row = cur.fetchone()
            conn.commit()
        return _match_from_row(row), created

    def get_match(self, match_id: int) -> Match | None:
        with self._transaction() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "SELECT id, party_a_id, party_b_id, created_at FROM matches WHERE id = %s",
                    (match_id,),
                )
                row = cur.fetchone()
        return None if row is None else _match_from_row(row)

    def find_match_participants(self, match_id: int) -> tuple[int, int] | None:
        match = self.get_match(match_id)
        if match is None:
            return None
        return match.participants()

    def list_matches_for(self, party_id: int) -> list[Match]:
        with self._transaction() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    SELECT id, party_a_id, party_b_id, created_at
                    FROM matches
                    WHERE party_a_id = %s OR party_b_id = %s
                    ORDER BY created_at DESC, id DESC
                    """,
                    (party_id, party_id),
                )
                rows = cur.fetchall()
        return [_match_from_row(row) for row in rows]

    def list_swipe_candidates(self, party_id: int, limit: int, offset: int) -> list[Party]:
        with self._transaction() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    SELECT p.id, p.name, p.created_at
                    FROM parties p
                    WHERE p.id <> %s
                      AND NOT EXISTS (
                        SELECT 1 FROM interests i
                        WHERE i.actor_id = %s AND i.target_id = p.id
                      )
                    ORDER BY p.id
                    LIMIT %s OFFSET %s
                    """,
                    (party_id, party_id, limit, offset),
                )
                rows = cur.fetchall()
        return [Party(party_id=row[0], name=row[1], created_at=row[2]) for row in rows]

    def insert_message(
        self,
        match_id: int,
        sender_id: int,
        content: str,
        message_type: MessageType,
        media_url: str | None,
    ) -> Message:
        with self._transaction() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO messages (match_id, sender_id, content, message_type, media_url, created_at)
                    VALUES (%s, %s, %s, %s, %s, %s)
                    RETURNING id
                    """,
                    (match_id, sender_id, content, message_type.value, media_url, _utc_now()),
                )
                (message_id,) = cur.fetchone()
                cur.execute(
                    f"SELECT {_MESSAGE_COLUMNS} FROM messages m JOIN parties p ON p.id = m.sender_id WHERE m.id = %s",
                    (message_id,),
                )
                row = cur.fetchone()
            conn.commit()
        return _message_from_row(row)

    def get_message(self, message_id: int) -> Message | None:
        with self._transaction() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"SELECT {_MESSAGE_COLUMNS} FROM messages m JOIN parties p ON p.id = m.sender_id WHERE m.id = %s",
                    (message_id,),
                )
                row = cur.fetchone()
        return None if row is None else _message_from_row(row)

    def list_messages(self, match_id: int, limit: int, offset: int) -> list[Message]:
        with self._transaction() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"""
                    SELECT {_MESSAGE_COLUMNS}
                    FROM messages m
                    JOIN parties p ON p.id = m.sender_id
                    WHERE m.match_id = %s
                    ORDER BY m.created_at DESC, m.id DESC
                    LIMIT %s OFFSET %s
                    """,
                    (match_id, limit, offset),
                )
                rows = cur.fetchall()
        return [_message_from_row(row) for row in rows]

    def latest_message(self, match_id: int) -> Message | None:
        messages = self.list_messages(match_id=match_id, limit=1, offset=0)
        return messages[0] if messages else None

    def delete_message(self, message_id: int) -> None:
        with self._transaction() as conn:
            with conn.cursor() as cur:
                cur.execute("DELETE FROM messages WHERE id = %s", (message_id,))
            conn.commit()

    def count_messages_from_others(self, match_id: int, party_id: int) -> int:
        with self._transaction() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "SELECT COUNT(*) FROM messages WHERE match_id = %s AND sender_id <> %s",
                    (match_id, party_id),
                )
                (count,) = cur.fetchone()
        return int(count)


def create_store(database_url: str | None) -> SwipeStore:
    if database_url:
        return PostgresSwipeStore(database_url=database_url)
    return InMemorySwipeStore()
