"""Append-only record of directional interest between parties."""

from __future__ import annotations

import logging

from .errors import ConflictError, InvalidRequestError
from .models import Direction, Interest
from .store import SwipeStore

logger = logging.getLogger(__name__)


def parse_direction(raw: str | Direction) -> Direction:
    try:
        return Direction(raw)
    except ValueError as exc:
        raise InvalidRequestError(f"Invalid swipe direction: {raw!r}") from exc


class InterestLedger:
    def __init__(self, store: SwipeStore) -> None:
        self._store = store

    def record_interest(
        self,
        actor_id: int,
        target_id: int,
        direction: str | Direction,
        strict: bool = True,
    ) -> tuple[Interest, bool]:
        """Record one swipe and return ``(interest, already_exists)``.

        A second swipe on the same pair never overwrites the first. With
        ``strict`` it raises ConflictError carrying the stored interest,
        otherwise it returns that interest with ``already_exists=True``.
        """
        if actor_id == target_id:
            raise InvalidRequestError("Cannot swipe on your own profile")
        parsed = parse_direction(direction)
        if self._store.get_party(target_id) is None:
            raise InvalidRequestError(f"Unknown party {target_id}")

        interest, inserted = self._store.insert_interest(actor_id=actor_id, target_id=target_id, direction=parsed)
        if inserted:
            logger.debug("Recorded %s interest %d -> %d", parsed.value, actor_id, target_id)
            return interest, False
        if strict:
            raise ConflictError("Already swiped on this profile", existing=interest)
        return interest, True
