"""Reciprocity check and exactly-once match creation."""

from __future__ import annotations

import logging

from .models import Direction, Match, canonical_pair
from .store import SwipeStore

logger = logging.getLogger(__name__)


class MatchDetector:
    def __init__(self, store: SwipeStore) -> None:
        self._store = store

    def try_form_match(self, actor_id: int, target_id: int) -> tuple[Match | None, bool]:
        """Create the match for a pair once both sides swiped right.

        Call only after the actor's right interest has been committed. The
        reverse lookup is advisory; exclusivity comes from the store's unique
        pair insert, so a concurrent writer that loses gets the existing row
        with ``created=False``.
        """
        reverse = self._store.get_interest(actor_id=target_id, target_id=actor_id)
        if reverse is None or reverse.direction is not Direction.RIGHT:
            return None, False

        party_a_id, party_b_id = canonical_pair(actor_id, target_id)
        match, created = self._store.insert_match_if_absent(party_a_id=party_a_id, party_b_id=party_b_id)
        if created:
            logger.info("Match %d created for parties %d and %d", match.match_id, party_a_id, party_b_id)
        else:
            logger.info("Match %d already existed for parties %d and %d", match.match_id, party_a_id, party_b_id)
        return match, created
