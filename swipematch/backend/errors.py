"""Error taxonomy shared by the ledger, matching, fanout and API layers."""

from __future__ import annotations

from typing import Any


class SwipeMatchError(Exception):
    """Base error carrying a stable kind string for API responses."""

    kind = "error"

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail


class ConflictError(SwipeMatchError):
    kind = "conflict"

    def __init__(self, detail: str, existing: Any = None) -> None:
        super().__init__(detail)
        self.existing = existing


class InvalidRequestError(SwipeMatchError):
    kind = "invalid_request"


class NotAuthorizedError(SwipeMatchError):
    kind = "not_authorized"


class NotFoundError(SwipeMatchError):
    kind = "not_found"


class TransientStoreError(SwipeMatchError):
    kind = "transient_store"


class ChannelDeadError(SwipeMatchError):
    """Raised by a channel whose transport refused a send. Never sent to clients."""

    kind = "channel_dead"
