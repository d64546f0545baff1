"""Session token helpers used to resolve the authenticated party."""

from __future__ import annotations

import hashlib
import hmac


def sign_party_id(party_id: int, secret: str) -> str:
    """Create deterministic signature via hmac-sha256(party_id, secret)."""
    payload = str(party_id).encode("utf-8")
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


def issue_session_token(party_id: int, secret: str) -> str:
    return f"{party_id}.{sign_party_id(party_id, secret)}"


def resolve_party_id(token: str | None, secret: str) -> int | None:
    """Return the party id a token was issued for, or None when it does not verify."""
    if not token:
        return None
    raw_id, _, signature = token.partition(".")
    if not raw_id.isdigit() or signature == "":
        return None
    party_id = int(raw_id)
    if not hmac.compare_digest(sign_party_id(party_id, secret), signature):
        return None
    return party_id
