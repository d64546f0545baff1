from swipematch.backend.security import issue_session_token, resolve_party_id, sign_party_id


def test_issue_session_token_embeds_party_id() -> None:
    token = issue_session_token(42, "secret")

    assert token.startswith("42.")
    assert resolve_party_id(token, "secret") == 42


def test_sign_party_id_is_deterministic() -> None:
    assert sign_party_id(7, "secret") == sign_party_id(7, "secret")
    assert sign_party_id(7, "secret") != sign_party_id(8, "secret")
    assert sign_party_id(7, "secret") != sign_party_id(7, "other")


def test_resolve_party_id_rejects_tampered_tokens() -> None:
    token = issue_session_token(42, "secret")
    forged = "43." + token.split(".", 1)[1]

    assert resolve_party_id(forged, "secret") is None
    assert resolve_party_id(token, "other-secret") is None
    assert resolve_party_id("42", "secret") is None
    assert resolve_party_id("abc.def", "secret") is None
    assert resolve_party_id("", "secret") is None
    assert resolve_party_id(None, "secret") is None
