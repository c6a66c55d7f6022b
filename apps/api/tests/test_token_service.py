from __future__ import annotations

import uuid
from collections.abc import Generator
from datetime import timedelta

import pytest
from jose import jwt

from teamcrm.core.config import get_settings
from teamcrm.core.errors import InvalidToken
from teamcrm.core.security import (
    TokenClaims,
    create_access_token,
    create_refresh_token,
    hash_password,
    verify_access_token,
    verify_password,
    verify_refresh_token,
)


@pytest.fixture(autouse=True)
def token_env(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    monkeypatch.setenv("JWT_SECRET", "access-secret-for-tests")
    monkeypatch.setenv("JWT_REFRESH_SECRET", "refresh-secret-for-tests")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def _claims() -> TokenClaims:
    return TokenClaims(user_id=str(uuid.uuid4()), team_id=str(uuid.uuid4()), role="member")


def test_access_token_round_trips_claims() -> None:
    claims = _claims()

    token = create_access_token(claims)

    assert verify_access_token(token) == claims
    payload = jwt.get_unverified_claims(token)
    assert payload["userId"] == claims.user_id
    assert payload["teamId"] == claims.team_id
    assert payload["role"] == "member"
    assert payload["exp"] - payload["iat"] == 15 * 60


def test_expired_access_token_is_rejected() -> None:
    token = create_access_token(_claims(), ttl=timedelta(seconds=-5))

    with pytest.raises(InvalidToken):
        verify_access_token(token)


def test_tampered_access_token_is_rejected() -> None:
    token = create_access_token(_claims())
    header, payload, signature = token.split(".")
    forged = ".".join([header, payload, signature[::-1]])

    with pytest.raises(InvalidToken):
        verify_access_token(forged)


def test_access_and_refresh_tokens_use_independent_secrets() -> None:
    session_id = str(uuid.uuid4())
    refresh_token = create_refresh_token(session_id)
    access_token = create_access_token(_claims())

    assert verify_refresh_token(refresh_token) == session_id
    with pytest.raises(InvalidToken):
        verify_access_token(refresh_token)
    with pytest.raises(InvalidToken):
        verify_refresh_token(access_token)


def test_refresh_token_lives_seven_days_and_names_only_the_session() -> None:
    payload = jwt.get_unverified_claims(create_refresh_token("session-1"))

    assert payload["sessionId"] == "session-1"
    assert "userId" not in payload
    assert payload["exp"] - payload["iat"] == 7 * 24 * 60 * 60


def test_password_hashes_are_salted_and_verifiable() -> None:
    first = hash_password("correct horse")
    second = hash_password("correct horse")

    assert first != second
    assert verify_password("correct horse", first)
    assert not verify_password("wrong horse", first)
