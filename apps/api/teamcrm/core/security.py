"""Signed session tokens and password hashing.

Access tokens carry the full auth claims and live for minutes. Refresh tokens
only name a session row, so deleting the row is the sole way to revoke one.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from jose import JWTError, jwt
from werkzeug.security import check_password_hash, generate_password_hash

from teamcrm.core.config import get_settings
from teamcrm.core.errors import InvalidToken


ACCESS_TOKEN_COOKIE = "access_token"
REFRESH_TOKEN_COOKIE = "refresh_token"


@dataclass(frozen=True)
class TokenClaims:
    user_id: str
    team_id: str
    role: str


def issue_token(payload: dict[str, Any], *, secret: str, ttl: timedelta) -> str:
    settings = get_settings()
    issued_at = datetime.now(timezone.utc)
    claims = {**payload, "iat": issued_at, "exp": issued_at + ttl}
    return jwt.encode(claims, secret, algorithm=settings.jwt_algorithm)


def verify_token(token: str, *, secret: str) -> dict[str, Any]:
    settings = get_settings()
    try:
        return jwt.decode(token, secret, algorithms=[settings.jwt_algorithm])
    except JWTError as exc:
        raise InvalidToken(str(exc)) from exc


def access_token_ttl() -> timedelta:
    return timedelta(minutes=get_settings().access_token_ttl_minutes)


def refresh_token_ttl() -> timedelta:
    return timedelta(days=get_settings().refresh_token_ttl_days)


def create_access_token(claims: TokenClaims, ttl: timedelta | None = None) -> str:
    return issue_token(
        {"userId": claims.user_id, "teamId": claims.team_id, "role": claims.role},
        secret=get_settings().jwt_secret,
        ttl=ttl if ttl is not None else access_token_ttl(),
    )


def create_refresh_token(session_id: str, ttl: timedelta | None = None) -> str:
    return issue_token(
        {"sessionId": session_id},
        secret=get_settings().jwt_refresh_secret,
        ttl=ttl if ttl is not None else refresh_token_ttl(),
    )


def verify_access_token(token: str) -> TokenClaims:
    payload = verify_token(token, secret=get_settings().jwt_secret)
    user_id = payload.get("userId")
    team_id = payload.get("teamId")
    role = payload.get("role")
    if not isinstance(user_id, str) or not isinstance(team_id, str) or not isinstance(role, str):
        raise InvalidToken("access token is missing claims")
    return TokenClaims(user_id=user_id, team_id=team_id, role=role)


def verify_refresh_token(token: str) -> str:
    payload = verify_token(token, secret=get_settings().jwt_refresh_secret)
    session_id = payload.get("sessionId")
    if not isinstance(session_id, str):
        raise InvalidToken("refresh token is missing sessionId")
    return session_id


def refresh_token_expiry() -> datetime:
    return datetime.now(timezone.utc) + refresh_token_ttl()


def hash_password(password: str) -> str:
    return generate_password_hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    return check_password_hash(password_hash, password)
