from __future__ import annotations

import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from fastapi import Depends
from starlette.requests import Request

from teamcrm.core.errors import Forbidden, InvalidToken, Unauthorized
from teamcrm.core.security import ACCESS_TOKEN_COOKIE, verify_access_token
from teamcrm.otel import annotate_current_span


@dataclass(frozen=True)
class AuthContext:
    """Identity and tenancy scope of one authenticated request."""

    user_id: uuid.UUID
    team_id: uuid.UUID
    role: str


async def get_current_user(request: Request) -> AuthContext:
    token = request.cookies.get(ACCESS_TOKEN_COOKIE)
    if not token:
        raise Unauthorized("Authentication required")

    try:
        claims = verify_access_token(token)
        auth = AuthContext(
            user_id=uuid.UUID(claims.user_id),
            team_id=uuid.UUID(claims.team_id),
            role=claims.role,
        )
    except (InvalidToken, ValueError):
        raise Unauthorized("Invalid or expired token")

    context = getattr(request.state, "context", None)
    if context is not None:
        context.authenticate(auth.user_id, auth.team_id, auth.role)
    annotate_current_span(team_id=str(auth.team_id), user_id=str(auth.user_id), role=auth.role)
    return auth


def require_roles(*roles: str) -> Callable[..., Awaitable[AuthContext]]:
    async def checker(user: AuthContext = Depends(get_current_user)) -> AuthContext:
        if user.role not in roles:
            raise Forbidden("Insufficient permissions")
        return user

    return checker
