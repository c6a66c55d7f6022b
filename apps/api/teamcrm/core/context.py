"""Per-request state.

The correlation id is held in a ContextVar so log records and audit entries can
read it without a request object. ``request.state.context`` carries the rest;
its tenancy fields are written by the auth guard and nothing else.
"""

from __future__ import annotations

import uuid
from contextvars import ContextVar, Token
from dataclasses import dataclass, field

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request


REQUEST_ID_HEADER = "x-request-id"

_correlation_id: ContextVar[str | None] = ContextVar("teamcrm_correlation_id", default=None)


def bind_correlation_id(value: str | None) -> Token[str | None]:
    return _correlation_id.set(value)


def unbind_correlation_id(token: Token[str | None]) -> None:
    _correlation_id.reset(token)


def current_correlation_id() -> str | None:
    return _correlation_id.get()


@dataclass
class RequestContext:
    correlation_id: str | None
    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    user_id: str | None = None
    team_id: str | None = None
    role: str | None = None

    @property
    def authenticated(self) -> bool:
        return self.team_id is not None

    def authenticate(self, user_id: uuid.UUID, team_id: uuid.UUID, role: str) -> None:
        self.user_id = str(user_id)
        self.team_id = str(team_id)
        self.role = role


class RequestContextMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        context = RequestContext(correlation_id=getattr(request.state, "correlation_id", None))
        request.state.context = context
        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = context.request_id
        return response
