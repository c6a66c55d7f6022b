from __future__ import annotations

import math
import threading
import time
from dataclasses import dataclass

from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from teamcrm.core.config import get_settings
from teamcrm.core.errors import InvalidToken
from teamcrm.core.security import ACCESS_TOKEN_COOKIE, verify_access_token


API_PREFIX = "/api/v1"
WINDOW_SECONDS = 60
MUTATING_METHODS = frozenset({"POST", "PUT", "DELETE"})


@dataclass
class TokenBucket:
    capacity: int
    tokens: float
    updated_at: float

    def take(self, now: float) -> int:
        """Consume one token. Returns 0 on success, otherwise seconds until one is available."""

        rate = self.capacity / WINDOW_SECONDS
        self.tokens = min(float(self.capacity), self.tokens + max(0.0, now - self.updated_at) * rate)
        self.updated_at = now
        if self.tokens >= 1.0:
            self.tokens -= 1.0
            return 0
        return max(1, math.ceil((1.0 - self.tokens) / rate))


class MutationRateLimiter:
    """Buckets keyed by caller identity and route group (``companies``, ``teams``...)."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._buckets: dict[tuple[str, str], TokenBucket] = {}

    def check(self, identity: str, route_group: str, capacity: int) -> int:
        if capacity <= 0:
            return WINDOW_SECONDS
        now = time.monotonic()
        with self._lock:
            bucket = self._buckets.get((identity, route_group))
            if bucket is None or bucket.capacity != capacity:
                bucket = TokenBucket(capacity=capacity, tokens=float(capacity), updated_at=now)
                self._buckets[(identity, route_group)] = bucket
            return bucket.take(now)

    def clear(self) -> None:
        with self._lock:
            self._buckets.clear()


_limiter = MutationRateLimiter()


def route_group(path: str) -> str:
    remainder = path[len(API_PREFIX) :].strip("/")
    return remainder.split("/", 1)[0] or "root"


def caller_identity(request: Request) -> str:
    anonymous = f"anonymous:{request.client.host if request.client else 'unknown'}"
    token = request.cookies.get(ACCESS_TOKEN_COOKIE)
    if not token:
        return anonymous
    try:
        claims = verify_access_token(token)
    except InvalidToken:
        return anonymous
    return f"user:{claims.team_id}:{claims.user_id}"


class MutationRateLimitMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        settings = get_settings()
        path = request.url.path
        if (
            settings.rate_limit_disabled
            or request.method.upper() not in MUTATING_METHODS
            or not path.startswith(API_PREFIX)
        ):
            return await call_next(request)

        retry_after = _limiter.check(
            caller_identity(request),
            route_group(path),
            settings.rate_limit_mutations_per_minute,
        )
        if retry_after == 0:
            return await call_next(request)

        return JSONResponse(
            status_code=429,
            content={"error": {"code": "RATE_LIMITED", "message": "Too many requests"}},
            headers={"Retry-After": str(retry_after)},
        )


def reset_rate_limiter() -> None:
    _limiter.clear()
