from __future__ import annotations

import logging
import time
from typing import Any

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from teamcrm.metrics import observe_http_request, resolve_http_path_label


logger = logging.getLogger("teamcrm.request")


def _request_fields(request: Request, status_code: int, duration_ms: float) -> dict[str, Any]:
    # The path label is read after routing so it is the route template, not the raw URL.
    fields: dict[str, Any] = {
        "method": request.method,
        "path": resolve_http_path_label(request),
        "status_code": status_code,
        "duration_ms": duration_ms,
    }
    context = getattr(request.state, "context", None)
    if context is not None and context.authenticated:
        fields.update(team_id=context.team_id, user_id=context.user_id, role=context.role)
    return fields


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            fields = _request_fields(request, 500, round((time.perf_counter() - started) * 1000, 2))
            observe_http_request(fields["method"], fields["path"], 500, fields["duration_ms"] / 1000)
            logger.error("http.error", exc_info=True, extra=fields)
            raise

        fields = _request_fields(request, response.status_code, round((time.perf_counter() - started) * 1000, 2))
        observe_http_request(fields["method"], fields["path"], response.status_code, fields["duration_ms"] / 1000)
        level = logging.WARNING if response.status_code >= 500 else logging.INFO
        logger.log(level, "http.request", extra=fields)
        return response
