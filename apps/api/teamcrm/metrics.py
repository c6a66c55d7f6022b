from __future__ import annotations

import re

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.requests import Request


UNMATCHED_PATH = "unmatched"

http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)
http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
)
crm_list_queries_total = Counter(
    "crm_list_queries_total",
    "List queries served, by entity",
    ["entity"],
)
team_guard_rejections_total = Counter(
    "team_guard_rejections_total",
    "Team administration requests rejected by a guard, by error code",
    ["code"],
)

_PATH_PARAM_RE = re.compile(r"\{[^{}]+\}")


def resolve_http_path_label(request: Request) -> str:
    """Route template with every parameter collapsed to ``{id}``.

    Requests that matched no route share one label so that probing random URLs
    cannot grow the label set.
    """

    route = request.scope.get("route")
    template = getattr(route, "path_format", None) or getattr(route, "path", None)
    if not isinstance(template, str) or not template:
        return UNMATCHED_PATH
    return _PATH_PARAM_RE.sub("{id}", template)


def observe_http_request(method: str, path: str, status: int, duration: float) -> None:
    http_requests_total.labels(method=method, path=path, status=str(status)).inc()
    http_request_duration_seconds.labels(method=method, path=path).observe(duration)


def observe_list_query(entity: str) -> None:
    crm_list_queries_total.labels(entity=entity).inc()


def observe_team_guard_rejection(code: str) -> None:
    team_guard_rejections_total.labels(code=code).inc()


def generate_metrics_payload() -> bytes:
    return generate_latest()


def metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
