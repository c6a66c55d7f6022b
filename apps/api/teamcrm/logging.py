"""JSON logs on stdout.

Every record carries the request's correlation id. Structured values passed via
``extra=`` are only emitted when whitelisted, so request bodies, tokens and
passwords can never leak into the log stream through a careless ``extra``.
"""

from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any

from teamcrm.core.context import current_correlation_id


LOGGED_FIELDS = frozenset(
    {
        # http
        "method",
        "path",
        "status_code",
        "duration_ms",
        # tenancy
        "team_id",
        "user_id",
        "role",
        # domain
        "entity",
        "invite_id",
        "session_id",
        "code",
        "count",
        "error",
    }
)
MAX_ERROR_LENGTH = 500
QUIET_LOGGERS = ("uvicorn.access",)

_make_record = logging.getLogRecordFactory()


def _record_with_correlation_id(*args: Any, **kwargs: Any) -> logging.LogRecord:
    record = _make_record(*args, **kwargs)
    if getattr(record, "correlation_id", None) is None:
        record.correlation_id = current_correlation_id()
    return record


class JsonLogFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        fields = {key: value for key, value in vars(record).items() if key in LOGGED_FIELDS}
        if isinstance(fields.get("error"), str):
            fields["error"] = fields["error"][:MAX_ERROR_LENGTH]
        if record.exc_info:
            fields["exception"] = self.formatException(record.exc_info)

        return json.dumps(
            {
                "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
                "level": record.levelname,
                "logger": record.name,
                "msg": record.getMessage(),
                "correlation_id": getattr(record, "correlation_id", None),
                "fields": fields,
            },
            default=str,
        )


def configure_logging(level_name: str | None = None) -> None:
    root_logger = logging.getLogger()
    if getattr(root_logger, "_teamcrm_configured", False):
        return

    level = logging.getLevelName((level_name or os.getenv("LOG_LEVEL", "INFO")).upper())
    if not isinstance(level, int):
        level = logging.INFO

    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setFormatter(JsonLogFormatter())

    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)
    logging.setLogRecordFactory(_record_with_correlation_id)
    # request logging middleware already emits one line per request
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    root_logger._teamcrm_configured = True  # type: ignore[attr-defined]
