from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

from pydantic.alias_generators import to_camel


_LOCATION_PREFIXES = ("body", "query", "path", "header", "cookie")


class AppError(Exception):
    """Base for errors that carry a stable code and map to one HTTP status."""

    status_code = 500
    code = "INTERNAL_ERROR"

    def __init__(self, message: str, *, code: str | None = None, details: Any = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.details = details


class ValidationError(AppError):
    status_code = 400
    code = "VALIDATION_ERROR"

    def __init__(self, message: str = "Invalid input", details: dict[str, list[str]] | None = None) -> None:
        super().__init__(message, details=details or {})


class Unauthorized(AppError):
    status_code = 401
    code = "UNAUTHORIZED"

    def __init__(self, message: str = "Authentication required") -> None:
        super().__init__(message)


class InvalidCredentials(Unauthorized):
    code = "INVALID_CREDENTIALS"

    def __init__(self, message: str = "Invalid email or password") -> None:
        super().__init__(message)


class Forbidden(AppError):
    status_code = 403
    code = "FORBIDDEN"

    def __init__(self, message: str = "Insufficient permissions") -> None:
        super().__init__(message)


class NotFound(AppError):
    status_code = 404
    code = "NOT_FOUND"

    def __init__(self, message: str = "Not found") -> None:
        super().__init__(message)


class InvalidToken(Exception):
    """Raised by the token service when a signature is bad or a token expired."""


TEAM_ERROR_STATUS = {
    "USER_EXISTS": 400,
    "INVITE_EXISTS": 400,
    "USER_NOT_FOUND": 404,
    "INVITE_NOT_FOUND": 404,
    "CANNOT_REMOVE_OWNER": 400,
    "CANNOT_REMOVE_SELF": 400,
    "CANNOT_CHANGE_OWNER": 400,
    "CANNOT_ASSIGN_OWNER": 400,
    "CANNOT_CHANGE_SELF": 400,
}


class TeamError(AppError):
    """Team/invite guard failure. The code decides the status."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message, code=code)
        self.status_code = TEAM_ERROR_STATUS.get(code, 400)


def _wire_name(part: str) -> str:
    if "_" not in part:
        return part
    return to_camel(part)


def pydantic_field_errors(errors: Iterable[Mapping[str, Any]]) -> dict[str, list[str]]:
    """Collapse pydantic/FastAPI error entries into ``{field: [messages]}``."""

    details: dict[str, list[str]] = {}
    for error in errors:
        loc = [part for part in error.get("loc", ()) if isinstance(part, str)]
        if loc and loc[0] in _LOCATION_PREFIXES:
            source, loc = loc[0], loc[1:]
        else:
            source = "body"
        field = ".".join(_wire_name(part) for part in loc) or source
        details.setdefault(field, []).append(str(error.get("msg", "Invalid value")))
    return details
