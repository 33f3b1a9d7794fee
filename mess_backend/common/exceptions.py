"""Application errors and their RFC 7807 problem-detail rendering.

Every error leaves the API as ``application/problem+json``::

    {"type": ".../errors/conflict", "title": "Conflict", "status": 409,
     "detail": "...", "instance": "/api/v1/leave-requests", "errors": {...}}
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded

logger = logging.getLogger(__name__)

BASE_ERROR_URI = "https://mess.app/errors"
PROBLEM_JSON = "application/problem+json"


# ── Exception hierarchy ─────────────────────────────────────────────

class AppException(Exception):
    """Base for all application exceptions → RFC 7807 JSON."""

    def __init__(
        self,
        status_code: int,
        error_type: str,
        title: str,
        detail: str,
        errors: Optional[dict[str, Any]] = None,
    ) -> None:
        self.status_code = status_code
        self.error_type = error_type
        self.title = title
        self.detail = detail
        self.errors = errors
        super().__init__(detail)


class NotFoundException(AppException):
    """404 — unknown leave request, meal plan, mess or off day."""

    def __init__(self, entity_type: str, entity_id: Any) -> None:
        super().__init__(
            status_code=404,
            error_type="not-found",
            title=f"{entity_type} Not Found",
            detail=f"{entity_type} with id '{entity_id}' does not exist.",
        )


class ConflictError(AppException):
    """409 — overlapping leave request or off day, or a concurrent write."""

    def __init__(self, field: str, value: Any, detail: Optional[str] = None) -> None:
        message = detail or f"'{value}' is already taken."
        super().__init__(
            status_code=409,
            error_type="conflict",
            title="Conflict",
            detail=message,
            errors={field: [message]},
        )


class ForbiddenException(AppException):
    """403 — another member's leave, or a mess the caller does not manage."""

    def __init__(
        self,
        detail: str = "You do not have permission to perform this action.",
    ) -> None:
        super().__init__(
            status_code=403,
            error_type="forbidden",
            title="Forbidden",
            detail=detail,
        )


class ValidationException(AppException):
    """422 — business-rule violations the request schema cannot catch."""

    def __init__(self, errors: dict[str, list[str]]) -> None:
        super().__init__(
            status_code=422,
            error_type="validation-error",
            title="Validation Error",
            detail="One or more fields failed validation.",
            errors=errors,
        )


class InvalidTransitionError(ValidationException):
    """422 — the record's current status does not allow the operation."""

    def __init__(self, entity_type: str, current: str) -> None:
        super().__init__({"status": [f"{entity_type} is already {current}."]})
        self.current = current


class LedgerError(AppException):
    """500 — a subscription extension could not be applied or reversed.

    Fatal to the whole operation: the unit of work rolls back the leave
    status change together with any membership writes.
    """

    def __init__(self, detail: str) -> None:
        super().__init__(
            status_code=500,
            error_type="ledger-error",
            title="Subscription Extension Failed",
            detail=detail,
        )


# ── Rendering ───────────────────────────────────────────────────────

def problem_response(
    request: Request,
    *,
    status_code: int,
    error_type: str,
    title: str,
    detail: str,
    errors: Optional[dict[str, Any]] = None,
) -> JSONResponse:
    body: dict[str, Any] = {
        "type": f"{BASE_ERROR_URI}/{error_type}",
        "title": title,
        "status": status_code,
        "detail": detail,
        "instance": str(request.url.path),
    }
    if errors:
        body["errors"] = errors
    return JSONResponse(status_code=status_code, content=body, media_type=PROBLEM_JSON)


async def _handle_app_exception(request: Request, exc: AppException) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.detail)
    return problem_response(
        request,
        status_code=exc.status_code,
        error_type=exc.error_type,
        title=exc.title,
        detail=exc.detail,
        errors=exc.errors,
    )


def _field_name(loc: tuple) -> str:
    # Drop the leading "body" / "query" / "path" segment
    if len(loc) > 1:
        return ".".join(str(part) for part in loc[1:])
    return str(loc[0]) if loc else "unknown"


async def _handle_validation_error(
    request: Request,
    exc: RequestValidationError,
) -> JSONResponse:
    field_errors: dict[str, list[str]] = {}
    for err in exc.errors():
        field_errors.setdefault(_field_name(tuple(err.get("loc", ()))), []).append(
            err.get("msg", "Invalid value")
        )
    return problem_response(
        request,
        status_code=422,
        error_type="validation-error",
        title="Validation Error",
        detail="Request validation failed.",
        errors=field_errors,
    )


async def _handle_rate_limited(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    logger.warning("Rate limit hit on %s: %s", request.url.path, exc.detail)
    return problem_response(
        request,
        status_code=429,
        error_type="rate-limited",
        title="Too Many Requests",
        detail=f"Rate limit exceeded: {exc.detail}",
    )


# ── Registration helper (called from main.py) ──────────────────────

def register_exception_handlers(app: FastAPI) -> None:
    """Attach all custom exception handlers to the FastAPI app."""
    app.add_exception_handler(AppException, _handle_app_exception)          # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, _handle_validation_error)  # type: ignore[arg-type]
    app.add_exception_handler(RateLimitExceeded, _handle_rate_limited)          # type: ignore[arg-type]
