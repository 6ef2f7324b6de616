"""Domain exceptions and the RFC 7807 handlers that render them.

Every error leaving the API is ``application/problem+json``: domain
exceptions, request-body validation, the plain ``HTTPException`` raised by
the identity and cron-secret dependencies, and slowapi's 429.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)

BASE_ERROR_URI = "https://leave.local/errors"
PROBLEM_JSON = "application/problem+json"

# Problem ``type`` slugs for framework-level HTTP errors
_HTTP_ERROR_TYPES: dict[int, tuple[str, str]] = {
    401: ("unauthorized", "Unauthorized"),
    403: ("forbidden", "Forbidden"),
    404: ("not-found", "Not Found"),
    405: ("method-not-allowed", "Method Not Allowed"),
    429: ("rate-limited", "Too Many Requests"),
}


# ── Exception hierarchy ─────────────────────────────────────────────

class AppException(Exception):
    """Base for domain errors; carries everything a problem document needs."""

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
    """404: a referenced request, plan, delegation or employee is missing."""

    def __init__(self, entity_type: str, entity_id: Any) -> None:
        super().__init__(
            status_code=404,
            error_type="not-found",
            title=f"{entity_type} Not Found",
            detail=f"No {entity_type} found for id '{entity_id}'.",
        )
        self.entity_type = entity_type
        self.entity_id = entity_id


class ForbiddenException(AppException):
    """403: the caller is known but may not act on this resource."""

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
    """422: input is well-formed but breaks a business rule.

    ``errors`` maps a field name to its messages, e.g.
    ``{"dates": ["Cannot exceed 30 holiday days per year"]}``.
    """

    def __init__(
        self,
        errors: dict[str, list[str]],
        detail: str = "One or more fields failed validation.",
    ) -> None:
        super().__init__(
            status_code=422,
            error_type="validation-error",
            title="Validation Error",
            detail=detail,
            errors=errors,
        )


class InvalidStateException(AppException):
    """409: the entity's lifecycle stage does not allow the operation."""

    def __init__(self, detail: str) -> None:
        super().__init__(
            status_code=409,
            error_type="invalid-state",
            title="Invalid State",
            detail=detail,
        )


# ── Problem documents ───────────────────────────────────────────────

def problem_body(
    request: Request,
    *,
    status: int,
    error_type: str,
    title: str,
    detail: str,
    errors: Optional[dict[str, Any]] = None,
) -> dict[str, Any]:
    body: dict[str, Any] = {
        "type": f"{BASE_ERROR_URI}/{error_type}",
        "title": title,
        "status": status,
        "detail": detail,
        "instance": request.url.path,
    }
    if errors:
        body["errors"] = errors
    return body


def _problem(
    request: Request,
    *,
    status: int,
    headers: Optional[dict[str, str]] = None,
    **fields: Any,
) -> JSONResponse:
    return JSONResponse(
        status_code=status,
        content=problem_body(request, status=status, **fields),
        media_type=PROBLEM_JSON,
        headers=headers,
    )


def _field_name(loc: tuple) -> str:
    # Drop the leading "body" / "query" / "path" segment
    if len(loc) > 1:
        return ".".join(str(part) for part in loc[1:])
    return str(loc[0]) if loc else "unknown"


# ── FastAPI handlers ────────────────────────────────────────────────

async def _handle_app_exception(request: Request, exc: AppException) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.detail)
    return _problem(
        request,
        status=exc.status_code,
        error_type=exc.error_type,
        title=exc.title,
        detail=exc.detail,
        errors=exc.errors,
    )


async def _handle_validation_error(
    request: Request,
    exc: RequestValidationError,
) -> JSONResponse:
    field_errors: dict[str, list[str]] = {}
    for err in exc.errors():
        field_errors.setdefault(_field_name(tuple(err.get("loc", ()))), []).append(
            err.get("msg", "Invalid value"),
        )
    return _problem(
        request,
        status=422,
        error_type="validation-error",
        title="Validation Error",
        detail="Request validation failed.",
        errors=field_errors,
    )


async def _handle_http_exception(
    request: Request,
    exc: StarletteHTTPException,
) -> JSONResponse:
    error_type, title = _HTTP_ERROR_TYPES.get(exc.status_code, ("http-error", "HTTP Error"))
    return _problem(
        request,
        status=exc.status_code,
        headers=getattr(exc, "headers", None),
        error_type=error_type,
        title=title,
        detail=str(exc.detail),
    )


async def _handle_rate_limit(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    logger.warning("Rate limit hit on %s: %s", request.url.path, exc.detail)
    response = _problem(
        request,
        status=429,
        error_type="rate-limited",
        title="Too Many Requests",
        detail=f"Rate limit exceeded: {exc.detail}",
    )
    limiter = getattr(request.app.state, "limiter", None)
    current = getattr(request.state, "view_rate_limit", None)
    if limiter is not None and current is not None:
        response = limiter._inject_headers(response, current)
    return response


# ── Registration helper (called from main.py) ──────────────────────

def register_exception_handlers(app: FastAPI) -> None:
    """Attach every problem-detail handler to the FastAPI app."""
    app.add_exception_handler(AppException, _handle_app_exception)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, _handle_validation_error)  # type: ignore[arg-type]
    app.add_exception_handler(StarletteHTTPException, _handle_http_exception)  # type: ignore[arg-type]
    app.add_exception_handler(RateLimitExceeded, _handle_rate_limit)  # type: ignore[arg-type]
