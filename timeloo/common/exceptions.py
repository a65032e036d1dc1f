"""Custom exceptions and RFC 7807 Problem Detail error handlers."""

from __future__ import annotations

import logging
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

BASE_ERROR_URI = "https://timeloo.app/errors"

logger = logging.getLogger(__name__)


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


class MalformedRequestException(AppException):
    """400 — request body could not be understood."""

    def __init__(self, detail: str) -> None:
        super().__init__(
            status_code=400,
            error_type="malformed-request",
            title="Malformed Request",
            detail=detail,
        )


class AuthenticationRequiredException(AppException):
    """401 — operation needs a signed-in caller."""

    def __init__(self, detail: str = "Not authenticated.") -> None:
        super().__init__(
            status_code=401,
            error_type="authentication-required",
            title="Authentication Required",
            detail=detail,
        )


class ForbiddenException(AppException):
    """403 — insufficient permissions."""

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


class NotFoundException(AppException):
    """404 — entity not found."""

    def __init__(self, entity_type: str, entity_id: Any) -> None:
        super().__init__(
            status_code=404,
            error_type="not-found",
            title=f"{entity_type} Not Found",
            detail=f"{entity_type} with id '{entity_id}' does not exist.",
        )


class ConflictError(AppException):
    """409 — unique-constraint / duplicate."""

    def __init__(self, field: str, value: Any) -> None:
        super().__init__(
            status_code=409,
            error_type="conflict",
            title="Conflict",
            detail=f"An entry with {field}='{value}' already exists.",
            errors={field: [f"'{value}' is already in use."]},
        )


class ValidationException(AppException):
    """422 — business-logic validation failures."""

    def __init__(self, errors: dict[str, list[str]]) -> None:
        super().__init__(
            status_code=422,
            error_type="validation-error",
            title="Validation Error",
            detail="One or more fields failed validation.",
            errors=errors,
        )


class QueryFailedException(AppException):
    """503 — the datastore could not answer the query."""

    def __init__(self, detail: str = "The data could not be loaded. Please try again.") -> None:
        super().__init__(
            status_code=503,
            error_type="query-failed",
            title="Query Failed",
            detail=detail,
        )


# ── Problem documents ───────────────────────────────────────────────

def _problem(
    request: Request,
    status: int,
    error_type: str,
    title: str,
    detail: str,
    errors: Optional[dict[str, Any]] = None,
) -> JSONResponse:
    body: dict[str, Any] = {
        "type": f"{BASE_ERROR_URI}/{error_type}",
        "title": title,
        "status": status,
        "detail": detail,
        "instance": request.url.path,
    }
    if errors:
        body["errors"] = errors
    return JSONResponse(status_code=status, content=body, media_type="application/problem+json")


def _field_name(loc: tuple) -> str:
    # Drop the leading "body" / "query" / "path" segment
    if len(loc) > 1:
        return ".".join(str(part) for part in loc[1:])
    return str(loc[0]) if loc else "unknown"


# ── FastAPI handlers ────────────────────────────────────────────────

async def _handle_app_exception(request: Request, exc: AppException) -> JSONResponse:
    if exc.status_code >= 500:
        logger.warning("%s on %s: %s", exc.title, request.url.path, exc.detail)
    return _problem(
        request, exc.status_code, exc.error_type, exc.title, exc.detail, exc.errors,
    )


async def _handle_validation_error(
    request: Request,
    exc: RequestValidationError,
) -> JSONResponse:
    errors: dict[str, list[str]] = {}
    for err in exc.errors():
        errors.setdefault(_field_name(tuple(err.get("loc", ()))), []).append(
            err.get("msg", "Invalid value")
        )
    return _problem(
        request, 422, "validation-error", "Validation Error",
        "Request validation failed.", errors,
    )


async def _handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s", request.url.path)
    return _problem(
        request, 500, "internal-error", "Internal Server Error",
        "An unexpected server error occurred.",
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Install the problem+json handlers on ``app``."""
    app.add_exception_handler(AppException, _handle_app_exception)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, _handle_validation_error)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, _handle_unexpected_error)
