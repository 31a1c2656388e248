"""Domain exceptions and the JSON error envelope used by every route."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class ApiError(Exception):
    """Base error carrying an HTTP status and a structured detail payload."""

    status_code = 500
    error = "internal_error"

    def __init__(self, message: str, *, field: str | None = None, **extra: Any) -> None:
        super().__init__(message)
        self.message = message
        self.field = field
        self.extra = extra

    @property
    def detail(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"message": self.message, "error": self.error}
        if self.field:
            payload["field"] = self.field
        payload.update(self.extra)
        return payload


class ValidationFailed(ApiError):
    status_code = 400
    error = "validation_error"


class Unauthorized(ApiError):
    status_code = 401
    error = "unauthorized"

    def __init__(self, message: str = "Unauthorized") -> None:
        super().__init__(message)


class NotFound(ApiError):
    status_code = 404
    error = "not_found"


class Conflict(ApiError):
    status_code = 409
    error = "conflict"


class InvalidTransition(Conflict):
    """Raised when a lifecycle write would move a status backwards or sideways."""

    error = "invalid_transition"

    def __init__(self, resource: str, current: str, target: str) -> None:
        super().__init__(
            f"{resource} cannot move from '{current}' to '{target}'",
            current=current,
            target=target,
        )
        self.resource = resource
        self.current = current
        self.target = target


class ExportFailed(ApiError):
    status_code = 500
    error = "export_failed"


def _envelope(status_code: int, detail: Any, headers: dict[str, str] | None = None) -> JSONResponse:
    if isinstance(detail, dict):
        content = dict(detail)
        content.setdefault("message", content.get("error") or "Request failed")
    else:
        content = {"message": str(detail) if detail else "Request failed"}
    return JSONResponse(status_code=status_code, content=content, headers=headers)


def _first_validation_error(exc: RequestValidationError) -> tuple[str, str | None]:
    errors = exc.errors()
    if not errors:
        return "Invalid request", None
    first = errors[0]
    location = [str(part) for part in first.get("loc", ()) if part not in ("body", "query", "path")]
    field = ".".join(location) or None
    message = first.get("msg") or "Invalid request"
    if field:
        message = f"{field}: {message}"
    return message, field


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(ApiError)
    async def _api_error(request: Request, exc: ApiError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error(
                "request failed",
                extra={"path": request.url.path, "error": exc.error, "reason": exc.message},
            )
        headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, Unauthorized) else None
        return _envelope(exc.status_code, exc.detail, headers)

    @app.exception_handler(StarletteHTTPException)
    async def _http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return _envelope(exc.status_code, exc.detail, getattr(exc, "headers", None))

    @app.exception_handler(RequestValidationError)
    async def _validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        message, field = _first_validation_error(exc)
        payload: dict[str, Any] = {"message": message, "error": "validation_error"}
        if field:
            payload["field"] = field
        return _envelope(400, payload)


__all__ = [
    "ApiError",
    "Conflict",
    "ExportFailed",
    "InvalidTransition",
    "NotFound",
    "Unauthorized",
    "ValidationFailed",
    "register_error_handlers",
]
