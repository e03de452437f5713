"""API error types and global exception handlers.

Every handled error is logged, counted as an EMF error metric and
returned in one response shape:

    {"error": {"code": ..., "message": ..., "request_id": ..., "details": ...}}
"""

from __future__ import annotations

import logging
import traceback
from typing import Any, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import DatabaseError

from importhub.core.metrics import emit_error

logger = logging.getLogger(__name__)


class APIError(Exception):
    """Base exception for errors that map straight to an HTTP response.

    Attributes:
        status_code: HTTP status code
        error_code: Machine-readable code for the ``error.code`` field
        message: Human-readable message
        details: Extra context returned to the caller
    """

    def __init__(
        self,
        status_code: int,
        error_code: str,
        message: str,
        details: dict[str, Any] | None = None,
    ):
        self.status_code = status_code
        self.error_code = error_code
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class NotFoundError(APIError):
    """An import job or connector run that does not exist."""

    def __init__(self, resource: str, identifier: str | None = None):
        message = f"{resource} not found"
        if identifier:
            message += f": {identifier}"
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            error_code="not_found",
            message=message,
            details={"resource": resource, "identifier": identifier},
        )


class ConflictError(APIError):
    """The resource is in a state that does not allow the operation."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            error_code="conflict",
            message=message,
            details=details,
        )


class ForbiddenError(APIError):
    """The caller's tenant does not own the resource."""

    def __init__(self, message: str = "Forbidden"):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            error_code="forbidden",
            message=message,
        )


def _request_id(request: Request) -> Optional[str]:
    return getattr(request.state, "request_id", None)


def _log_context(request: Request, **extra: Any) -> dict[str, Any]:
    return {
        "request_id": _request_id(request),
        "path": request.url.path,
        "method": request.method,
        **extra,
    }


def _error_body(
    request: Request,
    code: str,
    message: str,
    details: Optional[dict[str, Any]] = None,
) -> dict[str, Any]:
    body: dict[str, Any] = {"code": code, "message": message, "request_id": _request_id(request)}
    if details is not None:
        body["details"] = details
    return {"error": body}


def _respond(
    request: Request,
    status_code: int,
    code: str,
    message: str,
    details: Optional[dict[str, Any]] = None,
) -> JSONResponse:
    emit_error(
        error_code=code,
        status_code=status_code,
        path=request.url.path,
        method=request.method,
        request_id=_request_id(request),
    )
    return JSONResponse(
        status_code=status_code,
        content=_error_body(request, code, message, details),
    )


async def api_error_handler(request: Request, exc: APIError) -> JSONResponse:
    logger.warning(
        f"API error: {exc.error_code} - {exc.message}",
        extra=_log_context(request, error_code=exc.error_code, status_code=exc.status_code),
    )
    return _respond(request, exc.status_code, exc.error_code, exc.message, exc.details)


async def validation_error_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Malformed request bodies and query parameters."""
    # Client errors, not bugs
    logger.info(f"Validation error: {exc}", extra=_log_context(request))
    errors = [
        {
            "field": ".".join(str(loc) for loc in err.get("loc", [])),
            "message": err.get("msg", "Invalid value"),
            "type": err.get("type", "validation_error"),
        }
        for err in exc.errors()
    ]
    return _respond(
        request,
        status.HTTP_422_UNPROCESSABLE_CONTENT,
        "validation_error",
        "Validation failed",
        {"errors": errors},
    )


def _server_error(
    request: Request,
    exc: Exception,
    code: str,
    message: str,
    with_traceback: bool = False,
) -> JSONResponse:
    logger.error(
        f"{message}: {type(exc).__name__}: {exc}",
        extra=_log_context(request, exception_type=type(exc).__name__),
        exc_info=True,
    )
    details = None
    if getattr(request.app.state, "debug", False):
        details = {"type": type(exc).__name__, "message": str(exc)}
        if with_traceback:
            details["traceback"] = traceback.format_exc().split("\n")
    return _respond(request, status.HTTP_500_INTERNAL_SERVER_ERROR, code, message, details)


async def database_error_handler(request: Request, exc: DatabaseError) -> JSONResponse:
    """Database errors that escaped the service layer."""
    return _server_error(request, exc, "database_error", "A database error occurred")


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    return _server_error(
        request, exc, "internal_error", "An internal error occurred", with_traceback=True
    )


def setup_error_handlers(app: FastAPI, debug: bool = False) -> None:
    """Register global exception handlers.

    Args:
        app: FastAPI application instance
        debug: Whether to include exception details in 500 responses
    """
    app.state.debug = debug

    app.add_exception_handler(APIError, api_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(DatabaseError, database_error_handler)
    app.add_exception_handler(Exception, generic_exception_handler)
