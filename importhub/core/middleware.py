"""Request id propagation and per-request access logging."""

from __future__ import annotations

import logging
import time
import uuid
from typing import Callable

from fastapi import Request, Response, status
from starlette.middleware.base import BaseHTTPMiddleware

from importhub.core.metrics import emit_http_request

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"

QUIET_PATHS = ("/health", "/docs", "/openapi.json", "/redoc")


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Reuse the caller's X-Request-ID or mint one, and echo it back."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        request.state.request_id = request_id

        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response


def _level_for(status_code: int) -> int:
    if status_code >= 500:
        return logging.ERROR
    if status_code >= 400:
        return logging.WARNING
    return logging.INFO


def _resource_ids(request: Request) -> dict[str, str]:
    """Job and run ids from the matched route, for correlating import logs."""
    params = request.path_params
    return {key: str(params[key]) for key in ("job_id", "run_id") if key in params}


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """One log line per request, plus the EMF request metric."""

    def __init__(self, app, quiet_paths: tuple[str, ...] = QUIET_PATHS):
        super().__init__(app)
        self.quiet_paths = quiet_paths

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.url.path.startswith(self.quiet_paths):
            return await call_next(request)

        request_id = getattr(request.state, "request_id", None)
        started = time.perf_counter()
        status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            duration_ms = (time.perf_counter() - started) * 1000
            context = {
                "request_id": request_id,
                "method": request.method,
                "path": request.url.path,
                "status_code": status_code,
                "duration_ms": round(duration_ms, 2),
                **_resource_ids(request),
            }
            # Upload bodies carry whole CSV files
            body_size = request.headers.get("content-length")
            if body_size and body_size.isdigit():
                context["body_bytes"] = int(body_size)

            logger.log(
                _level_for(status_code),
                f"{request.method} {request.url.path} -> {status_code}",
                extra=context,
            )
            emit_http_request(
                method=request.method,
                path=request.url.path,
                status_code=status_code,
                duration_ms=duration_ms,
                request_id=request_id,
            )
