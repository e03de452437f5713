"""importhub API: CSV import jobs, entity exports and the connector."""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from importhub.connector.routes import router as connector_router
from importhub.core.config import settings
from importhub.core.errors import setup_error_handlers
from importhub.core.middleware import RequestIDMiddleware, RequestLoggingMiddleware
from importhub.imports.routes import export_router
from importhub.imports.routes import router as import_router

API_PREFIX = "/api/v1"

TEXT_FORMAT = "%(asctime)s %(levelname)-7s %(name)s [%(request_id)s] %(message)s"

# Standard LogRecord attributes; everything else arrived through ``extra``
_STANDARD_ATTRS = frozenset(logging.makeLogRecord({}).__dict__) | {"message", "asctime"}

NOISY_LOGGERS = ("uvicorn.access", "sqlalchemy.engine", "httpx", "rq.worker")


class JSONFormatter(logging.Formatter):
    """One JSON object per record, with ``extra`` fields (job_id, run_id, ...) inlined."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}.{record.funcName}:{record.lineno}",
        }
        entry.update(
            (key, value)
            for key, value in record.__dict__.items()
            if key not in _STANDARD_ATTRS and not key.startswith("_")
        )
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class RequestIdDefaultFilter(logging.Filter):
    """Worker and startup records have no request id; the text format needs one."""

    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "request_id", None) is None:
            record.request_id = "-"
        return True


def setup_logging() -> None:
    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(RequestIdDefaultFilter())
    if settings.log_format == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(TEXT_FORMAT, datefmt="%H:%M:%S"))

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(getattr(logging, settings.log_level.upper(), logging.INFO))

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def create_app() -> FastAPI:
    application = FastAPI(title="importhub API", version="0.1.0")

    # Handlers before routers
    setup_error_handlers(application, debug=settings.app_env != "production")

    # Last added runs first: request ids must exist before logging reads them
    if settings.enable_request_logging:
        application.add_middleware(RequestLoggingMiddleware)
    application.add_middleware(RequestIDMiddleware)

    for router in (import_router, export_router, connector_router):
        application.include_router(router, prefix=API_PREFIX)

    @application.get("/health")
    async def health() -> JSONResponse:
        return JSONResponse(
            {"status": "ok", "env": settings.app_env, "version": application.version}
        )

    return application


setup_logging()
app = create_app()
