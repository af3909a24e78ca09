"""Structured logging setup and request logging middleware.

Every request is logged once on completion with status_code and
duration_ms. request_id, method and path are bound into structlog context
vars for the lifetime of the request, so log lines from the sync and
webhook layers carry them without passing them around. The request id is
taken from an incoming X-Request-ID (cron schedulers set one) or generated,
and echoed on the response.

Output is JSON in production and human-readable console output elsewhere.
"""

from __future__ import annotations

import logging
import time
import uuid

import structlog
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from src.quotesync.config import Environment, get_settings

logger = structlog.get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


def configure_structlog() -> None:
    """Configure stdlib logging and structlog processors for the environment."""
    settings = get_settings()
    logging.basicConfig(format="%(message)s", level=settings.LOG_LEVEL.upper())

    processors: list = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    if settings.ENVIRONMENT == Environment.production:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def _level_for(status_code: int):
    if status_code >= 500:
        return logger.error
    if status_code >= 400:
        return logger.warning
    return logger.info


class LoggingMiddleware(BaseHTTPMiddleware):
    """Binds request context and logs one line per request."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )
        start = time.monotonic()

        try:
            response = await call_next(request)
        except Exception:
            logger.error("request_error", status_code=500, duration_ms=_elapsed_ms(start))
            raise
        else:
            response.headers[REQUEST_ID_HEADER] = request_id
            _level_for(response.status_code)(
                "request_completed",
                status_code=response.status_code,
                duration_ms=_elapsed_ms(start),
            )
            return response
        finally:
            structlog.contextvars.unbind_contextvars("request_id", "method", "path")


def _elapsed_ms(start: float) -> float:
    return round((time.monotonic() - start) * 1000, 2)
