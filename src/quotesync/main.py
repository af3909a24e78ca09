"""FastAPI application factory.

Creates the app with logging middleware, metrics middleware, Sentry,
a lifespan that builds the sync service graph, and the v1 API router.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.requests import Request
from fastapi.responses import Response

from src.quotesync.api.deps import build_services
from src.quotesync.api.middleware.logging import LoggingMiddleware, configure_structlog
from src.quotesync.api.v1.router import router as v1_router
from src.quotesync.config import get_settings
from src.quotesync.core.monitoring import MetricsMiddleware, get_metrics_response, init_sentry


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: logging, Sentry and the service graph."""
    log = structlog.get_logger(__name__)
    settings = get_settings()
    configure_structlog()

    if settings.SENTRY_DSN:
        init_sentry(dsn=settings.SENTRY_DSN, environment=settings.ENVIRONMENT.value)

    if getattr(app.state, "services", None) is None:
        missing = settings.missing_sync_settings()
        if missing:
            # health and monday webhook still serve; sync endpoints return 503
            log.warning("startup.sync_unconfigured", missing=missing)
            app.state.services = None
        else:
            app.state.services = build_services(settings)
            log.info(
                "startup.services_initialized",
                company_id=settings.SIMPRO_COMPANY_ID,
                minimum_quote_value=settings.MINIMUM_QUOTE_VALUE,
            )

    yield

    log.info("shutdown.complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Quote Sync API",
        version="0.1.0",
        description="One-way sync of high-value simPRO quotes to monday.com boards",
        lifespan=lifespan,
    )

    app.add_middleware(LoggingMiddleware)
    app.add_middleware(MetricsMiddleware)

    app.include_router(v1_router)

    @app.get("/metrics", include_in_schema=False)
    async def metrics(request: Request) -> Response:
        """Prometheus metrics endpoint."""
        return get_metrics_response()

    return app


app = create_app()
