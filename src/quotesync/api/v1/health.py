"""Health check endpoints.

Provides liveness (/health) and readiness (/health/ready). Readiness probes
both remote systems, since the service can do nothing useful without them.
"""

from __future__ import annotations

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse

from src.quotesync.config import get_settings

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check():
    """Basic liveness check. No external dependencies are checked."""
    settings = get_settings()
    return {"status": "ok", "environment": settings.ENVIRONMENT.value}


@router.get("/health/ready")
async def readiness_check(request: Request):
    """Readiness check: verifies simPRO and monday connectivity.

    Returns 200 if both pass, 503 if either fails or the service graph
    could not be built from configuration.
    """
    services = getattr(request.app.state, "services", None)
    if services is None:
        missing = get_settings().missing_sync_settings()
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "unconfigured", "missing_settings": missing},
        )

    report = await services.sync.health_check()
    return JSONResponse(
        status_code=status.HTTP_200_OK if report.healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "status": "ready" if report.healthy else "degraded",
            "checks": report.model_dump(mode="json"),
        },
    )
