"""Cron trigger endpoints for batch and on-demand quote sync.

Guarded by ``Authorization: Bearer <CRON_SECRET>``. The batch run is
bounded by SYNC_DEADLINE_SECONDS so it finishes inside the scheduler's
execution cap.
"""

from __future__ import annotations

import asyncio

import structlog
from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import JSONResponse

from src.quotesync.api.deps import get_sync_service
from src.quotesync.config import get_settings
from src.quotesync.core.security import require_cron_secret
from src.quotesync.sync.service import HEALTH_CHECK_FAILED, SyncService

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/cron", tags=["cron"], dependencies=[Depends(require_cron_secret)])


@router.api_route("/sync-quotes", methods=["GET", "POST"])
async def sync_quotes(
    limit: int | None = Query(default=None, ge=1),
    sync: SyncService = Depends(get_sync_service),
):
    """Run a batch sync of all eligible open quotes.

    Returns 200 with the SyncResult, 503 when a remote system failed its
    health check, and 504 when the run exceeded the deadline.
    """
    deadline = get_settings().SYNC_DEADLINE_SECONDS
    try:
        result = await asyncio.wait_for(sync.sync_all(limit=limit), timeout=deadline)
    except asyncio.TimeoutError:
        logger.error("cron.sync_deadline_exceeded", deadline_seconds=deadline)
        return JSONResponse(
            status_code=status.HTTP_504_GATEWAY_TIMEOUT,
            content={"success": False, "message": f"Sync exceeded deadline of {deadline:g}s"},
        )

    code = status.HTTP_200_OK
    if result.reason == HEALTH_CHECK_FAILED:
        code = status.HTTP_503_SERVICE_UNAVAILABLE
    return JSONResponse(status_code=code, content=result.model_dump(mode="json"))


@router.post("/sync-quotes/{quote_id}")
async def sync_single_quote(
    quote_id: int,
    sync: SyncService = Depends(get_sync_service),
):
    """Sync one quote on demand; ineligible quotes are reported as skipped."""
    result = await sync.sync_quote(quote_id)
    return result.model_dump(mode="json")
