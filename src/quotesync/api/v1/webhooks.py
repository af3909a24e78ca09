"""Inbound webhook endpoints.

- POST /webhooks/simpro: signed quote events, verified against the raw body
- POST /webhooks/monday: challenge echo; other events acknowledged (one-way sync)
"""

from __future__ import annotations

import json

import structlog
from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse

from src.quotesync.api.deps import get_webhook_service
from src.quotesync.clients.errors import InvalidWebhookPayload
from src.quotesync.config import get_settings
from src.quotesync.core.security import SIGNATURE_HEADER, verify_signature
from src.quotesync.sync.webhooks import WebhookService, parse_simpro_event

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message})


@router.post("/simpro")
async def simpro_webhook(
    request: Request,
    webhooks: WebhookService = Depends(get_webhook_service),
):
    """Verify, parse and process one simPRO webhook delivery."""
    secret = get_settings().SIMPRO_WEBHOOK_SECRET
    if not secret:
        logger.error("webhook.secret_not_configured")
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Webhook secret not configured")

    body = await request.body()
    signature = request.headers.get(SIGNATURE_HEADER)
    if not signature:
        logger.warning("webhook.signature_missing")
        return _error(status.HTTP_401_UNAUTHORIZED, "Missing signature")
    if not verify_signature(body, signature, secret):
        logger.warning("webhook.signature_invalid")
        return _error(status.HTTP_401_UNAUTHORIZED, "Invalid signature")

    try:
        event = parse_simpro_event(json.loads(body))
    except (ValueError, InvalidWebhookPayload) as exc:
        logger.warning("webhook.payload_invalid", error=str(exc))
        return _error(status.HTTP_400_BAD_REQUEST, str(exc))

    result = await webhooks.handle_simpro_event(event)
    return result.model_dump(mode="json")


@router.post("/monday")
async def monday_webhook(request: Request):
    """Echo monday's verification challenge; acknowledge everything else."""
    try:
        payload = await request.json()
    except ValueError:
        return _error(status.HTTP_400_BAD_REQUEST, "Body must be JSON")

    if isinstance(payload, dict) and payload.get("challenge"):
        logger.info("webhook.monday_challenge")
        return {"challenge": payload["challenge"]}

    event = payload.get("event") if isinstance(payload, dict) else None
    event = event if isinstance(event, dict) else {}
    logger.info("webhook.monday_event_acknowledged", event_type=event.get("type"))
    return {
        "success": True,
        "message": "Event acknowledged - one-way sync only (simPRO -> monday)",
        "eventType": event.get("type"),
    }
