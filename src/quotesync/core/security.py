"""Inbound request authentication.

simPRO signs webhook deliveries with HMAC-SHA1 over the raw body; cron
triggers present a shared bearer secret. Both comparisons are constant time.
"""

from __future__ import annotations

import hashlib
import hmac

import structlog
from fastapi import HTTPException, Request, status

from src.quotesync.config import Environment, get_settings

logger = structlog.get_logger(__name__)

SIGNATURE_HEADER = "X-Response-Signature"


def compute_signature(body: bytes, secret: str) -> str:
    """Hex HMAC-SHA1 of ``body`` keyed by ``secret``."""
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha1).hexdigest()


def verify_signature(body: bytes, signature: str | None, secret: str) -> bool:
    """Check a webhook signature against the raw request body.

    Args:
        body: Raw, unparsed request body.
        signature: Value of the signature header (hex digest), may be None.
        secret: Shared signing secret.

    Returns:
        True only when a signature is present and matches.
    """
    if not signature or not secret:
        return False
    expected = compute_signature(body, secret)
    return hmac.compare_digest(expected.encode("utf-8"), signature.strip().lower().encode("utf-8"))


async def require_cron_secret(request: Request) -> None:
    """FastAPI dependency guarding the cron trigger endpoints.

    Requires ``Authorization: Bearer <CRON_SECRET>``. When no secret is
    configured the endpoints are open in development and refused elsewhere.
    """
    settings = get_settings()
    if not settings.CRON_SECRET:
        if settings.ENVIRONMENT == Environment.development:
            return
        logger.error("security.cron_secret_not_configured")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="CRON_SECRET is not configured",
        )

    auth_header = request.headers.get("Authorization", "")
    token = auth_header[7:] if auth_header.startswith("Bearer ") else ""
    if not token or not hmac.compare_digest(token.encode("utf-8"), settings.CRON_SECRET.encode("utf-8")):
        logger.warning("security.cron_unauthorized", path=request.url.path)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
        )
