"""Webhook signature and cron secret tests.

Covers the HMAC-SHA1 signature helpers used to authenticate simPRO
deliveries and the bearer-secret dependency guarding cron endpoints.
"""

from __future__ import annotations

import hashlib
import hmac
from unittest.mock import MagicMock

import pytest
from fastapi import HTTPException

from src.quotesync.core.security import compute_signature, require_cron_secret, verify_signature

BODY = b'{"ID":"quote.created","reference":{"companyID":2,"quoteID":501}}'


# ── Signature Tests ───────────────────────────────────────────────────────────


def test_signature_is_hex_hmac_sha1():
    """compute_signature matches a directly computed HMAC-SHA1 digest."""
    expected = hmac.new(b"secret", BODY, hashlib.sha1).hexdigest()
    assert compute_signature(BODY, "secret") == expected


def test_valid_signature_verifies():
    """A signature over the exact raw body is accepted."""
    assert verify_signature(BODY, compute_signature(BODY, "secret"), "secret") is True


def test_signature_tolerates_case_and_whitespace():
    """Upper-case hex and surrounding whitespace are accepted."""
    signature = f"  {compute_signature(BODY, 'secret').upper()} "
    assert verify_signature(BODY, signature, "secret") is True


def test_modified_body_fails():
    """Re-serialised JSON with different spacing no longer verifies."""
    signature = compute_signature(BODY, "secret")
    assert verify_signature(BODY.replace(b",", b", "), signature, "secret") is False


def test_wrong_secret_fails():
    """A signature made with another secret is rejected."""
    assert verify_signature(BODY, compute_signature(BODY, "other"), "secret") is False


def test_missing_signature_or_secret_fails():
    """Absent signature or unconfigured secret never verifies."""
    assert verify_signature(BODY, None, "secret") is False
    assert verify_signature(BODY, "", "secret") is False
    assert verify_signature(BODY, compute_signature(BODY, ""), "") is False


# ── Cron Secret Tests ─────────────────────────────────────────────────────────


def _request(authorization: str | None = None) -> MagicMock:
    request = MagicMock()
    request.headers = {"Authorization": authorization} if authorization else {}
    request.url.path = "/cron/sync-quotes"
    return request


@pytest.mark.asyncio
async def test_cron_secret_accepts_bearer(monkeypatch):
    """The configured secret as a bearer token passes."""
    monkeypatch.setenv("CRON_SECRET", "cron-secret")
    assert await require_cron_secret(_request("Bearer cron-secret")) is None


@pytest.mark.asyncio
@pytest.mark.parametrize("header", [None, "cron-secret", "Bearer wrong", "Basic cron-secret"])
async def test_cron_secret_rejects(monkeypatch, header):
    """Missing, malformed or wrong credentials get 401."""
    monkeypatch.setenv("CRON_SECRET", "cron-secret")
    with pytest.raises(HTTPException) as exc_info:
        await require_cron_secret(_request(header))
    assert exc_info.value.status_code == 401


@pytest.mark.asyncio
async def test_cron_open_in_development_without_secret(monkeypatch):
    """No secret configured in development leaves the endpoints open."""
    monkeypatch.setenv("CRON_SECRET", "")
    monkeypatch.setenv("ENVIRONMENT", "development")
    assert await require_cron_secret(_request()) is None


@pytest.mark.asyncio
async def test_cron_refused_in_production_without_secret(monkeypatch):
    """No secret configured outside development is a server error."""
    monkeypatch.setenv("CRON_SECRET", "")
    monkeypatch.setenv("ENVIRONMENT", "production")
    with pytest.raises(HTTPException) as exc_info:
        await require_cron_secret(_request("Bearer anything"))
    assert exc_info.value.status_code == 500
