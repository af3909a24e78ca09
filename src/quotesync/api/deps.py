"""Service graph construction and FastAPI dependencies.

``build_services`` wires clients, caches, resolver, upserters and the two
services from Settings; the lifespan stores the result on ``app.state``
and endpoints pull it back out through the ``get_*`` dependencies.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

import httpx
from fastapi import HTTPException, Request, status

from src.quotesync.clients.monday import MondayClient
from src.quotesync.clients.retry import monday_retry_policy, simpro_retry_policy
from src.quotesync.clients.simpro import SimproClient
from src.quotesync.config import Settings
from src.quotesync.sync.classification import ClassificationPolicy
from src.quotesync.sync.dedup import DebounceCache, ExistenceCache
from src.quotesync.sync.owners import OwnerDirectory
from src.quotesync.sync.resolver import BoardScanResolver
from src.quotesync.sync.service import BoardIds, SyncService
from src.quotesync.sync.source import QuoteSource
from src.quotesync.sync.upsert import (
    AccountColumns,
    AccountUpserter,
    ContactColumns,
    ContactUpserter,
    DealColumns,
    DealUpserter,
)
from src.quotesync.sync.webhooks import WebhookService


@dataclass
class Services:
    simpro: SimproClient
    monday: MondayClient
    sync: SyncService
    webhooks: WebhookService


def build_services(
    settings: Settings,
    *,
    simpro_transport: httpx.AsyncBaseTransport | None = None,
    monday_transport: httpx.AsyncBaseTransport | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> Services:
    """Build the long-lived service graph from settings."""
    simpro = SimproClient(
        settings.SIMPRO_BASE_URL,
        settings.SIMPRO_ACCESS_TOKEN,
        settings.SIMPRO_COMPANY_ID,
        timeout=settings.SIMPRO_TIMEOUT,
        transport=simpro_transport,
        retry_policy=simpro_retry_policy(sleep=sleep),
    )
    monday = MondayClient(
        settings.MONDAY_API_TOKEN,
        api_version=settings.MONDAY_API_VERSION,
        timeout=settings.MONDAY_TIMEOUT,
        transport=monday_transport,
        retry_policy=monday_retry_policy(sleep=sleep),
        sleep=sleep,
    )

    resolver = BoardScanResolver(monday)
    country = settings.MONDAY_PHONE_COUNTRY
    accounts = AccountUpserter(
        monday,
        resolver,
        AccountColumns(
            foreign_id=settings.MONDAY_ACCOUNT_SIMPRO_ID_COLUMN,
            description=settings.MONDAY_ACCOUNT_DESCRIPTION_COLUMN,
            notes=settings.MONDAY_ACCOUNT_NOTES_COLUMN,
        ),
        adopt_by_name=settings.ADOPT_ACCOUNTS_BY_NAME,
        phone_country=country,
    )
    contacts = ContactUpserter(
        monday,
        resolver,
        ContactColumns(
            foreign_id=settings.MONDAY_CONTACT_SIMPRO_ID_COLUMN,
            email=settings.MONDAY_CONTACT_EMAIL_COLUMN,
            phone=settings.MONDAY_CONTACT_PHONE_COLUMN,
            notes=settings.MONDAY_CONTACT_NOTES_COLUMN,
            account=settings.MONDAY_CONTACT_ACCOUNT_COLUMN,
            deal=settings.MONDAY_CONTACT_DEAL_COLUMN,
        ),
        phone_country=country,
    )
    deals = DealUpserter(
        monday,
        resolver,
        DealColumns(
            foreign_id=settings.MONDAY_DEAL_SIMPRO_ID_COLUMN,
            value=settings.MONDAY_DEAL_VALUE_COLUMN,
            stage=settings.MONDAY_DEAL_STAGE_COLUMN,
            close_date=settings.MONDAY_DEAL_CLOSE_DATE_COLUMN,
            notes=settings.MONDAY_DEAL_NOTES_COLUMN,
            contacts=settings.MONDAY_DEAL_CONTACTS_COLUMN,
            account=settings.MONDAY_DEAL_ACCOUNT_COLUMN,
            owner=settings.MONDAY_DEAL_OWNER_COLUMN,
        ),
        phone_country=country,
    )

    source = QuoteSource(simpro)
    sync = SyncService(
        source,
        monday,
        ClassificationPolicy.from_settings(settings),
        BoardIds(
            accounts=settings.MONDAY_ACCOUNTS_BOARD_ID,
            contacts=settings.MONDAY_CONTACTS_BOARD_ID,
            deals=settings.MONDAY_DEALS_BOARD_ID,
        ),
        accounts,
        contacts,
        deals,
        owners=OwnerDirectory(settings.SALESPERSON_USER_IDS),
    )
    webhooks = WebhookService(
        sync,
        source,
        deals,
        monday,
        DebounceCache(settings.WEBHOOK_DEBOUNCE_SECONDS),
        ExistenceCache(settings.EXISTENCE_CACHE_SECONDS),
        check_attempts=settings.EXISTENCE_CHECK_ATTEMPTS,
        check_delay=settings.EXISTENCE_CHECK_DELAY_SECONDS,
        sleep=sleep,
    )
    return Services(simpro=simpro, monday=monday, sync=sync, webhooks=webhooks)


def _services(request: Request) -> Services:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Sync services not configured",
        )
    return services


async def get_sync_service(request: Request) -> SyncService:
    """Get the SyncService built at startup."""
    return _services(request).sync


async def get_webhook_service(request: Request) -> WebhookService:
    """Get the WebhookService built at startup."""
    return _services(request).webhooks
