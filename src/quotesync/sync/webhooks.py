"""simPRO webhook handling.

Each delivery goes through:

1. Parse: non-quote events are acknowledged and ignored; a quote event
   without quote/company ids is rejected.
2. Debounce: ``try_claim`` on (event, quote id); duplicates inside the
   window are acknowledged without work.
3. Per-quote lock: events for the same quote run one at a time, so a
   created/updated pair cannot both decide "not found" and both create.
4. Dispatch: created, updated/status (unknown deal = create), deleted.

Deal lookups consult the existence cache first, then search the board up to
N times with increasing delay, since monday does not guarantee
read-after-write consistency.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import Any

import structlog
from pydantic import BaseModel, Field

from src.quotesync.clients.errors import InvalidWebhookPayload
from src.quotesync.clients.monday import MondayClient
from src.quotesync.core.monitoring import WEBHOOK_EVENTS
from src.quotesync.sync.dedup import CachedItem, DebounceCache, ExistenceCache
from src.quotesync.sync.schemas import Quote, SyncResult, WebhookResult
from src.quotesync.sync.service import SyncService
from src.quotesync.sync.source import QuoteSource
from src.quotesync.sync.upsert import DealUpserter

logger = structlog.get_logger(__name__)

QUOTE_CREATED = "quote.created"
QUOTE_UPDATED = "quote.updated"
QUOTE_STATUS = "quote.status"
QUOTE_DELETED = "quote.deleted"


class SimproEvent(BaseModel):
    """A parsed simPRO webhook delivery."""

    event: str
    quote_id: int | None = None
    company_id: int | None = None
    action: str | None = None
    raw: dict[str, Any] = Field(default_factory=dict)

    @property
    def is_quote_event(self) -> bool:
        return self.event.startswith("quote.")


def parse_simpro_event(payload: Any) -> SimproEvent:
    """Validate a webhook body.

    Raises:
        InvalidWebhookPayload: When the body is not an object, has no event id,
            or is a quote event missing ``reference.quoteID`` / ``companyID``.
    """
    if not isinstance(payload, dict):
        raise InvalidWebhookPayload("webhook body must be a JSON object")
    event = payload.get("ID")
    if not isinstance(event, str) or not event.strip():
        raise InvalidWebhookPayload("webhook body has no event ID")

    reference = payload.get("reference") or {}
    parsed = SimproEvent(event=event.strip(), action=payload.get("action"), raw=payload)
    if not parsed.is_quote_event:
        return parsed

    quote_id = reference.get("quoteID") if isinstance(reference, dict) else None
    company_id = reference.get("companyID") if isinstance(reference, dict) else None
    try:
        parsed.quote_id = int(quote_id) if quote_id not in (None, "") else None
        parsed.company_id = int(company_id) if company_id not in (None, "") else None
    except (TypeError, ValueError) as exc:
        raise InvalidWebhookPayload(f"non-numeric quote or company id: {exc}") from exc
    if not parsed.quote_id or parsed.company_id is None:
        raise InvalidWebhookPayload("missing quote ID or company ID in webhook payload")
    return parsed


class WebhookService:
    """Turns simPRO quote events into board changes.

    Args:
        sync: Shared sync orchestrator.
        source: simPRO reader.
        deals: Deal upserter (for lookups by quote id).
        monday: monday client (for deletes).
        debounce: Duplicate-delivery cache.
        existence: Quote -> deal item cache.
        check_attempts: Board searches before concluding a deal is absent.
        check_delay: Base delay; attempt ``n`` waits ``n * check_delay``.
        sleep: Awaitable sleep, injectable for tests.
    """

    def __init__(
        self,
        sync: SyncService,
        source: QuoteSource,
        deals: DealUpserter,
        monday: MondayClient,
        debounce: DebounceCache,
        existence: ExistenceCache,
        *,
        check_attempts: int = 3,
        check_delay: float = 2.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._sync = sync
        self._source = source
        self._deals = deals
        self._monday = monday
        self.debounce = debounce
        self.existence = existence
        self._check_attempts = max(1, check_attempts)
        self._check_delay = check_delay
        self._sleep = sleep
        self._locks: dict[int, asyncio.Lock] = {}
        self._lock_users: dict[int, int] = {}

    @asynccontextmanager
    async def _quote_lock(self, quote_id: int) -> AsyncIterator[None]:
        lock = self._locks.setdefault(quote_id, asyncio.Lock())
        self._lock_users[quote_id] = self._lock_users.get(quote_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[quote_id] -= 1
            if self._lock_users[quote_id] == 0:
                del self._lock_users[quote_id]
                del self._locks[quote_id]

    # ── Entry point ──

    async def handle_simpro_event(self, event: SimproEvent) -> WebhookResult:
        """Process one parsed delivery. Never raises."""
        if not event.is_quote_event:
            WEBHOOK_EVENTS.labels(event=event.event, outcome="ignored").inc()
            return WebhookResult(
                success=True,
                message=f"Event ignored - not a quote event: {event.event}",
                event=event.event,
            )

        quote_id = event.quote_id
        log = logger.bind(webhook_event=event.event, quote_id=quote_id)

        if not self.debounce.try_claim(event.event, quote_id):
            WEBHOOK_EVENTS.labels(event=event.event, outcome="duplicate").inc()
            return WebhookResult(
                success=True,
                message=f"Duplicate webhook suppressed - quote {quote_id} {event.event} processed recently",
                event=event.event,
                quote_id=quote_id,
                action="duplicate",
                duplicate=True,
            )

        try:
            async with self._quote_lock(quote_id):
                if event.event == QUOTE_CREATED:
                    result = await self._handle_created(quote_id)
                elif event.event in (QUOTE_UPDATED, QUOTE_STATUS):
                    result = await self._handle_updated(quote_id)
                elif event.event == QUOTE_DELETED:
                    result = await self._handle_deleted(quote_id)
                else:
                    log.warning("webhook.unhandled_quote_event")
                    result = WebhookResult(
                        success=True,
                        message=f"Event acknowledged but not processed: {event.event}",
                    )
        except Exception as exc:
            log.exception("webhook.processing_failed", error=str(exc))
            result = WebhookResult(success=False, message=f"Failed to process quote {quote_id}: {exc}", action="failed")

        result.event = event.event
        result.quote_id = quote_id
        if not result.success:
            # let a redelivery retry instead of being suppressed as a duplicate
            self.debounce.release(event.event, quote_id)
        WEBHOOK_EVENTS.labels(event=event.event, outcome=result.action if result.success else "failed").inc()
        log.info("webhook.processed", success=result.success, action=result.action, message=result.message)
        return result

    # ── Deal lookup ──

    async def find_existing_deal(self, quote_id: int, attempts: int | None = None) -> CachedItem | None:
        """Cache first, then up to ``attempts`` board searches with growing delay."""
        cached = self.existence.get(quote_id)
        if cached is not None:
            logger.info("webhook.deal_cache_hit", quote_id=quote_id, item_id=cached.item_id)
            return cached

        attempts = attempts or self._check_attempts
        for attempt in range(1, attempts + 1):
            if attempt > 1:
                await self._sleep(self._check_delay * attempt)
            item = await self._deals.find(self._sync.boards.deals, quote_id)
            if item is not None:
                logger.info("webhook.deal_found", quote_id=quote_id, item_id=item.id, attempt=attempt)
                return self.existence.remember(quote_id, item.id, item.name)
            logger.debug("webhook.deal_not_found", quote_id=quote_id, attempt=attempt, attempts=attempts)
        return None

    # ── Handlers ──

    @staticmethod
    def _from_sync(result: SyncResult, action: str) -> WebhookResult:
        if result.skipped:
            action = "skipped"
        return WebhookResult(
            success=result.success,
            message=result.message,
            action=action if result.success else "failed",
            deal_item_id=result.deal_item_id,
        )

    async def _handle_created(self, quote_id: int) -> WebhookResult:
        quote = await self._source.get_quote(quote_id)
        skipped = self._sync.skipped_result(quote)
        if skipped is not None:
            return self._from_sync(skipped, "skipped")

        existing = await self.find_existing_deal(quote_id)
        if existing is not None:
            logger.warning("webhook.duplicate_creation_prevented", quote_id=quote_id, item_id=existing.item_id)
            return WebhookResult(
                success=True,
                message=f"Quote {quote_id} already exists - duplicate creation prevented",
                action="exists",
                deal_item_id=existing.item_id,
            )
        return await self._create(quote)

    async def _create(self, quote: Quote) -> WebhookResult:
        # Only reached after find_existing_deal came back empty.
        result = await self._sync.sync_fetched_quote(quote, deal_absent=True)
        if result.deal_item_id:
            self.existence.remember(quote.id, result.deal_item_id, f"Quote #{quote.id}")
        return self._from_sync(result, "created")

    async def _handle_updated(self, quote_id: int) -> WebhookResult:
        quote = await self._source.get_quote(quote_id)
        skipped = self._sync.skipped_result(quote)
        if skipped is not None:
            return self._from_sync(skipped, "skipped")

        existing = await self.find_existing_deal(quote_id)
        if existing is None:
            logger.info("webhook.update_treated_as_create", quote_id=quote_id)
            return await self._create(quote)

        result = await self._sync.update_existing_deal(quote, existing.item_id)
        if result.success:
            self.existence.remember(quote_id, existing.item_id, existing.name)
        return self._from_sync(result, "updated")

    async def _handle_deleted(self, quote_id: int) -> WebhookResult:
        existing = await self.find_existing_deal(quote_id, attempts=1)
        if existing is None:
            return WebhookResult(
                success=True,
                message=f"Quote {quote_id} has no deal on the board - nothing to delete",
                action="absent",
            )
        await self._monday.delete_item(existing.item_id)
        self.existence.evict(quote_id)
        return WebhookResult(
            success=True,
            message=f"Deal {existing.item_id} for quote {quote_id} deleted",
            action="deleted",
            deal_item_id=existing.item_id,
        )
