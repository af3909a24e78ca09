"""Quote sync orchestrator.

Drives simPRO quotes onto the monday boards in two modes sharing one
pipeline (map -> account -> contacts -> deal -> links):

- batch: list open quotes, filter by value, fetch details for survivors,
  classify, then process sequentially
- single quote: fetch one quote, classify, process or report skipped

Failures are contained at the narrowest useful boundary: a failing entity
does not stop its siblings, a failing quote does not stop the batch, and a
failing link is only logged. Only an unreachable remote system aborts a run.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import datetime, timezone

import structlog

from src.quotesync.clients.monday import MondayClient
from src.quotesync.core.monitoring import SYNC_RECORDS
from src.quotesync.sync.classification import ClassificationPolicy, classify, passes_value_filter
from src.quotesync.sync.fields import RelationValue
from src.quotesync.sync.mapping import to_sync_mapping
from src.quotesync.sync.owners import OwnerDirectory
from src.quotesync.sync.resolver import BoardItem
from src.quotesync.sync.schemas import (
    HealthReport,
    Quote,
    SyncMapping,
    SyncMetrics,
    SyncResult,
    SystemHealth,
    UpsertOutcome,
)
from src.quotesync.sync.source import QuoteSource
from src.quotesync.sync.upsert import AccountUpserter, ContactUpserter, DealUpserter

logger = structlog.get_logger(__name__)

HEALTH_CHECK_FAILED = "health_check_failed"


@dataclass(frozen=True)
class BoardIds:
    accounts: str
    contacts: str
    deals: str


@dataclass
class QuoteOutcome:
    """What processing one quote produced on the boards."""

    deal: UpsertOutcome | None = None
    account: UpsertOutcome | None = None
    contacts: list[UpsertOutcome] | None = None


class SyncService:
    """Orchestrates simPRO -> monday sync for batch and single-quote runs.

    Args:
        source: Typed simPRO reader.
        monday: monday client (health checks and relation links).
        policy: Classification policy.
        boards: Board ids for accounts, contacts and deals.
        accounts, contacts, deals: Entity upserters.
        owners: Salesperson -> monday user directory.
    """

    def __init__(
        self,
        source: QuoteSource,
        monday: MondayClient,
        policy: ClassificationPolicy,
        boards: BoardIds,
        accounts: AccountUpserter,
        contacts: ContactUpserter,
        deals: DealUpserter,
        owners: OwnerDirectory | None = None,
    ) -> None:
        self._source = source
        self._monday = monday
        self.policy = policy
        self.boards = boards
        self._accounts = accounts
        self._contacts = contacts
        self._deals = deals
        self._owners = owners or OwnerDirectory()

    # ── Health ──

    async def _probe(self, name: str, check) -> SystemHealth:
        start = time.perf_counter()
        error = None
        try:
            healthy = await check()
        except Exception as exc:
            healthy, error = False, str(exc)
        elapsed = round((time.perf_counter() - start) * 1000, 2)
        if not healthy and error is None:
            error = f"{name} connection test failed"
        return SystemHealth(name=name, healthy=healthy, response_ms=elapsed, error=error)

    async def health_check(self) -> HealthReport:
        """Probe simPRO and monday connectivity."""
        systems = [
            await self._probe("simpro", self._source.test_connection),
            await self._probe("monday", self._monday.test_connection),
        ]
        report = HealthReport(healthy=all(s.healthy for s in systems), systems=systems)
        logger.info(
            "sync.health_checked",
            healthy=report.healthy,
            systems={s.name: s.healthy for s in systems},
        )
        return report

    # ── Batch mode ──

    async def sync_all(self, limit: int | None = None) -> SyncResult:
        """Sync every eligible open quote, up to ``limit`` quotes.

        Never raises; failures are reported on the result.
        """
        metrics = SyncMetrics()
        errors: list[str] = []
        try:
            report = await self.health_check()
            if not report.healthy:
                failed = [f"{s.name}: {s.error}" for s in report.systems if not s.healthy]
                logger.error("sync.aborted_unhealthy", failed=failed)
                return SyncResult(
                    success=False,
                    message="Health check failed; sync not attempted",
                    errors=failed,
                    reason=HEALTH_CHECK_FAILED,
                )

            source = self._source.scoped()
            listed = await source.list_open_quotes()
            candidates = [q for q in listed if passes_value_filter(q.total_ex_tax, self.policy.minimum_value)]
            metrics.quotes_skipped += len(listed) - len(candidates)
            logger.info("sync.quotes_listed", listed=len(listed), above_minimum=len(candidates))

            eligible: list[Quote] = []
            for summary in candidates:
                if limit is not None and len(eligible) >= limit:
                    break
                try:
                    quote = await source.get_quote(summary.id)
                except Exception as exc:
                    errors.append(f"Quote {summary.id}: detail fetch failed: {exc}")
                    logger.error("sync.quote_fetch_failed", quote_id=summary.id, error=str(exc))
                    continue
                ok, reason = classify(quote, self.policy)
                if ok:
                    eligible.append(quote)
                else:
                    metrics.quotes_skipped += 1
                    logger.debug("sync.quote_ineligible", quote_id=quote.id, reason=reason)

            for quote in eligible:
                try:
                    await self.process_quote(quote, metrics, errors, source=source)
                except Exception as exc:
                    errors.append(f"Quote {quote.id}: {exc}")
                    logger.error("sync.quote_failed", quote_id=quote.id, error=str(exc))
        except Exception as exc:
            logger.exception("sync.batch_failed", error=str(exc))
            errors.append(f"Batch sync failed: {exc}")
            return SyncResult(success=False, message=f"Sync failed: {exc}", metrics=metrics, errors=errors)

        return self._result(metrics, errors)

    @staticmethod
    def _result(metrics: SyncMetrics, errors: list[str]) -> SyncResult:
        if errors:
            message = f"Partial success: {metrics.quotes_processed} quotes synced with {len(errors)} errors"
        else:
            message = f"Synced {metrics.quotes_processed} quotes"
        logger.info(
            "sync.run_complete",
            processed=metrics.quotes_processed,
            skipped=metrics.quotes_skipped,
            errors=len(errors),
        )
        return SyncResult(success=not errors, message=message, metrics=metrics, errors=errors)

    # ── Single-quote mode ──

    async def sync_quote(self, quote_id: int) -> SyncResult:
        """Sync one quote by id; ineligible quotes come back as skipped."""
        try:
            quote = await self._source.get_quote(quote_id)
        except Exception as exc:
            logger.error("sync.quote_fetch_failed", quote_id=quote_id, error=str(exc))
            return SyncResult(
                success=False,
                message=f"Quote {quote_id} failed: {exc}",
                errors=[f"Quote {quote_id}: {exc}"],
            )
        return await self.sync_fetched_quote(quote)

    def skipped_result(self, quote: Quote) -> SyncResult | None:
        """A skipped result when ``quote`` is ineligible, otherwise None."""
        ok, reason = classify(quote, self.policy)
        if ok:
            return None
        logger.info("sync.quote_skipped", quote_id=quote.id, reason=reason)
        return SyncResult(
            success=True,
            message=f"Quote {quote.id} skipped: {reason}",
            metrics=SyncMetrics(quotes_skipped=1),
            skipped=True,
            reason=reason,
        )

    async def sync_fetched_quote(
        self,
        quote: Quote,
        existing_deal_id: str | None = None,
        *,
        deal_absent: bool = False,
    ) -> SyncResult:
        """Classify and process a quote that has already been fetched.

        ``deal_absent`` tells the deal upsert that the caller has just searched
        the deals board and found nothing, so it creates without scanning again.
        """
        skipped = self.skipped_result(quote)
        if skipped is not None:
            return skipped

        metrics = SyncMetrics()
        errors: list[str] = []
        try:
            outcome = await self.process_quote(
                quote, metrics, errors, existing_deal_id=existing_deal_id, deal_absent=deal_absent
            )
        except Exception as exc:
            logger.error("sync.quote_failed", quote_id=quote.id, error=str(exc))
            errors.append(f"Quote {quote.id}: {exc}")
            return SyncResult(success=False, message=f"Quote {quote.id} failed: {exc}", metrics=metrics, errors=errors)

        result = self._result(metrics, errors)
        result.deal_item_id = outcome.deal.item_id if outcome.deal else None
        return result

    async def update_existing_deal(self, quote: Quote, item_id: str) -> SyncResult:
        """Apply a status change to a known deal (terminal stages only)."""
        skipped = self.skipped_result(quote)
        if skipped is not None:
            skipped.deal_item_id = item_id
            return skipped

        metrics = SyncMetrics()
        try:
            mapping = await self.build_mapping(quote)
            outcome = await self._deals.update_existing(
                self.boards.deals, BoardItem(id=item_id, name=mapping.deal.name), mapping.deal
            )
        except Exception as exc:
            logger.error("sync.deal_update_failed", quote_id=quote.id, item_id=item_id, error=str(exc))
            return SyncResult(
                success=False,
                message=f"Quote {quote.id} update failed: {exc}",
                errors=[f"Quote {quote.id}: {exc}"],
                deal_item_id=item_id,
            )

        if outcome.updated_columns:
            metrics.deals_updated += 1
        metrics.quotes_processed += 1
        stage = mapping.deal.stage.value
        return SyncResult(
            success=True,
            message=f"Deal {item_id} stage set to {stage}" if outcome.updated_columns else f"Deal {item_id} unchanged",
            metrics=metrics,
            deal_item_id=item_id,
        )

    # ── Pipeline ──

    async def build_mapping(self, quote: Quote, source: QuoteSource | None = None) -> SyncMapping:
        source = source or self._source.scoped()
        customer = await source.get_customer(quote.customer.id) if quote.customer else None
        contact_details = await source.contact_details(quote)
        return to_sync_mapping(
            quote,
            customer=customer,
            contact_details=contact_details,
            owners=self._owners,
            now=datetime.now(timezone.utc),
        )

    async def process_quote(
        self,
        quote: Quote,
        metrics: SyncMetrics,
        errors: list[str],
        existing_deal_id: str | None = None,
        *,
        deal_absent: bool = False,
        source: QuoteSource | None = None,
    ) -> QuoteOutcome:
        """Map one eligible quote and upsert account, contacts, deal and links.

        Entity failures are appended to ``errors`` and do not stop siblings.
        Mapping failures raise.
        """
        mapping = await self.build_mapping(quote, source)
        outcome = QuoteOutcome(contacts=[])
        log = logger.bind(quote_id=quote.id)

        try:
            outcome.account = await self._accounts.upsert(self.boards.accounts, mapping.account)
            if outcome.account.created:
                metrics.accounts_created += 1
            else:
                metrics.accounts_reused += 1
        except Exception as exc:
            errors.append(f"Quote {quote.id}: account '{mapping.account.name}' failed: {exc}")
            log.error("sync.account_failed", error=str(exc))

        account_id = outcome.account.item_id if outcome.account else None
        for contact in mapping.contacts:
            try:
                result = await self._contacts.upsert(self.boards.contacts, contact, account_item_id=account_id)
            except Exception as exc:
                errors.append(f"Quote {quote.id}: contact '{contact.name}' failed: {exc}")
                log.error("sync.contact_failed", contact_id=contact.foreign_id, error=str(exc))
                continue
            outcome.contacts.append(result)
            if result.created:
                metrics.contacts_created += 1
            else:
                metrics.contacts_reused += 1

        try:
            outcome.deal = await self._deals.upsert(
                self.boards.deals, mapping.deal, existing_item_id=existing_deal_id, known_absent=deal_absent
            )
        except Exception as exc:
            errors.append(f"Quote {quote.id}: deal '{mapping.deal.name}' failed: {exc}")
            log.error("sync.deal_failed", error=str(exc))
            return outcome

        if outcome.deal.created:
            metrics.deals_created += 1
        elif outcome.deal.updated_columns:
            metrics.deals_updated += 1

        metrics.links_failed += await self.link(outcome)
        metrics.quotes_processed += 1
        log.info(
            "sync.quote_synced",
            deal_item_id=outcome.deal.item_id,
            deal_created=outcome.deal.created,
            contacts=len(outcome.contacts),
        )
        return outcome

    # ── Relationship links ──

    async def _link(self, board_id: str, item_id: str, column_id: str, target_ids: list[str]) -> bool:
        if not column_id or not target_ids:
            return True
        value = RelationValue(item_ids=target_ids).to_column_value()
        try:
            await self._monday.change_column_value(board_id, item_id, column_id, value)
        except Exception as exc:
            SYNC_RECORDS.labels(kind="link", outcome="failed").inc()
            logger.warning(
                "sync.link_failed",
                board_id=board_id,
                item_id=item_id,
                column_id=column_id,
                error=str(exc),
            )
            return False
        return True

    async def link(self, outcome: QuoteOutcome) -> int:
        """Write deal -> account, deal -> contacts and contact -> deal relations.

        Links are written only from newly created items so relations edited
        on the board are never replaced. Returns the number of failed links.
        """
        deal = outcome.deal
        if deal is None:
            return 0
        deal_columns = self._deals.columns
        contact_columns = self._contacts.columns
        failures = 0

        if deal.created:
            if outcome.account and not await self._link(
                self.boards.deals, deal.item_id, deal_columns.account, [outcome.account.item_id]
            ):
                failures += 1
            contact_ids = [c.item_id for c in outcome.contacts or []]
            if not await self._link(self.boards.deals, deal.item_id, deal_columns.contacts, contact_ids):
                failures += 1

        for contact in outcome.contacts or []:
            if contact.created and not await self._link(
                self.boards.contacts, contact.item_id, contact_columns.deal, [deal.item_id]
            ):
                failures += 1
        return failures
