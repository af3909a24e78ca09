"""Typed reads from simPRO for the sync.

Wraps SimproClient: parses quotes into ``Quote`` models and fetches the
customer and contact details used for enrichment. Detail lookups are
memoised per ``QuoteSource`` instance. The long-lived instance hands out a
fresh ``scoped()`` copy for each run, so a batch run asks simPRO about a
customer or contact once while separate runs always see current details.
"""

from __future__ import annotations

import structlog
from pydantic import ValidationError

from src.quotesync.clients.errors import IntegrationError, RemoteError
from src.quotesync.clients.simpro import SimproClient
from src.quotesync.sync.schemas import ContactDetail, CustomerDetail, Quote

logger = structlog.get_logger(__name__)


class QuoteSource:
    """Reads quotes and their enrichment data from simPRO."""

    def __init__(self, client: SimproClient) -> None:
        self._client = client
        self._customers: dict[int, CustomerDetail | None] = {}
        self._contacts: dict[int, ContactDetail | None] = {}

    def scoped(self) -> QuoteSource:
        """A source sharing this client with empty lookup memos."""
        return QuoteSource(self._client)

    async def list_open_quotes(self) -> list[Quote]:
        """Minimal-projection list of open quotes; unparseable rows are skipped."""
        quotes: list[Quote] = []
        for raw in await self._client.list_open_quotes():
            try:
                quotes.append(Quote.model_validate(raw))
            except ValidationError as exc:
                logger.warning("source.quote_unparseable", quote_id=raw.get("ID"), error=str(exc))
        return quotes

    async def get_quote(self, quote_id: int) -> Quote:
        raw = await self._client.get_quote(quote_id)
        try:
            return Quote.model_validate(raw)
        except ValidationError as exc:
            raise RemoteError(f"simPRO quote {quote_id} is malformed: {exc}", system="simpro") from exc

    async def get_customer(self, customer_id: int) -> CustomerDetail | None:
        """Customer detail, or None when it cannot be fetched (enrichment is optional)."""
        if customer_id in self._customers:
            return self._customers[customer_id]
        try:
            detail = CustomerDetail.model_validate(await self._client.get_customer(customer_id))
        except (IntegrationError, ValidationError) as exc:
            logger.warning("source.customer_lookup_failed", customer_id=customer_id, error=str(exc))
            detail = None
        self._customers[customer_id] = detail
        return detail

    async def get_contact(self, contact_id: int) -> ContactDetail | None:
        if contact_id in self._contacts:
            return self._contacts[contact_id]
        try:
            detail = ContactDetail.model_validate(await self._client.get_contact(contact_id))
        except (IntegrationError, ValidationError) as exc:
            logger.warning("source.contact_lookup_failed", contact_id=contact_id, error=str(exc))
            detail = None
        self._contacts[contact_id] = detail
        return detail

    async def contact_details(self, quote: Quote) -> dict[int, ContactDetail]:
        details: dict[int, ContactDetail] = {}
        for ref in (quote.customer_contact, quote.site_contact):
            if ref is None or ref.id in details:
                continue
            detail = await self.get_contact(ref.id)
            if detail is not None:
                details[ref.id] = detail
        return details

    async def test_connection(self) -> bool:
        return await self._client.test_connection()
