"""Quote -> board payloads.

Pure reshaping: a classified quote plus its looked-up customer and contact
details become one account payload, zero to two contact payloads and one
deal payload.
"""

from __future__ import annotations

import re
from datetime import date, datetime, timezone

from src.quotesync.sync.owners import OwnerDirectory
from src.quotesync.sync.schemas import (
    AccountPayload,
    ContactDetail,
    ContactPayload,
    ContactRef,
    CustomerDetail,
    DealPayload,
    Quote,
    SyncMapping,
)
from src.quotesync.sync.stages import map_to_board_stage

_HTML_TAG = re.compile(r"<[^>]*>")
DESCRIPTION_LIMIT = 50
FALLBACK_DEAL_NAME = "Service"


class MappingError(ValueError):
    """The quote lacks data required to build board payloads."""


def clean_description(description: str | None, limit: int = DESCRIPTION_LIMIT) -> str:
    """Strip HTML tags and truncate to ``limit`` characters with an ellipsis."""
    text = _HTML_TAG.sub("", description or "").strip()
    if len(text) > limit:
        return text[:limit] + "..."
    return text


def deal_name(quote: Quote) -> str:
    label = (quote.name or "").strip() or clean_description(quote.description) or FALLBACK_DEAL_NAME
    return f"Quote #{quote.id} - {label}"


def close_date(quote: Quote, today: date) -> date:
    return quote.due_date or quote.date_issued or today


def _provenance(*parts: str, synced_at: datetime) -> str:
    lines = [p for p in parts if p]
    lines.append(f"Last synced from simPRO: {synced_at.strftime('%Y-%m-%d %H:%M UTC')}")
    return "\n".join(lines)


def account_description(quote: Quote, customer: CustomerDetail | None) -> str:
    address = customer.address.one_line() if customer and customer.address else ""
    lines = [
        f"Customer from simPRO (Quote {quote.id})",
        "",
        f"Email: {(customer.email if customer else None) or 'Not provided'}",
        f"Phone: {(customer.phone if customer else None) or 'Not provided'}",
        f"Alt Phone: {(customer.alt_phone if customer else None) or 'Not provided'}",
        f"Address: {address or 'Not provided'}",
    ]
    return "\n".join(lines)


def _contact_payload(
    quote: Quote,
    ref: ContactRef,
    role: str,
    detail: ContactDetail | None,
    synced_at: datetime,
) -> ContactPayload:
    site = f"Site: {quote.site.name}" if role == "site" and quote.site and quote.site.name else ""
    return ContactPayload(
        foreign_id=str(ref.id),
        name=ref.full_name,
        role=role,
        email=detail.email if detail else None,
        phone=(detail.work_phone or detail.cell_phone) if detail else None,
        department=detail.department if detail else None,
        position=detail.position if detail else None,
        notes=_provenance(
            f"simPRO {role} contact #{ref.id} for customer #{quote.customer.id}",
            site,
            synced_at=synced_at,
        ),
    )


def extract_contacts(
    quote: Quote,
    details: dict[int, ContactDetail] | None = None,
    synced_at: datetime | None = None,
) -> list[ContactPayload]:
    """Customer contact and site contact, skipping nameless ones.

    A site contact that is the same person as the customer contact is
    emitted once, in the customer role.
    """
    details = details or {}
    synced_at = synced_at or datetime.now(timezone.utc)
    contacts: list[ContactPayload] = []

    customer_ref = quote.customer_contact
    if customer_ref and customer_ref.full_name:
        contacts.append(
            _contact_payload(quote, customer_ref, "customer", details.get(customer_ref.id), synced_at)
        )

    site_ref = quote.site_contact
    if site_ref and site_ref.full_name:
        if customer_ref is None or site_ref.id != customer_ref.id:
            contacts.append(_contact_payload(quote, site_ref, "site", details.get(site_ref.id), synced_at))

    return contacts


def to_sync_mapping(
    quote: Quote,
    *,
    customer: CustomerDetail | None = None,
    contact_details: dict[int, ContactDetail] | None = None,
    owners: OwnerDirectory | None = None,
    now: datetime | None = None,
) -> SyncMapping:
    """Build the account, contact and deal payloads for one quote.

    Raises:
        MappingError: When the quote has no customer reference.
    """
    if quote.customer is None:
        raise MappingError(f"quote {quote.id} has no customer")

    now = now or datetime.now(timezone.utc)
    customer_name = quote.customer.display_name or f"Customer #{quote.customer.id}"
    salesperson = (quote.salesperson.name or "").strip() if quote.salesperson else ""

    account = AccountPayload(
        foreign_id=str(quote.customer.id),
        name=customer_name,
        description=account_description(quote, customer),
        notes=_provenance(f"simPRO customer #{quote.customer.id}", synced_at=now),
    )

    deal = DealPayload(
        foreign_id=str(quote.id),
        name=deal_name(quote),
        value=quote.total_ex_tax or 0,
        stage=map_to_board_stage(quote.status_name),
        close_date=close_date(quote, now.date()),
        salesperson=salesperson or None,
        owner_user_id=owners.resolve(salesperson) if owners else None,
        notes=_provenance(
            f"simPRO quote #{quote.id}",
            f"Status: {quote.status_name}" if quote.status_name else "",
            f"Site: {quote.site.name}" if quote.site and quote.site.name else "",
            f"Salesperson: {salesperson}" if salesperson else "",
            synced_at=now,
        ),
    )

    return SyncMapping(
        account=account,
        contacts=extract_contacts(quote, contact_details, now),
        deal=deal,
    )
