"""Pydantic schemas for the quote sync.

Defines:
- simPRO records: Quote and its references, CustomerDetail, ContactDetail
- Sync payloads: AccountPayload, ContactPayload, DealPayload, SyncMapping
- Results: UpsertOutcome, SyncMetrics, SyncResult, WebhookResult, HealthReport
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from src.quotesync.sync.stages import BoardStage


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── simPRO records ──────────────────────────────────────────────────────────


class _SimproModel(BaseModel):
    """simPRO JSON uses PascalCase keys; unknown keys are ignored."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class QuoteStatus(_SimproModel):
    id: int | None = Field(default=None, alias="ID")
    name: str | None = Field(default=None, alias="Name")


class QuoteTotal(_SimproModel):
    ex_tax: float | None = Field(default=None, alias="ExTax")
    inc_tax: float | None = Field(default=None, alias="IncTax", validation_alias=AliasChoices("IncTax", "InTax"))


class CustomerRef(_SimproModel):
    id: int = Field(alias="ID")
    company_name: str | None = Field(default=None, alias="CompanyName")
    given_name: str | None = Field(default=None, alias="GivenName")
    family_name: str | None = Field(default=None, alias="FamilyName")

    @property
    def display_name(self) -> str:
        if self.company_name and self.company_name.strip():
            return self.company_name.strip()
        return " ".join(p for p in ((self.given_name or "").strip(), (self.family_name or "").strip()) if p)


class ContactRef(_SimproModel):
    id: int = Field(alias="ID")
    name: str | None = Field(default=None, alias="Name")
    given_name: str | None = Field(default=None, alias="GivenName")
    family_name: str | None = Field(default=None, alias="FamilyName")

    @property
    def full_name(self) -> str:
        """Given + family name; empty when both are blank."""
        return " ".join(p for p in ((self.given_name or "").strip(), (self.family_name or "").strip()) if p)


class SiteRef(_SimproModel):
    id: int = Field(alias="ID")
    name: str | None = Field(default=None, alias="Name")


class StaffRef(_SimproModel):
    id: int | None = Field(default=None, alias="ID")
    name: str | None = Field(default=None, alias="Name")


class Quote(_SimproModel):
    """A simPRO quote, as returned by the list or detail endpoint."""

    id: int = Field(alias="ID")
    name: str | None = Field(default=None, alias="Name")
    description: str | None = Field(default=None, alias="Description")
    stage: str | None = Field(default=None, alias="Stage")
    status: QuoteStatus | None = Field(default=None, alias="Status")
    total: QuoteTotal | None = Field(default=None, alias="Total")
    due_date: date | None = Field(default=None, alias="DueDate")
    date_issued: date | None = Field(default=None, alias="DateIssued")
    is_closed: bool = Field(default=False, alias="IsClosed")
    customer: CustomerRef | None = Field(default=None, alias="Customer")
    customer_contact: ContactRef | None = Field(default=None, alias="CustomerContact")
    site: SiteRef | None = Field(default=None, alias="Site")
    site_contact: ContactRef | None = Field(default=None, alias="SiteContact")
    salesperson: StaffRef | None = Field(default=None, alias="Salesperson")

    @field_validator("status", mode="before")
    @classmethod
    def _status_from_string(cls, value: Any) -> Any:
        if isinstance(value, str):
            return {"Name": value}
        return value

    @field_validator("due_date", "date_issued", mode="before")
    @classmethod
    def _date_prefix(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = value.strip()
            return value[:10] or None
        return value

    @field_validator("is_closed", mode="before")
    @classmethod
    def _none_is_open(cls, value: Any) -> Any:
        return False if value is None else value

    @field_validator("customer_contact", "site_contact", "customer", "site", "salesperson", mode="before")
    @classmethod
    def _empty_ref_is_none(cls, value: Any) -> Any:
        if isinstance(value, dict) and not value.get("ID"):
            return None
        return value

    @property
    def status_name(self) -> str:
        return (self.status.name or "") if self.status else ""

    @property
    def total_ex_tax(self) -> float | None:
        return self.total.ex_tax if self.total else None


class Address(_SimproModel):
    address: str | None = Field(default=None, alias="Address")
    city: str | None = Field(default=None, alias="City")
    state: str | None = Field(default=None, alias="State")
    postal_code: str | None = Field(default=None, alias="PostalCode")

    def one_line(self) -> str:
        parts = [self.address, self.city, self.state, self.postal_code]
        return ", ".join(p.strip() for p in parts if p and p.strip())


class CustomerDetail(_SimproModel):
    id: int = Field(alias="ID")
    company_name: str | None = Field(default=None, alias="CompanyName")
    email: str | None = Field(default=None, alias="Email")
    phone: str | None = Field(default=None, alias="Phone")
    alt_phone: str | None = Field(default=None, alias="AltPhone")
    address: Address | None = Field(default=None, alias="Address")


class ContactDetail(_SimproModel):
    id: int = Field(alias="ID")
    email: str | None = Field(default=None, alias="Email")
    work_phone: str | None = Field(default=None, alias="WorkPhone")
    cell_phone: str | None = Field(default=None, alias="CellPhone")
    department: str | None = Field(default=None, alias="Department")
    position: str | None = Field(default=None, alias="Position")


# ── Sync payloads ───────────────────────────────────────────────────────────


class AccountPayload(BaseModel):
    foreign_id: str
    name: str
    description: str | None = None
    notes: str | None = None


class ContactPayload(BaseModel):
    foreign_id: str
    name: str
    role: str  # "customer" or "site"
    email: str | None = None
    phone: str | None = None
    department: str | None = None
    position: str | None = None
    notes: str | None = None


class DealPayload(BaseModel):
    foreign_id: str
    name: str
    value: float | None = None
    stage: BoardStage = BoardStage.discovery
    close_date: date | None = None
    salesperson: str | None = None
    owner_user_id: int | None = None
    notes: str | None = None


class SyncMapping(BaseModel):
    """Everything one quote becomes on the boards."""

    account: AccountPayload
    contacts: list[ContactPayload] = Field(default_factory=list)
    deal: DealPayload


# ── Results ─────────────────────────────────────────────────────────────────


class UpsertOutcome(BaseModel):
    item_id: str
    created: bool
    updated_columns: list[str] = Field(default_factory=list)


class SyncMetrics(BaseModel):
    """Per-kind counters for one sync run."""

    quotes_processed: int = 0
    quotes_skipped: int = 0
    accounts_created: int = 0
    accounts_reused: int = 0
    contacts_created: int = 0
    contacts_reused: int = 0
    deals_created: int = 0
    deals_updated: int = 0
    links_failed: int = 0


class SyncResult(BaseModel):
    """Structured result of a batch or single-quote sync."""

    success: bool
    message: str
    timestamp: datetime = Field(default_factory=_utcnow)
    metrics: SyncMetrics = Field(default_factory=SyncMetrics)
    errors: list[str] = Field(default_factory=list)
    skipped: bool = False
    reason: str | None = None
    deal_item_id: str | None = None


class WebhookResult(BaseModel):
    success: bool
    message: str
    event: str = ""
    quote_id: int | None = None
    action: str = "ignored"
    deal_item_id: str | None = None
    duplicate: bool = False
    timestamp: datetime = Field(default_factory=_utcnow)


class SystemHealth(BaseModel):
    name: str
    healthy: bool
    response_ms: float
    error: str | None = None


class HealthReport(BaseModel):
    healthy: bool
    systems: list[SystemHealth] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=_utcnow)
