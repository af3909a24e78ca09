"""Idempotent account / contact / deal upserts on monday boards.

Every upserter has the same shape: resolve the foreign id, reuse the item if
found, otherwise create it with a typed column map. The reuse path never
overwrites populated data:

- accounts: reused untouched (optionally adopted by name, see below)
- contacts: email, phone and account relation are backfilled only when
  empty; a rejected backfill is logged and the contact is still reused
- deals: only the stage column changes, and only for terminal stages
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass

import structlog

from src.quotesync.clients.monday import MondayClient
from src.quotesync.core.monitoring import SYNC_RECORDS
from src.quotesync.sync.fields import ColumnValues
from src.quotesync.sync.resolver import BoardItem, ItemLookup
from src.quotesync.sync.schemas import AccountPayload, ContactPayload, DealPayload, UpsertOutcome
from src.quotesync.sync.stages import board_stage_index, is_terminal

logger = structlog.get_logger(__name__)


# ── Column layouts ───────────────────────────────────────────────────────────


@dataclass(frozen=True)
class AccountColumns:
    foreign_id: str
    description: str = ""
    notes: str = ""


@dataclass(frozen=True)
class ContactColumns:
    foreign_id: str
    email: str = ""
    phone: str = ""
    notes: str = ""
    account: str = ""
    deal: str = ""


@dataclass(frozen=True)
class DealColumns:
    foreign_id: str
    value: str = ""
    stage: str = ""
    close_date: str = ""
    notes: str = ""
    contacts: str = ""
    account: str = ""
    owner: str = ""


# ── Base ─────────────────────────────────────────────────────────────────────


class EntityUpserter(ABC):
    """Shared wiring for the three entity upserters.

    Args:
        client: monday client used for create/update calls.
        lookup: Foreign-id resolver.
        phone_country: Country metadata attached to phone values.
    """

    kind: str = "entity"

    def __init__(self, client: MondayClient, lookup: ItemLookup, *, phone_country: str = "AU") -> None:
        self._client = client
        self._lookup = lookup
        self._phone_country = phone_country

    def _columns(self) -> ColumnValues:
        return ColumnValues(phone_country=self._phone_country)

    async def _create(self, board_id: str, name: str, columns: ColumnValues) -> UpsertOutcome:
        item_id = await self._client.create_item(board_id, name, columns.to_payload())
        SYNC_RECORDS.labels(kind=self.kind, outcome="created").inc()
        logger.info(f"upsert.{self.kind}_created", board_id=board_id, item_id=item_id, name=name)
        return UpsertOutcome(item_id=item_id, created=True)

    def _reused(self, item: BoardItem, updated: list[str] | None = None) -> UpsertOutcome:
        SYNC_RECORDS.labels(kind=self.kind, outcome="reused").inc()
        logger.info(f"upsert.{self.kind}_reused", item_id=item.id, updated_columns=updated or [])
        return UpsertOutcome(item_id=item.id, created=False, updated_columns=updated or [])

    @abstractmethod
    async def upsert(self, board_id: str, payload) -> UpsertOutcome:
        """Reuse or create the item for ``payload``."""
        ...


# ── Accounts ─────────────────────────────────────────────────────────────────


class AccountUpserter(EntityUpserter):
    """Accounts keyed by simPRO customer id.

    With ``adopt_by_name`` an existing account whose name matches the
    customer and whose foreign-id column is still blank is claimed by
    writing the id into it, instead of creating a duplicate company.
    """

    kind = "account"

    def __init__(
        self,
        client: MondayClient,
        lookup: ItemLookup,
        columns: AccountColumns,
        *,
        adopt_by_name: bool = False,
        phone_country: str = "AU",
    ) -> None:
        super().__init__(client, lookup, phone_country=phone_country)
        self.columns = columns
        self._adopt_by_name = adopt_by_name

    async def upsert(self, board_id: str, payload: AccountPayload) -> UpsertOutcome:
        existing = await self._lookup.find_by_foreign_id(board_id, payload.foreign_id, self.columns.foreign_id)
        if existing:
            return self._reused(existing)

        if self._adopt_by_name:
            unlinked = await self._lookup.find_unlinked_by_name(board_id, payload.name, self.columns.foreign_id)
            if unlinked:
                await self._client.change_column_value(
                    board_id, unlinked.id, self.columns.foreign_id, payload.foreign_id
                )
                logger.info("upsert.account_adopted", item_id=unlinked.id, foreign_id=payload.foreign_id)
                return self._reused(unlinked, [self.columns.foreign_id])

        columns = (
            self._columns()
            .add_text(self.columns.foreign_id, payload.foreign_id)
            .add_text(self.columns.description, payload.description)
            .add_text(self.columns.notes, payload.notes)
        )
        return await self._create(board_id, payload.name, columns)


# ── Contacts ─────────────────────────────────────────────────────────────────


class ContactUpserter(EntityUpserter):
    """Contacts keyed by simPRO contact id, linked to their account."""

    kind = "contact"

    def __init__(
        self,
        client: MondayClient,
        lookup: ItemLookup,
        columns: ContactColumns,
        *,
        phone_country: str = "AU",
    ) -> None:
        super().__init__(client, lookup, phone_country=phone_country)
        self.columns = columns

    def _candidate_values(self, payload: ContactPayload, account_item_id: str | None) -> ColumnValues:
        """Validated email / phone / account relation from the payload."""
        return (
            self._columns()
            .add_email(self.columns.email, payload.email)
            .add_phone(self.columns.phone, payload.phone)
            .add_relation(self.columns.account, [account_item_id] if account_item_id else [])
        )

    async def upsert(
        self,
        board_id: str,
        payload: ContactPayload,
        account_item_id: str | None = None,
    ) -> UpsertOutcome:
        backfillable = [c for c in (self.columns.email, self.columns.phone, self.columns.account) if c]
        existing = await self._lookup.find_by_foreign_id(
            board_id, payload.foreign_id, self.columns.foreign_id, extra_columns=backfillable
        )
        candidates = self._candidate_values(payload, account_item_id)

        if existing:
            return await self._backfill(board_id, existing, candidates)

        columns = candidates.add_text(self.columns.foreign_id, payload.foreign_id).add_text(
            self.columns.notes, payload.notes
        )
        return await self._create(board_id, payload.name, columns)

    async def _backfill(self, board_id: str, item: BoardItem, candidates: ColumnValues) -> UpsertOutcome:
        missing = [
            column_id
            for column_id in (self.columns.email, self.columns.phone, self.columns.account)
            if column_id in candidates and not item.text(column_id)
        ]
        if not missing:
            return self._reused(item)

        written: list[str] = []
        for column_id in missing:
            try:
                await self._client.change_column_value(
                    board_id, item.id, column_id, candidates.get(column_id).to_column_value()
                )
            except Exception as exc:
                logger.warning(
                    "upsert.contact_backfill_failed", item_id=item.id, column_id=column_id, error=str(exc)
                )
                continue
            written.append(column_id)
        if written:
            logger.info("upsert.contact_backfilled", item_id=item.id, columns=written)
        return self._reused(item, written)


# ── Deals ────────────────────────────────────────────────────────────────────


class DealUpserter(EntityUpserter):
    """Deals keyed by simPRO quote id.

    The stage is written in a second call after creation so a stage failure
    never loses the created deal.
    """

    kind = "deal"

    def __init__(
        self,
        client: MondayClient,
        lookup: ItemLookup,
        columns: DealColumns,
        *,
        phone_country: str = "AU",
    ) -> None:
        super().__init__(client, lookup, phone_country=phone_country)
        self.columns = columns

    async def find(self, board_id: str, foreign_id: str | int) -> BoardItem | None:
        return await self._lookup.find_by_foreign_id(board_id, foreign_id, self.columns.foreign_id)

    async def set_stage(self, board_id: str, item_id: str, payload: DealPayload) -> bool:
        """Write the stage column; failures are logged and reported as False."""
        if not self.columns.stage:
            return False
        value = self._columns().add_status_index(self.columns.stage, board_stage_index(payload.stage))
        try:
            await self._client.change_column_value(
                board_id, item_id, self.columns.stage, value.get(self.columns.stage).to_column_value()
            )
        except Exception as exc:
            logger.warning("upsert.deal_stage_failed", item_id=item_id, stage=payload.stage.value, error=str(exc))
            return False
        return True

    async def upsert(
        self,
        board_id: str,
        payload: DealPayload,
        existing_item_id: str | None = None,
        known_absent: bool = False,
    ) -> UpsertOutcome:
        if existing_item_id:
            existing: BoardItem | None = BoardItem(id=existing_item_id, name=payload.name)
        elif known_absent:
            existing = None
        else:
            existing = await self.find(board_id, payload.foreign_id)

        if existing:
            return await self.update_existing(board_id, existing, payload)

        columns = (
            self._columns()
            .add_text(self.columns.foreign_id, payload.foreign_id)
            .add_number(self.columns.value, payload.value)
            .add_date(self.columns.close_date, payload.close_date)
            .add_people(self.columns.owner, payload.owner_user_id)
            .add_text(self.columns.notes, payload.notes)
        )
        outcome = await self._create(board_id, payload.name, columns)
        if await self.set_stage(board_id, outcome.item_id, payload):
            outcome.updated_columns.append(self.columns.stage)
        return outcome

    async def update_existing(self, board_id: str, item: BoardItem, payload: DealPayload) -> UpsertOutcome:
        """Reuse path: only a terminal stage transition is written."""
        if not is_terminal(payload.stage):
            return self._reused(item)
        if await self.set_stage(board_id, item.id, payload):
            return self._reused(item, [self.columns.stage])
        return self._reused(item)
