"""Typed monday.com column values.

Each board column kind has its own value model; ``to_column_value`` renders
the JSON shape monday expects for that kind. Email and phone are validated
when the model is built, so an invalid value can never reach a request:
``ColumnValues`` logs and omits anything that fails.
"""

from __future__ import annotations

import re
from datetime import date
from typing import Annotated, Any, Literal, Union

import structlog
from pydantic import BaseModel, Field, ValidationError, field_validator

from src.quotesync.clients.errors import FieldValidationError

logger = structlog.get_logger(__name__)

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
MIN_PHONE_LENGTH = 8
DEFAULT_PHONE_COUNTRY = "AU"


# ── Cleaning rules ───────────────────────────────────────────────────────────


def clean_email(raw: str | None) -> str:
    """Trim, lowercase and validate an email address.

    Raises:
        FieldValidationError: When the value is empty or not local@domain.tld.
    """
    value = (raw or "").strip().lower()
    if not value:
        raise FieldValidationError("email", raw, "empty")
    if not EMAIL_PATTERN.match(value):
        raise FieldValidationError("email", raw, "does not match local@domain.tld")
    return value


def clean_phone(raw: str | None) -> str:
    """Strip everything except digits and a leading ``+``.

    Raises:
        FieldValidationError: When fewer than 8 characters remain.
    """
    text = re.sub(r"\s+", "", raw or "")
    leading_plus = text.startswith("+")
    digits = re.sub(r"\D", "", text)
    value = f"+{digits}" if leading_plus and digits else digits
    if len(value) < MIN_PHONE_LENGTH:
        raise FieldValidationError("phone", raw, f"fewer than {MIN_PHONE_LENGTH} characters")
    return value


# ── Column value models ──────────────────────────────────────────────────────


class TextValue(BaseModel):
    kind: Literal["text"] = "text"
    text: str

    def to_column_value(self) -> Any:
        return self.text


class NumberValue(BaseModel):
    kind: Literal["number"] = "number"
    number: float

    def to_column_value(self) -> Any:
        if self.number.is_integer():
            return int(self.number)
        return self.number


class EmailValue(BaseModel):
    kind: Literal["email"] = "email"
    email: str

    @field_validator("email")
    @classmethod
    def _valid_email(cls, value: str) -> str:
        return clean_email(value)

    def to_column_value(self) -> Any:
        return {"email": self.email, "text": self.email}


class PhoneValue(BaseModel):
    kind: Literal["phone"] = "phone"
    phone: str
    country: str = DEFAULT_PHONE_COUNTRY

    @field_validator("phone")
    @classmethod
    def _valid_phone(cls, value: str) -> str:
        return clean_phone(value)

    def to_column_value(self) -> Any:
        return {"phone": self.phone, "countryShortName": self.country}


class RelationValue(BaseModel):
    """Board-relation column: linked item ids as integers."""

    kind: Literal["relation"] = "relation"
    item_ids: list[int]

    @field_validator("item_ids", mode="before")
    @classmethod
    def _parse_ids(cls, value: Any) -> list[int]:
        return [int(str(item_id)) for item_id in value]

    def to_column_value(self) -> Any:
        return {"item_ids": self.item_ids}


class DateValue(BaseModel):
    kind: Literal["date"] = "date"
    value: date

    def to_column_value(self) -> Any:
        return {"date": self.value.isoformat()}


class StatusValue(BaseModel):
    """Status column set by positional index or by label."""

    kind: Literal["status"] = "status"
    index: int | None = None
    label: str | None = None

    def to_column_value(self) -> Any:
        if self.index is not None:
            return {"index": self.index}
        return {"label": self.label or ""}


class PeopleValue(BaseModel):
    kind: Literal["people"] = "people"
    user_ids: list[int]

    def to_column_value(self) -> Any:
        return {"personsAndTeams": [{"id": uid, "kind": "person"} for uid in self.user_ids]}


FieldValue = Annotated[
    Union[
        TextValue,
        NumberValue,
        EmailValue,
        PhoneValue,
        RelationValue,
        DateValue,
        StatusValue,
        PeopleValue,
    ],
    Field(discriminator="kind"),
]


# ── Column map builder ───────────────────────────────────────────────────────


class ColumnValues:
    """Ordered column-id -> typed value map for create/update calls.

    ``add_*`` helpers validate as they go; rejected values are logged and
    left out, and blank inputs are silently skipped.
    """

    def __init__(self, phone_country: str = DEFAULT_PHONE_COUNTRY) -> None:
        self._values: dict[str, FieldValue] = {}
        self._phone_country = phone_country

    def __contains__(self, column_id: str) -> bool:
        return column_id in self._values

    def __len__(self) -> int:
        return len(self._values)

    def get(self, column_id: str) -> FieldValue | None:
        return self._values.get(column_id)

    def set(self, column_id: str, value: FieldValue) -> ColumnValues:
        if column_id:
            self._values[column_id] = value
        return self

    def add_text(self, column_id: str, text: str | None) -> ColumnValues:
        if text is not None and str(text).strip():
            self.set(column_id, TextValue(text=str(text).strip()))
        return self

    def add_number(self, column_id: str, number: float | None) -> ColumnValues:
        if number is not None:
            self.set(column_id, NumberValue(number=number))
        return self

    def add_email(self, column_id: str, raw: str | None) -> ColumnValues:
        if raw is None or not str(raw).strip():
            return self
        try:
            self.set(column_id, EmailValue(email=raw))
        except ValidationError:
            logger.warning("fields.invalid_email_omitted", column_id=column_id, value=raw)
        return self

    def add_phone(self, column_id: str, raw: str | None) -> ColumnValues:
        if raw is None or not str(raw).strip():
            return self
        try:
            self.set(column_id, PhoneValue(phone=raw, country=self._phone_country))
        except ValidationError:
            logger.warning("fields.invalid_phone_omitted", column_id=column_id, value=raw)
        return self

    def add_relation(self, column_id: str, item_ids: list[str]) -> ColumnValues:
        ids = [item_id for item_id in item_ids if item_id]
        if ids:
            self.set(column_id, RelationValue(item_ids=ids))
        return self

    def add_date(self, column_id: str, value: date | None) -> ColumnValues:
        if value is not None:
            self.set(column_id, DateValue(value=value))
        return self

    def add_status_index(self, column_id: str, index: int) -> ColumnValues:
        return self.set(column_id, StatusValue(index=index))

    def add_people(self, column_id: str, user_id: int | None) -> ColumnValues:
        if user_id is not None:
            self.set(column_id, PeopleValue(user_ids=[user_id]))
        return self

    def to_payload(self) -> dict[str, Any]:
        """Render the JSON ``column_values`` object for monday."""
        return {column_id: value.to_column_value() for column_id, value in self._values.items()}
