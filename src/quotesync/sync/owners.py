"""Salesperson name -> monday user id, from the configured static map."""

from __future__ import annotations

import re

import structlog

logger = structlog.get_logger(__name__)


def _loose(name: str) -> str:
    return re.sub(r"\s+", " ", name).strip().casefold()


class OwnerDirectory:
    """Resolves simPRO salesperson names to monday person ids.

    Exact match first, then case- and whitespace-insensitive.
    """

    def __init__(self, user_ids: dict[str, int] | None = None) -> None:
        self._exact = dict(user_ids or {})
        self._loose = {_loose(name): uid for name, uid in self._exact.items()}

    def resolve(self, salesperson: str | None) -> int | None:
        if not salesperson or not salesperson.strip():
            return None
        if salesperson in self._exact:
            return self._exact[salesperson]
        user_id = self._loose.get(_loose(salesperson))
        if user_id is None:
            logger.info("owners.salesperson_unmapped", salesperson=salesperson)
        return user_id
