"""Find board items by the foreign id stored in a text column.

monday has no server-side equality filter on arbitrary text columns, so
lookup is a client-side scan over cursor-paginated pages with the narrowest
possible column projection. The ``ItemLookup`` interface lets a real index
replace the scan without touching the upserters.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass, field

import structlog

from src.quotesync.clients.monday import MondayClient

logger = structlog.get_logger(__name__)

DEFAULT_PAGE_SIZE = 100
DEFAULT_MAX_PAGES = 200


def _column_text(cv: dict) -> str:
    # Board-relation columns report a null text; their links are in linked_item_ids.
    if "linked_item_ids" in cv:
        return ", ".join(str(i) for i in cv.get("linked_item_ids") or [])
    return cv.get("text") or ""


@dataclass
class BoardItem:
    """A board item with the subset of column texts that were requested."""

    id: str
    name: str
    columns: dict[str, str] = field(default_factory=dict)

    def text(self, column_id: str) -> str:
        return (self.columns.get(column_id) or "").strip()

    @classmethod
    def from_api(cls, raw: dict) -> BoardItem:
        columns = {cv["id"]: _column_text(cv) for cv in raw.get("column_values") or [] if cv.get("id")}
        return cls(id=str(raw.get("id")), name=raw.get("name") or "", columns=columns)


class ItemLookup(ABC):
    """Abstract foreign-id lookup over a board."""

    @abstractmethod
    async def find_by_foreign_id(
        self,
        board_id: str,
        foreign_id: str | int,
        column_id: str,
        extra_columns: Sequence[str] = (),
    ) -> BoardItem | None:
        """Return the item whose ``column_id`` text equals ``foreign_id``, or None."""
        ...

    @abstractmethod
    async def find_unlinked_by_name(
        self,
        board_id: str,
        name: str,
        column_id: str,
    ) -> BoardItem | None:
        """Return an item named ``name`` whose ``column_id`` is blank, or None."""
        ...


class BoardScanResolver(ItemLookup):
    """Linear scan over ``items_page`` / ``next_items_page``.

    Stops on the first match, when no cursor is returned, when a cursor
    repeats, or at ``max_pages``.

    Args:
        client: monday client.
        page_size: Items per page.
        max_pages: Safety ceiling on pages fetched per lookup.
    """

    def __init__(
        self,
        client: MondayClient,
        *,
        page_size: int = DEFAULT_PAGE_SIZE,
        max_pages: int = DEFAULT_MAX_PAGES,
    ) -> None:
        self._client = client
        self._page_size = page_size
        self._max_pages = max_pages

    async def _scan(self, board_id: str, column_ids: Sequence[str], predicate) -> BoardItem | None:
        cursor: str | None = None
        seen_cursors: set[str] = set()
        pages = 0
        while pages < self._max_pages:
            items, next_cursor = await self._client.items_page(
                board_id,
                cursor=cursor,
                limit=self._page_size,
                column_ids=column_ids,
            )
            pages += 1
            for raw in items:
                item = BoardItem.from_api(raw)
                if predicate(item):
                    logger.debug("resolver.match", board_id=board_id, item_id=item.id, pages=pages)
                    return item
            if not next_cursor:
                return None
            if next_cursor in seen_cursors:
                logger.warning("resolver.cursor_cycle", board_id=board_id, pages=pages)
                return None
            seen_cursors.add(next_cursor)
            cursor = next_cursor
        logger.warning("resolver.page_ceiling_reached", board_id=board_id, max_pages=self._max_pages)
        return None

    async def find_by_foreign_id(
        self,
        board_id: str,
        foreign_id: str | int,
        column_id: str,
        extra_columns: Sequence[str] = (),
    ) -> BoardItem | None:
        wanted = str(foreign_id).strip()
        if not wanted:
            return None
        columns = [column_id, *[c for c in extra_columns if c and c != column_id]]
        return await self._scan(board_id, columns, lambda item: item.text(column_id) == wanted)

    async def find_unlinked_by_name(
        self,
        board_id: str,
        name: str,
        column_id: str,
    ) -> BoardItem | None:
        wanted = name.strip().casefold()
        if not wanted:
            return None
        return await self._scan(
            board_id,
            [column_id],
            lambda item: item.name.strip().casefold() == wanted and not item.text(column_id),
        )
