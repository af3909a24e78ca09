"""Async GraphQL client for the monday.com v2 API.

One generic ``execute`` entry point plus thin helpers for the handful of
queries and mutations the sync needs (items page scan, create item, change
column value, delete item). Rate limiting is handled here: monday reports it
either as HTTP 429 or as a GraphQL error ("Complexity budget exhausted"),
with the wait either in ``error_data.retry_in_seconds`` or as free text
("reset in N seconds"). The shared RetryPolicy waits that long and retries
once; while a reset time is known, new calls sleep until it passes first.
"""

from __future__ import annotations

import asyncio
import json
import re
import time
from collections.abc import Awaitable, Callable, Sequence
from typing import Any

import httpx
import structlog

from src.quotesync.clients.errors import AuthError, RateLimitError, RemoteError, TransportError
from src.quotesync.clients.retry import (
    DEFAULT_RATE_LIMIT_WAIT_SECONDS,
    RetryPolicy,
    monday_retry_policy,
)
from src.quotesync.core.monitoring import MONDAY_RATE_LIMIT_WAITS

logger = structlog.get_logger(__name__)

MONDAY_API_URL = "https://api.monday.com/v2"

_RESET_IN_PATTERN = re.compile(r"reset in (\d+(?:\.\d+)?) seconds?", re.IGNORECASE)
_RATE_LIMIT_MARKERS = ("429", "too many requests", "complexity budget exhausted", "rate limit")

# ── GraphQL documents ──

_ITEMS_PAGE_QUERY = """
query ($boardId: [ID!], $limit: Int!, $columnIds: [String!]) {
  boards(ids: $boardId) {
    items_page(limit: $limit) {
      cursor
      items {
        id name
        column_values(ids: $columnIds) { id text value ... on BoardRelationValue { linked_item_ids } }
      }
    }
  }
}
"""

_NEXT_ITEMS_PAGE_QUERY = """
query ($cursor: String!, $limit: Int!, $columnIds: [String!]) {
  next_items_page(cursor: $cursor, limit: $limit) {
    cursor
    items {
      id name
      column_values(ids: $columnIds) { id text value ... on BoardRelationValue { linked_item_ids } }
    }
  }
}
"""

_CREATE_ITEM_MUTATION = """
mutation ($boardId: ID!, $itemName: String!, $columnValues: JSON) {
  create_item(board_id: $boardId, item_name: $itemName, column_values: $columnValues) { id name }
}
"""

_CHANGE_COLUMN_VALUE_MUTATION = """
mutation ($itemId: ID!, $boardId: ID!, $columnId: String!, $value: JSON!) {
  change_column_value(item_id: $itemId, board_id: $boardId, column_id: $columnId, value: $value) { id }
}
"""

_DELETE_ITEM_MUTATION = """
mutation ($itemId: ID!) {
  delete_item(item_id: $itemId) { id }
}
"""

_ME_QUERY = "query { me { id name } }"


def parse_retry_after(message: str, error_data: dict | None = None) -> float:
    """Extract the advertised wait from a monday rate-limit error.

    Args:
        message: Error message text.
        error_data: Optional ``extensions``/``error_data`` mapping.

    Returns:
        Seconds to wait; 30 when neither format is present.
    """
    if error_data:
        value = error_data.get("retry_in_seconds")
        if isinstance(value, (int, float)) and not isinstance(value, bool) and value >= 0:
            return float(value)
    match = _RESET_IN_PATTERN.search(message or "")
    if match:
        return float(match.group(1))
    return DEFAULT_RATE_LIMIT_WAIT_SECONDS


def is_rate_limit_message(message: str) -> bool:
    lowered = (message or "").lower()
    return any(marker in lowered for marker in _RATE_LIMIT_MARKERS)


class MondayClient:
    """Async client for the monday.com GraphQL API.

    Args:
        api_token: monday API token (sent raw in the Authorization header).
        api_version: Value for the ``API-Version`` header.
        timeout: Per-request timeout in seconds.
        transport: Optional httpx transport, used by tests.
        retry_policy: Rate-limit retry policy; defaults to wait-and-retry-once.
        clock: Monotonic clock used for the proactive reset wait.
        sleep: Awaitable sleep used for the proactive reset wait.
    """

    def __init__(
        self,
        api_token: str,
        *,
        api_version: str = "2024-10",
        timeout: float = 30.0,
        api_url: str = MONDAY_API_URL,
        transport: httpx.AsyncBaseTransport | None = None,
        retry_policy: RetryPolicy | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._api_url = api_url
        self._timeout = timeout
        self._transport = transport
        self._headers = {
            "Authorization": api_token,
            "Content-Type": "application/json",
            "API-Version": api_version,
        }
        self._retry = retry_policy or monday_retry_policy(sleep=sleep)
        self._clock = clock
        self._sleep = sleep
        self._rate_limit_reset_at: float | None = None

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            headers=self._headers,
            timeout=self._timeout,
            transport=self._transport,
        )

    @property
    def rate_limit_reset_at(self) -> float | None:
        return self._rate_limit_reset_at

    async def _wait_for_reset(self) -> None:
        if self._rate_limit_reset_at is None:
            return
        remaining = self._rate_limit_reset_at - self._clock()
        if remaining > 0:
            logger.info("monday.waiting_for_rate_limit_reset", seconds=round(remaining, 2))
            MONDAY_RATE_LIMIT_WAITS.inc()
            await self._sleep(remaining)

    def _rate_limited(self, message: str, retry_after: float) -> RateLimitError:
        self._rate_limit_reset_at = self._clock() + retry_after
        logger.warning("monday.rate_limited", retry_after=retry_after, error=message)
        return RateLimitError(message, retry_after=retry_after, system="monday")

    async def _post(self, query: str, variables: dict[str, Any]) -> dict[str, Any]:
        await self._wait_for_reset()
        try:
            async with self._client() as client:
                response = await client.post(
                    self._api_url,
                    json={"query": query, "variables": variables},
                )
        except httpx.TransportError as exc:
            raise TransportError(f"monday request failed: {exc}", system="monday") from exc

        if response.status_code == 429:
            retry_after = DEFAULT_RATE_LIMIT_WAIT_SECONDS
            header = response.headers.get("Retry-After")
            if header and header.replace(".", "", 1).isdigit():
                retry_after = float(header)
            raise self._rate_limited("HTTP 429 Too Many Requests", retry_after)
        if response.status_code in (401, 403):
            raise AuthError(
                f"monday authentication failed ({response.status_code}) - API token may be invalid",
                system="monday",
            )

        try:
            body = response.json()
        except ValueError:
            body = None

        errors = (body or {}).get("errors") if isinstance(body, dict) else None
        if errors:
            self._raise_for_graphql_errors(errors)
        if isinstance(body, dict) and body.get("error_message"):
            message = str(body["error_message"])
            if is_rate_limit_message(message) or body.get("error_code") == "ComplexityException":
                raise self._rate_limited(message, parse_retry_after(message, body.get("error_data")))
            raise RemoteError(message, status_code=response.status_code, system="monday")
        if response.status_code >= 400:
            raise RemoteError(
                f"monday API error {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
                system="monday",
            )
        if not isinstance(body, dict) or "data" not in body:
            raise RemoteError("monday response missing data", status_code=response.status_code, system="monday")

        self._rate_limit_reset_at = None
        return body["data"] or {}

    def _raise_for_graphql_errors(self, errors: list[dict]) -> None:
        messages = [str(err.get("message", "")) for err in errors]
        joined = "; ".join(messages)
        for err in errors:
            message = str(err.get("message", ""))
            extensions = err.get("extensions") or {}
            code = str(extensions.get("code", ""))
            if is_rate_limit_message(message) or code in ("ComplexityException", "RATE_LIMIT_EXCEEDED"):
                error_data = extensions.get("error_data") or extensions
                raise self._rate_limited(message, parse_retry_after(message, error_data))
        raise RemoteError(f"monday GraphQL error: {joined}", system="monday")

    async def execute(self, query: str, variables: dict[str, Any] | None = None) -> dict[str, Any]:
        """Run a GraphQL operation and return its ``data`` object.

        Raises:
            RateLimitError: When still throttled after the single retry.
            AuthError, RemoteError, TransportError: Surfaced without retry.
        """
        return await self._retry.call(self._post, query, variables or {})

    # ── Operations ──

    async def items_page(
        self,
        board_id: str,
        *,
        cursor: str | None = None,
        limit: int = 100,
        column_ids: Sequence[str] = (),
    ) -> tuple[list[dict[str, Any]], str | None]:
        """Fetch one page of items with a narrow column projection.

        Returns:
            (items, next_cursor); next_cursor is None when the board is exhausted.
        """
        variables: dict[str, Any] = {"limit": limit, "columnIds": list(column_ids)}
        if cursor is None:
            variables["boardId"] = [str(board_id)]
            data = await self.execute(_ITEMS_PAGE_QUERY, variables)
            boards = data.get("boards") or []
            page = (boards[0] or {}).get("items_page") if boards else None
        else:
            variables["cursor"] = cursor
            data = await self.execute(_NEXT_ITEMS_PAGE_QUERY, variables)
            page = data.get("next_items_page")
        page = page or {}
        return list(page.get("items") or []), page.get("cursor") or None

    async def create_item(
        self,
        board_id: str,
        item_name: str,
        column_values: dict[str, Any] | None = None,
    ) -> str:
        """Create an item and return its id."""
        data = await self.execute(
            _CREATE_ITEM_MUTATION,
            {
                "boardId": str(board_id),
                "itemName": item_name,
                "columnValues": json.dumps(column_values or {}),
            },
        )
        created = data.get("create_item") or {}
        item_id = created.get("id")
        if not item_id:
            raise RemoteError("monday create_item returned no id", system="monday")
        logger.info("monday.item_created", board_id=board_id, item_id=str(item_id), name=item_name)
        return str(item_id)

    async def change_column_value(
        self,
        board_id: str,
        item_id: str,
        column_id: str,
        value: Any,
    ) -> None:
        """Set a single column on an existing item."""
        await self.execute(
            _CHANGE_COLUMN_VALUE_MUTATION,
            {
                "itemId": str(item_id),
                "boardId": str(board_id),
                "columnId": column_id,
                "value": json.dumps(value),
            },
        )
        logger.debug("monday.column_changed", board_id=board_id, item_id=item_id, column_id=column_id)

    async def delete_item(self, item_id: str) -> None:
        await self.execute(_DELETE_ITEM_MUTATION, {"itemId": str(item_id)})
        logger.info("monday.item_deleted", item_id=item_id)

    async def test_connection(self) -> bool:
        """Return True when the API token can read the current user."""
        try:
            data = await self.execute(_ME_QUERY)
        except (AuthError, RemoteError, RateLimitError, TransportError) as exc:
            logger.warning("monday.connection_failed", error=str(exc))
            return False
        return bool((data.get("me") or {}).get("id"))
