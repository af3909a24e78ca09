"""Async REST client for the simPRO v1.0 API (read-only).

Stateless transport: every non-2xx response fails fast. 401 becomes an
AuthError naming the bearer token, network failures become TransportError
and are retried by the shared RetryPolicy.
"""

from __future__ import annotations

from typing import Any

import httpx
import structlog

from src.quotesync.clients.errors import AuthError, RemoteError, TransportError
from src.quotesync.clients.retry import RetryPolicy, simpro_retry_policy

logger = structlog.get_logger(__name__)

QUOTE_PAGE_SIZE = 250
MAX_QUOTE_PAGES = 100

# Minimal projection used to filter by value before fetching details.
QUOTE_LIST_COLUMNS = "ID,Name,Stage,Status,Total,IsClosed"


class SimproClient:
    """Async client for the simPRO REST API.

    Args:
        base_url: Tenant base URL, e.g. ``https://acme.simprosuite.com``.
        access_token: Bearer token.
        company_id: simPRO company id used in every path.
        timeout: Per-request timeout in seconds.
        transport: Optional httpx transport, used by tests.
        retry_policy: Transport retry policy; defaults to 3 attempts, 1-10s.
    """

    def __init__(
        self,
        base_url: str,
        access_token: str,
        company_id: int,
        *,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        self._api_url = f"{base_url.rstrip('/')}/api/v1.0"
        self._company_id = company_id
        self._timeout = timeout
        self._transport = transport
        self._headers = {
            "Authorization": f"Bearer {access_token}",
            "Accept": "application/json",
        }
        self._retry = retry_policy or simpro_retry_policy()

    @property
    def company_id(self) -> int:
        return self._company_id

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            headers=self._headers,
            timeout=self._timeout,
            transport=self._transport,
        )

    async def _get(self, path: str, params: dict[str, Any] | None = None) -> Any:
        url = f"{self._api_url}{path}"
        try:
            async with self._client() as client:
                response = await client.get(url, params=params)
        except httpx.TransportError as exc:
            raise TransportError(f"simPRO request to {path} failed: {exc}", system="simpro") from exc

        if response.status_code == 401:
            raise AuthError(
                "simPRO authentication failed - Bearer token may be invalid or expired",
                system="simpro",
            )
        if response.status_code >= 400:
            raise RemoteError(
                f"simPRO API error {response.status_code} {response.reason_phrase} for {path}: "
                f"{response.text[:200]}",
                status_code=response.status_code,
                system="simpro",
            )
        try:
            return response.json()
        except ValueError as exc:
            raise RemoteError(
                f"simPRO returned invalid JSON for {path}",
                status_code=response.status_code,
                system="simpro",
            ) from exc

    async def execute(self, path: str, params: dict[str, Any] | None = None) -> Any:
        """GET ``path`` (relative to ``/api/v1.0``) and return parsed JSON."""
        return await self._retry.call(self._get, path, params)

    # ── Operations ──

    async def list_open_quotes(self, columns: str = QUOTE_LIST_COLUMNS) -> list[dict[str, Any]]:
        """List all open quotes, paging until a short page is returned."""
        quotes: list[dict[str, Any]] = []
        for page in range(1, MAX_QUOTE_PAGES + 1):
            batch = await self.execute(
                f"/companies/{self._company_id}/quotes/",
                {
                    "IsClosed": "false",
                    "pageSize": QUOTE_PAGE_SIZE,
                    "page": page,
                    "columns": columns,
                },
            )
            batch = batch if isinstance(batch, list) else []
            quotes.extend(batch)
            if len(batch) < QUOTE_PAGE_SIZE:
                break
        else:
            logger.warning("simpro.quote_page_ceiling_reached", pages=MAX_QUOTE_PAGES)
        logger.info("simpro.quotes_listed", count=len(quotes))
        return quotes

    async def get_quote(self, quote_id: int) -> dict[str, Any]:
        return await self.execute(f"/companies/{self._company_id}/quotes/{quote_id}")

    async def get_customer(self, customer_id: int) -> dict[str, Any]:
        return await self.execute(f"/companies/{self._company_id}/customers/companies/{customer_id}")

    async def get_contact(self, contact_id: int) -> dict[str, Any]:
        return await self.execute(f"/companies/{self._company_id}/contacts/{contact_id}")

    async def test_connection(self) -> bool:
        """Return True when the token can list companies."""
        try:
            await self.execute("/companies/")
        except (AuthError, RemoteError, TransportError) as exc:
            logger.warning("simpro.connection_failed", error=str(exc))
            return False
        return True
