"""
Thin async HTTP wrapper around the external catalog's product API.

Exposes exactly three operations to the rest of the pipeline: a paginated
listing with the upstream totals, a single-product fetch, and a cheap
connectivity probe. Response-shape quirks stop here: callers always receive
a ``ProductPage`` or a raw product dict, never a bare HTTP response.
"""

from __future__ import annotations

import logging
import math

import httpx

from pydantic import ValidationError

from scrapyard.config import CatalogConfig
from scrapyard.errors import CatalogError, NotFoundError, UpstreamError
from scrapyard.models.catalog import ProductPage

logger = logging.getLogger(__name__)

TOTAL_HEADER = "X-WP-Total"
TOTAL_PAGES_HEADER = "X-WP-TotalPages"


def _int_header(response: httpx.Response, name: str) -> int | None:
    raw = response.headers.get(name)
    if raw is None:
        return None
    try:
        return int(raw)
    except ValueError:
        return None


class CatalogClient:
    """Client for one catalog connection, built from an explicit config.

    Usable as an async context manager; the underlying ``httpx.AsyncClient``
    is closed on exit. Pass *transport* to route requests somewhere other
    than the network (tests use ``httpx.MockTransport``).
    """

    def __init__(
        self,
        config: CatalogConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.config = config
        self._http = httpx.AsyncClient(
            base_url=config.api_base,
            auth=(config.consumer_key, config.consumer_secret),
            timeout=config.timeout,
            transport=transport,
            headers={"Accept": "application/json"},
        )

    async def __aenter__(self) -> CatalogClient:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    # -----------------------------------------------------------------------
    # Internals
    # -----------------------------------------------------------------------

    async def _get(self, path: str, params: dict | None = None) -> httpx.Response:
        try:
            response = await self._http.get(path, params=params)
        except httpx.RequestError as exc:
            raise UpstreamError(f"Request to catalog failed: {exc}") from exc

        if response.status_code == 404:
            raise NotFoundError(f"Catalog resource '{path}' does not exist")
        if not response.is_success:
            raise UpstreamError(
                f"Catalog answered HTTP {response.status_code} for '{path}'",
                status_code=response.status_code,
            )
        return response

    def _json(self, response: httpx.Response, path: str):
        try:
            return response.json()
        except ValueError as exc:
            raise UpstreamError(
                f"Catalog returned a non-JSON body for '{path}'",
                status_code=response.status_code,
            ) from exc

    # -----------------------------------------------------------------------
    # Public API
    # -----------------------------------------------------------------------

    async def list_products(
        self,
        page: int = 1,
        per_page: int = 10,
        search: str | None = None,
    ) -> ProductPage:
        """Fetch one listing page together with the upstream totals.

        Totals come from the ``X-WP-Total`` / ``X-WP-TotalPages`` headers so
        callers can plan pagination from the first response.
        """
        params: dict = {"page": page, "per_page": per_page}
        if search:
            params["search"] = search

        response = await self._get("/products", params=params)
        items = self._json(response, "/products")
        if not isinstance(items, list):
            raise UpstreamError(
                "Catalog listing did not return a JSON array",
                status_code=response.status_code,
            )

        total_count = _int_header(response, TOTAL_HEADER)
        if total_count is None:
            total_count = len(items)
        total_pages = _int_header(response, TOTAL_PAGES_HEADER)
        if total_pages is None:
            total_pages = math.ceil(total_count / per_page) if per_page else 1

        try:
            return ProductPage(
                items=items,
                total_count=total_count,
                total_pages=total_pages,
                page=page,
                per_page=per_page,
            )
        except ValidationError as exc:
            raise UpstreamError(
                f"Catalog listing page {page} holds non-object items",
                status_code=response.status_code,
            ) from exc

    async def get_product(self, external_id: int | str) -> dict:
        """Fetch a single product payload.

        Raises:
            NotFoundError: the catalog answered 404.
            UpstreamError: any other non-2xx answer or a transport failure.
        """
        path = f"/products/{external_id}"
        response = await self._get(path)
        payload = self._json(response, path)
        if not isinstance(payload, dict):
            raise UpstreamError(
                f"Catalog returned a non-object payload for product {external_id}",
                status_code=response.status_code,
            )
        return payload

    async def probe(self) -> bool:
        """Return True when the catalog answers a one-item listing."""
        try:
            await self.list_products(page=1, per_page=1)
        except CatalogError as exc:
            logger.warning("Catalog connectivity probe failed for %s: %s", self.config.url, exc)
            return False
        return True
