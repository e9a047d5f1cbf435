"""Shopify Admin REST client (merchant feed source).

Fetches raw product JSON for SHOPIFY merchants:
- GET https://{store}/admin/api/{version}/products.json?limit=N
  (pages follow the `Link: <...>; rel="next"` header)
- GET https://{store}/admin/api/{version}/products/{id}.json

Transport errors, non-2xx responses and undecodable bodies raise
UpstreamFetchError. The payload is returned untouched; parsing into the feed
schema happens during ingest.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
import logging
from typing import Any

import httpx

from app.errors import UpstreamFetchError
from app.schemas.merchant import ShopifySourceConfig
from app.settings import get_settings

logger = logging.getLogger("uvicorn.error")


class ShopifyClient:
    """Async client for one Shopify store."""

    def __init__(
        self,
        store_url: str,
        access_token: str,
        *,
        api_version: str | None = None,
        timeout: float | None = None,
        page_size: int | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        settings = get_settings()
        self.store_url = store_url
        self.access_token = access_token
        self.api_version = api_version or settings.shopify_api_version
        self.timeout = timeout or settings.feed_fetch_timeout_seconds
        self.page_size = page_size or settings.feed_page_size
        self._transport = transport

    @classmethod
    def from_config(cls, config: ShopifySourceConfig, **kwargs: Any) -> "ShopifyClient":
        return cls(config.store_url, config.access_token, **kwargs)

    @property
    def base_url(self) -> str:
        return f"https://{self.store_url}/admin/api/{self.api_version}"

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.timeout,
            headers={
                "X-Shopify-Access-Token": self.access_token,
                "Content-Type": "application/json",
            },
            transport=self._transport,
        )

    async def _get_json(
        self,
        client: httpx.AsyncClient,
        url: str,
        params: dict[str, Any] | None = None,
    ) -> tuple[dict[str, Any], httpx.Response]:
        try:
            response = await client.get(url, params=params)
        except httpx.HTTPError as e:
            raise UpstreamFetchError(
                f"Feed source unreachable: {e.__class__.__name__}",
                entity="feed_source",
                field="url",
                actual=url,
            ) from e

        if not response.is_success:
            raise UpstreamFetchError(
                f"Feed source returned HTTP {response.status_code}",
                entity="feed_source",
                field="status_code",
                expected="2xx",
                actual=response.status_code,
                extra={"url": url},
            )

        try:
            data = response.json()
        except ValueError as e:
            raise UpstreamFetchError(
                "Feed source returned a non-JSON body",
                entity="feed_source",
                extra={"url": url},
            ) from e
        if not isinstance(data, dict):
            raise UpstreamFetchError("Feed source returned an unexpected body", entity="feed_source")
        return data, response

    async def iter_product_pages(self) -> AsyncIterator[list[dict[str, Any]]]:
        """Yield product pages until the store reports no next page."""
        async with self._client() as client:
            url: str | None = f"{self.base_url}/products.json"
            params: dict[str, Any] | None = {"limit": self.page_size}
            page = 0
            while url:
                data, response = await self._get_json(client, url, params)
                products = data.get("products") or []
                page += 1
                logger.info(f"[shopify] store={self.store_url} page={page} products={len(products)}")
                yield [p for p in products if isinstance(p, dict)]
                url = response.links.get("next", {}).get("url")
                # The next-page URL already carries page_info/limit
                params = None

    async def fetch_products(self) -> list[dict[str, Any]]:
        out: list[dict[str, Any]] = []
        async for page in self.iter_product_pages():
            out.extend(page)
        return out

    async def fetch_product(self, external_product_id: str) -> dict[str, Any]:
        """Fetch one product by its Shopify id."""
        async with self._client() as client:
            data, _ = await self._get_json(client, f"{self.base_url}/products/{external_product_id}.json")
        product = data.get("product")
        if not isinstance(product, dict):
            raise UpstreamFetchError(
                "Feed source response has no product",
                entity="feed_source",
                entity_id=external_product_id,
                field="product",
            )
        return product
