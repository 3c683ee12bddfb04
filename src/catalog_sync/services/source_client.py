"""Shopify Admin GraphQL client used as the sync data source.

Features:
- Cursor pagination of product ids exposed as a lazy ``ItemIdStream``
- Product detail fetch normalised to a flat dict
- Exponential backoff retry on rate limits, throttling and server errors
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import Any, AsyncIterator

import httpx
import structlog
from pydantic import BaseModel, ConfigDict

from catalog_sync.config import Settings, get_settings
from catalog_sync.exceptions import ItemNotFoundError, SourceAuthError, SourceClientError
from catalog_sync.timeutils import format_source_timestamp

logger = structlog.get_logger()

PRODUCT_GID_PREFIX = "gid://shopify/Product/"
MAX_PAGE_SIZE = 250

PRODUCT_IDS_QUERY = """
query GetProductIds($first: Int!, $after: String, $query: String) {
  products(first: $first, after: $after, query: $query) {
    pageInfo {
      hasNextPage
      endCursor
    }
    edges {
      node {
        id
        updatedAt
      }
    }
  }
}
"""

PRODUCT_QUERY = """
query GetProduct($id: ID!) {
  product(id: $id) {
    id
    title
    description
    handle
    productType
    vendor
    createdAt
    updatedAt
    tags
    variants(first: 100) {
      edges {
        node {
          id
          price
          sku
          compareAtPrice
          inventoryQuantity
          inventoryItem {
            id
          }
        }
      }
    }
  }
}
"""

PRODUCTS_COUNT_QUERY = """
query GetProductsCount($query: String) {
  productsCount(query: $query) {
    count
  }
}
"""

SHOP_QUERY = """
query GetShopInfo {
  shop {
    name
    myshopifyDomain
    ianaTimezone
  }
}
"""


@dataclass(frozen=True)
class SourceCredentials:
    """Credentials for one Shopify store."""

    shop_domain: str
    access_token: str

    def to_payload(self) -> dict[str, str]:
        return {"shop_domain": self.shop_domain, "access_token": self.access_token}

    @classmethod
    def from_payload(cls, payload: dict[str, str]) -> "SourceCredentials":
        return cls(shop_domain=payload["shop_domain"], access_token=payload["access_token"])


class SourceFilters(BaseModel):
    """Filters accepted by the product search query."""

    model_config = ConfigDict(extra="forbid")

    product_type: str | None = None
    vendor: str | None = None
    created_at_min: datetime | None = None
    created_at_max: datetime | None = None
    updated_at_min: datetime | None = None
    updated_at_max: datetime | None = None

    def to_search_query(self, tz_name: str) -> str | None:
        """Build the Shopify search syntax string for these filters."""
        parts: list[str] = []
        if self.product_type:
            parts.append(f"product_type:{self.product_type}")
        if self.vendor:
            parts.append(f"vendor:{self.vendor}")
        bounds = [
            ("created_at", ">=", self.created_at_min),
            ("created_at", "<=", self.created_at_max),
            ("updated_at", ">=", self.updated_at_min),
            ("updated_at", "<=", self.updated_at_max),
        ]
        for field, op, value in bounds:
            if value is not None:
                parts.append(f"{field}:{op}'{format_source_timestamp(value, tz_name)}'")
        return " AND ".join(parts) if parts else None


def extract_numeric_id(gid: str) -> str:
    """``gid://shopify/Product/123`` -> ``123``."""
    return gid.rsplit("/", 1)[-1]


def to_product_gid(item_id: str) -> str:
    return item_id if item_id.startswith("gid://") else f"{PRODUCT_GID_PREFIX}{item_id}"


class ItemIdStream:
    """Lazy, finite, non-restartable sequence of item id pages.

    The orchestrator pulls pages with ``async for``; calling ``stop()``
    ends the stream before the next page is requested.
    """

    def __init__(self, client: "ShopifySourceClient", search_query: str | None, page_size: int):
        self._client = client
        self._search_query = search_query
        self._page_size = min(page_size, MAX_PAGE_SIZE)
        self._cursor: str | None = None
        self._started = False
        self._stopped = False
        self._exhausted = False
        self.pages_fetched = 0

    @property
    def cursor(self) -> str | None:
        """Pagination cursor after the last page fetched."""
        return self._cursor

    @property
    def exhausted(self) -> bool:
        """True once the source reported there are no further pages."""
        return self._exhausted

    @property
    def stopped(self) -> bool:
        return self._stopped

    def stop(self) -> None:
        """Stop the stream; no further pages are fetched."""
        self._stopped = True

    def __aiter__(self) -> AsyncIterator[list[str]]:
        if self._started:
            raise RuntimeError("ItemIdStream cannot be restarted")
        self._started = True
        return self._pages()

    async def _pages(self) -> AsyncIterator[list[str]]:
        has_next = True
        while has_next and not self._stopped:
            data = await self._client.execute(
                PRODUCT_IDS_QUERY,
                {"first": self._page_size, "after": self._cursor, "query": self._search_query},
            )
            products = data["products"]
            ids = [extract_numeric_id(edge["node"]["id"]) for edge in products["edges"]]
            has_next = bool(products["pageInfo"]["hasNextPage"])
            self._cursor = products["pageInfo"]["endCursor"]
            self.pages_fetched += 1
            if not has_next:
                self._exhausted = True
            logger.debug(
                "Fetched product id page",
                page=self.pages_fetched,
                count=len(ids),
                has_next=has_next,
            )
            yield ids


class ShopifySourceClient:
    """Client for the Shopify Admin GraphQL API."""

    def __init__(
        self,
        credentials: SourceCredentials,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        settings = settings or get_settings()
        self.credentials = credentials
        self.api_version = settings.shopify_api_version
        self.timeout = settings.shopify_api_timeout
        self.max_retries = settings.shopify_max_retries
        self.tz_name = settings.store_timezone
        self._transport = transport
        self._http: httpx.AsyncClient | None = None

        self.headers: dict[str, str] = {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "X-Shopify-Access-Token": credentials.access_token,
        }

    @property
    def endpoint(self) -> str:
        domain = self.credentials.shop_domain.removeprefix("https://").rstrip("/")
        return f"https://{domain}/admin/api/{self.api_version}/graphql.json"

    async def __aenter__(self) -> "ShopifySourceClient":
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    async def close(self) -> None:
        if self._http is not None:
            await self._http.aclose()
            self._http = None

    def _client(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(timeout=self.timeout, transport=self._transport)
        return self._http

    async def execute(self, query: str, variables: dict[str, Any] | None = None) -> dict[str, Any]:
        """Run a GraphQL operation with exponential backoff retry."""
        last_error: Exception | None = None
        payload = {"query": query, "variables": variables or {}}

        for attempt in range(self.max_retries):
            try:
                response = await self._client().post(self.endpoint, headers=self.headers, json=payload)
                response.raise_for_status()
                body = response.json()
            except httpx.HTTPStatusError as e:
                last_error = e
                status = e.response.status_code
                if status in (401, 403):
                    raise SourceAuthError(f"Shopify rejected credentials: HTTP {status}") from e
                if status == 429:
                    wait_time = 2**attempt * 2
                    logger.warning("Rate limited by Shopify", wait_seconds=wait_time)
                    await asyncio.sleep(wait_time)
                    continue
                if status >= 500:
                    wait_time = 2**attempt
                    logger.warning("Shopify server error", status=status, wait_seconds=wait_time)
                    await asyncio.sleep(wait_time)
                    continue
                raise SourceClientError(f"HTTP error: {e}") from e
            except httpx.RequestError as e:
                last_error = e
                wait_time = 2**attempt
                logger.warning("Shopify request error", error=str(e), wait_seconds=wait_time)
                await asyncio.sleep(wait_time)
                continue

            errors = body.get("errors")
            if errors:
                codes = {(err.get("extensions") or {}).get("code") for err in errors}
                if "THROTTLED" in codes:
                    last_error = SourceClientError("Throttled")
                    wait_time = 2**attempt
                    logger.warning("Shopify query throttled", wait_seconds=wait_time)
                    await asyncio.sleep(wait_time)
                    continue
                if "ACCESS_DENIED" in codes:
                    raise SourceAuthError(errors[0].get("message", "Access denied"))
                raise SourceClientError(f"GraphQL error: {errors[0].get('message', errors)}")
            return body.get("data") or {}

        raise SourceClientError(f"Failed after {self.max_retries} retries: {last_error}")

    def stream_item_ids(
        self, filters: SourceFilters | None = None, page_size: int = MAX_PAGE_SIZE
    ) -> ItemIdStream:
        """Stream product ids page by page for the given filters."""
        search_query = (filters or SourceFilters()).to_search_query(self.tz_name)
        logger.info("Streaming product ids", query=search_query, page_size=page_size)
        return ItemIdStream(self, search_query, page_size)

    async def fetch_item(self, item_id: str) -> dict[str, Any]:
        """Fetch one product with its variants."""
        data = await self.execute(PRODUCT_QUERY, {"id": to_product_gid(item_id)})
        product = data.get("product")
        if product is None:
            raise ItemNotFoundError(item_id)

        variants = []
        for edge in product.get("variants", {}).get("edges", []):
            variant = edge["node"]
            inventory_item = variant.get("inventoryItem") or {}
            variants.append(
                {
                    "id": extract_numeric_id(variant["id"]),
                    "price": variant.get("price"),
                    "sku": variant.get("sku") or "",
                    "compare_at_price": variant.get("compareAtPrice"),
                    "inventory_quantity": variant.get("inventoryQuantity"),
                    "inventory_item_id": (
                        extract_numeric_id(inventory_item["id"]) if inventory_item.get("id") else None
                    ),
                }
            )

        return {
            "id": extract_numeric_id(product["id"]),
            "title": product.get("title") or "",
            "description": product.get("description"),
            "handle": product.get("handle") or "",
            "product_type": product.get("productType"),
            "vendor": product.get("vendor"),
            "tags": product.get("tags") or [],
            "variants": variants,
            "created_at": product.get("createdAt"),
            "updated_at": product.get("updatedAt"),
        }

    async def count_items(self, filters: SourceFilters | None = None) -> int:
        """Number of products matching the filters."""
        search_query = (filters or SourceFilters()).to_search_query(self.tz_name)
        data = await self.execute(PRODUCTS_COUNT_QUERY, {"query": search_query})
        return int(data["productsCount"]["count"])

    async def get_shop_info(self) -> dict[str, Any]:
        data = await self.execute(SHOP_QUERY)
        return data.get("shop") or {}
