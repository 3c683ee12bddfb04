"""In-memory Shopify fakes shared by the test suite."""

import copy
from typing import Any

from catalog_sync.config import Settings
from catalog_sync.exceptions import ItemNotFoundError
from catalog_sync.services.source_client import (
    ItemIdStream,
    SourceCredentials,
    SourceFilters,
)
from catalog_sync.timeutils import parse_timestamp

STORE_ID = "test-shop.myshopify.com"


def make_product(item_id: int | str, updated_at: str = "2025-01-01T00:00:00Z", **overrides: Any) -> dict:
    """A product as returned by ``ShopifySourceClient.fetch_item``."""
    product = {
        "id": str(item_id),
        "title": f"Product {item_id}",
        "description": f"Description of product {item_id}",
        "handle": f"product-{item_id}",
        "product_type": "Shirts",
        "vendor": "Acme",
        "tags": ["summer", "cotton"],
        "variants": [
            {
                "id": f"{item_id}01",
                "price": "19.99",
                "sku": f"SKU-{item_id}",
                "compare_at_price": None,
                "inventory_quantity": 5,
                "inventory_item_id": f"{item_id}99",
            }
        ],
        "created_at": "2024-06-01T12:00:00Z",
        "updated_at": updated_at,
    }
    product.update(overrides)
    return product


class FakeShopify:
    """In-memory Shopify catalog shared by every fake client it creates."""

    def __init__(self) -> None:
        self.products: dict[str, dict] = {}
        self.fetch_errors: dict[str, Exception] = {}
        self.fetch_calls: list[str] = []
        self.count_override: int | None = None
        self.count_error: Exception | None = None
        self.page_error: Exception | None = None
        self.repeat_first_page = False
        self.on_page: Any = None

    def add(self, *item_ids: int | str, updated_at: str = "2025-01-01T00:00:00Z", **overrides: Any) -> None:
        for item_id in item_ids:
            self.products[str(item_id)] = make_product(item_id, updated_at=updated_at, **overrides)

    def remove(self, *item_ids: int | str) -> None:
        for item_id in item_ids:
            self.products.pop(str(item_id), None)

    def client_factory(self, credentials: SourceCredentials, settings: Settings) -> "FakeSourceClient":
        return FakeSourceClient(self, credentials, settings)


class FakeSourceClient:
    """Stands in for ``ShopifySourceClient``; pagination runs through the real ``ItemIdStream``."""

    def __init__(self, shop: FakeShopify, credentials: SourceCredentials, settings: Settings):
        self.shop = shop
        self.credentials = credentials
        self.tz_name = settings.store_timezone
        self._listing: list[str] = []
        self.pages_served = 0

    async def __aenter__(self) -> "FakeSourceClient":
        return self

    async def __aexit__(self, *exc: Any) -> None:
        return None

    def _matching(self, filters: SourceFilters | None) -> list[str]:
        filters = filters or SourceFilters()
        ids = []
        for item_id, product in self.shop.products.items():
            updated_at = parse_timestamp(product["updated_at"])
            if filters.updated_at_min and updated_at < filters.updated_at_min:
                continue
            if filters.vendor and product["vendor"] != filters.vendor:
                continue
            ids.append(item_id)
        return sorted(ids, key=lambda value: int(value) if value.isdigit() else value)

    def stream_item_ids(self, filters: SourceFilters | None = None, page_size: int = 250) -> ItemIdStream:
        self._listing = self._matching(filters)
        return ItemIdStream(self, None, page_size)

    async def execute(self, query: str, variables: dict[str, Any] | None = None) -> dict[str, Any]:
        variables = variables or {}
        self.pages_served += 1
        if self.shop.page_error is not None and self.pages_served > 1:
            raise self.shop.page_error
        if self.shop.on_page is not None:
            await self.shop.on_page(self.pages_served)

        first = variables["first"]
        start = 0 if self.shop.repeat_first_page else int(variables.get("after") or 0)
        page = self._listing[start : start + first]
        end = start + len(page)
        has_next = True if self.shop.repeat_first_page and self.pages_served < 50 else end < len(self._listing)
        return {
            "products": {
                "edges": [{"node": {"id": f"gid://shopify/Product/{item_id}"}} for item_id in page],
                "pageInfo": {"hasNextPage": has_next, "endCursor": str(end)},
            }
        }

    async def fetch_item(self, item_id: str) -> dict[str, Any]:
        self.shop.fetch_calls.append(item_id)
        if item_id in self.shop.fetch_errors:
            raise self.shop.fetch_errors[item_id]
        if item_id not in self.shop.products:
            raise ItemNotFoundError(item_id)
        return copy.deepcopy(self.shop.products[item_id])

    async def count_items(self, filters: SourceFilters | None = None) -> int:
        if self.shop.count_error is not None:
            raise self.shop.count_error
        if self.shop.count_override is not None:
            return self.shop.count_override
        return len(self._matching(filters))
