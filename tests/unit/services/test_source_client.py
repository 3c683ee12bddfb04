"""Unit tests for the Shopify source client."""

import json
from datetime import datetime, timezone
from typing import Any, Callable

import httpx
import pytest

from catalog_sync.config import Settings
from catalog_sync.exceptions import ItemNotFoundError, SourceAuthError, SourceClientError
from catalog_sync.services.source_client import (
    ShopifySourceClient,
    SourceCredentials,
    SourceFilters,
    extract_numeric_id,
    to_product_gid,
)


def _client(handler: Callable[[httpx.Request], httpx.Response], settings: Settings) -> ShopifySourceClient:
    return ShopifySourceClient(
        SourceCredentials(shop_domain="test-shop.myshopify.com", access_token="shpat_test"),
        settings,
        transport=httpx.MockTransport(handler),
    )


def _ids_page(ids: list[int], has_next: bool, cursor: str) -> dict[str, Any]:
    return {
        "data": {
            "products": {
                "edges": [{"node": {"id": f"gid://shopify/Product/{i}"}} for i in ids],
                "pageInfo": {"hasNextPage": has_next, "endCursor": cursor},
            }
        }
    }


@pytest.fixture(autouse=True)
def no_backoff(monkeypatch: pytest.MonkeyPatch) -> None:
    async def _sleep(seconds: float) -> None:
        return None

    monkeypatch.setattr("catalog_sync.services.source_client.asyncio.sleep", _sleep)


class TestIds:
    def test_extract_numeric_id(self) -> None:
        assert extract_numeric_id("gid://shopify/Product/123") == "123"

    def test_to_product_gid(self) -> None:
        assert to_product_gid("123") == "gid://shopify/Product/123"
        assert to_product_gid("gid://shopify/Product/123") == "gid://shopify/Product/123"


class TestSourceFilters:
    def test_empty_filters(self) -> None:
        assert SourceFilters().to_search_query("America/New_York") is None

    def test_search_query_uses_store_zone(self) -> None:
        filters = SourceFilters(
            vendor="Acme",
            updated_at_min=datetime(2025, 5, 3, 23, 29, 51, tzinfo=timezone.utc),
        )
        assert (
            filters.to_search_query("America/New_York")
            == "vendor:Acme AND updated_at:>='2025-05-03T19:29:51-04:00'"
        )

    def test_unknown_filter_rejected(self) -> None:
        with pytest.raises(ValueError):
            SourceFilters.model_validate({"colour": "red"})


class TestExecute:
    async def test_sends_token_header(self, test_settings: Settings) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"data": {"shop": {"name": "Test"}}})

        async with _client(handler, test_settings) as client:
            assert await client.get_shop_info() == {"name": "Test"}

        assert seen[0].headers["X-Shopify-Access-Token"] == "shpat_test"
        assert seen[0].url.path == f"/admin/api/{test_settings.shopify_api_version}/graphql.json"

    async def test_retries_server_errors(self, test_settings: Settings) -> None:
        calls = {"n": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            calls["n"] += 1
            if calls["n"] == 1:
                return httpx.Response(502)
            return httpx.Response(200, json={"data": {"productsCount": {"count": 7}}})

        async with _client(handler, test_settings) as client:
            assert await client.count_items() == 7
        assert calls["n"] == 2

    async def test_retries_throttled_queries(self, test_settings: Settings) -> None:
        calls = {"n": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            calls["n"] += 1
            if calls["n"] == 1:
                return httpx.Response(
                    200, json={"errors": [{"message": "Throttled", "extensions": {"code": "THROTTLED"}}]}
                )
            return httpx.Response(200, json={"data": {"productsCount": {"count": 1}}})

        async with _client(handler, test_settings) as client:
            assert await client.count_items() == 1

    async def test_auth_errors_are_not_retried(self, test_settings: Settings) -> None:
        calls = {"n": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            calls["n"] += 1
            return httpx.Response(401)

        async with _client(handler, test_settings) as client:
            with pytest.raises(SourceAuthError):
                await client.count_items()
        assert calls["n"] == 1

    async def test_gives_up_after_max_retries(self, test_settings: Settings) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(503)

        async with _client(handler, test_settings) as client:
            with pytest.raises(SourceClientError):
                await client.count_items()


class TestStreamItemIds:
    async def test_pages_until_exhausted(self, test_settings: Settings) -> None:
        pages = {
            None: _ids_page([1, 2], True, "c1"),
            "c1": _ids_page([3], False, "c2"),
        }

        def handler(request: httpx.Request) -> httpx.Response:
            variables = json.loads(request.content)["variables"]
            return httpx.Response(200, json=pages[variables["after"]])

        async with _client(handler, test_settings) as client:
            stream = client.stream_item_ids(page_size=2)
            collected = [page async for page in stream]

        assert collected == [["1", "2"], ["3"]]
        assert stream.exhausted
        assert stream.cursor == "c2"

    async def test_stop_ends_stream(self, test_settings: Settings) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=_ids_page([1, 2], True, "next"))

        async with _client(handler, test_settings) as client:
            stream = client.stream_item_ids(page_size=2)
            pages = 0
            async for _ in stream:
                pages += 1
                stream.stop()

        assert pages == 1
        assert stream.stopped
        assert not stream.exhausted

    async def test_stream_cannot_restart(self, test_settings: Settings) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=_ids_page([], False, ""))

        async with _client(handler, test_settings) as client:
            stream = client.stream_item_ids()
            [page async for page in stream]
            with pytest.raises(RuntimeError):
                stream.__aiter__()

    async def test_page_size_capped(self, test_settings: Settings) -> None:
        sizes: list[int] = []

        def handler(request: httpx.Request) -> httpx.Response:
            sizes.append(json.loads(request.content)["variables"]["first"])
            return httpx.Response(200, json=_ids_page([], False, ""))

        async with _client(handler, test_settings) as client:
            [page async for page in client.stream_item_ids(page_size=1000)]
        assert sizes == [250]


class TestFetchItem:
    async def test_maps_product_fields(self, test_settings: Settings) -> None:
        product = {
            "id": "gid://shopify/Product/42",
            "title": "Tee",
            "description": "Soft",
            "handle": "tee",
            "productType": "Shirts",
            "vendor": "Acme",
            "tags": ["a"],
            "createdAt": "2024-01-01T00:00:00Z",
            "updatedAt": "2025-01-01T00:00:00Z",
            "variants": {
                "edges": [
                    {
                        "node": {
                            "id": "gid://shopify/ProductVariant/7",
                            "price": "10.00",
                            "sku": None,
                            "compareAtPrice": "12.00",
                            "inventoryQuantity": 3,
                            "inventoryItem": {"id": "gid://shopify/InventoryItem/9"},
                        }
                    }
                ]
            },
        }

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"data": {"product": product}})

        async with _client(handler, test_settings) as client:
            result = await client.fetch_item("42")

        assert result["id"] == "42"
        assert result["product_type"] == "Shirts"
        assert result["variants"] == [
            {
                "id": "7",
                "price": "10.00",
                "sku": "",
                "compare_at_price": "12.00",
                "inventory_quantity": 3,
                "inventory_item_id": "9",
            }
        ]

    async def test_missing_product_raises_not_found(self, test_settings: Settings) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"data": {"product": None}})

        async with _client(handler, test_settings) as client:
            with pytest.raises(ItemNotFoundError):
                await client.fetch_item("404")
