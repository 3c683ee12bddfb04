"""Unit tests for item, stats and queue endpoints."""

from typing import Any
from unittest.mock import MagicMock

import pytest
import pytest_asyncio
from httpx import AsyncClient

from catalog_sync.services.queue import SyncQueue
from tests.fakes import STORE_ID, FakeShopify


@pytest_asyncio.fixture
async def synced(async_client: AsyncClient, shopify: FakeShopify) -> AsyncClient:
    shopify.add(1, 2, 3)
    shopify.add(4, vendor="Globex")
    response = await async_client.post("/api/v1/sync/products", json={})
    assert response.status_code == 202
    return async_client


class TestItems:
    async def test_list_items(self, synced: AsyncClient) -> None:
        response = await synced.get("/api/v1/items", params={"limit": 2})

        assert response.status_code == 200
        page = response.json()["data"]
        assert page["total"] == 4
        assert page["limit"] == 2
        assert len(page["items"]) == 2

    async def test_filter_by_vendor(self, synced: AsyncClient) -> None:
        page = (await synced.get("/api/v1/items", params={"vendor": "Globex"})).json()["data"]

        assert [item["item_id"] for item in page["items"]] == ["4"]
        assert page["items"][0]["variants"][0]["price"] == "19.99"

    async def test_limit_is_bounded(self, synced: AsyncClient) -> None:
        response = await synced.get("/api/v1/items", params={"limit": 1000})

        assert response.status_code == 422

    async def test_get_item(self, synced: AsyncClient) -> None:
        response = await synced.get("/api/v1/items/2")

        assert response.status_code == 200
        item = response.json()["data"]
        assert item["store_id"] == STORE_ID
        assert item["title"] == "Product 2"
        assert item["last_action"] == "added"

    async def test_get_missing_item(self, synced: AsyncClient) -> None:
        response = await synced.get("/api/v1/items/999")

        assert response.status_code == 404
        assert response.json() == {"success": False, "data": None, "error": "Item 999 not found"}

    async def test_soft_delete_item(self, synced: AsyncClient) -> None:
        response = await synced.delete("/api/v1/items/1")

        assert response.status_code == 200
        assert response.json()["data"] == {"item_id": "1", "deleted": True, "hard": False}
        item = (await synced.get("/api/v1/items/1")).json()["data"]
        assert item["deleted_at"] is not None
        assert item["last_action"] == "deleted"
        page = (await synced.get("/api/v1/items")).json()["data"]
        assert page["total"] == 3

    async def test_hard_delete_item(self, synced: AsyncClient) -> None:
        response = await synced.delete("/api/v1/items/1", params={"hard": True})

        assert response.status_code == 200
        assert (await synced.get("/api/v1/items/1")).status_code == 404

    async def test_delete_missing_item(self, synced: AsyncClient) -> None:
        response = await synced.delete("/api/v1/items/999")

        assert response.status_code == 404


class TestStats:
    async def test_store_stats(self, synced: AsyncClient) -> None:
        response = await synced.get("/api/v1/stats", params={"store_id": STORE_ID})

        assert response.status_code == 200
        stats = response.json()["data"]
        assert stats["active_items"] == 4
        assert stats["by_vendor"] == {"Acme": 3, "Globex": 1}
        assert stats["sync"]["total_syncs"] == 1
        assert stats["sync"]["is_in_progress"] is False

    async def test_global_stats_have_no_sync_summary(self, synced: AsyncClient) -> None:
        stats = (await synced.get("/api/v1/stats")).json()["data"]

        assert stats["total_items"] == 4
        assert "sync" not in stats


class TestQueue:
    @pytest.fixture
    def celery_app(self, app: Any) -> MagicMock:
        celery_app = MagicMock()
        inspect = celery_app.control.inspect.return_value
        inspect.active.return_value = {"worker@a": [{"id": "t1"}]}
        inspect.reserved.return_value = {"worker@a": [{"id": "t2"}, {"id": "t3"}]}
        declared = MagicMock(message_count=4)
        conn = celery_app.connection_for_read.return_value.__enter__.return_value
        conn.default_channel.queue_declare.return_value = declared
        celery_app.control.cancel_consumer.return_value = [{"worker@a": {"ok": "paused"}}]
        celery_app.control.add_consumer.return_value = [{"worker@a": {"ok": "resumed"}}]
        purging = celery_app.connection_for_write.return_value.__enter__.return_value
        purging.default_channel.queue_purge.return_value = 4
        return celery_app

    @pytest.fixture
    def queue_client(self, async_client: AsyncClient, app: Any, celery_app: MagicMock) -> AsyncClient:
        app.state.sync_queue = SyncQueue(celery_app)
        return async_client

    async def test_stats(self, queue_client: AsyncClient, shopify: FakeShopify) -> None:
        shopify.add(1)
        await queue_client.post("/api/v1/sync/products", json={})

        response = await queue_client.get("/api/v1/queue/stats")

        assert response.status_code == 200
        assert response.json()["data"] == {"waiting": 6, "active": 1, "completed": 1, "failed": 0}

    async def test_pause_and_resume(self, queue_client: AsyncClient, celery_app: MagicMock) -> None:
        paused = await queue_client.post("/api/v1/queue/pause")
        resumed = await queue_client.post("/api/v1/queue/resume")

        assert paused.json()["data"] == {"paused": True, "workers": 1}
        assert resumed.json()["data"] == {"paused": False, "workers": 1}
        celery_app.control.cancel_consumer.assert_called_once_with("sync", reply=True)
        celery_app.control.add_consumer.assert_called_once_with("sync", reply=True)

    async def test_clear(self, queue_client: AsyncClient) -> None:
        response = await queue_client.post("/api/v1/queue/clear")

        assert response.json()["data"] == {"purged": 4}
