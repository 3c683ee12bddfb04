"""Unit tests for the item store."""

from datetime import timedelta

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from catalog_sync.infrastructure.database.models import ItemAction
from catalog_sync.services.catalog_transform import transform_product
from catalog_sync.services.item_store import ItemStore
from catalog_sync.timeutils import utcnow
from tests.fakes import STORE_ID, make_product


@pytest.fixture
def store(session: AsyncSession) -> ItemStore:
    return ItemStore(session)


async def _seed(store: ItemStore, *item_ids: int, store_id: str = STORE_ID) -> None:
    for item_id in item_ids:
        await store.upsert(store_id, transform_product(make_product(item_id)))
    await store.session.commit()


class TestUpsert:
    async def test_insert_then_update(self, store: ItemStore) -> None:
        first = await store.upsert(STORE_ID, transform_product(make_product(1)))
        second = await store.upsert(
            STORE_ID, transform_product(make_product(1, title="Renamed")), cursor="run-2"
        )
        await store.session.commit()

        assert first.created is True
        assert second.created is False
        item = await store.get(STORE_ID, "1")
        assert item.title == "Renamed"
        assert item.last_action == ItemAction.UPDATED.value
        assert item.sync_cursor == "run-2"
        assert await store.count(STORE_ID, include_deleted=True) == 1

    async def test_update_keeps_first_seen(self, store: ItemStore) -> None:
        await _seed(store, 1)
        original = (await store.get(STORE_ID, "1")).first_seen_at

        await store.upsert(STORE_ID, transform_product(make_product(1, title="Again")))
        await store.session.commit()

        assert (await store.get(STORE_ID, "1")).first_seen_at == original

    async def test_upsert_revives_deleted_item(self, store: ItemStore) -> None:
        await _seed(store, 1)
        await store.soft_delete(STORE_ID, ["1"])
        await store.upsert(STORE_ID, transform_product(make_product(1)))
        await store.session.commit()

        item = await store.get(STORE_ID, "1")
        assert item.deleted_at is None
        assert item.last_action == ItemAction.UPDATED.value

    async def test_same_item_id_in_two_stores(self, store: ItemStore) -> None:
        await _seed(store, 1)
        await _seed(store, 1, store_id="other-shop.myshopify.com")

        assert await store.count(STORE_ID) == 1
        assert await store.count("other-shop.myshopify.com") == 1


class TestSoftDelete:
    async def test_soft_delete_is_idempotent(self, store: ItemStore) -> None:
        await _seed(store, 1, 2)

        assert await store.soft_delete(STORE_ID, ["1"]) == ["1"]
        assert await store.soft_delete(STORE_ID, ["1"]) == []
        await store.session.commit()

        item = await store.get(STORE_ID, "1")
        assert item.deleted_at is not None
        assert item.last_action == ItemAction.DELETED.value
        assert await store.existing_ids(STORE_ID) == ["2"]

    async def test_soft_delete_unseen(self, store: ItemStore) -> None:
        await _seed(store, 1, 2, 3)

        assert await store.snapshot_existing_ids(STORE_ID, "run-1") == 3
        await store.mark_seen("run-1", ["1", "3"])
        deleted = await store.soft_delete_unseen(STORE_ID, "run-1")
        await store.session.commit()

        assert deleted == 1
        assert await store.existing_ids(STORE_ID) == ["1", "3"]
        assert (await store.get(STORE_ID, "2")).sync_cursor == "run-1"
        # Snapshot is dropped, so a second pass deletes nothing.
        assert await store.soft_delete_unseen(STORE_ID, "run-1") == 0

    async def test_snapshot_excludes_deleted_items(self, store: ItemStore) -> None:
        await _seed(store, 1, 2)
        await store.soft_delete(STORE_ID, ["2"])

        assert await store.snapshot_existing_ids(STORE_ID, "run-1") == 1


class TestPurge:
    async def test_purge_only_old_deleted_items(self, store: ItemStore) -> None:
        await _seed(store, 1, 2)
        await store.soft_delete(STORE_ID, ["1"])
        await store.session.commit()

        assert await store.purge_deleted(STORE_ID, utcnow() - timedelta(days=1)) == 0
        assert await store.purge_deleted(STORE_ID, utcnow() + timedelta(seconds=1)) == 1
        await store.session.commit()

        assert await store.get(STORE_ID, "1") is None
        assert await store.get(STORE_ID, "2") is not None


class TestQueries:
    async def test_list_items_filters_and_pages(self, store: ItemStore) -> None:
        await _seed(store, 1, 2, 3)
        await store.upsert(STORE_ID, transform_product(make_product(4, vendor="Globex")))
        await store.soft_delete(STORE_ID, ["3"])
        await store.session.commit()

        rows, total = await store.list_items(STORE_ID, limit=2)
        assert total == 3
        assert len(rows) == 2

        rows, total = await store.list_items(STORE_ID, vendor="Globex")
        assert [row.item_id for row in rows] == ["4"]

        rows, total = await store.list_items(STORE_ID, include_deleted=True)
        assert total == 4

        rows, total = await store.list_items(STORE_ID, search="PRODUCT-2")
        assert [row.item_id for row in rows] == ["2"]

    async def test_delete_item(self, store: ItemStore) -> None:
        await _seed(store, 1, 2)

        assert await store.delete_item(STORE_ID, "1") is True
        assert await store.delete_item(STORE_ID, "2", hard=True) is True
        assert await store.delete_item(STORE_ID, "missing") is False
        await store.session.commit()

        assert (await store.get(STORE_ID, "1")).deleted_at is not None
        assert await store.get(STORE_ID, "2") is None

    async def test_stats(self, store: ItemStore) -> None:
        await _seed(store, 1, 2)
        await store.upsert(STORE_ID, transform_product(make_product(3, product_type="")))
        await store.soft_delete(STORE_ID, ["1"])
        await store.session.commit()

        stats = await store.stats(STORE_ID)

        assert stats["total_items"] == 3
        assert stats["active_items"] == 2
        assert stats["deleted_items"] == 1
        assert stats["by_category"] == {"Shirts": 1, "uncategorized": 1}
        assert stats["by_vendor"] == {"Acme": 2}
        assert len(stats["recently_updated"]) == 2

    async def test_list_store_ids(self, store: ItemStore) -> None:
        await _seed(store, 1)
        await _seed(store, 1, store_id="b-shop")

        assert sorted(await store.list_store_ids()) == sorted([STORE_ID, "b-shop"])
