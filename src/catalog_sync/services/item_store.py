"""Catalog item persistence.

All writes are single statements keyed by ``(store_id, item_id)``; an
upsert never reads before it writes, so concurrent syncs cannot create
duplicate items.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Sequence

import structlog
from sqlalchemy import delete, func, insert, literal, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from catalog_sync.infrastructure.database.connection import dialect_insert
from catalog_sync.infrastructure.database.models import (
    CatalogItem,
    ItemAction,
    SyncSnapshotId,
)
from catalog_sync.timeutils import utcnow

logger = structlog.get_logger()

ITEM_FIELDS = (
    "title",
    "description",
    "handle",
    "category",
    "vendor",
    "tags",
    "variants",
    "source_created_at",
    "source_updated_at",
)


@dataclass(frozen=True)
class UpsertResult:
    """Outcome of one atomic upsert."""

    item_id: str
    created: bool


class ItemStore:
    """Data access for mirrored catalog items."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def upsert(
        self, store_id: str, values: dict[str, Any], cursor: str | None = None
    ) -> UpsertResult:
        """Insert the item, or update it when ``(store_id, item_id)`` exists.

        The insert is ``ON CONFLICT DO NOTHING``; losing it means the row
        already exists and an update follows. ``first_seen_at`` and
        ``local_created_at`` are only ever written by the insert.
        """
        item_id = values["item_id"]
        now = utcnow()
        fields = {name: values.get(name) for name in ITEM_FIELDS}
        fields["tags"] = fields["tags"] or []
        fields["variants"] = fields["variants"] or []

        insert_stmt = (
            dialect_insert(self.session, CatalogItem)
            .values(
                store_id=store_id,
                item_id=item_id,
                **fields,
                local_created_at=now,
                local_updated_at=now,
                deleted_at=None,
                last_action=ItemAction.ADDED.value,
                first_seen_at=now,
                last_modified_at=now,
                sync_cursor=cursor,
            )
            .on_conflict_do_nothing(index_elements=["store_id", "item_id"])
            .returning(CatalogItem.id)
        )
        result = await self.session.execute(insert_stmt)
        if result.scalar_one_or_none() is not None:
            logger.debug("Inserted catalog item", store_id=store_id, item_id=item_id)
            return UpsertResult(item_id=item_id, created=True)

        update_values: dict[str, Any] = {
            **fields,
            "local_updated_at": now,
            "deleted_at": None,
            "last_action": ItemAction.UPDATED.value,
            "last_modified_at": now,
        }
        if cursor is not None:
            update_values["sync_cursor"] = cursor
        await self.session.execute(
            update(CatalogItem)
            .where(CatalogItem.store_id == store_id, CatalogItem.item_id == item_id)
            .values(**update_values)
        )
        logger.debug("Updated catalog item", store_id=store_id, item_id=item_id)
        return UpsertResult(item_id=item_id, created=False)

    async def existing_ids(self, store_id: str) -> list[str]:
        """Ids of all non-deleted items for a store."""
        result = await self.session.execute(
            select(CatalogItem.item_id)
            .where(CatalogItem.store_id == store_id, CatalogItem.deleted_at.is_(None))
            .order_by(CatalogItem.item_id)
        )
        return list(result.scalars().all())

    async def snapshot_existing_ids(self, store_id: str, run_id: str) -> int:
        """Copy the ids of all non-deleted items into the run's snapshot."""
        source = select(literal(run_id).label("run_id"), CatalogItem.item_id).where(
            CatalogItem.store_id == store_id, CatalogItem.deleted_at.is_(None)
        )
        await self.session.execute(
            insert(SyncSnapshotId).from_select(["run_id", "item_id"], source)
        )
        result = await self.session.execute(
            select(func.count()).select_from(SyncSnapshotId).where(SyncSnapshotId.run_id == run_id)
        )
        return result.scalar() or 0

    async def mark_seen(self, run_id: str, item_ids: Sequence[str]) -> None:
        """Remove enumerated ids from the run's deletion snapshot."""
        if not item_ids:
            return
        await self.session.execute(
            delete(SyncSnapshotId).where(
                SyncSnapshotId.run_id == run_id, SyncSnapshotId.item_id.in_(list(item_ids))
            )
        )

    async def soft_delete(
        self, store_id: str, item_ids: Sequence[str], cursor: str | None = None
    ) -> list[str]:
        """Mark the given items deleted and return the ids that were live.

        Already-deleted items are left alone.
        """
        if not item_ids:
            return []
        now = utcnow()
        result = await self.session.execute(
            update(CatalogItem)
            .where(
                CatalogItem.store_id == store_id,
                CatalogItem.item_id.in_(list(item_ids)),
                CatalogItem.deleted_at.is_(None),
            )
            .values(
                deleted_at=now,
                last_action=ItemAction.DELETED.value,
                last_modified_at=now,
                local_updated_at=now,
                sync_cursor=cursor,
            )
            .returning(CatalogItem.item_id)
            .execution_options(synchronize_session=False)
        )
        return list(result.scalars().all())

    async def soft_delete_unseen(self, store_id: str, run_id: str) -> int:
        """Soft-delete every item still left in the run's snapshot, then drop the snapshot."""
        now = utcnow()
        unseen = select(SyncSnapshotId.item_id).where(SyncSnapshotId.run_id == run_id)
        result = await self.session.execute(
            update(CatalogItem)
            .where(
                CatalogItem.store_id == store_id,
                CatalogItem.deleted_at.is_(None),
                CatalogItem.item_id.in_(unseen),
            )
            .values(
                deleted_at=now,
                last_action=ItemAction.DELETED.value,
                last_modified_at=now,
                local_updated_at=now,
                sync_cursor=run_id,
            )
            .execution_options(synchronize_session=False)
        )
        deleted = result.rowcount or 0
        await self.drop_snapshot(run_id)
        return deleted

    async def drop_snapshot(self, run_id: str) -> None:
        await self.session.execute(delete(SyncSnapshotId).where(SyncSnapshotId.run_id == run_id))

    async def purge_deleted(self, store_id: str | None, older_than: datetime) -> int:
        """Hard-delete items soft-deleted before ``older_than``."""
        stmt = delete(CatalogItem).where(
            CatalogItem.deleted_at.is_not(None), CatalogItem.deleted_at < older_than
        )
        if store_id is not None:
            stmt = stmt.where(CatalogItem.store_id == store_id)
        result = await self.session.execute(stmt.execution_options(synchronize_session=False))
        purged = result.rowcount or 0
        if purged:
            logger.info("Purged soft-deleted items", store_id=store_id, purged=purged)
        return purged

    async def count(self, store_id: str, include_deleted: bool = False) -> int:
        stmt = select(func.count()).select_from(CatalogItem).where(CatalogItem.store_id == store_id)
        if not include_deleted:
            stmt = stmt.where(CatalogItem.deleted_at.is_(None))
        result = await self.session.execute(stmt)
        return result.scalar() or 0

    async def get(self, store_id: str, item_id: str) -> CatalogItem | None:
        result = await self.session.execute(
            select(CatalogItem).where(
                CatalogItem.store_id == store_id, CatalogItem.item_id == item_id
            )
        )
        return result.scalar_one_or_none()

    async def list_items(
        self,
        store_id: str,
        limit: int = 20,
        offset: int = 0,
        include_deleted: bool = False,
        search: str | None = None,
        vendor: str | None = None,
        category: str | None = None,
    ) -> tuple[list[CatalogItem], int]:
        """Page through items, most recently modified first."""
        conditions = [CatalogItem.store_id == store_id]
        if not include_deleted:
            conditions.append(CatalogItem.deleted_at.is_(None))
        if search:
            pattern = f"%{search.lower()}%"
            conditions.append(
                or_(
                    func.lower(CatalogItem.title).like(pattern),
                    func.lower(CatalogItem.handle).like(pattern),
                )
            )
        if vendor:
            conditions.append(CatalogItem.vendor == vendor)
        if category:
            conditions.append(CatalogItem.category == category)

        total_result = await self.session.execute(
            select(func.count()).select_from(CatalogItem).where(*conditions)
        )
        rows = await self.session.execute(
            select(CatalogItem)
            .where(*conditions)
            .order_by(CatalogItem.last_modified_at.desc(), CatalogItem.item_id)
            .limit(limit)
            .offset(offset)
        )
        return list(rows.scalars().all()), total_result.scalar() or 0

    async def delete_item(self, store_id: str, item_id: str, hard: bool = False) -> bool:
        """Delete a single item from the dashboard. Soft by default."""
        if hard:
            result = await self.session.execute(
                delete(CatalogItem).where(
                    CatalogItem.store_id == store_id, CatalogItem.item_id == item_id
                )
            )
            return bool(result.rowcount)
        return bool(await self.soft_delete(store_id, [item_id]))

    async def list_store_ids(self) -> list[str]:
        result = await self.session.execute(select(CatalogItem.store_id).distinct())
        return list(result.scalars().all())

    async def stats(self, store_id: str | None = None, recent_limit: int = 5) -> dict[str, Any]:
        """Aggregate item counts for the dashboard."""
        scope = [CatalogItem.store_id == store_id] if store_id else []

        total = await self.session.execute(
            select(func.count()).select_from(CatalogItem).where(*scope)
        )
        deleted = await self.session.execute(
            select(func.count())
            .select_from(CatalogItem)
            .where(*scope, CatalogItem.deleted_at.is_not(None))
        )
        by_category = await self.session.execute(
            select(CatalogItem.category, func.count())
            .where(*scope, CatalogItem.deleted_at.is_(None))
            .group_by(CatalogItem.category)
            .order_by(func.count().desc())
        )
        by_vendor = await self.session.execute(
            select(CatalogItem.vendor, func.count())
            .where(*scope, CatalogItem.deleted_at.is_(None))
            .group_by(CatalogItem.vendor)
            .order_by(func.count().desc())
        )
        recent = await self.session.execute(
            select(CatalogItem.item_id, CatalogItem.title, CatalogItem.last_modified_at)
            .where(*scope, CatalogItem.deleted_at.is_(None))
            .order_by(CatalogItem.last_modified_at.desc())
            .limit(recent_limit)
        )

        total_items = total.scalar() or 0
        deleted_items = deleted.scalar() or 0
        return {
            "total_items": total_items,
            "active_items": total_items - deleted_items,
            "deleted_items": deleted_items,
            "by_category": {(row[0] or "uncategorized"): row[1] for row in by_category.all()},
            "by_vendor": {(row[0] or "unknown"): row[1] for row in by_vendor.all()},
            "recently_updated": [
                {
                    "item_id": row.item_id,
                    "title": row.title,
                    "last_modified_at": row.last_modified_at.isoformat(),
                }
                for row in recent.all()
            ],
        }
