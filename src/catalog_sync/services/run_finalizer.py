"""Terminal transitions for sync runs.

Both the orchestrator (after enumeration) and every batch worker (after
its batch) ask the finalizer to close the run. ``begin_finalize`` is a
conditional update, so only the caller that observes the last batch
actually finalizes.
"""

from datetime import datetime, timedelta

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from catalog_sync.infrastructure.database.connection import session_scope
from catalog_sync.infrastructure.database.models import RunStatus
from catalog_sync.services.checkpoint import CheckpointManager
from catalog_sync.services.item_store import ItemStore
from catalog_sync.services.sync_state import SyncRunView, SyncStateRepository
from catalog_sync.timeutils import utcnow

logger = structlog.get_logger()

CANCELLED_MESSAGE = "Sync cancelled"


class RunFinalizer:
    """Closes runs exactly once: reconcile deletions, merge counters, release the lock."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        checkpoints: CheckpointManager,
    ):
        self.session_factory = session_factory
        self.checkpoints = checkpoints

    async def try_finalize(self, run_id: str) -> SyncRunView | None:
        """Finalize the run if it is terminal. Returns None when not (yet) terminal or already done."""
        async with session_scope(self.session_factory) as session:
            won = await SyncStateRepository(session).begin_finalize(run_id)
        if not won:
            return None

        try:
            return await self._finalize(run_id)
        except Exception as e:
            logger.exception("Run finalization failed", run_id=run_id)
            await self.fail(run_id, f"Finalization failed: {e}")
            raise

    async def _finalize(self, run_id: str) -> SyncRunView | None:
        async with session_scope(self.session_factory) as session:
            row = await SyncStateRepository(session).get_row_by_run(run_id)
        if row is None:
            return None

        if row.run_cancel_requested:
            return await self.fail(run_id, CANCELLED_MESSAGE, RunStatus.CANCELLED)

        if row.run_reconcile:
            await self.checkpoints.save(run_id, "", "reconciling", {"store_id": row.store_id})
            async with session_scope(self.session_factory) as session:
                deleted = await ItemStore(session).soft_delete_unseen(row.store_id, run_id)
                await SyncStateRepository(session).record_progress(run_id, deleted=deleted)
            logger.info(
                "Reconciled deleted items", run_id=run_id, store_id=row.store_id, deleted=deleted
            )
        else:
            async with session_scope(self.session_factory) as session:
                await ItemStore(session).drop_snapshot(run_id)

        if row.run_purge_after_days is not None:
            cutoff = utcnow() - timedelta(days=row.run_purge_after_days)
            async with session_scope(self.session_factory) as session:
                await ItemStore(session).purge_deleted(row.store_id, cutoff)

        async with session_scope(self.session_factory) as session:
            summary = await SyncStateRepository(session).complete_run(run_id)

        if summary is not None and summary.status == RunStatus.COMPLETED.value:
            await self.checkpoints.clear(run_id)
        return summary

    async def fail(
        self,
        run_id: str,
        error: str,
        status: RunStatus = RunStatus.FAILED,
        started_before: datetime | None = None,
    ) -> SyncRunView | None:
        """Finalize the run as failed or cancelled; the watermark is left untouched."""
        async with session_scope(self.session_factory) as session:
            summary = await SyncStateRepository(session).fail_run(
                run_id, error, status=status, started_before=started_before
            )
            if summary is not None:
                await ItemStore(session).drop_snapshot(run_id)
        if summary is not None:
            logger.warning("Sync run ended without success", run_id=run_id, status=status.value, error=error)
        return summary
