"""Sync state repository.

The ``sync_states`` row for a ``(store_id, sync_type)`` is shared by the
orchestrator, every batch worker and the stale-run sweeper. Each mutation
here is a single conditional UPDATE (increments, guarded status changes),
never a read-modify-write of the whole row, so concurrent writers cannot
lose each other's updates.
"""

from datetime import datetime
from typing import Any, Sequence

import structlog
from pydantic import BaseModel, ConfigDict, Field, computed_field
from sqlalchemy import and_, case, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from catalog_sync.infrastructure.database.connection import dialect_insert
from catalog_sync.infrastructure.database.models import (
    BatchStatus,
    ItemOutcome,
    RunStatus,
    SyncBatch,
    SyncBatchItem,
    SyncRun,
    SyncRunError,
    SyncSnapshotId,
    SyncState,
)
from catalog_sync.timeutils import utcnow

logger = structlog.get_logger()

DEFAULT_SYNC_TYPE = "products"
ACTIVE_RUN_STATUSES = (RunStatus.RUNNING.value, RunStatus.FINALIZING.value)


# =============================================================================
# Read models
# =============================================================================


class BatchProgress(BaseModel):
    """Dispatched batch counters for the current run."""

    total: int = 0
    completed: int = 0
    failed: int = 0
    pending: int = 0
    batch_ids: list[str] = Field(default_factory=list)


class RunError(BaseModel):
    """Item or batch error recorded during a run."""

    item_id: str | None = None
    batch_id: str | None = None
    error: str


class CurrentRun(BaseModel):
    """Progress snapshot of the most recent run."""

    run_id: str
    status: str
    mode: str | None = None
    filters: dict[str, Any] | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    total_to_process: int = 0
    discovered: int = 0
    duplicates: int = 0
    processed: int = 0
    created: int = 0
    updated: int = 0
    deleted: int = 0
    failed: int = 0
    enumeration_complete: bool = False
    cancel_requested: bool = False
    errors: list[RunError] = Field(default_factory=list)
    pre_sync_existing_ids: list[str] = Field(default_factory=list)
    batch_progress: BatchProgress = Field(default_factory=BatchProgress)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def progress(self) -> float:
        if self.status == RunStatus.COMPLETED.value:
            return 100.0
        if self.total_to_process <= 0:
            return 0.0
        return round(min(100.0, self.processed / self.total_to_process * 100), 2)


class SyncStateView(BaseModel):
    """Sync state for one store and sync type."""

    model_config = ConfigDict(from_attributes=True)

    store_id: str
    sync_type: str
    total_syncs: int = 0
    total_processed: int = 0
    total_created: int = 0
    total_updated: int = 0
    total_deleted: int = 0
    total_failed: int = 0
    last_synced_at: datetime | None = None
    last_sync_duration_ms: int = 0
    last_sync_error: str | None = None
    is_in_progress: bool = False
    current_run: CurrentRun | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class SyncRunView(BaseModel):
    """One row of sync execution history."""

    model_config = ConfigDict(from_attributes=True)

    run_id: str
    store_id: str
    sync_type: str
    job_id: str | None = None
    mode: str
    dispatch_mode: str
    status: str
    task_id: str | None = None
    started_at: datetime
    completed_at: datetime | None = None
    total_to_process: int = 0
    processed: int = 0
    created: int = 0
    updated: int = 0
    deleted: int = 0
    failed: int = 0
    error: str | None = None


# =============================================================================
# Repository
# =============================================================================


def _merge_run_into_totals() -> dict[str, Any]:
    """Column expressions folding the run counters into the cumulative totals."""
    return {
        "total_syncs": SyncState.total_syncs + 1,
        "total_processed": SyncState.total_processed + SyncState.run_processed,
        "total_created": SyncState.total_created + SyncState.run_created,
        "total_updated": SyncState.total_updated + SyncState.run_updated,
        "total_deleted": SyncState.total_deleted + SyncState.run_deleted,
        "total_failed": SyncState.total_failed + SyncState.run_failed,
    }


def _add_to_run(counts: dict[str, int]) -> dict[str, Any]:
    """Column expressions adding credited item counts to the run counters."""
    return {
        f"run_{name}": getattr(SyncState, f"run_{name}") + value
        for name, value in counts.items()
    }


class SyncStateRepository:
    """Atomic operations on sync state, runs, batches and run errors."""

    def __init__(self, session: AsyncSession):
        self.session = session

    # -------------------------------------------------------------------------
    # Lookup
    # -------------------------------------------------------------------------

    async def ensure(self, store_id: str, sync_type: str = DEFAULT_SYNC_TYPE) -> None:
        """Create the state row on first use."""
        now = utcnow()
        await self.session.execute(
            dialect_insert(self.session, SyncState)
            .values(store_id=store_id, sync_type=sync_type, created_at=now, updated_at=now)
            .on_conflict_do_nothing(index_elements=["store_id", "sync_type"])
        )

    async def get_row(self, store_id: str, sync_type: str = DEFAULT_SYNC_TYPE) -> SyncState | None:
        result = await self.session.execute(
            select(SyncState)
            .where(SyncState.store_id == store_id, SyncState.sync_type == sync_type)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_row_by_run(self, run_id: str) -> SyncState | None:
        result = await self.session.execute(
            select(SyncState)
            .where(SyncState.run_id == run_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get(
        self,
        store_id: str,
        sync_type: str = DEFAULT_SYNC_TYPE,
        include_snapshot: bool = False,
    ) -> SyncStateView | None:
        row = await self.get_row(store_id, sync_type)
        if row is None:
            return None
        return await self.to_view(row, include_snapshot=include_snapshot)

    async def list_states(self) -> list[SyncStateView]:
        result = await self.session.execute(
            select(SyncState).order_by(SyncState.store_id, SyncState.sync_type)
        )
        return [await self.to_view(row) for row in result.scalars().all()]

    async def to_view(self, row: SyncState, include_snapshot: bool = False) -> SyncStateView:
        view = SyncStateView.model_validate(row)
        if row.run_id is None:
            return view

        errors = await self.session.execute(
            select(SyncRunError)
            .where(SyncRunError.run_id == row.run_id)
            .order_by(SyncRunError.id)
        )
        batch_ids = await self.session.execute(
            select(SyncBatch.batch_id)
            .where(SyncBatch.run_id == row.run_id)
            .order_by(SyncBatch.created_at, SyncBatch.batch_id)
        )
        snapshot: list[str] = []
        if include_snapshot:
            snapshot_rows = await self.session.execute(
                select(SyncSnapshotId.item_id)
                .where(SyncSnapshotId.run_id == row.run_id)
                .order_by(SyncSnapshotId.item_id)
            )
            snapshot = list(snapshot_rows.scalars().all())

        view.current_run = CurrentRun(
            run_id=row.run_id,
            status=row.run_status or RunStatus.RUNNING.value,
            mode=row.run_mode,
            filters=row.run_filters,
            started_at=row.run_started_at,
            completed_at=row.run_completed_at,
            total_to_process=row.run_total_to_process,
            discovered=row.run_discovered,
            duplicates=row.run_duplicates,
            processed=row.run_processed,
            created=row.run_created,
            updated=row.run_updated,
            deleted=row.run_deleted,
            failed=row.run_failed,
            enumeration_complete=row.run_enumeration_complete,
            cancel_requested=row.run_cancel_requested,
            errors=[
                RunError(item_id=err.item_id, batch_id=err.batch_id, error=err.error)
                for err in errors.scalars().all()
            ],
            pre_sync_existing_ids=snapshot,
            batch_progress=BatchProgress(
                total=row.batches_total,
                completed=row.batches_completed,
                failed=row.batches_failed,
                pending=row.batches_pending,
                batch_ids=list(batch_ids.scalars().all()),
            ),
        )
        return view

    # -------------------------------------------------------------------------
    # Run lifecycle
    # -------------------------------------------------------------------------

    async def claim(
        self,
        store_id: str,
        sync_type: str,
        run_id: str,
        mode: str,
        filters: dict[str, Any] | None,
        dispatch_mode: str,
        purge_after_days: int | None = None,
        job_id: str | None = None,
    ) -> bool:
        """Start a run if none is in progress. Returns True when this caller won."""
        now = utcnow()
        result = await self.session.execute(
            update(SyncState)
            .where(
                SyncState.store_id == store_id,
                SyncState.sync_type == sync_type,
                SyncState.is_in_progress.is_(False),
            )
            .values(
                is_in_progress=True,
                run_id=run_id,
                run_status=RunStatus.RUNNING.value,
                run_mode=mode,
                run_filters=filters,
                run_started_at=now,
                run_completed_at=None,
                run_total_to_process=0,
                run_discovered=0,
                run_duplicates=0,
                run_processed=0,
                run_created=0,
                run_updated=0,
                run_deleted=0,
                run_failed=0,
                run_enumeration_complete=False,
                run_reconcile=False,
                run_cancel_requested=False,
                run_purge_after_days=purge_after_days,
                batches_total=0,
                batches_completed=0,
                batches_failed=0,
                batches_pending=0,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return False

        self.session.add(
            SyncRun(
                run_id=run_id,
                store_id=store_id,
                sync_type=sync_type,
                job_id=job_id,
                mode=mode,
                dispatch_mode=dispatch_mode,
                status=RunStatus.RUNNING.value,
                started_at=now,
            )
        )
        await self.session.flush()
        return True

    async def record_discovered(
        self, run_id: str, discovered: int, unique: int, duplicates: int
    ) -> None:
        """Add one enumeration page's id counts to the run."""
        await self.session.execute(
            update(SyncState)
            .where(SyncState.run_id == run_id, SyncState.run_status == RunStatus.RUNNING.value)
            .values(
                run_discovered=SyncState.run_discovered + discovered,
                run_total_to_process=SyncState.run_total_to_process + unique,
                run_duplicates=SyncState.run_duplicates + duplicates,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )

    async def record_progress(
        self,
        run_id: str,
        processed: int = 0,
        created: int = 0,
        updated: int = 0,
        deleted: int = 0,
        failed: int = 0,
    ) -> None:
        """Increment the run's item counters."""
        await self.session.execute(
            update(SyncState)
            .where(SyncState.run_id == run_id, SyncState.run_status.in_(ACTIVE_RUN_STATUSES))
            .values(
                run_processed=SyncState.run_processed + processed,
                run_created=SyncState.run_created + created,
                run_updated=SyncState.run_updated + updated,
                run_deleted=SyncState.run_deleted + deleted,
                run_failed=SyncState.run_failed + failed,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )

    async def add_errors(
        self, run_id: str, errors: Sequence[tuple[str | None, str | None, str]]
    ) -> None:
        """Append ``(item_id, batch_id, message)`` errors to the run."""
        now = utcnow()
        for item_id, batch_id, message in errors:
            self.session.add(
                SyncRunError(
                    run_id=run_id, item_id=item_id, batch_id=batch_id, error=message, created_at=now
                )
            )
        await self.session.flush()

    async def record_item_outcomes(
        self,
        run_id: str,
        batch_id: str,
        outcomes: Sequence[tuple[str, ItemOutcome, str | None]],
    ) -> None:
        """Credit ``(item_id, outcome, error)`` results to a batch.

        A retried attempt replaces the earlier credit for the same item, so
        counts are folded into the run only once, when the batch closes. An
        item created by an earlier attempt stays 'created' when the retry
        finds it stored, and likewise 'deleted' wins over 'missing'.
        """
        if not outcomes:
            return
        stmt = dialect_insert(self.session, SyncBatchItem).values(
            [
                {
                    "run_id": run_id,
                    "batch_id": batch_id,
                    "item_id": item_id,
                    "outcome": outcome.value,
                    "error": error,
                }
                for item_id, outcome, error in outcomes
            ]
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["run_id", "batch_id", "item_id"],
            set_={
                "outcome": case(
                    (
                        and_(
                            SyncBatchItem.outcome == ItemOutcome.CREATED.value,
                            stmt.excluded.outcome == ItemOutcome.UPDATED.value,
                        ),
                        ItemOutcome.CREATED.value,
                    ),
                    (
                        and_(
                            SyncBatchItem.outcome == ItemOutcome.DELETED.value,
                            stmt.excluded.outcome == ItemOutcome.MISSING.value,
                        ),
                        ItemOutcome.DELETED.value,
                    ),
                    else_=stmt.excluded.outcome,
                ),
                "error": stmt.excluded.error,
            },
        )
        await self.session.execute(stmt)

    async def _credited(self, run_id: str, batch_ids: Any) -> dict[str, int]:
        """Item counts credited to the given batches, keyed by run counter name."""
        result = await self.session.execute(
            select(SyncBatchItem.outcome, func.count())
            .where(SyncBatchItem.run_id == run_id, SyncBatchItem.batch_id.in_(batch_ids))
            .group_by(SyncBatchItem.outcome)
        )
        by_outcome = {outcome: count for outcome, count in result.all()}
        created = by_outcome.get(ItemOutcome.CREATED.value, 0)
        updated = by_outcome.get(ItemOutcome.UPDATED.value, 0)
        deleted = by_outcome.get(ItemOutcome.DELETED.value, 0)
        missing = by_outcome.get(ItemOutcome.MISSING.value, 0)
        return {
            "processed": created + updated + deleted + missing,
            "created": created,
            "updated": updated,
            "deleted": deleted,
            "failed": by_outcome.get(ItemOutcome.FAILED.value, 0),
        }

    async def _copy_item_errors(self, run_id: str, batch_ids: Any) -> None:
        result = await self.session.execute(
            select(SyncBatchItem.batch_id, SyncBatchItem.item_id, SyncBatchItem.error)
            .where(
                SyncBatchItem.run_id == run_id,
                SyncBatchItem.batch_id.in_(batch_ids),
                SyncBatchItem.outcome == ItemOutcome.FAILED.value,
            )
            .order_by(SyncBatchItem.batch_id, SyncBatchItem.item_id)
        )
        errors = [
            (item_id, batch_id, error or "Item failed") for batch_id, item_id, error in result.all()
        ]
        if errors:
            await self.add_errors(run_id, errors)

    async def mark_enumeration_complete(self, run_id: str, reconcile: bool) -> None:
        await self.session.execute(
            update(SyncState)
            .where(SyncState.run_id == run_id, SyncState.run_status == RunStatus.RUNNING.value)
            .values(run_enumeration_complete=True, run_reconcile=reconcile, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )

    async def request_cancel(self, run_id: str) -> bool:
        result = await self.session.execute(
            update(SyncState)
            .where(SyncState.run_id == run_id, SyncState.run_status == RunStatus.RUNNING.value)
            .values(run_cancel_requested=True, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def run_flags(self, run_id: str) -> tuple[str | None, bool]:
        """``(run_status, cancel_requested)`` for the run, or ``(None, False)``."""
        result = await self.session.execute(
            select(SyncState.run_status, SyncState.run_cancel_requested).where(
                SyncState.run_id == run_id
            )
        )
        row = result.first()
        if row is None:
            return None, False
        return row[0], bool(row[1])

    # -------------------------------------------------------------------------
    # Batches
    # -------------------------------------------------------------------------

    async def register_batch(self, run_id: str, batch_id: str, item_count: int) -> bool:
        """Record a dispatched batch and bump the batch totals."""
        result = await self.session.execute(
            update(SyncState)
            .where(SyncState.run_id == run_id, SyncState.run_status == RunStatus.RUNNING.value)
            .values(
                batches_total=SyncState.batches_total + 1,
                batches_pending=SyncState.batches_pending + 1,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return False
        self.session.add(
            SyncBatch(
                run_id=run_id,
                batch_id=batch_id,
                item_count=item_count,
                status=BatchStatus.PENDING.value,
                created_at=utcnow(),
            )
        )
        await self.session.flush()
        return True

    async def set_batch_task(self, run_id: str, batch_id: str, task_id: str) -> None:
        await self.session.execute(
            update(SyncBatch)
            .where(SyncBatch.run_id == run_id, SyncBatch.batch_id == batch_id)
            .values(task_id=task_id)
            .execution_options(synchronize_session=False)
        )

    async def _close_batch(
        self, run_id: str, batch_id: str, status: BatchStatus, error: str | None
    ) -> bool:
        # Moving the batch row out of 'pending' is the redelivery guard.
        closed = await self.session.execute(
            update(SyncBatch)
            .where(
                SyncBatch.run_id == run_id,
                SyncBatch.batch_id == batch_id,
                SyncBatch.status == BatchStatus.PENDING.value,
            )
            .values(status=status.value, error=error)
            .execution_options(synchronize_session=False)
        )
        if closed.rowcount != 1:
            return False

        counter = (
            {"batches_completed": SyncState.batches_completed + 1}
            if status == BatchStatus.COMPLETED
            else {"batches_failed": SyncState.batches_failed + 1}
        )
        credited = await self._credited(run_id, [batch_id])
        result = await self.session.execute(
            update(SyncState)
            .where(
                SyncState.run_id == run_id,
                SyncState.batches_completed + SyncState.batches_failed < SyncState.batches_total,
            )
            .values(
                **counter,
                **_add_to_run(credited),
                batches_pending=SyncState.batches_pending - 1,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return False
        await self._copy_item_errors(run_id, [batch_id])
        return True

    async def complete_batch(self, run_id: str, batch_id: str) -> bool:
        return await self._close_batch(run_id, batch_id, BatchStatus.COMPLETED, None)

    async def fail_batch(self, run_id: str, batch_id: str, error: str) -> bool:
        closed = await self._close_batch(run_id, batch_id, BatchStatus.FAILED, error)
        if closed:
            await self.add_errors(run_id, [(None, batch_id, error)])
        return closed

    # -------------------------------------------------------------------------
    # Finalization
    # -------------------------------------------------------------------------

    async def begin_finalize(self, run_id: str) -> bool:
        """Move a finished run to 'finalizing'. Exactly one caller wins."""
        result = await self.session.execute(
            update(SyncState)
            .where(
                SyncState.run_id == run_id,
                SyncState.run_status == RunStatus.RUNNING.value,
                SyncState.run_enumeration_complete.is_(True),
                SyncState.batches_completed + SyncState.batches_failed >= SyncState.batches_total,
            )
            .values(run_status=RunStatus.FINALIZING.value, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def complete_run(self, run_id: str) -> SyncRunView | None:
        """Finish a run held in 'finalizing'.

        Advances the watermark only when no batch failed; otherwise the run
        ends as 'partial' with a summary error.
        """
        row = await self.get_row_by_run(run_id)
        if row is None or row.run_status != RunStatus.FINALIZING.value:
            return None

        now = utcnow()
        values: dict[str, Any] = {
            "is_in_progress": False,
            "run_completed_at": now,
            "last_sync_duration_ms": _duration_ms(row.run_started_at, now),
            "updated_at": now,
            **_merge_run_into_totals(),
        }
        if row.batches_failed:
            status = RunStatus.PARTIAL
            values["last_sync_error"] = (
                f"{row.batches_failed} of {row.batches_total} batches failed"
            )
        else:
            status = RunStatus.COMPLETED
            values["last_synced_at"] = now
            values["last_sync_error"] = None
        values["run_status"] = status.value

        result = await self.session.execute(
            update(SyncState)
            .where(SyncState.run_id == run_id, SyncState.run_status == RunStatus.FINALIZING.value)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return None
        return await self._close_run_record(run_id, status, values.get("last_sync_error"))

    async def fail_run(
        self,
        run_id: str,
        error: str,
        status: RunStatus = RunStatus.FAILED,
        started_before: datetime | None = None,
    ) -> SyncRunView | None:
        """Force a run to a failed terminal state.

        Never touches ``last_synced_at``. Pending batches are counted as
        failed and whatever their items were credited with is folded into
        the run. Returns None when the run was already terminal.
        """
        now = utcnow()
        conditions = [
            SyncState.run_id == run_id,
            SyncState.is_in_progress.is_(True),
            SyncState.run_status.in_(ACTIVE_RUN_STATUSES),
        ]
        if started_before is not None:
            conditions.append(SyncState.run_started_at < started_before)

        result = await self.session.execute(
            update(SyncState)
            .where(and_(*conditions))
            .values(
                is_in_progress=False,
                run_status=status.value,
                run_completed_at=now,
                last_sync_error=error,
                batches_failed=SyncState.batches_failed + SyncState.batches_pending,
                batches_pending=0,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return None

        abandoned = await self.session.execute(
            update(SyncBatch)
            .where(SyncBatch.run_id == run_id, SyncBatch.status == BatchStatus.PENDING.value)
            .values(status=BatchStatus.FAILED.value, error=error)
            .returning(SyncBatch.batch_id)
            .execution_options(synchronize_session=False)
        )
        abandoned_ids = list(abandoned.scalars().all())
        credited = await self._credited(run_id, abandoned_ids)
        await self._copy_item_errors(run_id, abandoned_ids)

        row = await self.get_row_by_run(run_id)
        if row is not None:
            await self.session.execute(
                update(SyncState)
                .where(SyncState.id == row.id)
                .values(
                    **_add_to_run(credited),
                    last_sync_duration_ms=_duration_ms(row.run_started_at, now),
                )
                .execution_options(synchronize_session=False)
            )
            await self.session.execute(
                update(SyncState)
                .where(SyncState.id == row.id)
                .values(**_merge_run_into_totals())
                .execution_options(synchronize_session=False)
            )
        return await self._close_run_record(run_id, status, error)

    async def find_stale(self, started_before: datetime) -> list[str]:
        """Run ids still in progress that started before the threshold."""
        result = await self.session.execute(
            select(SyncState.run_id).where(
                SyncState.is_in_progress.is_(True),
                SyncState.run_started_at < started_before,
                SyncState.run_id.is_not(None),
            )
        )
        return [run_id for run_id in result.scalars().all() if run_id]

    async def find_stale_for(
        self, store_id: str, sync_type: str, started_before: datetime
    ) -> str | None:
        result = await self.session.execute(
            select(SyncState.run_id).where(
                SyncState.store_id == store_id,
                SyncState.sync_type == sync_type,
                SyncState.is_in_progress.is_(True),
                SyncState.run_started_at < started_before,
            )
        )
        return result.scalar_one_or_none()

    async def _close_run_record(
        self, run_id: str, status: RunStatus, error: str | None
    ) -> SyncRunView | None:
        row = await self.get_row_by_run(run_id)
        if row is None:
            return None
        await self.session.execute(
            update(SyncRun)
            .where(SyncRun.run_id == run_id)
            .values(
                status=status.value,
                completed_at=row.run_completed_at,
                total_to_process=row.run_total_to_process,
                processed=row.run_processed,
                created=row.run_created,
                updated=row.run_updated,
                deleted=row.run_deleted,
                failed=row.run_failed,
                error=error,
            )
            .execution_options(synchronize_session=False)
        )
        logger.info(
            "Sync run finalized",
            run_id=run_id,
            store_id=row.store_id,
            status=status.value,
            processed=row.run_processed,
            created=row.run_created,
            updated=row.run_updated,
            deleted=row.run_deleted,
            failed=row.run_failed,
        )
        return await self.get_run(run_id)

    # -------------------------------------------------------------------------
    # Execution history
    # -------------------------------------------------------------------------

    async def set_run_task(self, run_id: str, task_id: str) -> None:
        await self.session.execute(
            update(SyncRun)
            .where(SyncRun.run_id == run_id)
            .values(task_id=task_id)
            .execution_options(synchronize_session=False)
        )

    async def get_run(self, run_id: str) -> SyncRunView | None:
        result = await self.session.execute(
            select(SyncRun)
            .where(SyncRun.run_id == run_id)
            .execution_options(populate_existing=True)
        )
        row = result.scalar_one_or_none()
        return SyncRunView.model_validate(row) if row is not None else None

    async def list_runs(
        self,
        store_id: str | None = None,
        sync_type: str | None = None,
        limit: int = 10,
        offset: int = 0,
        job_id: str | None = None,
        status: str | None = None,
    ) -> list[SyncRunView]:
        stmt = select(SyncRun)
        if store_id:
            stmt = stmt.where(SyncRun.store_id == store_id)
        if sync_type:
            stmt = stmt.where(SyncRun.sync_type == sync_type)
        if job_id:
            stmt = stmt.where(SyncRun.job_id == job_id)
        if status:
            stmt = stmt.where(SyncRun.status == status)
        result = await self.session.execute(
            stmt.order_by(SyncRun.started_at.desc()).limit(limit).offset(offset)
        )
        return [SyncRunView.model_validate(row) for row in result.scalars().all()]


def _duration_ms(started_at: datetime | None, ended_at: datetime) -> int:
    if started_at is None:
        return 0
    return max(0, int((ended_at - started_at).total_seconds() * 1000))
