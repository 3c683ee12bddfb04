"""SQLAlchemy models for the catalog mirror and its sync bookkeeping.

Every list that is mutated while a run is in flight (errors, batch ids,
the pre-sync snapshot) lives in its own table so that writers only ever
issue single-row inserts, deletes or conditional updates.
"""

from datetime import datetime
from enum import Enum as PyEnum
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    TypeDecorator,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from catalog_sync.timeutils import ensure_utc, utcnow


class UTCDateTime(TypeDecorator):
    """Timezone-aware UTC datetime on every backend.

    SQLite drops offsets, so values are normalised to UTC on the way in and
    re-tagged as UTC on the way out.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: Optional[datetime], dialect: Any) -> Optional[datetime]:
        value = ensure_utc(value)
        if value is not None and dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value: Optional[datetime], dialect: Any) -> Optional[datetime]:
        return ensure_utc(value)


class Base(DeclarativeBase):
    """Base class for all models."""


# =============================================================================
# Enums
# =============================================================================


class ItemAction(str, PyEnum):
    """Last action recorded against a mirrored item."""

    ADDED = "ADDED"
    UPDATED = "UPDATED"
    DELETED = "DELETED"


class RunStatus(str, PyEnum):
    """Lifecycle of a sync run."""

    RUNNING = "running"
    FINALIZING = "finalizing"
    COMPLETED = "completed"
    PARTIAL = "partial"
    FAILED = "failed"
    CANCELLED = "cancelled"


class SyncMode(str, PyEnum):
    """Full or incremental enumeration."""

    FULL = "full"
    INCREMENTAL = "incremental"


class BatchStatus(str, PyEnum):
    """Status of one dispatched batch."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class ItemOutcome(str, PyEnum):
    """What a batch did with one item id."""

    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"
    MISSING = "missing"
    FAILED = "failed"


class ScheduleFrequency(str, PyEnum):
    """How often a saved sync job runs on its own."""

    MANUAL = "manual"
    HOURLY = "hourly"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


TERMINAL_RUN_STATUSES = (
    RunStatus.COMPLETED,
    RunStatus.PARTIAL,
    RunStatus.FAILED,
    RunStatus.CANCELLED,
)


# =============================================================================
# Catalog Items
# =============================================================================


class CatalogItem(Base):
    """A product mirrored from the source catalog, with sync metadata."""

    __tablename__ = "catalog_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    store_id: Mapped[str] = mapped_column(String(255), nullable=False)
    item_id: Mapped[str] = mapped_column(String(255), nullable=False)

    title: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    description: Mapped[Optional[str]] = mapped_column(Text)
    handle: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    category: Mapped[Optional[str]] = mapped_column(String(255))
    vendor: Mapped[Optional[str]] = mapped_column(String(255))
    tags: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    variants: Mapped[list] = mapped_column(JSON, default=list, nullable=False)

    source_created_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime)
    source_updated_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime)
    local_created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
    local_updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)

    # Sync metadata
    deleted_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime)
    last_action: Mapped[str] = mapped_column(String(16), nullable=False, default=ItemAction.ADDED.value)
    first_seen_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
    last_modified_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
    sync_cursor: Mapped[Optional[str]] = mapped_column(String(64))

    __table_args__ = (
        UniqueConstraint("store_id", "item_id", name="uq_catalog_items_store_item"),
        Index("ix_catalog_items_store_deleted", "store_id", "deleted_at"),
        Index("ix_catalog_items_category", "category"),
        Index("ix_catalog_items_vendor", "vendor"),
        Index("ix_catalog_items_source_updated", "source_updated_at"),
    )


# =============================================================================
# Sync State
# =============================================================================


class SyncState(Base):
    """Per (store, sync type) sync status, cumulative totals and current run."""

    __tablename__ = "sync_states"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    store_id: Mapped[str] = mapped_column(String(255), nullable=False)
    sync_type: Mapped[str] = mapped_column(String(50), nullable=False)

    # Cumulative counters
    total_syncs: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_processed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_created: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_updated: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_deleted: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_failed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    last_synced_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime)
    last_sync_duration_ms: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_sync_error: Mapped[Optional[str]] = mapped_column(Text)
    is_in_progress: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Current run
    run_id: Mapped[Optional[str]] = mapped_column(String(64))
    run_status: Mapped[Optional[str]] = mapped_column(String(16))
    run_mode: Mapped[Optional[str]] = mapped_column(String(16))
    run_filters: Mapped[Optional[dict]] = mapped_column(JSON)
    run_started_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime)
    run_completed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime)
    run_total_to_process: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    run_discovered: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    run_duplicates: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    run_processed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    run_created: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    run_updated: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    run_deleted: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    run_failed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    run_enumeration_complete: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    run_reconcile: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    run_cancel_requested: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    run_purge_after_days: Mapped[Optional[int]] = mapped_column(Integer)

    # Batch progress
    batches_total: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    batches_completed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    batches_failed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    batches_pending: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("store_id", "sync_type", name="uq_sync_states_store_type"),
        Index("ix_sync_states_run_id", "run_id"),
    )


class SyncRun(Base):
    """History of sync executions, one row per run."""

    __tablename__ = "sync_runs"

    run_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    store_id: Mapped[str] = mapped_column(String(255), nullable=False)
    sync_type: Mapped[str] = mapped_column(String(50), nullable=False)
    mode: Mapped[str] = mapped_column(String(16), nullable=False)
    job_id: Mapped[Optional[str]] = mapped_column(String(64))
    dispatch_mode: Mapped[str] = mapped_column(String(16), nullable=False, default="inline")
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    task_id: Mapped[Optional[str]] = mapped_column(String(255))
    started_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
    completed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime)
    total_to_process: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    processed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    updated: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    deleted: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    failed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    error: Mapped[Optional[str]] = mapped_column(Text)

    __table_args__ = (
        Index("ix_sync_runs_store_started", "store_id", "started_at"),
        Index("ix_sync_runs_job_started", "job_id", "started_at"),
    )


class SyncBatch(Base):
    """One dispatched batch of item ids within a run."""

    __tablename__ = "sync_batches"

    run_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    batch_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=BatchStatus.PENDING.value)
    item_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    task_id: Mapped[Optional[str]] = mapped_column(String(255))
    error: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)


class SyncBatchItem(Base):
    """Per-item credit for a batch.

    Keyed by ``(run_id, batch_id, item_id)`` so a retried batch overwrites
    its earlier attempt instead of adding to it. Counters are folded into
    the run when the batch closes.
    """

    __tablename__ = "sync_batch_items"

    run_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    batch_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    item_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    outcome: Mapped[str] = mapped_column(String(16), nullable=False)
    error: Mapped[Optional[str]] = mapped_column(Text)


class SyncRunError(Base):
    """Item or batch level error recorded during a run."""

    __tablename__ = "sync_run_errors"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    run_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    item_id: Mapped[Optional[str]] = mapped_column(String(255))
    batch_id: Mapped[Optional[str]] = mapped_column(String(64))
    error: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)


class SyncSnapshotId(Base):
    """Item ids that existed before a full sync and have not been seen yet."""

    __tablename__ = "sync_snapshot_ids"

    run_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    item_id: Mapped[str] = mapped_column(String(255), primary_key=True)


# =============================================================================
# Sync Jobs
# =============================================================================


class SyncJob(Base):
    """A saved, reusable sync configuration for one store."""

    __tablename__ = "sync_jobs"

    job_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    source_type: Mapped[str] = mapped_column(String(50), nullable=False, default="shopify")
    destination_type: Mapped[str] = mapped_column(String(50), nullable=False, default="catalog")
    store_id: Mapped[str] = mapped_column(String(255), nullable=False)
    access_token: Mapped[str] = mapped_column(Text, nullable=False)
    options: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)
    enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    schedule_frequency: Mapped[str] = mapped_column(
        String(16), nullable=False, default=ScheduleFrequency.MANUAL.value
    )
    last_scheduled_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime)
    created_by: Mapped[Optional[str]] = mapped_column(String(255))
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)

    __table_args__ = (
        Index("ix_sync_jobs_enabled_frequency", "enabled", "schedule_frequency"),
        Index("ix_sync_jobs_store", "store_id"),
    )


# =============================================================================
# Checkpoints
# =============================================================================


class SyncCheckpoint(Base):
    """Append-only crash recovery breadcrumb."""

    __tablename__ = "sync_checkpoints"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    job_id: Mapped[str] = mapped_column(String(64), nullable=False)
    last_processed_id: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    stage: Mapped[str] = mapped_column(String(50), nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
    checkpoint_metadata: Mapped[dict] = mapped_column("metadata", JSON, default=dict, nullable=False)

    __table_args__ = (
        Index("ix_sync_checkpoints_job_created", "job_id", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<SyncCheckpoint {self.job_id}: {self.stage}@{self.last_processed_id}>"
