"""Checkpoint manager for crash recovery breadcrumbs.

Checkpoints are not on the correctness path: a failed write is logged and
dropped, never raised into the sync.
"""

from datetime import datetime
from typing import Any

import structlog
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from catalog_sync.infrastructure.database.connection import session_scope
from catalog_sync.infrastructure.database.models import SyncCheckpoint
from catalog_sync.timeutils import utcnow

logger = structlog.get_logger()


class Checkpoint(BaseModel):
    """A recorded processing stage for a job."""

    model_config = ConfigDict(from_attributes=True)

    job_id: str
    last_processed_id: str
    stage: str
    created_at: datetime
    metadata: dict[str, Any] = Field(default_factory=dict, validation_alias="checkpoint_metadata")


class CheckpointManager:
    """Append-only checkpoint store keyed by job (run) id."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def save(
        self,
        job_id: str,
        last_processed_id: str,
        stage: str,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        try:
            async with session_scope(self.session_factory) as session:
                session.add(
                    SyncCheckpoint(
                        job_id=job_id,
                        last_processed_id=last_processed_id or "",
                        stage=stage,
                        created_at=utcnow(),
                        checkpoint_metadata=metadata or {},
                    )
                )
        except Exception as e:
            logger.warning("Checkpoint save failed", job_id=job_id, stage=stage, error=str(e))

    async def get_latest(self, job_id: str) -> Checkpoint | None:
        async with session_scope(self.session_factory) as session:
            result = await session.execute(
                select(SyncCheckpoint)
                .where(SyncCheckpoint.job_id == job_id)
                .order_by(SyncCheckpoint.created_at.desc(), SyncCheckpoint.id.desc())
                .limit(1)
            )
            row = result.scalar_one_or_none()
            return Checkpoint.model_validate(row) if row is not None else None

    async def list(self, job_id: str) -> list[Checkpoint]:
        async with session_scope(self.session_factory) as session:
            result = await session.execute(
                select(SyncCheckpoint)
                .where(SyncCheckpoint.job_id == job_id)
                .order_by(SyncCheckpoint.created_at, SyncCheckpoint.id)
            )
            return [Checkpoint.model_validate(row) for row in result.scalars().all()]

    async def clear(self, job_id: str) -> int:
        """Delete all checkpoints for a job. Call only after the job succeeded."""
        async with session_scope(self.session_factory) as session:
            result = await session.execute(
                delete(SyncCheckpoint).where(SyncCheckpoint.job_id == job_id)
            )
            return result.rowcount or 0
