"""Saved sync jobs: reusable store configurations, run on demand or on a schedule.

A job stores the store's credentials and a ``SyncOptions`` configuration.
Every run a job starts is an ordinary sync run tagged with the job id, so
execution history, the store lock and the watermark are shared with runs
started directly through ``/sync/products``.
"""

from datetime import datetime, timedelta
from typing import Any, Literal
from uuid import uuid4

import structlog
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from catalog_sync.exceptions import CatalogSyncError, SyncInProgressError, SyncJobNotFoundError
from catalog_sync.infrastructure.database.connection import session_scope
from catalog_sync.infrastructure.database.models import (
    RunStatus,
    ScheduleFrequency,
    SyncJob,
    SyncRun,
)
from catalog_sync.services.source_client import SourceCredentials
from catalog_sync.services.sync_options import SyncOptions
from catalog_sync.services.sync_orchestrator import RunTicket, SyncOrchestrator
from catalog_sync.services.sync_state import SyncRunView, SyncStateRepository
from catalog_sync.timeutils import utcnow

logger = structlog.get_logger()

SCHEDULE_INTERVALS = {
    ScheduleFrequency.HOURLY: timedelta(hours=1),
    ScheduleFrequency.DAILY: timedelta(days=1),
    ScheduleFrequency.WEEKLY: timedelta(days=7),
    ScheduleFrequency.MONTHLY: timedelta(days=30),
}

SyncKind = Literal["full", "incremental"]


# =============================================================================
# Models
# =============================================================================


class JobSchedule(BaseModel):
    model_config = ConfigDict(extra="forbid")

    frequency: ScheduleFrequency = ScheduleFrequency.MANUAL


class SyncJobCreate(BaseModel):
    """Body of ``POST /jobs``. Credentials come from request headers."""

    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=1, max_length=255)
    description: str | None = None
    source_type: Literal["shopify"] = "shopify"
    destination_type: str = Field("catalog", min_length=1, max_length=50)
    configuration: SyncOptions = Field(default_factory=SyncOptions)
    enabled: bool = True
    schedule: JobSchedule = Field(default_factory=JobSchedule)
    created_by: str | None = None


class SyncJobUpdate(BaseModel):
    """Body of ``PUT /jobs/{job_id}``.

    ``configuration`` is merged into the stored one: only the options
    present in the body change.
    """

    model_config = ConfigDict(extra="forbid")

    name: str | None = Field(None, min_length=1, max_length=255)
    description: str | None = None
    destination_type: str | None = Field(None, min_length=1, max_length=50)
    configuration: SyncOptions | None = None
    enabled: bool | None = None
    schedule: JobSchedule | None = None


class ExecutionRequest(BaseModel):
    """Body of ``POST /jobs/{job_id}/executions``."""

    model_config = ConfigDict(extra="forbid")

    sync_type: SyncKind | None = None
    created_by: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class ScheduleView(BaseModel):
    frequency: str
    last_scheduled_at: datetime | None = None


class SyncJobView(BaseModel):
    """A saved job as returned by the API. The access token is never included."""

    job_id: str
    name: str
    description: str | None = None
    source_type: str
    destination_type: str
    store_id: str
    configuration: dict[str, Any]
    enabled: bool
    schedule: ScheduleView
    created_by: str | None = None
    created_at: datetime
    updated_at: datetime
    last_execution_id: str | None = None
    last_successful_execution: datetime | None = None


def is_due(frequency: str, last_scheduled_at: datetime | None, now: datetime) -> bool:
    """Whether a job with this schedule should run at ``now``. Manual jobs never are."""
    interval = SCHEDULE_INTERVALS.get(ScheduleFrequency(frequency))
    if interval is None:
        return False
    return last_scheduled_at is None or now - last_scheduled_at >= interval


# =============================================================================
# Repository
# =============================================================================


class SyncJobRepository:
    """Data access for saved sync jobs."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, data: SyncJobCreate, credentials: SourceCredentials) -> SyncJob:
        now = utcnow()
        job = SyncJob(
            job_id=uuid4().hex,
            name=data.name,
            description=data.description,
            source_type=data.source_type,
            destination_type=data.destination_type,
            store_id=credentials.shop_domain,
            access_token=credentials.access_token,
            options=data.configuration.model_dump(mode="json", exclude_defaults=True),
            enabled=data.enabled,
            schedule_frequency=data.schedule.frequency.value,
            created_by=data.created_by,
            created_at=now,
            updated_at=now,
        )
        self.session.add(job)
        await self.session.flush()
        return job

    async def get(self, job_id: str) -> SyncJob | None:
        result = await self.session.execute(
            select(SyncJob)
            .where(SyncJob.job_id == job_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_jobs(
        self,
        enabled: bool | None = None,
        store_id: str | None = None,
        source_type: str | None = None,
        destination_type: str | None = None,
    ) -> list[SyncJob]:
        stmt = select(SyncJob)
        if enabled is not None:
            stmt = stmt.where(SyncJob.enabled.is_(enabled))
        if store_id:
            stmt = stmt.where(SyncJob.store_id == store_id)
        if source_type:
            stmt = stmt.where(SyncJob.source_type == source_type)
        if destination_type:
            stmt = stmt.where(SyncJob.destination_type == destination_type)
        result = await self.session.execute(
            stmt.order_by(SyncJob.updated_at.desc(), SyncJob.job_id)
        )
        return list(result.scalars().all())

    async def update(
        self,
        job_id: str,
        changes: SyncJobUpdate,
        credentials: SourceCredentials | None = None,
    ) -> SyncJob | None:
        job = await self.get(job_id)
        if job is None:
            return None

        values: dict[str, Any] = changes.model_dump(
            include={"name", "description", "destination_type", "enabled"}, exclude_unset=True
        )
        if changes.configuration is not None:
            merged = {
                **(job.options or {}),
                **changes.configuration.model_dump(mode="json", exclude_unset=True),
            }
            values["options"] = SyncOptions.model_validate(merged).model_dump(
                mode="json", exclude_defaults=True
            )
        if changes.schedule is not None:
            values["schedule_frequency"] = changes.schedule.frequency.value
        if credentials is not None:
            values["store_id"] = credentials.shop_domain
            values["access_token"] = credentials.access_token
        values["updated_at"] = utcnow()

        await self.session.execute(
            update(SyncJob)
            .where(SyncJob.job_id == job_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return await self.get(job_id)

    async def delete(self, job_id: str) -> bool:
        """Remove the job. Runs it started stay in the execution history."""
        result = await self.session.execute(delete(SyncJob).where(SyncJob.job_id == job_id))
        return result.rowcount == 1

    async def scheduled(self) -> list[SyncJob]:
        """Enabled jobs with a recurring schedule."""
        result = await self.session.execute(
            select(SyncJob)
            .where(
                SyncJob.enabled.is_(True),
                SyncJob.schedule_frequency != ScheduleFrequency.MANUAL.value,
            )
            .order_by(SyncJob.created_at, SyncJob.job_id)
        )
        return list(result.scalars().all())

    async def claim_schedule(
        self, job_id: str, previous: datetime | None, now: datetime
    ) -> bool:
        """Stamp the job as scheduled at ``now``.

        Only succeeds while ``last_scheduled_at`` still holds ``previous``, so
        two overlapping scheduler passes cannot both start the same job.
        """
        condition = (
            SyncJob.last_scheduled_at.is_(None)
            if previous is None
            else SyncJob.last_scheduled_at == previous
        )
        result = await self.session.execute(
            update(SyncJob)
            .where(SyncJob.job_id == job_id, condition)
            .values(last_scheduled_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def run_summary(self, job_ids: list[str]) -> dict[str, tuple[str | None, datetime | None]]:
        """``job_id -> (latest run id, latest successful completion)`` from the run history."""
        if not job_ids:
            return {}
        latest = await self.session.execute(
            select(SyncRun.job_id, SyncRun.run_id)
            .where(SyncRun.job_id.in_(job_ids))
            .order_by(SyncRun.job_id, SyncRun.started_at.desc())
        )
        last_run: dict[str, str] = {}
        for job_id, run_id in latest.all():
            last_run.setdefault(job_id, run_id)

        succeeded = await self.session.execute(
            select(SyncRun.job_id, func.max(SyncRun.completed_at))
            .where(SyncRun.job_id.in_(job_ids), SyncRun.status == RunStatus.COMPLETED.value)
            .group_by(SyncRun.job_id)
        )
        last_success = {job_id: completed_at for job_id, completed_at in succeeded.all()}
        return {
            job_id: (last_run.get(job_id), last_success.get(job_id)) for job_id in job_ids
        }

    async def to_views(self, jobs: list[SyncJob]) -> list[SyncJobView]:
        summary = await self.run_summary([job.job_id for job in jobs])
        views = []
        for job in jobs:
            last_run_id, last_success = summary.get(job.job_id, (None, None))
            views.append(
                SyncJobView(
                    job_id=job.job_id,
                    name=job.name,
                    description=job.description,
                    source_type=job.source_type,
                    destination_type=job.destination_type,
                    store_id=job.store_id,
                    configuration=job.options or {},
                    enabled=job.enabled,
                    schedule=ScheduleView(
                        frequency=job.schedule_frequency,
                        last_scheduled_at=job.last_scheduled_at,
                    ),
                    created_by=job.created_by,
                    created_at=job.created_at,
                    updated_at=job.updated_at,
                    last_execution_id=last_run_id,
                    last_successful_execution=last_success,
                )
            )
        return views


# =============================================================================
# Service
# =============================================================================


class SyncJobService:
    """Manages saved jobs and starts their runs through the orchestrator."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        orchestrator: SyncOrchestrator,
    ):
        self.session_factory = session_factory
        self.orchestrator = orchestrator

    async def create(self, data: SyncJobCreate, credentials: SourceCredentials) -> SyncJobView:
        async with session_scope(self.session_factory) as session:
            repo = SyncJobRepository(session)
            job = await repo.create(data, credentials)
            [view] = await repo.to_views([job])
        logger.info(
            "Created sync job",
            job_id=view.job_id,
            name=view.name,
            store_id=view.store_id,
            frequency=view.schedule.frequency,
        )
        return view

    async def get(self, job_id: str) -> SyncJobView:
        async with session_scope(self.session_factory) as session:
            repo = SyncJobRepository(session)
            job = await repo.get(job_id)
            if job is None:
                raise SyncJobNotFoundError(job_id)
            [view] = await repo.to_views([job])
        return view

    async def list_jobs(self, **filters: Any) -> list[SyncJobView]:
        async with session_scope(self.session_factory) as session:
            repo = SyncJobRepository(session)
            return await repo.to_views(await repo.list_jobs(**filters))

    async def update(
        self,
        job_id: str,
        changes: SyncJobUpdate,
        credentials: SourceCredentials | None = None,
    ) -> SyncJobView:
        async with session_scope(self.session_factory) as session:
            repo = SyncJobRepository(session)
            job = await repo.update(job_id, changes, credentials)
            if job is None:
                raise SyncJobNotFoundError(job_id)
            [view] = await repo.to_views([job])
        logger.info("Updated sync job", job_id=job_id)
        return view

    async def delete(self, job_id: str) -> None:
        async with session_scope(self.session_factory) as session:
            deleted = await SyncJobRepository(session).delete(job_id)
        if not deleted:
            raise SyncJobNotFoundError(job_id)
        logger.info("Deleted sync job", job_id=job_id)

    async def list_executions(
        self,
        job_id: str,
        limit: int = 10,
        offset: int = 0,
        status: str | None = None,
    ) -> list[SyncRunView]:
        async with session_scope(self.session_factory) as session:
            if await SyncJobRepository(session).get(job_id) is None:
                raise SyncJobNotFoundError(job_id)
            return await SyncStateRepository(session).list_runs(
                limit=limit, offset=offset, job_id=job_id, status=status
            )

    async def _prepare(
        self, job_id: str, request: ExecutionRequest
    ) -> tuple[SyncJob, SyncOptions, SourceCredentials]:
        async with session_scope(self.session_factory) as session:
            job = await SyncJobRepository(session).get(job_id)
        if job is None or not job.enabled:
            logger.warning("Sync job unavailable for execution", job_id=job_id)
            raise SyncJobNotFoundError(job_id, disabled=True)

        options = SyncOptions.model_validate(job.options or {})
        overrides: dict[str, Any] = {
            "metadata": {
                **options.metadata,
                **request.metadata,
                "job_id": job.job_id,
                "created_by": request.created_by,
            }
        }
        if request.sync_type is not None:
            overrides["force_full_sync"] = request.sync_type == "full"
        credentials = SourceCredentials(shop_domain=job.store_id, access_token=job.access_token)
        return job, options.model_copy(update=overrides), credentials

    async def start_execution(
        self, job_id: str, request: ExecutionRequest | None = None
    ) -> tuple[RunTicket, SourceCredentials]:
        """Claim a run for the job. The caller launches it.

        Raises:
            SyncJobNotFoundError: the job does not exist or is disabled.
            SyncInProgressError: the job's store is already syncing.
        """
        job, options, credentials = await self._prepare(job_id, request or ExecutionRequest())
        ticket = await self.orchestrator.begin_run(job.store_id, options, job_id=job.job_id)
        logger.info("Sync job execution started", job_id=job_id, run_id=ticket.run_id)
        return ticket, credentials

    async def run_job(self, job_id: str, request: ExecutionRequest | None = None) -> SyncRunView:
        """Run the job to completion in the calling process."""
        job, options, credentials = await self._prepare(job_id, request or ExecutionRequest())
        return await self.orchestrator.run_sync(
            job.store_id, credentials, options, job_id=job.job_id
        )

    async def process_scheduled_jobs(self, now: datetime | None = None) -> list[str]:
        """Run every enabled job whose schedule is due. Returns the run ids started.

        Scheduled runs are incremental. A job whose store is already syncing
        is skipped until the next pass.
        """
        now = now or utcnow()
        async with session_scope(self.session_factory) as session:
            jobs = await SyncJobRepository(session).scheduled()
        due = [job for job in jobs if is_due(job.schedule_frequency, job.last_scheduled_at, now)]
        logger.info("Checking scheduled sync jobs", scheduled=len(jobs), due=len(due))

        run_ids: list[str] = []
        for job in due:
            log = logger.bind(job_id=job.job_id, store_id=job.store_id)
            async with session_scope(self.session_factory) as session:
                claimed = await SyncJobRepository(session).claim_schedule(
                    job.job_id, job.last_scheduled_at, now
                )
            if not claimed:
                log.info("Scheduled job already picked up")
                continue

            request = ExecutionRequest(
                sync_type="incremental",
                created_by="scheduler",
                metadata={"scheduled_at": now.isoformat(), "reason": "Scheduled execution"},
            )
            try:
                run = await self.run_job(job.job_id, request)
            except SyncInProgressError:
                log.info("Scheduled job skipped, store sync already in progress")
                continue
            except CatalogSyncError as e:
                log.error("Scheduled job failed", error=str(e), error_type=type(e).__name__)
                continue
            log.info("Scheduled job finished", run_id=run.run_id, status=run.status)
            run_ids.append(run.run_id)
        return run_ids
