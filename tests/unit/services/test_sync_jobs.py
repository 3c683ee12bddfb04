"""Unit tests for saved sync jobs and the scheduler pass."""

from datetime import timedelta

import pytest
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from catalog_sync.exceptions import SyncJobNotFoundError
from catalog_sync.infrastructure.database.connection import session_scope
from catalog_sync.infrastructure.database.models import (
    RunStatus,
    ScheduleFrequency,
    SyncJob,
    SyncMode,
)
from catalog_sync.services.source_client import SourceCredentials
from catalog_sync.services.sync_jobs import (
    ExecutionRequest,
    JobSchedule,
    SyncJobCreate,
    SyncJobRepository,
    SyncJobService,
    SyncJobUpdate,
    is_due,
)
from catalog_sync.services.sync_options import SyncOptions
from catalog_sync.services.sync_orchestrator import SyncOrchestrator
from catalog_sync.services.sync_state import SyncStateRepository
from catalog_sync.timeutils import utcnow
from tests.fakes import STORE_ID, FakeShopify


@pytest.fixture
def jobs(
    session_factory: async_sessionmaker[AsyncSession], orchestrator: SyncOrchestrator
) -> SyncJobService:
    return SyncJobService(session_factory, orchestrator)


@pytest.fixture
def job_credentials() -> SourceCredentials:
    return SourceCredentials(shop_domain=STORE_ID, access_token="shpat_job")


def _hourly(name: str = "Hourly catalog") -> SyncJobCreate:
    return SyncJobCreate(name=name, schedule=JobSchedule(frequency=ScheduleFrequency.HOURLY))


async def _set_job(
    factory: async_sessionmaker[AsyncSession], job_id: str, **values: object
) -> None:
    async with session_scope(factory) as session:
        await session.execute(update(SyncJob).where(SyncJob.job_id == job_id).values(**values))


class TestIsDue:
    def test_manual_is_never_due(self) -> None:
        assert is_due("manual", None, utcnow()) is False

    def test_never_scheduled_is_due(self) -> None:
        assert is_due("weekly", None, utcnow()) is True

    @pytest.mark.parametrize(
        ("frequency", "interval"),
        [
            ("hourly", timedelta(hours=1)),
            ("daily", timedelta(days=1)),
            ("weekly", timedelta(days=7)),
            ("monthly", timedelta(days=30)),
        ],
    )
    def test_due_after_interval(self, frequency: str, interval: timedelta) -> None:
        now = utcnow()
        assert is_due(frequency, now - interval, now) is True
        assert is_due(frequency, now - interval + timedelta(minutes=1), now) is False


class TestCrud:
    async def test_create_hides_token(
        self, jobs: SyncJobService, job_credentials: SourceCredentials
    ) -> None:
        view = await jobs.create(
            SyncJobCreate(name="Nightly", configuration=SyncOptions(batch_size=50)),
            job_credentials,
        )

        assert view.store_id == STORE_ID
        assert view.source_type == "shopify"
        assert view.configuration == {"batch_size": 50}
        assert view.schedule.frequency == "manual"
        assert "access_token" not in view.model_dump()
        assert (await jobs.get(view.job_id)).name == "Nightly"

    async def test_unknown_configuration_key_rejected(self) -> None:
        with pytest.raises(ValueError):
            SyncJobCreate.model_validate({"name": "Bad", "configuration": {"bogus": 1}})

    async def test_update_merges_configuration(
        self, jobs: SyncJobService, job_credentials: SourceCredentials
    ) -> None:
        view = await jobs.create(
            SyncJobCreate(name="Nightly", configuration=SyncOptions(batch_size=50, max_items=10)),
            job_credentials,
        )

        updated = await jobs.update(
            view.job_id,
            SyncJobUpdate(
                configuration=SyncOptions.model_validate({"max_items": 20}),
                schedule=JobSchedule(frequency=ScheduleFrequency.DAILY),
            ),
        )

        assert updated.configuration == {"batch_size": 50, "max_items": 20}
        assert updated.schedule.frequency == "daily"
        assert updated.name == "Nightly"

    async def test_update_replaces_credentials(
        self,
        jobs: SyncJobService,
        job_credentials: SourceCredentials,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        view = await jobs.create(SyncJobCreate(name="Nightly"), job_credentials)

        await jobs.update(
            view.job_id,
            SyncJobUpdate(),
            SourceCredentials(shop_domain="other.myshopify.com", access_token="shpat_new"),
        )

        async with session_scope(session_factory) as session:
            job = await SyncJobRepository(session).get(view.job_id)
        assert (job.store_id, job.access_token) == ("other.myshopify.com", "shpat_new")

    async def test_list_filters(self, jobs: SyncJobService, job_credentials: SourceCredentials) -> None:
        await jobs.create(SyncJobCreate(name="On"), job_credentials)
        await jobs.create(SyncJobCreate(name="Off", enabled=False), job_credentials)

        assert [job.name for job in await jobs.list_jobs(enabled=True)] == ["On"]
        assert len(await jobs.list_jobs()) == 2

    async def test_missing_job(self, jobs: SyncJobService) -> None:
        with pytest.raises(SyncJobNotFoundError):
            await jobs.get("nope")
        with pytest.raises(SyncJobNotFoundError):
            await jobs.update("nope", SyncJobUpdate(name="x"))
        with pytest.raises(SyncJobNotFoundError):
            await jobs.delete("nope")


class TestExecutions:
    async def test_run_job_links_run_to_job(
        self,
        jobs: SyncJobService,
        job_credentials: SourceCredentials,
        shopify: FakeShopify,
    ) -> None:
        shopify.add(1, 2, 3)
        view = await jobs.create(SyncJobCreate(name="Nightly"), job_credentials)

        run = await jobs.run_job(view.job_id)

        assert run.job_id == view.job_id
        assert run.status == RunStatus.COMPLETED.value
        assert run.created == 3
        refreshed = await jobs.get(view.job_id)
        assert refreshed.last_execution_id == run.run_id
        assert refreshed.last_successful_execution == run.completed_at
        assert [r.run_id for r in await jobs.list_executions(view.job_id)] == [run.run_id]

    async def test_sync_type_full_forces_full_mode(
        self,
        jobs: SyncJobService,
        job_credentials: SourceCredentials,
        shopify: FakeShopify,
    ) -> None:
        shopify.add(1)
        view = await jobs.create(SyncJobCreate(name="Nightly"), job_credentials)
        await jobs.run_job(view.job_id)

        ticket, credentials = await jobs.start_execution(
            view.job_id, ExecutionRequest(sync_type="full", created_by="ops")
        )

        assert ticket.mode == SyncMode.FULL
        assert ticket.options.metadata["job_id"] == view.job_id
        assert ticket.options.metadata["created_by"] == "ops"
        assert credentials.access_token == "shpat_job"

    async def test_disabled_job_cannot_run(
        self, jobs: SyncJobService, job_credentials: SourceCredentials
    ) -> None:
        view = await jobs.create(SyncJobCreate(name="Off", enabled=False), job_credentials)

        with pytest.raises(SyncJobNotFoundError, match="not found or disabled"):
            await jobs.start_execution(view.job_id)

    async def test_deleted_job_keeps_history(
        self,
        jobs: SyncJobService,
        job_credentials: SourceCredentials,
        shopify: FakeShopify,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        shopify.add(1)
        view = await jobs.create(SyncJobCreate(name="Nightly"), job_credentials)
        run = await jobs.run_job(view.job_id)

        await jobs.delete(view.job_id)

        with pytest.raises(SyncJobNotFoundError):
            await jobs.list_executions(view.job_id)
        async with session_scope(session_factory) as session:
            history = await SyncStateRepository(session).list_runs(job_id=view.job_id)
        assert [r.run_id for r in history] == [run.run_id]


class TestScheduler:
    async def test_runs_only_due_enabled_jobs(
        self,
        jobs: SyncJobService,
        job_credentials: SourceCredentials,
        shopify: FakeShopify,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        shopify.add(1)
        due = await jobs.create(_hourly("Due"), job_credentials)
        recent = await jobs.create(_hourly("Recent"), job_credentials)
        await jobs.create(SyncJobCreate(name="Manual"), job_credentials)
        await jobs.create(
            SyncJobCreate(
                name="Disabled",
                enabled=False,
                schedule=JobSchedule(frequency=ScheduleFrequency.HOURLY),
            ),
            job_credentials,
        )
        now = utcnow()
        await _set_job(session_factory, recent.job_id, last_scheduled_at=now - timedelta(minutes=5))

        run_ids = await jobs.process_scheduled_jobs(now)

        assert len(run_ids) == 1
        [run] = await jobs.list_executions(due.job_id)
        assert run.run_id == run_ids[0]
        assert (await jobs.get(due.job_id)).schedule.last_scheduled_at == now
        assert await jobs.list_executions(recent.job_id) == []

    async def test_scheduled_runs_are_incremental(
        self,
        jobs: SyncJobService,
        job_credentials: SourceCredentials,
        shopify: FakeShopify,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        shopify.add(1)
        view = await jobs.create(
            SyncJobCreate(
                name="Hourly",
                configuration=SyncOptions(force_full_sync=True),
                schedule=JobSchedule(frequency=ScheduleFrequency.HOURLY),
            ),
            job_credentials,
        )
        await jobs.run_job(view.job_id)
        await _set_job(session_factory, view.job_id, last_scheduled_at=utcnow() - timedelta(hours=2))

        [run_id] = await jobs.process_scheduled_jobs()

        [latest, _] = await jobs.list_executions(view.job_id)
        assert latest.run_id == run_id
        assert latest.mode == SyncMode.INCREMENTAL.value

    async def test_busy_store_is_skipped(
        self,
        jobs: SyncJobService,
        job_credentials: SourceCredentials,
        orchestrator: SyncOrchestrator,
    ) -> None:
        await jobs.create(_hourly(), job_credentials)
        await orchestrator.begin_run(STORE_ID)

        assert await jobs.process_scheduled_jobs() == []

    async def test_second_pass_does_not_rerun(
        self,
        jobs: SyncJobService,
        job_credentials: SourceCredentials,
        shopify: FakeShopify,
    ) -> None:
        shopify.add(1)
        await jobs.create(_hourly(), job_credentials)
        now = utcnow()

        assert len(await jobs.process_scheduled_jobs(now)) == 1
        assert await jobs.process_scheduled_jobs(now + timedelta(minutes=15)) == []
