"""Sync orchestrator.

Drives one sync run for a store: claims the run, enumerates product ids
from Shopify page by page, dispatches each page as a batch and hands the
run to the finalizer once enumeration ends. Item processing happens in
the batch worker, inline or through the queue.
"""

from dataclasses import dataclass
from datetime import timedelta
from typing import Any
from uuid import uuid4

import structlog
from celery import Celery
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from catalog_sync.config import Settings, get_settings
from catalog_sync.exceptions import SyncInProgressError, SyncRunNotFoundError
from catalog_sync.infrastructure.database.connection import session_scope
from catalog_sync.infrastructure.database.models import RunStatus, SyncMode
from catalog_sync.services.batch_worker import (
    BatchPayload,
    BatchWorker,
    SourceClientFactory,
)
from catalog_sync.services.checkpoint import CheckpointManager
from catalog_sync.services.item_store import ItemStore
from catalog_sync.services.queue import (
    BatchDispatcher,
    CeleryDispatcher,
    InlineDispatcher,
    SyncQueue,
)
from catalog_sync.services.run_finalizer import CANCELLED_MESSAGE, RunFinalizer
from catalog_sync.services.source_client import (
    ShopifySourceClient,
    SourceCredentials,
    SourceFilters,
)
from catalog_sync.services.sync_options import SyncOptions
from catalog_sync.services.sync_state import (
    DEFAULT_SYNC_TYPE,
    SyncRunView,
    SyncStateRepository,
    SyncStateView,
)
from catalog_sync.timeutils import ensure_utc, utcnow

logger = structlog.get_logger()


@dataclass(frozen=True)
class RunTicket:
    """A claimed run, ready to execute."""

    run_id: str
    store_id: str
    sync_type: str
    mode: SyncMode
    filters: SourceFilters
    options: SyncOptions

    def to_payload(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "store_id": self.store_id,
            "sync_type": self.sync_type,
            "mode": self.mode.value,
            "filters": self.filters.model_dump(mode="json"),
            "options": self.options.model_dump(mode="json"),
        }

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "RunTicket":
        return cls(
            run_id=payload["run_id"],
            store_id=payload["store_id"],
            sync_type=payload["sync_type"],
            mode=SyncMode(payload["mode"]),
            filters=SourceFilters.model_validate(payload["filters"]),
            options=SyncOptions.model_validate(payload["options"]),
        )


@dataclass
class _EnumerationResult:
    truncated: bool = False
    cancelled: bool = False
    abandoned: bool = False


class SyncOrchestrator:
    """Runs full and incremental product syncs for a store."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Settings | None = None,
        client_factory: SourceClientFactory = ShopifySourceClient,
        dispatcher: BatchDispatcher | None = None,
        checkpoints: CheckpointManager | None = None,
        finalizer: RunFinalizer | None = None,
    ):
        self.session_factory = session_factory
        self.settings = settings or get_settings()
        self.client_factory = client_factory
        self.checkpoints = checkpoints or CheckpointManager(session_factory)
        self.finalizer = finalizer or RunFinalizer(session_factory, self.checkpoints)
        self.dispatcher = dispatcher or InlineDispatcher(
            BatchWorker(
                session_factory,
                self.finalizer,
                self.checkpoints,
                settings=self.settings,
                client_factory=client_factory,
            )
        )

    @property
    def stale_threshold(self) -> timedelta:
        return timedelta(minutes=self.settings.sync_stale_after_minutes)

    # -------------------------------------------------------------------------
    # Run lifecycle
    # -------------------------------------------------------------------------

    async def run_sync(
        self,
        store_id: str,
        credentials: SourceCredentials,
        options: SyncOptions | None = None,
        sync_type: str = DEFAULT_SYNC_TYPE,
        job_id: str | None = None,
    ) -> SyncRunView:
        """Claim and execute a run in one call."""
        ticket = await self.begin_run(store_id, options, sync_type, job_id=job_id)
        return await self.execute_run(ticket, credentials)

    async def begin_run(
        self,
        store_id: str,
        options: SyncOptions | None = None,
        sync_type: str = DEFAULT_SYNC_TYPE,
        job_id: str | None = None,
    ) -> RunTicket:
        """Claim the store's sync lock and pick full or incremental mode.

        ``job_id`` links the run to the saved job that started it.

        Raises:
            SyncInProgressError: another run holds the lock and is not stale.
        """
        options = (options or SyncOptions()).resolve(self.settings)

        async with session_scope(self.session_factory) as session:
            await SyncStateRepository(session).ensure(store_id, sync_type)

        stale_before = utcnow() - self.stale_threshold
        async with session_scope(self.session_factory) as session:
            stale_run_id = await SyncStateRepository(session).find_stale_for(
                store_id, sync_type, stale_before
            )
        if stale_run_id:
            await self.finalizer.fail(
                stale_run_id, self._timeout_message(), started_before=stale_before
            )
            logger.warning("Reset stale sync before starting", store_id=store_id, run_id=stale_run_id)

        run_id = uuid4().hex
        async with session_scope(self.session_factory) as session:
            repo = SyncStateRepository(session)
            row = await repo.get_row(store_id, sync_type)
            if row is None or row.is_in_progress:
                state = await repo.to_view(row) if row is not None else None
                raise SyncInProgressError(store_id, sync_type, state)

            full = options.force_full_sync or row.last_synced_at is None
            mode = SyncMode.FULL if full else SyncMode.INCREMENTAL
            filters = options.filters.model_copy()
            if mode == SyncMode.INCREMENTAL:
                watermark = ensure_utc(row.last_synced_at)
                requested = ensure_utc(filters.updated_at_min)
                filters.updated_at_min = max(watermark, requested) if requested else watermark

            claimed = await repo.claim(
                store_id,
                sync_type,
                run_id,
                mode.value,
                filters.model_dump(mode="json", exclude_none=True),
                self.dispatcher.dispatch_mode,
                purge_after_days=options.purge_deleted_after_days,
                job_id=job_id,
            )
            if not claimed:
                raise SyncInProgressError(store_id, sync_type, await repo.get(store_id, sync_type))

        logger.info(
            "Sync run started",
            run_id=run_id,
            store_id=store_id,
            sync_type=sync_type,
            job_id=job_id,
            mode=mode.value,
            dispatch_mode=self.dispatcher.dispatch_mode,
        )
        return RunTicket(run_id, store_id, sync_type, mode, filters, options)

    async def execute_run(self, ticket: RunTicket, credentials: SourceCredentials) -> SyncRunView:
        """Enumerate, dispatch and finalize a claimed run.

        Any error before enumeration completes fails the run and is re-raised;
        the lock is released on every path.
        """
        log = logger.bind(run_id=ticket.run_id, store_id=ticket.store_id, mode=ticket.mode.value)

        try:
            async with self.client_factory(credentials, self.settings) as client:
                if ticket.mode == SyncMode.FULL:
                    async with session_scope(self.session_factory) as session:
                        existing = await ItemStore(session).snapshot_existing_ids(
                            ticket.store_id, ticket.run_id
                        )
                    log.info("Captured pre-sync item snapshot", existing=existing)

                estimate = await self._estimate(client, ticket.filters, log)
                result = await self._enumerate(ticket, client, credentials, estimate, log)
        except Exception as e:
            log.error("Sync run failed", error=str(e), error_type=type(e).__name__)
            await self._fail_safely(ticket.run_id, f"{type(e).__name__}: {e}")
            raise

        if result.cancelled:
            summary = await self.finalizer.fail(
                ticket.run_id, CANCELLED_MESSAGE, RunStatus.CANCELLED
            )
            return summary or await self._run_view(ticket.run_id)
        if result.abandoned:
            return await self._run_view(ticket.run_id)

        reconcile = ticket.mode == SyncMode.FULL and not result.truncated
        try:
            async with session_scope(self.session_factory) as session:
                await SyncStateRepository(session).mark_enumeration_complete(ticket.run_id, reconcile)
        except Exception as e:
            log.error("Could not close enumeration", error=str(e), error_type=type(e).__name__)
            await self._fail_safely(ticket.run_id, f"{type(e).__name__}: {e}")
            raise
        log.info("Enumeration complete", reconcile=reconcile, truncated=result.truncated)

        summary = await self.finalizer.try_finalize(ticket.run_id)
        return summary or await self._run_view(ticket.run_id)

    async def _estimate(self, client: Any, filters: SourceFilters, log: Any) -> int | None:
        try:
            estimate = await client.count_items(filters)
        except Exception as e:
            log.warning("Item count unavailable, runaway guard disabled", error=str(e))
            return None
        log.info("Estimated items to sync", estimate=estimate)
        return estimate

    async def _enumerate(
        self,
        ticket: RunTicket,
        client: Any,
        credentials: SourceCredentials,
        estimate: int | None,
        log: Any,
    ) -> _EnumerationResult:
        result = _EnumerationResult()
        seen: set[str] = set()
        discovered = 0
        duplicates = 0
        max_items = ticket.options.max_items
        multiplier = self.settings.sync_runaway_multiplier

        stream = client.stream_item_ids(ticket.filters, page_size=ticket.options.batch_size)
        page_number = 0
        async for page in stream:
            page_number += 1
            fresh: list[str] = []
            page_duplicates = 0
            limit_hit = False
            for item_id in page:
                if item_id in seen:
                    page_duplicates += 1
                    continue
                if max_items is not None and len(seen) >= max_items:
                    limit_hit = True
                    break
                seen.add(item_id)
                fresh.append(item_id)

            discovered += len(page)
            duplicates += page_duplicates

            async with session_scope(self.session_factory) as session:
                repo = SyncStateRepository(session)
                await repo.record_discovered(ticket.run_id, len(page), len(fresh), page_duplicates)
                if ticket.mode == SyncMode.FULL:
                    await ItemStore(session).mark_seen(ticket.run_id, fresh)

            if fresh:
                await self._dispatch(ticket, credentials, fresh, page_number)

            await self.checkpoints.save(
                ticket.run_id,
                fresh[-1] if fresh else "",
                "enumerating",
                {"page": page_number, "cursor": stream.cursor, "discovered": discovered},
            )

            if estimate and (discovered > estimate * multiplier or duplicates > estimate):
                message = (
                    f"Runaway enumeration stopped: discovered {discovered}, "
                    f"duplicates {duplicates}, estimate {estimate}"
                )
                log.warning("Runaway guard triggered", discovered=discovered, duplicates=duplicates, estimate=estimate)
                async with session_scope(self.session_factory) as session:
                    await SyncStateRepository(session).add_errors(ticket.run_id, [(None, None, message)])
                result.truncated = True
                stream.stop()
                break

            if limit_hit or (max_items is not None and len(seen) >= max_items):
                log.info("Item limit reached", max_items=max_items)
                result.truncated = True
                stream.stop()
                break

            async with session_scope(self.session_factory) as session:
                status, cancel_requested = await SyncStateRepository(session).run_flags(ticket.run_id)
            if cancel_requested:
                log.info("Cancellation requested, stopping enumeration")
                result.cancelled = True
                stream.stop()
                break
            if status != RunStatus.RUNNING.value:
                log.warning("Run no longer active, stopping enumeration", run_status=status)
                result.abandoned = True
                stream.stop()
                break

        log.info("Enumeration finished", pages=page_number, discovered=discovered, unique=len(seen))
        return result

    async def _dispatch(
        self,
        ticket: RunTicket,
        credentials: SourceCredentials,
        item_ids: list[str],
        page_number: int,
    ) -> None:
        batch_id = f"{ticket.run_id[:8]}-{page_number:05d}"
        async with session_scope(self.session_factory) as session:
            registered = await SyncStateRepository(session).register_batch(
                ticket.run_id, batch_id, len(item_ids)
            )
        if not registered:
            return

        payload = BatchPayload(
            run_id=ticket.run_id,
            store_id=ticket.store_id,
            batch_id=batch_id,
            item_ids=item_ids,
            credentials=credentials.to_payload(),
            detail_batch_size=ticket.options.detail_batch_size or self.settings.sync_detail_batch_size,
        )
        task_id = await self.dispatcher.dispatch(payload)
        if task_id:
            async with session_scope(self.session_factory) as session:
                await SyncStateRepository(session).set_batch_task(ticket.run_id, batch_id, task_id)

    async def _fail_safely(self, run_id: str, error: str) -> None:
        try:
            await self.finalizer.fail(run_id, error)
        except Exception:
            # The stale-run sweeper releases the lock if this write is lost too.
            logger.exception("Could not record sync failure", run_id=run_id)

    async def _run_view(self, run_id: str) -> SyncRunView:
        async with session_scope(self.session_factory) as session:
            view = await SyncStateRepository(session).get_run(run_id)
        if view is None:
            raise SyncRunNotFoundError(run_id)
        return view

    def _timeout_message(self) -> str:
        return (
            "Sync was reset due to timeout "
            f"(stuck for more than {self.settings.sync_stale_after_minutes} minutes)"
        )

    # -------------------------------------------------------------------------
    # Management
    # -------------------------------------------------------------------------

    async def get_status(
        self, store_id: str, sync_type: str = DEFAULT_SYNC_TYPE, include_snapshot: bool = False
    ) -> SyncStateView | None:
        async with session_scope(self.session_factory) as session:
            return await SyncStateRepository(session).get(store_id, sync_type, include_snapshot)

    async def cancel_run(self, run_id: str) -> bool:
        """Ask a running sync to stop. Batches already in flight finish."""
        async with session_scope(self.session_factory) as session:
            repo = SyncStateRepository(session)
            if await repo.get_run(run_id) is None:
                raise SyncRunNotFoundError(run_id)
            requested = await repo.request_cancel(run_id)
        if requested:
            logger.info("Sync cancellation requested", run_id=run_id)
            # Enumeration may already be over; let the last batch or this call close the run.
            await self.finalizer.try_finalize(run_id)
        return requested

    async def reset_stale_runs(self) -> list[SyncRunView]:
        """Fail every run that has been in progress longer than the stale threshold."""
        stale_before = utcnow() - self.stale_threshold
        async with session_scope(self.session_factory) as session:
            run_ids = await SyncStateRepository(session).find_stale(stale_before)

        reset: list[SyncRunView] = []
        for run_id in run_ids:
            summary = await self.finalizer.fail(
                run_id, self._timeout_message(), started_before=stale_before
            )
            if summary is not None:
                reset.append(summary)
        if reset:
            logger.warning("Reset stale sync runs", count=len(reset), run_ids=[r.run_id for r in reset])
        return reset


def build_orchestrator(
    session_factory: async_sessionmaker[AsyncSession],
    settings: Settings | None = None,
    celery_app: Celery | None = None,
    client_factory: SourceClientFactory = ShopifySourceClient,
) -> SyncOrchestrator:
    """Wire an orchestrator for the configured dispatch mode."""
    settings = settings or get_settings()
    dispatcher = None
    if settings.sync_dispatch_mode == "queue":
        if celery_app is None:
            raise ValueError("Queue dispatch requires a Celery app")
        dispatcher = CeleryDispatcher(SyncQueue(celery_app))
    return SyncOrchestrator(
        session_factory, settings, client_factory=client_factory, dispatcher=dispatcher
    )
