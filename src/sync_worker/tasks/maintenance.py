"""Housekeeping tasks for sync state and deleted items."""

import asyncio
from datetime import timedelta

import structlog
from celery import shared_task

from catalog_sync.config import get_settings
from catalog_sync.infrastructure.database.connection import session_scope
from catalog_sync.services.item_store import ItemStore
from catalog_sync.timeutils import utcnow
from sync_worker.runtime import worker_services

logger = structlog.get_logger()


@shared_task(bind=True, max_retries=3, default_retry_delay=60)
def sweep_stale_syncs(self) -> dict:
    """
    Fail runs stuck in progress longer than the stale threshold.

    Returns:
        dict: Run ids that were reset
    """

    async def _sweep() -> list[str]:
        async with worker_services() as services:
            reset = await services.orchestrator.reset_stale_runs()
            return [run.run_id for run in reset]

    run_ids = asyncio.run(_sweep())
    logger.info("Stale sync sweep finished", reset=len(run_ids))
    return {"reset": run_ids}


@shared_task(bind=True, max_retries=3, default_retry_delay=300)
def purge_deleted_items(self) -> dict:
    """
    Hard-delete items soft-deleted longer than the retention window.

    Does nothing unless ``SYNC_PURGE_DELETED_AFTER_DAYS`` is set.
    """
    settings = get_settings()
    if settings.sync_purge_deleted_after_days is None:
        return {"purged": 0, "skipped": True}

    cutoff = utcnow() - timedelta(days=settings.sync_purge_deleted_after_days)

    async def _purge() -> int:
        async with worker_services(settings) as services:
            async with session_scope(services.session_factory) as session:
                return await ItemStore(session).purge_deleted(None, cutoff)

    purged = asyncio.run(_purge())
    logger.info("Purged deleted items", purged=purged, cutoff=cutoff.isoformat())
    return {"purged": purged, "skipped": False}
