"""Scheduled runs of saved sync jobs."""

import asyncio

import structlog
from celery import shared_task

from catalog_sync.services.sync_jobs import SyncJobService
from sync_worker.runtime import worker_services

logger = structlog.get_logger()


@shared_task(bind=True, max_retries=3, default_retry_delay=60)
def run_scheduled_jobs(self) -> dict:
    """
    Run every enabled saved job whose schedule is due.

    Returns:
        dict: Run ids started by this pass
    """

    async def _run() -> list[str]:
        async with worker_services() as services:
            jobs = SyncJobService(services.session_factory, services.orchestrator)
            return await jobs.process_scheduled_jobs()

    run_ids = asyncio.run(_run())
    logger.info("Scheduler pass finished", started=len(run_ids))
    return {"run_ids": run_ids}
