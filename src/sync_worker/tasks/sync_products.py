"""Product synchronization tasks."""

import asyncio
from dataclasses import asdict

import structlog
from celery import shared_task

from catalog_sync.config import get_settings
from catalog_sync.exceptions import SyncInProgressError
from catalog_sync.infrastructure.database.connection import session_scope
from catalog_sync.services.batch_worker import BatchPayload
from catalog_sync.services.source_client import SourceCredentials
from catalog_sync.services.sync_orchestrator import RunTicket
from catalog_sync.services.sync_state import SyncStateRepository
from shared.constants import BATCH_MAX_RETRIES, BATCH_RETRY_DELAY_SECONDS
from sync_worker.runtime import worker_services

logger = structlog.get_logger()


@shared_task(bind=True, max_retries=0)
def run_product_sync(self, ticket: dict, credentials: dict) -> dict:
    """
    Execute a sync run claimed by the API.

    Enumerates product ids and dispatches batches. In inline mode the
    batches are processed inside this task; in queue mode each one
    becomes a ``process_product_batch`` task.

    Returns:
        dict: The run summary
    """
    run_ticket = RunTicket.from_payload(ticket)
    logger.info("Executing product sync", run_id=run_ticket.run_id, store_id=run_ticket.store_id)

    async def _execute() -> dict:
        async with worker_services() as services:
            if self.request.id:
                async with session_scope(services.session_factory) as session:
                    await SyncStateRepository(session).set_run_task(run_ticket.run_id, self.request.id)
            summary = await services.orchestrator.execute_run(
                run_ticket, SourceCredentials.from_payload(credentials)
            )
            return summary.model_dump(mode="json")

    return asyncio.run(_execute())


@shared_task(bind=True, max_retries=BATCH_MAX_RETRIES, default_retry_delay=BATCH_RETRY_DELAY_SECONDS)
def process_product_batch(self, payload: dict) -> dict:
    """
    Fetch and store one batch of products.

    Item failures are recorded on the run and do not fail the task. Any
    other error retries the task with exponential backoff; once retries
    are exhausted the batch is recorded as failed so the run can finish.

    Returns:
        dict: Batch counters
    """
    batch = BatchPayload.model_validate(payload)

    async def _process() -> dict:
        async with worker_services() as services:
            outcome = await services.worker.process_batch(batch)
            if not outcome.skipped:
                await services.worker.record_batch_completed(batch)
            result = asdict(outcome)
            result.pop("errors")
            return result

    async def _record_failure(error: str) -> None:
        async with worker_services() as services:
            await services.worker.record_batch_failed(batch, error)

    try:
        return asyncio.run(_process())
    except Exception as exc:
        if self.request.retries >= self.max_retries:
            logger.error(
                "Batch failed after retries",
                run_id=batch.run_id,
                batch_id=batch.batch_id,
                retries=self.request.retries,
                error=str(exc),
            )
            asyncio.run(_record_failure(f"{type(exc).__name__}: {exc}"))
            raise
        logger.warning(
            "Batch failed, retrying",
            run_id=batch.run_id,
            batch_id=batch.batch_id,
            retries=self.request.retries,
            error=str(exc),
        )
        raise self.retry(exc=exc, countdown=BATCH_RETRY_DELAY_SECONDS * 2**self.request.retries)


@shared_task(bind=True, max_retries=3, default_retry_delay=300)
def sync_products_from_ecommerce(self) -> dict:
    """
    Scheduled sync of the configured store.

    Runs incrementally once the store has a watermark. Skips when no
    store is configured or another run holds the lock.

    Returns:
        dict: Summary of sync operation
    """
    settings = get_settings()
    if not settings.shopify_store_domain or not settings.shopify_access_token:
        logger.info("No Shopify store configured, skipping scheduled sync")
        return {"skipped": True, "reason": "not configured"}

    credentials = SourceCredentials(
        shop_domain=settings.shopify_store_domain,
        access_token=settings.shopify_access_token,
    )

    async def _sync() -> dict:
        async with worker_services(settings) as services:
            summary = await services.orchestrator.run_sync(settings.shopify_store_domain, credentials)
            return summary.model_dump(mode="json")

    logger.info("Starting scheduled product sync", store_id=settings.shopify_store_domain)
    try:
        return asyncio.run(_sync())
    except SyncInProgressError as e:
        logger.info("Scheduled sync skipped, run in progress", store_id=e.store_id)
        return {"skipped": True, "reason": "in progress"}
