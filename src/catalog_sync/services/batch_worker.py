"""Batch worker: fetch, transform and store one batch of catalog items."""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Callable

import structlog
from pydantic import BaseModel, Field
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from catalog_sync.config import Settings, get_settings
from catalog_sync.exceptions import ItemNotFoundError, SourceAuthError
from catalog_sync.infrastructure.database.connection import session_scope
from catalog_sync.infrastructure.database.models import ItemOutcome, RunStatus
from catalog_sync.services.catalog_transform import transform_product
from catalog_sync.services.checkpoint import CheckpointManager
from catalog_sync.services.item_store import ItemStore
from catalog_sync.services.run_finalizer import RunFinalizer
from catalog_sync.services.source_client import ShopifySourceClient, SourceCredentials
from catalog_sync.services.sync_state import SyncStateRepository

logger = structlog.get_logger()

SourceClientFactory = Callable[[SourceCredentials, Settings], Any]


class BatchPayload(BaseModel):
    """Everything a worker needs to process one batch, as sent over the queue."""

    run_id: str
    store_id: str
    batch_id: str
    item_ids: list[str]
    credentials: dict[str, str]
    detail_batch_size: int = Field(10, ge=1)


@dataclass
class BatchOutcome:
    """Counters for one attempt at a batch, for logs and task results."""

    batch_id: str
    processed: int = 0
    created: int = 0
    updated: int = 0
    deleted: int = 0
    failed: int = 0
    skipped: bool = False
    errors: list[tuple[str | None, str | None, str]] = field(default_factory=list)


def _chunks(items: list[str], size: int) -> list[list[str]]:
    return [items[i : i + size] for i in range(0, len(items), size)]


class BatchWorker:
    """Processes batches and reports their completion to the run.

    Item-level failures are recorded on the run and never fail the batch.
    Storage and auth errors propagate so the queue can retry the batch.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        finalizer: RunFinalizer,
        checkpoints: CheckpointManager,
        settings: Settings | None = None,
        client_factory: SourceClientFactory = ShopifySourceClient,
    ):
        self.session_factory = session_factory
        self.finalizer = finalizer
        self.checkpoints = checkpoints
        self.settings = settings or get_settings()
        self.client_factory = client_factory

    async def run(self, payload: BatchPayload) -> BatchOutcome:
        """Process a batch and record it as completed. Used by inline dispatch."""
        outcome = await self.process_batch(payload)
        if outcome.skipped:
            return outcome
        await self.record_batch_completed(payload)
        return outcome

    async def process_batch(self, payload: BatchPayload) -> BatchOutcome:
        log = logger.bind(run_id=payload.run_id, batch_id=payload.batch_id, store_id=payload.store_id)

        async with session_scope(self.session_factory) as session:
            status, cancel_requested = await SyncStateRepository(session).run_flags(payload.run_id)
        if cancel_requested or status != RunStatus.RUNNING.value:
            reason = "Batch skipped: run cancelled" if cancel_requested else "Batch skipped: run no longer active"
            log.info(reason, run_status=status)
            await self.record_batch_failed(payload, reason)
            return BatchOutcome(batch_id=payload.batch_id, skipped=True)

        log.info("Processing batch", items=len(payload.item_ids))
        outcome = BatchOutcome(batch_id=payload.batch_id)
        credentials = SourceCredentials.from_payload(payload.credentials)
        semaphore = asyncio.Semaphore(self.settings.sync_fetch_concurrency)

        async with self.client_factory(credentials, self.settings) as client:
            for chunk in _chunks(payload.item_ids, payload.detail_batch_size):
                fetched = await asyncio.gather(
                    *(self._fetch(client, item_id, semaphore) for item_id in chunk)
                )
                chunk_outcome = await self._store_chunk(payload, fetched)
                for name in ("processed", "created", "updated", "deleted", "failed"):
                    setattr(outcome, name, getattr(outcome, name) + getattr(chunk_outcome, name))
                outcome.errors.extend(chunk_outcome.errors)

                await self.checkpoints.save(
                    payload.run_id,
                    chunk[-1],
                    "batch_progress",
                    {"batch_id": payload.batch_id, "processed": outcome.processed},
                )

        log.info(
            "Batch processed",
            processed=outcome.processed,
            created=outcome.created,
            updated=outcome.updated,
            deleted=outcome.deleted,
            failed=outcome.failed,
        )
        return outcome

    async def _fetch(
        self, client: Any, item_id: str, semaphore: asyncio.Semaphore
    ) -> tuple[str, dict[str, Any] | None, Exception | None]:
        async with semaphore:
            try:
                return item_id, await client.fetch_item(item_id), None
            except SourceAuthError:
                raise
            except Exception as e:
                return item_id, None, e

    async def _store_chunk(
        self,
        payload: BatchPayload,
        fetched: list[tuple[str, dict[str, Any] | None, Exception | None]],
    ) -> BatchOutcome:
        outcome = BatchOutcome(batch_id=payload.batch_id)
        credits: list[tuple[str, ItemOutcome, str | None]] = []
        gone: list[str] = []

        for item_id, product, error in fetched:
            if isinstance(error, ItemNotFoundError):
                gone.append(item_id)
                continue
            if error is not None:
                message = f"Fetch failed: {error}"
                outcome.failed += 1
                outcome.errors.append((item_id, payload.batch_id, message))
                credits.append((item_id, ItemOutcome.FAILED, message))
                continue
            try:
                values = transform_product(product or {})
                async with session_scope(self.session_factory) as session:
                    result = await ItemStore(session).upsert(
                        payload.store_id, values, cursor=payload.run_id
                    )
            except (OperationalError, InterfaceError):
                raise
            except Exception as e:
                logger.warning(
                    "Failed to store item", run_id=payload.run_id, item_id=item_id, error=str(e)
                )
                message = f"Store failed: {e}"
                outcome.failed += 1
                outcome.errors.append((item_id, payload.batch_id, message))
                credits.append((item_id, ItemOutcome.FAILED, message))
                continue
            outcome.processed += 1
            if result.created:
                outcome.created += 1
                credits.append((item_id, ItemOutcome.CREATED, None))
            else:
                outcome.updated += 1
                credits.append((item_id, ItemOutcome.UPDATED, None))

        async with session_scope(self.session_factory) as session:
            if gone:
                deleted = set(
                    await ItemStore(session).soft_delete(
                        payload.store_id, gone, cursor=payload.run_id
                    )
                )
                outcome.deleted = len(deleted)
                outcome.processed += len(gone)
                credits.extend(
                    (item_id, ItemOutcome.DELETED if item_id in deleted else ItemOutcome.MISSING, None)
                    for item_id in gone
                )
            await SyncStateRepository(session).record_item_outcomes(
                payload.run_id, payload.batch_id, credits
            )
        return outcome

    async def record_batch_completed(self, payload: BatchPayload) -> None:
        async with session_scope(self.session_factory) as session:
            closed = await SyncStateRepository(session).complete_batch(payload.run_id, payload.batch_id)
        if not closed:
            logger.info("Batch already closed", run_id=payload.run_id, batch_id=payload.batch_id)
        await self.finalizer.try_finalize(payload.run_id)

    async def record_batch_failed(self, payload: BatchPayload, error: str) -> None:
        async with session_scope(self.session_factory) as session:
            await SyncStateRepository(session).fail_batch(payload.run_id, payload.batch_id, error)
        await self.finalizer.try_finalize(payload.run_id)
