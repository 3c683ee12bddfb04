"""Batch queue facade over Celery, and the dispatchers the orchestrator uses."""

import asyncio
from typing import Any, Callable, Protocol

import structlog
from celery import Celery
from celery.signals import task_failure, task_success
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from catalog_sync.infrastructure.database.models import BatchStatus, SyncBatch
from catalog_sync.services.batch_worker import BatchPayload, BatchWorker
from shared.constants import (
    PROCESS_BATCH_TASK,
    RUN_PRODUCT_SYNC_TASK,
    SCHEDULED_JOBS_TASK,
    SYNC_QUEUE,
)

logger = structlog.get_logger()


class BatchDispatcher(Protocol):
    """Hands a batch to whatever processes it. Returns a task id when queued."""

    dispatch_mode: str

    async def dispatch(self, payload: BatchPayload) -> str | None: ...


class InlineDispatcher:
    """Processes each batch in the calling process before returning."""

    dispatch_mode = "inline"

    def __init__(self, worker: BatchWorker):
        self.worker = worker

    async def dispatch(self, payload: BatchPayload) -> str | None:
        await self.worker.run(payload)
        return None


class CeleryDispatcher:
    """Enqueues each batch as a ``process_product_batch`` task."""

    dispatch_mode = "queue"

    def __init__(self, queue: "SyncQueue"):
        self.queue = queue

    async def dispatch(self, payload: BatchPayload) -> str | None:
        return await asyncio.to_thread(self.queue.enqueue, payload)


class SyncQueue:
    """Durable batch queue backed by the Celery broker."""

    def __init__(self, app: Celery, queue_name: str = SYNC_QUEUE):
        self.app = app
        self.queue_name = queue_name

    def enqueue(self, payload: BatchPayload) -> str:
        result = self.app.send_task(
            PROCESS_BATCH_TASK,
            kwargs={"payload": payload.model_dump(mode="json")},
            queue=self.queue_name,
        )
        logger.debug("Batch enqueued", run_id=payload.run_id, batch_id=payload.batch_id, task_id=result.id)
        return result.id

    def enqueue_run(self, ticket: dict[str, Any], credentials: dict[str, str]) -> str:
        """Queue execution of an already claimed run."""
        result = self.app.send_task(
            RUN_PRODUCT_SYNC_TASK,
            kwargs={"ticket": ticket, "credentials": credentials},
            queue=self.queue_name,
        )
        logger.info("Sync run enqueued", run_id=ticket.get("run_id"), task_id=result.id)
        return result.id

    def enqueue_scheduler(self) -> str:
        """Queue one pass over the saved jobs whose schedule is due."""
        result = self.app.send_task(SCHEDULED_JOBS_TASK, queue=self.queue_name)
        logger.info("Scheduler pass enqueued", task_id=result.id)
        return result.id

    def broker_stats(self) -> dict[str, int]:
        """Waiting and active task counts as seen by the broker and live workers."""
        waiting = 0
        try:
            with self.app.connection_for_read() as conn:
                declared = conn.default_channel.queue_declare(queue=self.queue_name, passive=True)
                waiting = declared.message_count
        except Exception as e:
            logger.warning("Broker queue inspection failed", queue=self.queue_name, error=str(e))

        active = reserved = 0
        try:
            inspect = self.app.control.inspect(timeout=1.0)
            active = sum(len(tasks) for tasks in (inspect.active() or {}).values())
            reserved = sum(len(tasks) for tasks in (inspect.reserved() or {}).values())
        except Exception as e:
            logger.warning("Worker inspection failed", queue=self.queue_name, error=str(e))
        return {"waiting": waiting + reserved, "active": active}

    async def get_stats(self, session: AsyncSession) -> dict[str, int]:
        """Waiting/active from the broker, completed/failed from recorded batches."""
        stats = await asyncio.to_thread(self.broker_stats)
        result = await session.execute(
            select(SyncBatch.status, func.count()).group_by(SyncBatch.status)
        )
        by_status = {status: count for status, count in result.all()}
        stats["completed"] = by_status.get(BatchStatus.COMPLETED.value, 0)
        stats["failed"] = by_status.get(BatchStatus.FAILED.value, 0)
        return stats

    def pause(self) -> list[Any]:
        """Stop workers consuming from the queue."""
        logger.info("Pausing queue", queue=self.queue_name)
        return self.app.control.cancel_consumer(self.queue_name, reply=True) or []

    def resume(self) -> list[Any]:
        logger.info("Resuming queue", queue=self.queue_name)
        return self.app.control.add_consumer(self.queue_name, reply=True) or []

    def clear(self) -> int:
        """Discard the waiting messages of this queue only. Returns how many were purged."""
        with self.app.connection_for_write() as conn:
            purged = conn.default_channel.queue_purge(self.queue_name) or 0
        logger.warning("Queue cleared", queue=self.queue_name, purged=purged)
        return purged

    def on_completed(self, callback: Callable[[dict[str, Any], Any], None]) -> None:
        """Call ``callback(payload, result)`` whenever a batch task succeeds."""

        def _handler(sender=None, result=None, **kwargs: Any) -> None:
            if sender is None or sender.name != PROCESS_BATCH_TASK:
                return
            callback((sender.request.kwargs or {}).get("payload", {}), result)

        task_success.connect(_handler, weak=False)

    def on_failed(self, callback: Callable[[dict[str, Any], BaseException], None]) -> None:
        """Call ``callback(payload, exception)`` whenever a batch task fails for good."""

        def _handler(sender=None, exception=None, kwargs=None, **extra: Any) -> None:
            if sender is None or sender.name != PROCESS_BATCH_TASK:
                return
            callback((kwargs or {}).get("payload", {}), exception)

        task_failure.connect(_handler, weak=False)
