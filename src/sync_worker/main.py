"""Celery application for sync worker."""

from typing import Any

import structlog
from celery import Celery
from celery.schedules import crontab

from catalog_sync.config import get_settings
from catalog_sync.logging_config import configure_logging
from catalog_sync.services.queue import SyncQueue
from shared.constants import (
    PURGE_DELETED_TASK,
    SCHEDULED_JOBS_TASK,
    SCHEDULED_SYNC_TASK,
    SWEEP_STALE_TASK,
    SYNC_QUEUE,
)

settings = get_settings()
configure_logging(settings)

logger = structlog.get_logger()

# Create Celery app
app = Celery(
    "sync_worker",
    broker=settings.celery_broker,
    backend=settings.celery_backend,
    include=[
        "sync_worker.tasks.sync_products",
        "sync_worker.tasks.maintenance",
        "sync_worker.tasks.sync_jobs",
    ],
)

# Celery configuration
app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=3600,  # 1 hour
    task_soft_time_limit=3540,  # 59 minutes
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_default_queue=SYNC_QUEUE,
    task_routes={
        "sync_worker.tasks.*": {"queue": SYNC_QUEUE},
    },
    task_always_eager=settings.celery_task_always_eager,
    task_eager_propagates=settings.celery_task_always_eager,
)

# Beat schedule for periodic tasks
app.conf.beat_schedule = {
    # Incremental sync of the configured store
    "sync-products": {
        "task": SCHEDULED_SYNC_TASK,
        "schedule": crontab(minute=f"*/{settings.sync_products_interval_minutes}")
        if settings.sync_products_interval_minutes < 60
        else crontab(minute=0),
    },
    # Release runs stuck past the stale threshold
    "sweep-stale-syncs": {
        "task": SWEEP_STALE_TASK,
        "schedule": crontab(minute=f"*/{settings.sync_sweep_interval_minutes}"),
    },
    # Saved jobs whose schedule is due
    "run-scheduled-jobs": {
        "task": SCHEDULED_JOBS_TASK,
        "schedule": crontab(minute=f"*/{settings.sync_jobs_interval_minutes}"),
    },
    # Hard-delete items past the retention window daily at 3 AM
    "purge-deleted-items": {
        "task": PURGE_DELETED_TASK,
        "schedule": crontab(minute=0, hour=3),
    },
}


def _log_batch_completed(payload: dict[str, Any], result: Any) -> None:
    logger.info(
        "Batch task succeeded",
        run_id=payload.get("run_id"),
        batch_id=payload.get("batch_id"),
        result=result,
    )


def _log_batch_failed(payload: dict[str, Any], exception: BaseException) -> None:
    logger.error(
        "Batch task failed",
        run_id=payload.get("run_id"),
        batch_id=payload.get("batch_id"),
        error=str(exception),
    )


sync_queue = SyncQueue(app)
sync_queue.on_completed(_log_batch_completed)
sync_queue.on_failed(_log_batch_failed)


def run() -> None:
    """Run the Celery worker."""
    app.worker_main(["worker", "--loglevel=info", "-Q", SYNC_QUEUE])


if __name__ == "__main__":
    run()
