"""Per-task service wiring for Celery tasks.

Each task runs its coroutine under ``asyncio.run``, so every task gets a
fresh event loop. Engines are built per task without pooling and disposed
before the loop closes.
"""

from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from catalog_sync.config import Settings, get_settings
from catalog_sync.infrastructure.database.connection import (
    create_session_factory,
    get_async_engine,
)
from catalog_sync.services.batch_worker import BatchWorker, SourceClientFactory
from catalog_sync.services.checkpoint import CheckpointManager
from catalog_sync.services.run_finalizer import RunFinalizer
from catalog_sync.services.source_client import ShopifySourceClient, SourceCredentials
from catalog_sync.services.sync_orchestrator import SyncOrchestrator, build_orchestrator


def source_client_factory(credentials: SourceCredentials, settings: Settings) -> ShopifySourceClient:
    return ShopifySourceClient(credentials, settings)


@dataclass
class WorkerServices:
    settings: Settings
    session_factory: async_sessionmaker[AsyncSession]
    checkpoints: CheckpointManager
    finalizer: RunFinalizer
    worker: BatchWorker
    orchestrator: SyncOrchestrator


@asynccontextmanager
async def worker_services(
    settings: Settings | None = None,
    client_factory: SourceClientFactory | None = None,
) -> AsyncIterator[WorkerServices]:
    from sync_worker.main import app as celery_app

    settings = settings or get_settings()
    client_factory = client_factory or source_client_factory
    engine = get_async_engine(settings, pooled=False)
    try:
        session_factory = create_session_factory(engine)
        checkpoints = CheckpointManager(session_factory)
        finalizer = RunFinalizer(session_factory, checkpoints)
        worker = BatchWorker(
            session_factory, finalizer, checkpoints, settings=settings, client_factory=client_factory
        )
        orchestrator = build_orchestrator(
            session_factory, settings, celery_app, client_factory=client_factory
        )
        yield WorkerServices(
            settings=settings,
            session_factory=session_factory,
            checkpoints=checkpoints,
            finalizer=finalizer,
            worker=worker,
            orchestrator=orchestrator,
        )
    finally:
        await engine.dispose()
