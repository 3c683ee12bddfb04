"""Catalog sync services."""

from catalog_sync.services.batch_worker import BatchOutcome, BatchPayload, BatchWorker
from catalog_sync.services.checkpoint import Checkpoint, CheckpointManager
from catalog_sync.services.item_store import ItemStore, UpsertResult
from catalog_sync.services.queue import (
    BatchDispatcher,
    CeleryDispatcher,
    InlineDispatcher,
    SyncQueue,
)
from catalog_sync.services.run_finalizer import RunFinalizer
from catalog_sync.services.source_client import (
    ShopifySourceClient,
    SourceCredentials,
    SourceFilters,
)
from catalog_sync.services.sync_options import SyncOptions
from catalog_sync.services.sync_orchestrator import RunTicket, SyncOrchestrator
from catalog_sync.services.sync_state import SyncStateRepository

__all__ = [
    "BatchDispatcher",
    "BatchOutcome",
    "BatchPayload",
    "BatchWorker",
    "CeleryDispatcher",
    "Checkpoint",
    "CheckpointManager",
    "InlineDispatcher",
    "ItemStore",
    "RunFinalizer",
    "RunTicket",
    "ShopifySourceClient",
    "SourceCredentials",
    "SourceFilters",
    "SyncOptions",
    "SyncOrchestrator",
    "SyncQueue",
    "SyncStateRepository",
    "UpsertResult",
]
