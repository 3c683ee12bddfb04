"""Exceptions raised by the catalog sync service."""

from typing import Any


class CatalogSyncError(Exception):
    """Base exception for catalog sync errors."""


class SyncInProgressError(CatalogSyncError):
    """A sync for the same store and sync type is already running."""

    def __init__(self, store_id: str, sync_type: str, state: Any = None):
        super().__init__(f"A {sync_type} sync is already in progress for store {store_id}")
        self.store_id = store_id
        self.sync_type = sync_type
        self.state = state


class SyncRunNotFoundError(CatalogSyncError):
    """No sync run exists with the requested id."""


class SourceClientError(CatalogSyncError):
    """Base exception for source API errors."""


class SourceAuthError(SourceClientError):
    """The source API rejected the credentials."""


class ItemNotFoundError(SourceClientError):
    """The source API has no item with the requested id."""

    def __init__(self, item_id: str):
        super().__init__(f"Item {item_id} not found")
        self.item_id = item_id


class SyncJobNotFoundError(CatalogSyncError):
    """No usable sync job exists with the requested id."""

    def __init__(self, job_id: str, disabled: bool = False):
        detail = "not found or disabled" if disabled else "not found"
        super().__init__(f"Sync job {job_id} {detail}")
        self.job_id = job_id
