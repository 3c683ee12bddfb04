"""Per-run sync options."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from catalog_sync.config import Settings
from catalog_sync.services.source_client import MAX_PAGE_SIZE, SourceFilters


class SyncOptions(BaseModel):
    """Recognised options for one sync run.

    Unknown keys are rejected. Free-form caller data goes in ``metadata``,
    which the sync never interprets.
    """

    model_config = ConfigDict(extra="forbid")

    filters: SourceFilters = Field(default_factory=SourceFilters)
    force_full_sync: bool = False
    batch_size: int | None = Field(None, ge=1, le=MAX_PAGE_SIZE)
    detail_batch_size: int | None = Field(None, ge=1, le=100)
    max_items: int | None = Field(None, ge=1)
    purge_deleted_after_days: int | None = Field(None, ge=0)
    metadata: dict[str, Any] = Field(default_factory=dict)

    def resolve(self, settings: Settings) -> "SyncOptions":
        """Fill unset options from settings."""
        return self.model_copy(
            update={
                "batch_size": self.batch_size or min(settings.sync_batch_size, MAX_PAGE_SIZE),
                "detail_batch_size": self.detail_batch_size or settings.sync_detail_batch_size,
                "purge_deleted_after_days": (
                    self.purge_deleted_after_days
                    if self.purge_deleted_after_days is not None
                    else settings.sync_purge_deleted_after_days
                ),
            }
        )
