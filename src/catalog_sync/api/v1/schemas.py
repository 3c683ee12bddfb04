"""Request and response models shared by the v1 endpoints."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict

from catalog_sync.services.sync_options import SyncOptions


class ApiResponse(BaseModel):
    """Uniform response envelope."""

    success: bool
    data: Any = None
    error: str | None = None


class SyncRequest(SyncOptions):
    """Body of ``POST /sync/products``. Omitting ``store_id`` targets the configured store."""

    store_id: str | None = None


class SyncStarted(BaseModel):
    run_id: str
    store_id: str
    sync_type: str
    mode: str
    status: str = "running"
    task_id: str | None = None
    job_id: str | None = None


class ItemView(BaseModel):
    """A mirrored catalog item."""

    model_config = ConfigDict(from_attributes=True)

    store_id: str
    item_id: str
    title: str | None = None
    description: str | None = None
    handle: str | None = None
    category: str | None = None
    vendor: str | None = None
    tags: list[str] = []
    variants: list[dict[str, Any]] = []
    source_created_at: datetime | None = None
    source_updated_at: datetime | None = None
    local_created_at: datetime | None = None
    local_updated_at: datetime | None = None
    deleted_at: datetime | None = None
    last_action: str | None = None
    first_seen_at: datetime | None = None
    last_modified_at: datetime | None = None
    sync_cursor: str | None = None


class ItemPage(BaseModel):
    items: list[ItemView]
    total: int
    limit: int
    offset: int

    @classmethod
    def build(cls, rows: list[Any], total: int, limit: int, offset: int) -> "ItemPage":
        return cls(
            items=[ItemView.model_validate(row) for row in rows],
            total=total,
            limit=limit,
            offset=offset,
        )


def dump(model: BaseModel | None) -> dict[str, Any] | None:
    return model.model_dump(mode="json") if model is not None else None
