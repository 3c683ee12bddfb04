"""Catalog item endpoints."""

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from catalog_sync.api.deps import get_app_settings, get_cache, ok, resolve_store_id
from catalog_sync.api.v1.schemas import ApiResponse, ItemPage, ItemView, dump
from catalog_sync.config import Settings
from catalog_sync.infrastructure.database.connection import get_session
from catalog_sync.infrastructure.redis import CacheService
from catalog_sync.services.item_store import ItemStore
from shared.constants import DEFAULT_PAGE_LIMIT, MAX_PAGE_LIMIT, STATS_CACHE_PREFIX

router = APIRouter()


@router.get("", response_model=ApiResponse)
async def list_items(
    store_id: str | None = Query(None),
    limit: int = Query(DEFAULT_PAGE_LIMIT, ge=1, le=MAX_PAGE_LIMIT),
    offset: int = Query(0, ge=0),
    include_deleted: bool = Query(False),
    search: str | None = Query(None, description="Case-insensitive match on title or handle"),
    vendor: str | None = Query(None),
    category: str | None = Query(None),
    session: AsyncSession = Depends(get_session),
    settings: Settings = Depends(get_app_settings),
):
    """Page through mirrored items, most recently modified first."""
    store_id = resolve_store_id(store_id, settings)
    rows, total = await ItemStore(session).list_items(
        store_id,
        limit=limit,
        offset=offset,
        include_deleted=include_deleted,
        search=search,
        vendor=vendor,
        category=category,
    )
    return ok(dump(ItemPage.build(rows, total, limit, offset)))


@router.get("/{item_id}", response_model=ApiResponse)
async def get_item(
    item_id: str,
    store_id: str | None = Query(None),
    session: AsyncSession = Depends(get_session),
    settings: Settings = Depends(get_app_settings),
):
    store_id = resolve_store_id(store_id, settings)
    row = await ItemStore(session).get(store_id, item_id)
    if row is None:
        raise HTTPException(status_code=404, detail=f"Item {item_id} not found")
    return ok(dump(ItemView.model_validate(row)))


@router.delete("/{item_id}", response_model=ApiResponse)
async def delete_item(
    item_id: str,
    store_id: str | None = Query(None),
    hard: bool = Query(False, description="Remove the row instead of soft-deleting"),
    session: AsyncSession = Depends(get_session),
    settings: Settings = Depends(get_app_settings),
    cache: CacheService = Depends(get_cache),
):
    """Delete an item locally. Soft by default; the next full sync restores it if it still exists upstream."""
    store_id = resolve_store_id(store_id, settings)
    deleted = await ItemStore(session).delete_item(store_id, item_id, hard=hard)
    if not deleted:
        raise HTTPException(status_code=404, detail=f"Item {item_id} not found")
    await cache.invalidate(STATS_CACHE_PREFIX)
    return ok({"item_id": item_id, "deleted": True, "hard": hard})
