"""Catalog dashboard statistics."""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from catalog_sync.api.deps import get_app_settings, get_cache, ok
from catalog_sync.api.v1.schemas import ApiResponse, dump
from catalog_sync.config import Settings
from catalog_sync.infrastructure.database.connection import get_session
from catalog_sync.infrastructure.redis import CacheService
from catalog_sync.services.item_store import ItemStore
from catalog_sync.services.sync_state import DEFAULT_SYNC_TYPE, SyncStateRepository
from shared.constants import STATS_CACHE_PREFIX

router = APIRouter()


@router.get("", response_model=ApiResponse)
async def catalog_stats(
    store_id: str | None = Query(None, description="Limit to one store; omit for all stores"),
    session: AsyncSession = Depends(get_session),
    cache: CacheService = Depends(get_cache),
    settings: Settings = Depends(get_app_settings),
):
    """Item totals by category and vendor, recent changes and last sync."""
    cache_key = f"{STATS_CACHE_PREFIX}:{store_id or 'all'}"
    cached = await cache.get(cache_key)
    if cached is not None:
        return ok(cached)

    stats = await ItemStore(session).stats(store_id)
    if store_id:
        state = await SyncStateRepository(session).get(store_id, DEFAULT_SYNC_TYPE)
        stats["sync"] = (
            {
                "last_synced_at": dump(state)["last_synced_at"],
                "is_in_progress": state.is_in_progress,
                "total_syncs": state.total_syncs,
                "last_sync_error": state.last_sync_error,
            }
            if state is not None
            else None
        )

    await cache.set(cache_key, stats, ttl_seconds=settings.stats_cache_ttl_seconds)
    return ok(stats)
