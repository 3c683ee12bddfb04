"""Batch queue control endpoints."""

import asyncio

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from catalog_sync.api.deps import get_sync_queue, ok
from catalog_sync.api.v1.schemas import ApiResponse
from catalog_sync.infrastructure.database.connection import get_session
from catalog_sync.services.queue import SyncQueue

router = APIRouter()


@router.get("/stats", response_model=ApiResponse)
async def queue_stats(
    queue: SyncQueue = Depends(get_sync_queue),
    session: AsyncSession = Depends(get_session),
):
    """Waiting, active, completed and failed batch counts."""
    return ok(await queue.get_stats(session))


@router.post("/pause", response_model=ApiResponse)
async def pause_queue(queue: SyncQueue = Depends(get_sync_queue)):
    replies = await asyncio.to_thread(queue.pause)
    return ok({"paused": True, "workers": len(replies)})


@router.post("/resume", response_model=ApiResponse)
async def resume_queue(queue: SyncQueue = Depends(get_sync_queue)):
    replies = await asyncio.to_thread(queue.resume)
    return ok({"paused": False, "workers": len(replies)})


@router.post("/clear", response_model=ApiResponse)
async def clear_queue(queue: SyncQueue = Depends(get_sync_queue)):
    """Discard waiting batches. Runs left waiting on them are failed by the stale-run sweep."""
    purged = await asyncio.to_thread(queue.clear)
    return ok({"purged": purged})
