"""FastAPI dependencies reading the services built at startup."""

from typing import Any, Awaitable, Callable

from fastapi import HTTPException, Request

from catalog_sync.config import Settings
from catalog_sync.infrastructure.redis import CacheService
from catalog_sync.services.queue import SyncQueue
from catalog_sync.services.source_client import SourceCredentials
from catalog_sync.services.sync_jobs import SyncJobService
from catalog_sync.services.sync_orchestrator import RunTicket, SyncOrchestrator

SyncLauncher = Callable[[RunTicket, SourceCredentials], Awaitable[str | None]]


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_orchestrator(request: Request) -> SyncOrchestrator:
    return request.app.state.orchestrator


def get_launcher(request: Request) -> SyncLauncher:
    return request.app.state.launch_run


def get_sync_queue(request: Request) -> SyncQueue:
    return request.app.state.sync_queue


def get_job_service(request: Request) -> SyncJobService:
    return request.app.state.job_service


def get_cache(request: Request) -> CacheService:
    return request.app.state.cache


def resolve_store_id(store_id: str | None, settings: Settings) -> str:
    """Use the given store id, falling back to the configured store."""
    resolved = store_id or settings.shopify_store_domain
    if not resolved:
        raise HTTPException(status_code=400, detail="store_id is required")
    return resolved


def ok(data: Any = None) -> dict[str, Any]:
    """Successful response envelope."""
    return {"success": True, "data": data}
