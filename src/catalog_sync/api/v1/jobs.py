"""Saved sync job endpoints and the manual scheduler trigger."""

import asyncio

from fastapi import APIRouter, Depends, Header, HTTPException, Query
from fastapi.responses import JSONResponse

from catalog_sync.api.deps import (
    SyncLauncher,
    get_app_settings,
    get_job_service,
    get_launcher,
    get_orchestrator,
    get_sync_queue,
    ok,
)
from catalog_sync.api.v1.schemas import ApiResponse, SyncStarted, dump
from catalog_sync.config import Settings
from catalog_sync.services.queue import SyncQueue
from catalog_sync.services.source_client import SourceCredentials
from catalog_sync.services.sync_jobs import (
    ExecutionRequest,
    SyncJobCreate,
    SyncJobService,
    SyncJobUpdate,
)
from catalog_sync.services.sync_orchestrator import SyncOrchestrator
from shared.constants import DEFAULT_EXECUTIONS_LIMIT, MAX_EXECUTIONS_LIMIT

router = APIRouter()
scheduler_router = APIRouter()


def _header_credentials(shop: str | None, token: str | None) -> SourceCredentials | None:
    if shop and token:
        return SourceCredentials(shop_domain=shop, access_token=token)
    return None


@router.post("", status_code=201, response_model=ApiResponse)
async def create_job(
    payload: SyncJobCreate,
    x_shopify_shop: str | None = Header(None),
    x_shopify_access_token: str | None = Header(None),
    settings: Settings = Depends(get_app_settings),
    jobs: SyncJobService = Depends(get_job_service),
):
    """
    Save a sync job.

    The job keeps the credentials from the `X-Shopify-Shop` and
    `X-Shopify-Access-Token` headers, falling back to the configured store.
    """
    credentials = _header_credentials(
        x_shopify_shop or settings.shopify_store_domain,
        x_shopify_access_token or settings.shopify_access_token,
    )
    if credentials is None:
        raise HTTPException(status_code=400, detail="Shopify shop and access token are required")

    job = await jobs.create(payload, credentials)
    return JSONResponse(status_code=201, content=ok(dump(job)))


@router.get("", response_model=ApiResponse)
async def list_jobs(
    enabled: bool | None = Query(None),
    store_id: str | None = Query(None),
    source_type: str | None = Query(None),
    destination_type: str | None = Query(None),
    jobs: SyncJobService = Depends(get_job_service),
):
    """Saved jobs, most recently updated first."""
    views = await jobs.list_jobs(
        enabled=enabled,
        store_id=store_id,
        source_type=source_type,
        destination_type=destination_type,
    )
    return ok([dump(view) for view in views])


@router.get("/{job_id}", response_model=ApiResponse)
async def get_job(job_id: str, jobs: SyncJobService = Depends(get_job_service)):
    return ok(dump(await jobs.get(job_id)))


@router.put("/{job_id}", response_model=ApiResponse)
async def update_job(
    job_id: str,
    payload: SyncJobUpdate,
    x_shopify_shop: str | None = Header(None),
    x_shopify_access_token: str | None = Header(None),
    jobs: SyncJobService = Depends(get_job_service),
):
    """Update a job. Credential headers, when both are sent, replace the stored ones."""
    credentials = _header_credentials(x_shopify_shop, x_shopify_access_token)
    return ok(dump(await jobs.update(job_id, payload, credentials)))


@router.delete("/{job_id}", response_model=ApiResponse)
async def delete_job(job_id: str, jobs: SyncJobService = Depends(get_job_service)):
    """Delete a job. Runs it started stay in the execution history."""
    await jobs.delete(job_id)
    return ok({"job_id": job_id, "deleted": True})


@router.post("/{job_id}/executions", status_code=202, response_model=ApiResponse)
async def create_execution(
    job_id: str,
    payload: ExecutionRequest | None = None,
    jobs: SyncJobService = Depends(get_job_service),
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
    launch_run: SyncLauncher = Depends(get_launcher),
):
    """
    Start a run of a saved job.

    `sync_type` forces a full or incremental run; omitted, the job's own
    configuration decides. A disabled job answers 404.
    """
    ticket, credentials = await jobs.start_execution(job_id, payload)
    try:
        task_id = await launch_run(ticket, credentials)
    except Exception as e:
        await orchestrator.finalizer.fail(ticket.run_id, f"Failed to launch sync: {e}")
        raise HTTPException(status_code=503, detail="Sync could not be started") from e

    started = SyncStarted(
        run_id=ticket.run_id,
        store_id=ticket.store_id,
        sync_type=ticket.sync_type,
        mode=ticket.mode.value,
        task_id=task_id,
        job_id=job_id,
    )
    return JSONResponse(status_code=202, content=ok(dump(started)))


@router.get("/{job_id}/executions", response_model=ApiResponse)
async def list_job_executions(
    job_id: str,
    status: str | None = Query(None),
    limit: int = Query(DEFAULT_EXECUTIONS_LIMIT, ge=1, le=MAX_EXECUTIONS_LIMIT),
    offset: int = Query(0, ge=0),
    jobs: SyncJobService = Depends(get_job_service),
):
    """Runs started by this job, newest first."""
    runs = await jobs.list_executions(job_id, limit=limit, offset=offset, status=status)
    return ok([dump(run) for run in runs])


@scheduler_router.post("/run", status_code=202, response_model=ApiResponse)
async def run_scheduler(sync_queue: SyncQueue = Depends(get_sync_queue)):
    """Queue a scheduler pass now instead of waiting for the next beat."""
    try:
        task_id = await asyncio.to_thread(sync_queue.enqueue_scheduler)
    except Exception as e:
        raise HTTPException(status_code=503, detail="Scheduler could not be started") from e
    return JSONResponse(status_code=202, content=ok({"task_id": task_id}))
