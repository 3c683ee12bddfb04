"""Sync management endpoints."""

from fastapi import APIRouter, Depends, Header, HTTPException, Query
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from catalog_sync.api.deps import (
    SyncLauncher,
    get_app_settings,
    get_launcher,
    get_orchestrator,
    ok,
    resolve_store_id,
)
from catalog_sync.api.v1.schemas import ApiResponse, SyncRequest, SyncStarted, dump
from catalog_sync.config import Settings
from catalog_sync.exceptions import SyncRunNotFoundError
from catalog_sync.infrastructure.database.connection import get_session
from catalog_sync.services.source_client import SourceCredentials
from catalog_sync.services.sync_options import SyncOptions
from catalog_sync.services.sync_orchestrator import SyncOrchestrator
from catalog_sync.services.sync_state import DEFAULT_SYNC_TYPE, SyncStateRepository
from shared.constants import DEFAULT_EXECUTIONS_LIMIT, MAX_EXECUTIONS_LIMIT

router = APIRouter()


@router.post("/products", status_code=202, response_model=ApiResponse)
async def start_product_sync(
    payload: SyncRequest | None = None,
    x_shopify_shop: str | None = Header(None),
    x_shopify_access_token: str | None = Header(None),
    settings: Settings = Depends(get_app_settings),
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
    launch_run: SyncLauncher = Depends(get_launcher),
):
    """
    Start a product sync for a store.

    The run is claimed before this returns, so a conflicting request gets
    409 immediately. Execution continues in the background.

    Credentials come from the `X-Shopify-Shop` and `X-Shopify-Access-Token`
    headers, falling back to the configured store.
    """
    payload = payload or SyncRequest()
    shop = x_shopify_shop or settings.shopify_store_domain
    token = x_shopify_access_token or settings.shopify_access_token
    if not shop or not token:
        raise HTTPException(status_code=400, detail="Shopify shop and access token are required")

    store_id = resolve_store_id(payload.store_id or shop, settings)
    options = SyncOptions.model_validate(payload.model_dump(exclude={"store_id"}))
    credentials = SourceCredentials(shop_domain=shop, access_token=token)

    ticket = await orchestrator.begin_run(store_id, options)
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
    )
    return JSONResponse(status_code=202, content=ok(dump(started)))


@router.get("/status", response_model=ApiResponse)
async def get_sync_status(
    store_id: str | None = Query(None, description="Store id; omit to list every store"),
    sync_type: str = Query(DEFAULT_SYNC_TYPE),
    include_snapshot: bool = Query(False, description="Include pre-sync existing item ids"),
    session: AsyncSession = Depends(get_session),
):
    """Current sync state, including progress of the active run."""
    repo = SyncStateRepository(session)
    if store_id is None:
        states = await repo.list_states()
        return ok([dump(state) for state in states])

    state = await repo.get(store_id, sync_type, include_snapshot=include_snapshot)
    if state is None:
        raise HTTPException(status_code=404, detail=f"No sync state for store {store_id}")
    return ok(dump(state))


@router.get("/executions", response_model=ApiResponse)
async def list_executions(
    store_id: str | None = Query(None),
    sync_type: str | None = Query(None),
    limit: int = Query(DEFAULT_EXECUTIONS_LIMIT, ge=1, le=MAX_EXECUTIONS_LIMIT),
    offset: int = Query(0, ge=0),
    session: AsyncSession = Depends(get_session),
):
    """Sync execution history, newest first."""
    runs = await SyncStateRepository(session).list_runs(store_id, sync_type, limit, offset)
    return ok([dump(run) for run in runs])


@router.get("/executions/{run_id}", response_model=ApiResponse)
async def get_execution(run_id: str, session: AsyncSession = Depends(get_session)):
    run = await SyncStateRepository(session).get_run(run_id)
    if run is None:
        raise SyncRunNotFoundError(run_id)
    return ok(dump(run))


@router.post("/executions/{run_id}/cancel", response_model=ApiResponse)
async def cancel_execution(
    run_id: str, orchestrator: SyncOrchestrator = Depends(get_orchestrator)
):
    """Request cancellation. Batches already being processed finish first."""
    cancelled = await orchestrator.cancel_run(run_id)
    return ok({"run_id": run_id, "cancel_requested": cancelled})


@router.post("/fix-stuck", response_model=ApiResponse)
async def fix_stuck_syncs(orchestrator: SyncOrchestrator = Depends(get_orchestrator)):
    """Fail every run stuck in progress longer than the stale threshold."""
    reset = await orchestrator.reset_stale_runs()
    return ok({"reset": [dump(run) for run in reset]})
