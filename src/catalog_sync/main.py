"""FastAPI application entry point."""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncEngine
from starlette.exceptions import HTTPException

from catalog_sync.api.deps import SyncLauncher
from catalog_sync.api.v1.router import api_router
from catalog_sync.config import Settings, get_settings
from catalog_sync.exceptions import (
    CatalogSyncError,
    SyncInProgressError,
    SyncJobNotFoundError,
    SyncRunNotFoundError,
)
from catalog_sync.infrastructure.database.connection import (
    create_session_factory,
    get_async_engine,
)
from catalog_sync.infrastructure.redis import CacheService, create_redis_client
from catalog_sync.logging_config import configure_logging
from catalog_sync.middleware.timing import TimingMiddleware
from catalog_sync.services.queue import SyncQueue
from catalog_sync.services.source_client import SourceCredentials
from catalog_sync.services.sync_jobs import SyncJobService
from catalog_sync.services.sync_orchestrator import RunTicket, build_orchestrator

logger = structlog.get_logger()


def _error(status_code: int, message: str, data: object = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "data": jsonable_encoder(data), "error": message},
    )


def _register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(HTTPException)
    async def http_error(request: Request, exc: HTTPException) -> JSONResponse:
        return _error(exc.status_code, str(exc.detail))

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        details = [
            {"loc": list(err["loc"]), "msg": err["msg"], "type": err["type"]}
            for err in exc.errors()
        ]
        return _error(422, "Invalid request", details)

    @app.exception_handler(SyncInProgressError)
    async def sync_in_progress(request: Request, exc: SyncInProgressError) -> JSONResponse:
        state = exc.state.model_dump(mode="json") if exc.state is not None else None
        return _error(409, str(exc), state)

    @app.exception_handler(SyncRunNotFoundError)
    async def run_not_found(request: Request, exc: SyncRunNotFoundError) -> JSONResponse:
        return _error(404, f"Sync run {exc} not found")

    @app.exception_handler(SyncJobNotFoundError)
    async def job_not_found(request: Request, exc: SyncJobNotFoundError) -> JSONResponse:
        return _error(404, str(exc))

    @app.exception_handler(CatalogSyncError)
    async def catalog_sync_error(request: Request, exc: CatalogSyncError) -> JSONResponse:
        logger.error("Unhandled catalog sync error", path=request.url.path, error=str(exc))
        return _error(500, str(exc))


def create_app(
    settings: Settings | None = None,
    engine: AsyncEngine | None = None,
    cache: CacheService | None = None,
    launch_run: SyncLauncher | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    ``engine``, ``cache`` and ``launch_run`` replace the defaults built at
    startup; tests pass an in-memory engine and an inline launcher.
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        configure_logging(settings)
        logger.info("Starting catalog sync API", app_env=settings.app_env, debug=settings.debug)

        from sync_worker.main import app as celery_app

        app_engine = engine or get_async_engine(settings)
        session_factory = create_session_factory(app_engine)
        sync_queue = SyncQueue(celery_app)

        app.state.settings = settings
        app.state.engine = app_engine
        app.state.session_factory = session_factory
        app.state.cache = cache or CacheService(await create_redis_client(settings))
        app.state.sync_queue = sync_queue
        app.state.orchestrator = build_orchestrator(session_factory, settings, celery_app)
        app.state.job_service = SyncJobService(session_factory, app.state.orchestrator)

        async def enqueue_run(ticket: RunTicket, credentials: SourceCredentials) -> str | None:
            return await asyncio.to_thread(
                sync_queue.enqueue_run, ticket.to_payload(), credentials.to_payload()
            )

        app.state.launch_run = launch_run or enqueue_run

        yield

        await app.state.cache.close()
        if engine is None:
            await app_engine.dispose()
        logger.info("Shutting down catalog sync API")

    app = FastAPI(
        title="Catalog Sync API",
        description="Shopify product catalog synchronization service",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    app.add_middleware(TimingMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    _register_exception_handlers(app)

    app.include_router(api_router, prefix="/api/v1")

    return app


def run() -> None:
    """Run the application using uvicorn."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "catalog_sync.main:create_app",
        factory=True,
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
        workers=1 if settings.debug else settings.api_workers,
    )


if __name__ == "__main__":
    run()
