"""API v1 router that aggregates all endpoint routers."""

from fastapi import APIRouter

from catalog_sync.api.v1 import health, items, jobs, queue, stats, sync

api_router = APIRouter()

api_router.include_router(
    health.router,
    tags=["Health"],
)

api_router.include_router(
    sync.router,
    prefix="/sync",
    tags=["Sync"],
)

api_router.include_router(
    queue.router,
    prefix="/queue",
    tags=["Queue"],
)

api_router.include_router(
    items.router,
    prefix="/items",
    tags=["Items"],
)

api_router.include_router(
    stats.router,
    prefix="/stats",
    tags=["Stats"],
)

api_router.include_router(
    jobs.router,
    prefix="/jobs",
    tags=["Jobs"],
)

api_router.include_router(
    jobs.scheduler_router,
    prefix="/scheduler",
    tags=["Jobs"],
)
