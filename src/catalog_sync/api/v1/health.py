"""Health check endpoints."""

from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel
from sqlalchemy import text

from catalog_sync import __version__
from catalog_sync.api.deps import get_app_settings, get_cache
from catalog_sync.config import Settings
from catalog_sync.infrastructure.redis import CacheService

router = APIRouter()


class HealthResponse(BaseModel):
    """Health check response model."""

    status: str
    version: str
    environment: str
    timestamp: str
    dependencies: dict[str, Any]


class ReadinessResponse(BaseModel):
    """Readiness check response model."""

    ready: bool
    checks: dict[str, bool]


@router.get("/health", response_model=HealthResponse)
async def health_check(settings: Settings = Depends(get_app_settings)) -> HealthResponse:
    """
    Basic health check endpoint.

    Returns the service status and version information.
    """
    return HealthResponse(
        status="healthy",
        version=__version__,
        environment=settings.app_env,
        timestamp=datetime.now(timezone.utc).isoformat(),
        dependencies={
            "database": "configured",
            "redis": "configured",
            "shopify": "configured" if settings.shopify_store_domain else "not configured",
        },
    )


@router.get("/health/ready", response_model=ReadinessResponse)
async def readiness_check(
    request: Request,
    cache: CacheService = Depends(get_cache),
) -> ReadinessResponse:
    """
    Readiness check endpoint.

    Ready when the database answers. Redis is reported but optional,
    since the stats cache degrades to a no-op without it.
    """
    checks: dict[str, bool] = {}

    try:
        async with request.app.state.session_factory() as session:
            await session.execute(text("SELECT 1"))
        checks["database"] = True
    except Exception:
        checks["database"] = False

    checks["redis"] = await cache.health_check()

    return ReadinessResponse(ready=checks["database"], checks=checks)


@router.get("/health/live")
async def liveness_check() -> dict[str, str]:
    """
    Liveness check endpoint.

    Simple endpoint that returns 200 if the service is running.
    """
    return {"status": "alive"}
