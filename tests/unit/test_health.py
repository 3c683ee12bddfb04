"""Unit tests for health endpoints."""

from httpx import AsyncClient


async def test_health_check(async_client: AsyncClient) -> None:
    """Test basic health check returns healthy status."""
    response = await async_client.get("/api/v1/health")
    assert response.status_code == 200

    data = response.json()
    assert data["status"] == "healthy"
    assert data["environment"] == "test"
    assert "version" in data
    assert "timestamp" in data
    assert data["dependencies"]["shopify"] == "configured"


async def test_liveness_check(async_client: AsyncClient) -> None:
    """Test liveness check returns alive status."""
    response = await async_client.get("/api/v1/health/live")
    assert response.status_code == 200
    assert response.json()["status"] == "alive"


async def test_readiness_check(async_client: AsyncClient) -> None:
    """Database answers; Redis is absent in tests but optional."""
    response = await async_client.get("/api/v1/health/ready")
    assert response.status_code == 200

    data = response.json()
    assert data["ready"] is True
    assert data["checks"] == {"database": True, "redis": False}
