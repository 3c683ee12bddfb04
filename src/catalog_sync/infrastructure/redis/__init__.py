"""Redis cache infrastructure with graceful degradation."""

from typing import Any

import orjson
import redis.asyncio as aioredis
import structlog

from catalog_sync.config import Settings, get_settings

logger = structlog.get_logger()


async def create_redis_client(settings: Settings | None = None) -> aioredis.Redis | None:
    """Connect to Redis, or return None when it is unreachable."""
    settings = settings or get_settings()
    client = aioredis.from_url(
        settings.redis_url,
        decode_responses=False,
        socket_connect_timeout=2,
        socket_timeout=2,
        retry_on_timeout=True,
    )
    try:
        await client.ping()
        logger.info("Redis connection established")
    except Exception as e:
        logger.warning("Redis unavailable, caching disabled", error=str(e))
        await client.aclose()
        return None
    return client


class CacheService:
    """Async Redis cache with orjson serialization. No-ops if Redis is unavailable."""

    def __init__(self, client: aioredis.Redis | None):
        self.client = client

    async def get(self, key: str) -> Any | None:
        if not self.client:
            return None
        try:
            data = await self.client.get(key)
            if data:
                return orjson.loads(data)
        except Exception as e:
            logger.warning("Cache get failed", key=key, error=str(e))
        return None

    async def set(self, key: str, value: Any, ttl_seconds: int = 30) -> None:
        if not self.client:
            return
        try:
            await self.client.set(key, orjson.dumps(value), ex=ttl_seconds)
        except Exception as e:
            logger.warning("Cache set failed", key=key, error=str(e))

    async def invalidate(self, prefix: str) -> None:
        """Delete every key starting with ``prefix``."""
        if not self.client:
            return
        try:
            async for key in self.client.scan_iter(match=f"{prefix}*"):
                await self.client.delete(key)
        except Exception as e:
            logger.warning("Cache invalidate failed", prefix=prefix, error=str(e))

    async def health_check(self) -> bool:
        if not self.client:
            return False
        try:
            return bool(await self.client.ping())
        except Exception:
            return False

    async def close(self) -> None:
        if self.client:
            await self.client.aclose()
            self.client = None
