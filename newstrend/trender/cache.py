"""Redis-backed response cache and ranking snapshot."""

from typing import Any, Optional

import redis.asyncio as aioredis

from newstrend.core.logging import get_logger

logger = get_logger(__name__)

CACHE_KEY = "trend:ranking:cache"
SNAPSHOT_KEY = "trend:ranking:snapshot"


class RankingCache:
    """
    Two keys: a short-TTL copy of the last response and a non-expiring
    snapshot of the last full ranking, used for rank deltas.
    """

    def __init__(self, redis_url: Optional[str] = None, client: Optional[Any] = None):
        if client is None:
            client = aioredis.from_url(redis_url or "redis://localhost:6379/0", decode_responses=True)
        self.redis = client

    async def get_cached(self) -> Optional[str]:
        return await self.redis.get(CACHE_KEY)

    async def set_cached(self, payload: str, ttl_seconds: int) -> None:
        await self.redis.set(CACHE_KEY, payload, ex=ttl_seconds)

    async def get_snapshot(self) -> Optional[str]:
        return await self.redis.get(SNAPSHOT_KEY)

    async def set_snapshot(self, payload: str) -> None:
        await self.redis.set(SNAPSHOT_KEY, payload)

    async def close(self) -> None:
        await self.redis.aclose()
