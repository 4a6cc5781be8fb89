import logging

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from rideflow.config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()

_redis_pool: aioredis.Redis | None = None


async def get_redis() -> aioredis.Redis:
    global _redis_pool
    if _redis_pool is None:
        _redis_pool = aioredis.from_url(
            settings.redis_url,
            encoding="utf-8",
            decode_responses=True,
            max_connections=100,
        )
    return _redis_pool


async def close_redis() -> None:
    global _redis_pool
    if _redis_pool:
        await _redis_pool.aclose()
        _redis_pool = None


# ---------------------------------------------------------------------------
# Cache helpers
#
# The cache only ever holds projections of committed rows, so an unreachable
# Redis degrades to a cache miss instead of failing the request.
# ---------------------------------------------------------------------------

def ride_cache_key(ride_id: str) -> str:
    return f"ride:{ride_id}:status"


async def cache_set(redis: aioredis.Redis, key: str, value: str, ttl: int) -> None:
    try:
        await redis.setex(key, ttl, value)
    except RedisError as exc:
        logger.warning("Redis SETEX %s failed: %s", key, exc)


async def cache_get(redis: aioredis.Redis, key: str) -> str | None:
    try:
        return await redis.get(key)
    except RedisError as exc:
        logger.warning("Redis GET %s failed: %s", key, exc)
        return None


async def cache_delete(redis: aioredis.Redis, key: str) -> None:
    try:
        await redis.delete(key)
    except RedisError as exc:
        logger.warning("Redis DEL %s failed: %s", key, exc)


async def invalidate_ride(ride_id: str) -> None:
    """Drop the cached projection after a ride transition."""
    redis = await get_redis()
    await cache_delete(redis, ride_cache_key(ride_id))
