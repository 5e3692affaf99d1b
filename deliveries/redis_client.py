"""
Process-wide Redis client, used by the order event relay.
"""
import redis.asyncio as redis

from deliveries.config import settings

_redis: redis.Redis | None = None


async def get_redis() -> redis.Redis:
    global _redis
    if _redis is None:
        _redis = redis.from_url(settings.redis_url, decode_responses=True)
    return _redis


async def close_redis() -> None:
    global _redis
    if _redis is not None:
        await _redis.aclose()
        _redis = None


async def ping_redis() -> bool:
    """True if Redis answers PING. Reported by /health when events go through Redis."""
    try:
        r = await get_redis()
        return bool(await r.ping())
    except (redis.ConnectionError, redis.TimeoutError, OSError):
        return False
