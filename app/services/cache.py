"""Read-through JSON cache over Redis."""

import json
from typing import Any, Awaitable, Callable, TypeVar

from redis.exceptions import RedisError

from app.core.logging import get_logger

log = get_logger(__name__)

T = TypeVar("T")

# Seconds
CACHE_TTL = {
    "service_prices": 1800,
}


class CACHE_KEYS:
    SERVICE_PRICES = "service:prices"

    @staticmethod
    def service_prices_by_slug(slug: str) -> str:
        return f"service:prices:{slug}"


async def get_cache(redis, key: str) -> Any | None:
    if redis is None:
        return None
    raw = await redis.get(key)
    if raw is None:
        return None
    return json.loads(raw)


async def set_cache(redis, key: str, value: Any, ttl: int) -> None:
    if redis is None:
        return
    await redis.set(key, json.dumps(value, default=str), ex=ttl)


async def get_or_set(redis, key: str, producer: Callable[[], Awaitable[T]], ttl: int) -> T:
    """
    Return the cached value for key, or call producer, store its result for ttl seconds and return it.
    Concurrent misses may each call producer. Store errors fall back to producer.
    """
    if redis is None:
        return await producer()
    try:
        cached = await get_cache(redis, key)
    except Exception as e:
        log.warning("cache_get_failed", key=key, error=str(e))
        return await producer()
    if cached is not None:
        return cached

    value = await producer()
    try:
        await set_cache(redis, key, value, ttl)
    except Exception as e:
        log.warning("cache_set_failed", key=key, error=str(e))
    return value


async def invalidate(redis, key: str) -> None:
    if redis is None:
        return
    try:
        await redis.delete(key)
    except RedisError as e:
        log.warning("cache_invalidate_failed", key=key, error=str(e))


async def invalidate_pattern(redis, pattern: str) -> int:
    if redis is None:
        return 0
    try:
        keys = [k async for k in redis.scan_iter(match=pattern)]
        return await redis.delete(*keys) if keys else 0
    except RedisError as e:
        log.warning("cache_invalidate_failed", pattern=pattern, error=str(e))
        return 0
