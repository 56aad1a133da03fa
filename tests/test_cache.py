import pytest

from app.services.cache import get_cache, get_or_set, invalidate, invalidate_pattern, set_cache

pytestmark = pytest.mark.asyncio


def producer_of(value, calls):
    async def _produce():
        calls.append(value)
        return value
    return _produce


async def test_miss_calls_producer_and_stores(redis):
    calls = []
    value = await get_or_set(redis, "k", producer_of({"a": 1}, calls), 60)
    assert value == {"a": 1}
    assert calls == [{"a": 1}]
    assert await get_cache(redis, "k") == {"a": 1}
    assert 0 < await redis.ttl("k") <= 60


async def test_hit_returns_cached_value_even_if_producer_differs(redis):
    calls = []
    await get_or_set(redis, "k", producer_of([1, 2], calls), 60)
    value = await get_or_set(redis, "k", producer_of([3], calls), 60)
    assert value == [1, 2]
    assert calls == [[1, 2]]


async def test_no_store_always_produces():
    calls = []
    await get_or_set(None, "k", producer_of("x", calls), 60)
    await get_or_set(None, "k", producer_of("y", calls), 60)
    assert calls == ["x", "y"]


async def test_store_failure_falls_back_to_producer():
    class BrokenRedis:
        async def get(self, key):
            raise ConnectionError("down")

    calls = []
    assert await get_or_set(BrokenRedis(), "k", producer_of(5, calls), 60) == 5


async def test_invalidate(redis):
    await set_cache(redis, "service:prices", [1], 60)
    await set_cache(redis, "service:prices:web", [2], 60)
    await invalidate(redis, "service:prices")
    assert await get_cache(redis, "service:prices") is None
    assert await invalidate_pattern(redis, "service:prices:*") == 1
