"""
Unit Tests - Aggregation Cache
"""
import asyncio
from datetime import datetime, timezone

import pytest

from seller_analytics.config import CacheSettings
from seller_analytics.engine.aggregator import Aggregation
from seller_analytics.engine.bucketing import resolve
from seller_analytics.engine.errors import QueryCancelledError
from seller_analytics.engine.models import BucketSummary
from seller_analytics.serving.cache import (
    AggregationCache,
    MemoryBackend,
    RedisBackend,
    create_cache,
)

UTC = timezone.utc


def aggregation(revenue: float = 100.0) -> Aggregation:
    start = datetime(2024, 3, 11, tzinfo=UTC)
    return Aggregation(
        buckets=[BucketSummary(bucket_start=start, bucket_end=start, label="Mon", order_count=1, revenue=revenue)],
        products=[],
        categories=[],
        customers=[],
    )


async def settle():
    for _ in range(3):
        await asyncio.sleep(0)


class StubRedis:
    """Dict-backed stand-in for the redis.asyncio client calls the backend makes"""

    def __init__(self):
        self.data = {}
        self.ttls = {}

    async def get(self, key):
        return self.data.get(key)

    async def setex(self, key, ttl, value):
        self.data[key] = value
        self.ttls[key] = ttl

    async def keys(self, pattern):
        prefix = pattern.rstrip("*")
        return [k for k in self.data if k.startswith(prefix)]

    async def delete(self, *keys):
        for key in keys:
            self.data.pop(key, None)
        return len(keys)


class TestAggregationCache:
    """Tests for AggregationCache"""

    @pytest.mark.asyncio
    async def test_second_lookup_is_a_hit(self, cache_settings):
        cache = AggregationCache(cache_settings)
        calls = 0

        async def compute():
            nonlocal calls
            calls += 1
            return aggregation()

        first = await cache.get_or_compute("k", compute)
        second = await cache.get_or_compute("k", compute)

        assert calls == 1
        assert first == second

    @pytest.mark.asyncio
    async def test_concurrent_requests_share_one_computation(self, cache_settings):
        cache = AggregationCache(cache_settings)
        gate = asyncio.Event()
        calls = 0

        async def compute():
            nonlocal calls
            calls += 1
            await gate.wait()
            return aggregation()

        tasks = [asyncio.create_task(cache.get_or_compute("k", compute)) for _ in range(5)]
        await settle()

        assert cache.inflight == 1
        gate.set()
        results = await asyncio.gather(*tasks)

        assert calls == 1
        assert all(r == results[0] for r in results)
        assert cache.inflight == 0

    @pytest.mark.asyncio
    async def test_failure_reaches_every_waiter_and_is_not_cached(self, cache_settings):
        cache = AggregationCache(cache_settings)
        gate = asyncio.Event()

        async def failing():
            await gate.wait()
            raise ValueError("store exploded")

        tasks = [asyncio.create_task(cache.get_or_compute("k", failing)) for _ in range(3)]
        await settle()
        gate.set()
        results = await asyncio.gather(*tasks, return_exceptions=True)

        assert all(isinstance(r, ValueError) for r in results)

        async def compute():
            return aggregation(revenue=7.0)

        recovered = await cache.get_or_compute("k", compute)
        assert recovered.total_revenue == 7.0

    @pytest.mark.asyncio
    async def test_follower_recomputes_when_leader_is_cancelled(self, cache_settings):
        cache = AggregationCache(cache_settings)
        gate = asyncio.Event()

        async def cancelled():
            await gate.wait()
            raise QueryCancelledError("Query cancelled")

        async def compute():
            return aggregation(revenue=42.0)

        leader = asyncio.create_task(cache.get_or_compute("k", cancelled))
        await settle()
        follower = asyncio.create_task(cache.get_or_compute("k", compute))
        await settle()
        gate.set()

        with pytest.raises(QueryCancelledError):
            await leader
        assert (await follower).total_revenue == 42.0

    @pytest.mark.asyncio
    async def test_entries_expire(self):
        now = [0.0]
        backend = MemoryBackend(clock=lambda: now[0])
        cache = AggregationCache(CacheSettings(ttl_seconds=60), backend)
        calls = 0

        async def compute():
            nonlocal calls
            calls += 1
            return aggregation()

        await cache.get_or_compute("k", compute)
        now[0] = 59.0
        await cache.get_or_compute("k", compute)
        now[0] = 61.0
        await cache.get_or_compute("k", compute)

        assert calls == 2

    @pytest.mark.asyncio
    async def test_expired_keys_are_purged_on_write(self):
        now = [0.0]
        backend = MemoryBackend(clock=lambda: now[0])

        for minute in range(100):
            now[0] = minute * 61.0
            await backend.set(f"Week:daily:UTC:{minute}", aggregation(), ttl=60)

        assert len(backend) == 1
        assert await backend.get("Week:daily:UTC:99") is not None
        assert await backend.get("Week:daily:UTC:0") is None

    @pytest.mark.asyncio
    async def test_live_keys_survive_purge(self):
        now = [0.0]
        backend = MemoryBackend(clock=lambda: now[0])
        await backend.set("a", aggregation(), ttl=60)
        now[0] = 30.0
        await backend.set("b", aggregation(), ttl=60)
        now[0] = 70.0

        assert backend.purge() == 1
        assert await backend.get("b") is not None

    def test_key_floors_reference_to_resolution(self, cache_settings, reference):
        cache = AggregationCache(cache_settings)
        plan = resolve("Week", reference, "UTC")

        early = cache.key_for(plan, datetime(2024, 3, 13, 12, 0, 10, tzinfo=UTC))
        late = cache.key_for(plan, datetime(2024, 3, 13, 12, 0, 50, tzinfo=UTC))
        next_minute = cache.key_for(plan, datetime(2024, 3, 13, 12, 1, 0, tzinfo=UTC))

        assert early == late
        assert early != next_minute
        assert early.startswith(plan.cache_key)

    @pytest.mark.asyncio
    async def test_clear(self, cache_settings):
        cache = AggregationCache(cache_settings)

        async def compute():
            return aggregation()

        await cache.get_or_compute("a", compute)
        await cache.get_or_compute("b", compute)

        assert await cache.clear() == 2


class TestRedisBackend:
    """Tests for RedisBackend"""

    @pytest.mark.asyncio
    async def test_round_trip_through_json(self):
        client = StubRedis()
        backend = RedisBackend(client, namespace="test")
        value = aggregation(revenue=12.5)

        await backend.set("k", value, ttl=30)

        assert client.ttls["test:k"] == 30
        assert await backend.get("k") == value
        assert await backend.get("missing") is None

    @pytest.mark.asyncio
    async def test_clear_only_touches_namespace(self):
        client = StubRedis()
        client.data["other:k"] = "{}"
        backend = RedisBackend(client, namespace="test")
        await backend.set("k", aggregation(), ttl=30)

        assert await backend.clear() == 1
        assert "other:k" in client.data


@pytest.mark.asyncio
async def test_disabled_cache():
    assert await create_cache(CacheSettings(enabled=False)) is None


@pytest.mark.asyncio
async def test_memory_cache_from_settings(cache_settings):
    cache = await create_cache(cache_settings)

    assert isinstance(cache.backend, MemoryBackend)
