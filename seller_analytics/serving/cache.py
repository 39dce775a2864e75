"""
Aggregation Cache Module

Optional caching layer in front of the aggregator with:
- Single-flight: at most one in-flight aggregation per key; duplicate
  requests await and reuse the in-flight result
- Keys of (range keyword, granularity, as-of instant) with the as-of instant
  floored to a configurable resolution
- In-memory or Redis storage with TTL management
"""

import asyncio
import time
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Awaitable, Callable, Dict, Optional, Tuple

import structlog
from prometheus_client import Counter
from redis.asyncio import ConnectionPool, Redis

from seller_analytics.config import CacheSettings, get_settings
from seller_analytics.engine.aggregator import Aggregation
from seller_analytics.engine.bucketing import BucketPlan, to_epoch_micros
from seller_analytics.engine.errors import QueryCancelledError

logger = structlog.get_logger(__name__)

CACHE_REQUESTS = Counter(
    "dashboard_cache_requests_total",
    "Aggregation cache lookups",
    ["result"],
)


# =============================================================================
# BACKENDS
# =============================================================================

class CacheBackend(ABC):
    """Storage for computed aggregations"""

    @abstractmethod
    async def get(self, key: str) -> Optional[Aggregation]:
        pass

    @abstractmethod
    async def set(self, key: str, value: Aggregation, ttl: int) -> None:
        pass

    @abstractmethod
    async def clear(self) -> int:
        pass


class MemoryBackend(CacheBackend):
    """
    Process-local TTL store.

    As-of keys roll over with the clock, so most keys are never read again
    once they expire; every write purges expired entries.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._entries: Dict[str, Tuple[float, Aggregation]] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def purge(self) -> int:
        """Drop expired entries; returns how many were removed"""
        now = self._clock()
        expired = [key for key, (expires_at, _) in self._entries.items() if now >= expires_at]
        for key in expired:
            del self._entries[key]
        return len(expired)

    async def get(self, key: str) -> Optional[Aggregation]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        return value

    async def set(self, key: str, value: Aggregation, ttl: int) -> None:
        self.purge()
        self._entries[key] = (self._clock() + ttl, value)

    async def clear(self) -> int:
        count = len(self._entries)
        self._entries.clear()
        return count


_redis_pool: Optional[ConnectionPool] = None
_redis_client: Optional[Redis] = None


async def init_redis() -> Redis:
    """Initialize Redis connection pool"""
    global _redis_pool, _redis_client

    if _redis_client is not None:
        return _redis_client

    settings = get_settings()
    _redis_pool = ConnectionPool.from_url(
        settings.redis.get_url(),
        max_connections=settings.redis.max_connections,
        socket_timeout=settings.redis.socket_timeout,
        decode_responses=settings.redis.decode_responses,
    )
    _redis_client = Redis(connection_pool=_redis_pool)

    try:
        await _redis_client.ping()
        logger.info("Redis connection established")
    except Exception as e:
        logger.error(f"Redis connection failed: {e}")
        raise

    return _redis_client


async def close_redis() -> None:
    """Close Redis connection pool"""
    global _redis_pool, _redis_client

    if _redis_client:
        await _redis_client.aclose()
        _redis_client = None

    if _redis_pool:
        await _redis_pool.disconnect()
        _redis_pool = None

    logger.info("Redis connection closed")


def get_redis() -> Redis:
    """Get Redis client instance"""
    if _redis_client is None:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return _redis_client


class RedisBackend(CacheBackend):
    """
    Shared store for multi-worker deployments.

    Aggregations are stored as JSON under ``<namespace>:<key>``.
    """

    def __init__(self, client: Redis, namespace: str = "dashboard"):
        self.client = client
        self.namespace = namespace

    def _key(self, key: str) -> str:
        return f"{self.namespace}:{key}"

    async def get(self, key: str) -> Optional[Aggregation]:
        value = await self.client.get(self._key(key))
        if value is None:
            return None
        return Aggregation.model_validate_json(value)

    async def set(self, key: str, value: Aggregation, ttl: int) -> None:
        await self.client.setex(self._key(key), ttl, value.model_dump_json())

    async def clear(self) -> int:
        keys = await self.client.keys(f"{self.namespace}:*")
        if not keys:
            return 0
        return await self.client.delete(*keys)


# =============================================================================
# SINGLE-FLIGHT CACHE
# =============================================================================

class AggregationCache:
    """
    Single-flight aggregation cache.

    Example:
        cache = AggregationCache(settings.cache)
        key = cache.key_for(plan, reference)
        aggregation = await cache.get_or_compute(key, compute)
    """

    def __init__(
        self,
        settings: Optional[CacheSettings] = None,
        backend: Optional[CacheBackend] = None,
    ):
        self.settings = settings or CacheSettings()
        self.backend = backend or MemoryBackend()
        self._inflight: Dict[str, asyncio.Future] = {}

    def key_for(self, plan: BucketPlan, reference: datetime) -> str:
        resolution = self.settings.as_of_resolution_seconds * 1_000_000
        as_of = (to_epoch_micros(reference) // resolution) * resolution
        return f"{plan.cache_key}:{as_of}"

    @property
    def inflight(self) -> int:
        return len(self._inflight)

    async def get_or_compute(
        self,
        key: str,
        factory: Callable[[], Awaitable[Aggregation]],
    ) -> Aggregation:
        """
        Cached aggregation for ``key``, computing it at most once concurrently.

        A follower whose leader was cancelled computes the value itself.
        """
        while True:
            cached = await self.backend.get(key)
            if cached is not None:
                CACHE_REQUESTS.labels(result="hit").inc()
                return cached

            inflight = self._inflight.get(key)
            if inflight is None:
                break

            CACHE_REQUESTS.labels(result="coalesced").inc()
            logger.debug("Awaiting in-flight aggregation", key=key)
            try:
                return await asyncio.shield(inflight)
            except asyncio.CancelledError:
                if not inflight.cancelled():
                    raise
            except QueryCancelledError:
                pass

        CACHE_REQUESTS.labels(result="miss").inc()
        future = asyncio.get_running_loop().create_future()
        self._inflight[key] = future
        try:
            value = await factory()
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as e:
            future.set_exception(e)
            # Followers re-raise it; mark it retrieved for the leader-only case
            future.exception()
            raise
        else:
            future.set_result(value)
            await self.backend.set(key, value, self.settings.ttl_seconds)
            return value
        finally:
            self._inflight.pop(key, None)

    async def clear(self) -> int:
        return await self.backend.clear()


async def create_cache(settings: Optional[CacheSettings] = None) -> Optional[AggregationCache]:
    """Cache configured from settings, or None when caching is disabled"""
    settings = settings or get_settings().cache
    if not settings.enabled:
        return None
    if settings.backend == "redis":
        client = await init_redis()
        return AggregationCache(settings, RedisBackend(client, settings.namespace))
    return AggregationCache(settings)
