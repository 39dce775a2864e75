"""
Serving Module
"""
from .cache import AggregationCache, create_cache, init_redis, close_redis, get_redis

__all__ = [
    "AggregationCache",
    "create_cache",
    "init_redis",
    "close_redis",
    "get_redis",
]
