"""
Cache Service

Redis-backed JSON cache with in-memory fallback.
"""

from swingsetups.services.cache.redis_client import (
    JsonCache,
    close_redis,
    get_json_cache,
    get_redis,
    init_redis,
)

__all__ = ["JsonCache", "close_redis", "get_json_cache", "get_redis", "init_redis"]
