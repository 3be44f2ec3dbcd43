"""Cache layer for assetsync.

- InProcessCache: bounded in-memory map with TTL and FIFO eviction
- DistributedCache: Redis, best effort
- TieredCache: distributed first, in-process fallback

Usage:
    from cache import create_cache

    cache = create_cache("redis://localhost:6379/0")
    cache.set(make_key("folder", root_id, "a/b"), folder_id, ttl=600)
"""

from typing import Optional

from .base import DEFAULT_TTL, Cache, CacheEntry, CacheUnavailable, make_key
from .distributed import DistributedCache
from .memory import InProcessCache
from .tiered import TieredCache


def create_cache(redis_url: Optional[str] = None, max_size: int = 1000) -> TieredCache:
    """Build the tiered cache. Without a Redis URL only the local tier is live."""
    return TieredCache(DistributedCache(url=redis_url), InProcessCache(max_size=max_size))


__all__ = [
    'DEFAULT_TTL',
    'Cache',
    'CacheEntry',
    'CacheUnavailable',
    'DistributedCache',
    'InProcessCache',
    'TieredCache',
    'create_cache',
    'make_key',
]
