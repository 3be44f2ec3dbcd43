"""Two-tier cache: distributed first, in-process as fallback."""

from typing import Any, Dict, Optional

from .base import DEFAULT_TTL, Cache


class TieredCache(Cache):
    """Reads try the distributed tier and fall back to the local one.

    Writes go to both tiers, so losing the distributed tier costs hit rate,
    never correctness.
    """

    def __init__(self, distributed: Cache, local: Cache) -> None:
        self.distributed = distributed
        self.local = local

    def get(self, key: str) -> Optional[Any]:
        value = self.distributed.get(key)
        if value is not None:
            return value
        return self.local.get(key)

    def set(self, key: str, value: Any, ttl: int = DEFAULT_TTL) -> bool:
        stored_remote = self.distributed.set(key, value, ttl)
        stored_local = self.local.set(key, value, ttl)
        return stored_remote or stored_local

    def delete(self, key: str) -> bool:
        deleted_remote = self.distributed.delete(key)
        deleted_local = self.local.delete(key)
        return deleted_remote or deleted_local

    def delete_pattern(self, pattern: str) -> int:
        return max(self.distributed.delete_pattern(pattern),
                   self.local.delete_pattern(pattern))

    def clear(self) -> None:
        self.distributed.clear()
        self.local.clear()

    def stats(self) -> Dict[str, Any]:
        return {
            'type': 'tiered',
            'distributed': self.distributed.stats(),
            'local': self.local.stats(),
        }

    def close(self) -> None:
        self.distributed.close()
        self.local.close()
