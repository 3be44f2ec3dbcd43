"""Cache interface shared by the in-process, distributed and tiered caches."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional

DEFAULT_TTL = 300


class CacheUnavailable(Exception):
    """The distributed cache could not be reached.

    Only used inside the cache package; callers see a miss instead.
    """
    pass


@dataclass
class CacheEntry:
    key: str
    value: Any
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


def make_key(prefix: str, *parts: Any) -> str:
    """Build a cache key like ``folder:root:a/b``. None parts are skipped."""
    return ':'.join([prefix] + [str(p) for p in parts if p is not None])


class Cache(ABC):
    """Key/value cache with per-entry TTL (seconds).

    Values must be JSON-serialisable so every tier can hold them. Patterns
    are Redis-style globs (``*``, ``?``, ``[...]``).
    """

    @abstractmethod
    def get(self, key: str) -> Optional[Any]:
        """Return the value, or None if absent or expired."""
        pass

    @abstractmethod
    def set(self, key: str, value: Any, ttl: int = DEFAULT_TTL) -> bool:
        """Store a value. Returns False when it could not be stored."""
        pass

    @abstractmethod
    def delete(self, key: str) -> bool:
        pass

    @abstractmethod
    def delete_pattern(self, pattern: str) -> int:
        """Delete every key matching ``pattern``; returns how many went."""
        pass

    @abstractmethod
    def clear(self) -> None:
        pass

    def stats(self) -> Dict[str, Any]:
        return {}

    def close(self) -> None:
        pass
