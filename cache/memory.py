"""Bounded in-process cache with TTL and FIFO eviction."""

import fnmatch
import logging
import threading
import time
from collections import OrderedDict
from typing import Any, Callable, Dict, Optional

from .base import DEFAULT_TTL, Cache, CacheEntry

logger = logging.getLogger(__name__)

DEFAULT_MAX_SIZE = 1000
DEFAULT_SWEEP_INTERVAL = 300


class InProcessCache(Cache):
    """Thread-safe map capped at ``max_size`` entries.

    When a new key arrives at capacity the oldest-inserted entry is evicted.
    Expired entries are dropped lazily on ``get`` and by a background sweep
    every ``sweep_interval`` seconds (0 disables the sweep thread).
    """

    def __init__(self, max_size: int = DEFAULT_MAX_SIZE,
                 sweep_interval: float = DEFAULT_SWEEP_INTERVAL,
                 clock: Callable[[], float] = time.time) -> None:
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.max_size = max_size
        self._clock = clock
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

        self._stop = threading.Event()
        self._sweeper = None
        if sweep_interval and sweep_interval > 0:
            self._sweeper = threading.Thread(
                target=self._sweep_loop,
                args=(sweep_interval,),
                name="cache-sweep",
                daemon=True,
            )
            self._sweeper.start()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None
            if entry.is_expired(self._clock()):
                del self._entries[key]
                self._misses += 1
                return None
            self._hits += 1
            return entry.value

    def set(self, key: str, value: Any, ttl: int = DEFAULT_TTL) -> bool:
        expires_at = self._clock() + ttl
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None:
                entry.value = value
                entry.expires_at = expires_at
                return True
            if len(self._entries) >= self.max_size:
                self._entries.popitem(last=False)
                self._evictions += 1
            self._entries[key] = CacheEntry(key, value, expires_at)
            return True

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def delete_pattern(self, pattern: str) -> int:
        with self._lock:
            matched = [k for k in self._entries if fnmatch.fnmatchcase(k, pattern)]
            for key in matched:
                del self._entries[key]
            return len(matched)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def sweep(self) -> int:
        """Remove expired entries now. Returns the number removed."""
        now = self._clock()
        with self._lock:
            expired = [k for k, e in self._entries.items() if e.is_expired(now)]
            for key in expired:
                del self._entries[key]
        if expired:
            logger.debug("Swept %d expired cache entries", len(expired))
        return len(expired)

    def _sweep_loop(self, interval: float) -> None:
        while not self._stop.wait(interval):
            self.sweep()

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                'type': 'memory',
                'size': len(self._entries),
                'max_size': self.max_size,
                'hits': self._hits,
                'misses': self._misses,
                'evictions': self._evictions,
            }

    def close(self) -> None:
        self._stop.set()
        if self._sweeper is not None and self._sweeper is not threading.current_thread():
            self._sweeper.join(timeout=1)
