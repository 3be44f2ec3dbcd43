"""Redis-backed distributed cache.

Best effort by contract: if the server can't be reached at construction, or
a command fails later, the cache marks itself failed for the rest of the
process (until ``reset()``) and every call turns into a miss / not-stored.
The failure is logged once per episode.
"""

import json
import logging
import math
import threading
from typing import Any, Callable, Dict, Optional

import redis

from .base import DEFAULT_TTL, Cache, CacheUnavailable

logger = logging.getLogger(__name__)

DEFAULT_PREFIX = "assetsync:"
DEFAULT_PROBE_TIMEOUT = 2.0
COMMAND_TIMEOUT = 1.0
SCAN_BATCH = 500


class DistributedCache(Cache):
    """Network cache on Redis with JSON values and a key namespace."""

    def __init__(self, url: Optional[str] = None,
                 client: Optional[redis.Redis] = None,
                 prefix: str = DEFAULT_PREFIX,
                 probe_timeout: float = DEFAULT_PROBE_TIMEOUT) -> None:
        """Connect and probe the server.

        Args:
            url: Redis URL (redis://, rediss://, unix://). Ignored when client is given.
            client: Prebuilt redis client
            prefix: Namespace prepended to every key
            probe_timeout: Connect timeout for the startup ping, in seconds
        """
        self.prefix = prefix
        self._lock = threading.Lock()
        self._failed = False
        self._error_logged = False

        if client is None and url:
            client = redis.Redis.from_url(
                url,
                socket_connect_timeout=probe_timeout,
                socket_timeout=COMMAND_TIMEOUT,
                decode_responses=True,
            )
        self.client = client

        if self.client is None:
            logger.info("No Redis URL configured, distributed cache disabled")
            self._failed = True
            self._error_logged = True
        else:
            self._probe()

    @property
    def connected(self) -> bool:
        return not self._failed

    def _probe(self) -> bool:
        try:
            self.client.ping()
        except (redis.RedisError, OSError) as e:
            self._mark_failed(e)
            return False
        logger.info("Connected to distributed cache")
        return True

    def _mark_failed(self, exc: Exception) -> None:
        with self._lock:
            self._failed = True
            if self._error_logged:
                return
            self._error_logged = True
        logger.warning("Distributed cache unavailable, falling back to in-process cache: %s", exc)

    def reset(self) -> bool:
        """Clear the failure flag and probe the server again."""
        if self.client is None:
            return False
        with self._lock:
            self._failed = False
            self._error_logged = False
        return self._probe()

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    def _call(self, command: Callable[[], Any]) -> Any:
        if self._failed:
            raise CacheUnavailable("distributed cache marked as failed")
        try:
            return command()
        except (redis.RedisError, OSError) as e:
            self._mark_failed(e)
            raise CacheUnavailable(str(e)) from e

    def get(self, key: str) -> Optional[Any]:
        try:
            raw = self._call(lambda: self.client.get(self._key(key)))
        except CacheUnavailable:
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.debug("Ignoring undecodable cache value for %s", key)
            return None

    def set(self, key: str, value: Any, ttl: int = DEFAULT_TTL) -> bool:
        if ttl <= 0:
            return False
        try:
            payload = json.dumps(value)
        except TypeError as e:
            logger.debug("Value for %s is not JSON-serialisable: %s", key, e)
            return False
        try:
            return bool(self._call(lambda: self.client.set(
                self._key(key), payload, ex=int(math.ceil(ttl)))))
        except CacheUnavailable:
            return False

    def delete(self, key: str) -> bool:
        try:
            return bool(self._call(lambda: self.client.delete(self._key(key))))
        except CacheUnavailable:
            return False

    def delete_pattern(self, pattern: str) -> int:
        def delete_matching():
            deleted = 0
            batch = []
            for name in self.client.scan_iter(match=self._key(pattern), count=SCAN_BATCH):
                batch.append(name)
                if len(batch) >= SCAN_BATCH:
                    deleted += self.client.delete(*batch)
                    batch = []
            if batch:
                deleted += self.client.delete(*batch)
            return deleted

        try:
            return self._call(delete_matching)
        except CacheUnavailable:
            return 0

    def clear(self) -> None:
        self.delete_pattern("*")

    def stats(self) -> Dict[str, Any]:
        return {
            'type': 'redis',
            'connected': self.connected,
            'prefix': self.prefix,
        }

    def close(self) -> None:
        if self.client is not None:
            try:
                self.client.close()
            except redis.RedisError as e:
                logger.debug("Error closing Redis client: %s", e)
