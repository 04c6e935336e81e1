"""
Cache Store Adapter
===================

Thin key/value wrapper around a Redis client with TTLs and pattern deletes.

FAILURE MODEL:
--------------
The cache holds no authoritative state, so a broken cache must never break a
request. Every operation:
- returns a miss / False instead of raising
- is bounded by a short socket timeout
- reads and writes are skipped for CACHE_RETRY_AFTER seconds after a
  failure (a crude circuit breaker), so a dead Redis costs one timeout per
  window instead of one per call

Deletes ignore the breaker. An entry that outlives a failed read is still
in Redis once the window closes, so invalidation always tries the store.

LIFECYCLE:
----------
One store per process. connect() is called from BlogConfig.ready() when
REDIS_URL is set and close() runs at interpreter exit. Until connect()
succeeds the module holds a store without a client, which always misses.
Call sites receive the store explicitly or resolve it with get_store().
"""
import atexit
import logging
import time
from typing import Optional

import redis

logger = logging.getLogger(__name__)

SCAN_BATCH = 500


class CacheStore:
    """Redis-backed cache of opaque byte payloads."""

    def __init__(self, client: Optional[redis.Redis] = None, retry_after: float = 30.0):
        self.client = client
        self.retry_after = retry_after
        self._retry_at = 0.0

    @classmethod
    def from_url(cls, url: str, socket_timeout: float = 0.5, retry_after: float = 30.0):
        client = redis.Redis.from_url(
            url,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
            health_check_interval=30,
        )
        return cls(client, retry_after=retry_after)

    @property
    def available(self) -> bool:
        return self.client is not None and time.monotonic() >= self._retry_at

    def _trip(self, operation: str, exc: Exception):
        self._retry_at = time.monotonic() + self.retry_after
        logger.warning(
            "Cache %s failed (%s); bypassing cache for %ss",
            operation, exc, self.retry_after
        )

    def ping(self) -> bool:
        if self.client is None:
            return False
        try:
            return bool(self.client.ping())
        except redis.RedisError as exc:
            self._trip('ping', exc)
            return False

    def get(self, key: str) -> Optional[bytes]:
        if not self.available:
            return None
        try:
            return self.client.get(key)
        except redis.RedisError as exc:
            self._trip('get', exc)
            return None

    def set(self, key: str, value: bytes, ttl: int) -> bool:
        if not self.available:
            return False
        try:
            self.client.set(key, value, ex=ttl)
            return True
        except redis.RedisError as exc:
            self._trip('set', exc)
            return False

    def delete(self, *keys: str) -> bool:
        if not keys:
            return True
        if self.client is None:
            return False
        try:
            self.client.delete(*keys)
            return True
        except redis.RedisError as exc:
            self._trip('delete', exc)
            return False

    def keys_matching(self, pattern: str) -> list[str]:
        """
        Keys matching a glob pattern such as 'homepage:*'.

        Uses SCAN rather than KEYS so a large keyspace does not block Redis.
        """
        if not self.available:
            return []
        try:
            return [
                key.decode() if isinstance(key, bytes) else key
                for key in self.client.scan_iter(match=pattern, count=SCAN_BATCH)
            ]
        except redis.RedisError as exc:
            self._trip('scan', exc)
            return []

    def delete_pattern(self, pattern: str) -> bool:
        if self.client is None:
            return False
        try:
            batch = []
            for key in self.client.scan_iter(match=pattern, count=SCAN_BATCH):
                batch.append(key)
                if len(batch) >= SCAN_BATCH:
                    self.client.delete(*batch)
                    batch = []
            if batch:
                self.client.delete(*batch)
            return True
        except redis.RedisError as exc:
            self._trip('delete_pattern', exc)
            return False

    def close(self):
        if self.client is None:
            return
        try:
            self.client.close()
        except redis.RedisError as exc:
            logger.warning("Error closing cache connection: %s", exc)
        finally:
            self.client = None


_store = CacheStore()


def get_store() -> CacheStore:
    return _store


def set_store(store: CacheStore) -> CacheStore:
    """Install a store for this process; returns the previous one."""
    global _store
    previous, _store = _store, store
    return previous


def connect(url: str, socket_timeout: float = 0.5, retry_after: float = 30.0) -> CacheStore:
    """
    Connect the process-wide store.

    A failed connection is logged and leaves the store in place anyway: the
    circuit breaker keeps it out of the request path until Redis is back.
    """
    store = CacheStore.from_url(url, socket_timeout=socket_timeout, retry_after=retry_after)
    if store.ping():
        logger.info("Cache connected at %s", url)
    else:
        logger.warning("Cache at %s unreachable, continuing without caching", url)
    previous = set_store(store)
    previous.close()
    return store


def close():
    _store.close()


atexit.register(close)
