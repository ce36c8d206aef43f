"""
Response cache backends.

    CacheBackend (Protocol)
    ├── InMemoryCache  (single process, bounded LRU)
    └── RedisCache     (shared between workers)

    API: get(key) -> value | None
         set(key, value, ttl_seconds=None)
         delete(key)
         invalidate_prefix(prefix) -> int
         clear()
"""

from __future__ import annotations

import json
import re
import threading
import time
from collections import OrderedDict
from typing import Any, Protocol

import redis

_GLOB_SPECIALS = re.compile(r"([*?\[\]\\])")


class CacheBackend(Protocol):
    """Protocol for cache backend implementations.

    Keys are strings, values are JSON-serializable.
    """

    def get(self, key: str) -> Any | None:
        """Returns the cached value, or ``None`` if missing or expired."""
        ...

    def set(self, key: str, value: Any, *, ttl_seconds: int | None = None) -> None:
        ...

    def delete(self, key: str) -> None:
        ...

    def invalidate_prefix(self, prefix: str) -> int:
        """Removes every key starting with ``prefix``. Returns the count removed."""
        ...

    def clear(self) -> None:
        ...


class InMemoryCache:
    """Bounded in-memory cache with TTL support.

    Uses LRU eviction when ``max_size`` is reached. Thread-safe for
    single-process use.
    """

    def __init__(self, *, max_size: int = 10_000, default_ttl_seconds: int | None = 60):
        self._store: OrderedDict[str, tuple[Any, float | None]] = OrderedDict()
        self._lock = threading.Lock()
        self._max_size = max_size
        self._default_ttl = default_ttl_seconds

    def get(self, key: str) -> Any | None:
        with self._lock:
            item = self._store.get(key)
            if item is None:
                return None
            value, expires_at = item
            if expires_at is not None and time.monotonic() > expires_at:
                del self._store[key]
                return None
            self._store.move_to_end(key)
            return value

    def set(self, key: str, value: Any, *, ttl_seconds: int | None = None) -> None:
        ttl = ttl_seconds if ttl_seconds is not None else self._default_ttl
        expires_at = (time.monotonic() + ttl) if ttl else None
        with self._lock:
            if key not in self._store and len(self._store) >= self._max_size:
                self._store.popitem(last=False)
            self._store[key] = (value, expires_at)
            self._store.move_to_end(key)

    def delete(self, key: str) -> None:
        with self._lock:
            self._store.pop(key, None)

    def invalidate_prefix(self, prefix: str) -> int:
        with self._lock:
            doomed = [k for k in self._store if k.startswith(prefix)]
            for key in doomed:
                del self._store[key]
        return len(doomed)

    def clear(self) -> None:
        with self._lock:
            self._store.clear()

    def size(self) -> int:
        with self._lock:
            return len(self._store)


class RedisCache:
    """Redis-backed cache shared by every worker process.

    Prefix invalidation walks the keyspace with ``SCAN`` rather than
    ``KEYS`` so a large cache never blocks the server.
    """

    scan_count = 500

    def __init__(
        self,
        url: str = "redis://localhost:6379/0",
        *,
        default_ttl_seconds: int | None = 60,
        client: redis.Redis | None = None,
    ):
        self._client = client if client is not None else redis.from_url(
            url, decode_responses=True, socket_timeout=2, socket_connect_timeout=2
        )
        self._default_ttl = default_ttl_seconds

    @property
    def client(self) -> redis.Redis:
        return self._client

    def get(self, key: str) -> Any | None:
        raw = self._client.get(key)
        if raw is None:
            return None
        return json.loads(raw)

    def set(self, key: str, value: Any, *, ttl_seconds: int | None = None) -> None:
        ttl = ttl_seconds if ttl_seconds is not None else self._default_ttl
        serialized = json.dumps(value, default=str)
        if ttl:
            self._client.setex(key, ttl, serialized)
        else:
            self._client.set(key, serialized)

    def delete(self, key: str) -> None:
        self._client.delete(key)

    def invalidate_prefix(self, prefix: str) -> int:
        pattern = _GLOB_SPECIALS.sub(r"\\\1", prefix) + "*"
        removed = 0
        batch = []
        for key in self._client.scan_iter(match=pattern, count=self.scan_count):
            batch.append(key)
            if len(batch) >= self.scan_count:
                removed += self._client.delete(*batch)
                batch = []
        if batch:
            removed += self._client.delete(*batch)
        return removed

    def clear(self) -> None:
        """Flushes the whole Redis database. Tests only."""
        self._client.flushdb()
