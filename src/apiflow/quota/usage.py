from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Dict, Protocol

import redis

USAGE_KEY_PREFIX = "usage:"

# GET, compare and INCR run as one server-side step, so concurrent callers
# can never push the counter past the limit.
_TRY_INCREMENT_LUA = """
local current = tonumber(redis.call('GET', KEYS[1]) or '0')
local limit = tonumber(ARGV[1])
if current >= limit then
    return {0, current}
end
return {1, redis.call('INCR', KEYS[1])}
"""


@dataclass(frozen=True)
class UsageDecision:
    allowed: bool
    count: int
    limit: int


class UsageStore(Protocol):
    """Per-caller request counters for the current billing period."""

    def try_increment(self, caller_id: str, limit: int) -> UsageDecision:
        """Increments the caller's count only if it is below ``limit``."""
        ...

    def get_usage(self, caller_id: str) -> int:
        ...

    def reset_all(self) -> int:
        """Zeroes every counter. Returns how many were reset."""
        ...


class InMemoryUsageStore:
    def __init__(self):
        self._lock = threading.Lock()
        self._counts: Dict[str, int] = {}

    def try_increment(self, caller_id: str, limit: int) -> UsageDecision:
        with self._lock:
            current = self._counts.get(caller_id, 0)
            if current >= limit:
                return UsageDecision(False, current, limit)
            self._counts[caller_id] = current + 1
            return UsageDecision(True, current + 1, limit)

    def get_usage(self, caller_id: str) -> int:
        with self._lock:
            return self._counts.get(caller_id, 0)

    def set_usage(self, caller_id: str, count: int) -> None:
        with self._lock:
            self._counts[caller_id] = count

    def reset_all(self) -> int:
        with self._lock:
            reset = len(self._counts)
            self._counts.clear()
        return reset


class RedisUsageStore:
    """Usage counters in Redis under ``usage:<caller_id>``."""

    scan_count = 500

    def __init__(self, client: redis.Redis):
        self._client = client
        self._try_increment = client.register_script(_TRY_INCREMENT_LUA)

    @staticmethod
    def _key(caller_id: str) -> str:
        return f"{USAGE_KEY_PREFIX}{caller_id}"

    def try_increment(self, caller_id: str, limit: int) -> UsageDecision:
        allowed, count = self._try_increment(keys=[self._key(caller_id)], args=[limit])
        return UsageDecision(bool(allowed), int(count), limit)

    def get_usage(self, caller_id: str) -> int:
        return int(self._client.get(self._key(caller_id)) or 0)

    def set_usage(self, caller_id: str, count: int) -> None:
        self._client.set(self._key(caller_id), count)

    def reset_all(self) -> int:
        reset = 0
        for key in self._client.scan_iter(match=f"{USAGE_KEY_PREFIX}*", count=self.scan_count):
            reset += self._client.delete(key)
        return reset
