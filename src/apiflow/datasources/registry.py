from __future__ import annotations

import threading
import time
from concurrent.futures import Future
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Dict, Iterator, List, Optional

import pybreaker

from apiflow.adapter_sdk import Adapter, AdapterError, ConnectionConfig, ConnectionFailed
from apiflow.adapters import create_adapter
from apiflow.common.logger import get_logger
from apiflow.common.resilience import create_breaker

logger = get_logger(__name__)

ConfigProvider = Callable[[], ConnectionConfig]
AdapterFactory = Callable[..., Adapter]


class _StaleConnect(Exception):
    """A connect finished after its connection id was evicted."""


@dataclass
class _Entry:
    adapter: Adapter
    leases: int = 0


class AdapterRegistry:
    """
    Process-wide cache of connected adapters, keyed by connection id.

    At most one adapter exists per connection id. Concurrent first requests for
    the same id share a single connect attempt; requests for different ids
    never wait on each other. Each connection id has its own circuit breaker
    around ``connect()``.

    Evicting an id also invalidates a connect still in flight for it: that
    adapter is disconnected instead of registered, and its callers retry
    with a fresh call to their config provider.
    """

    stale_retries = 2

    def __init__(
        self,
        adapter_factory: AdapterFactory = create_adapter,
        statement_timeout_ms: Optional[int] = None,
        breaker_fail_max: int = 3,
        breaker_reset_sec: int = 30,
    ):
        self._factory = adapter_factory
        self._statement_timeout_ms = statement_timeout_ms
        self._breaker_fail_max = breaker_fail_max
        self._breaker_reset_sec = breaker_reset_sec
        self._lock = threading.Lock()
        self._entries: Dict[str, _Entry] = {}
        self._pending: Dict[str, Future] = {}
        self._breakers: Dict[str, pybreaker.CircuitBreaker] = {}
        self._generations: Dict[str, int] = {}

    def _breaker_for(self, connection_id: str) -> pybreaker.CircuitBreaker:
        breaker = self._breakers.get(connection_id)
        if breaker is None:
            breaker = create_breaker(
                f"connect:{connection_id}",
                fail_max=self._breaker_fail_max,
                reset_timeout=self._breaker_reset_sec,
            )
            self._breakers[connection_id] = breaker
        return breaker

    def _connect(self, config: ConnectionConfig, breaker: pybreaker.CircuitBreaker) -> Adapter:
        adapter = self._factory(config, statement_timeout_ms=self._statement_timeout_ms)
        try:
            return breaker.call(adapter.connect)
        except pybreaker.CircuitBreakerError as e:
            cause = e.__cause__ or e.__context__
            if isinstance(cause, AdapterError):
                raise cause
            raise ConnectionFailed(
                f"Connections to {config.id} are suspended after repeated failures"
            ) from e

    def _acquire(self, connection_id: str, config_provider: ConfigProvider, lease: bool) -> Adapter:
        for _ in range(self.stale_retries + 1):
            try:
                return self._acquire_once(connection_id, config_provider, lease)
            except _StaleConnect:
                logger.info(f"Discarded adapter for {connection_id}: evicted while connecting")
        raise ConnectionFailed(f"Connection {connection_id} changed repeatedly while connecting")

    def _acquire_once(self, connection_id: str, config_provider: ConfigProvider, lease: bool) -> Adapter:
        with self._lock:
            entry = self._entries.get(connection_id)
            if entry is not None:
                entry.adapter.touch()
                if lease:
                    entry.leases += 1
                return entry.adapter
            future = self._pending.get(connection_id)
            owner = future is None
            if owner:
                future = Future()
                self._pending[connection_id] = future
                breaker = self._breaker_for(connection_id)
                generation = self._generations.get(connection_id, 0)

        if not owner:
            adapter = future.result()
            if lease:
                with self._lock:
                    entry = self._entries.get(connection_id)
                    if entry is not None and entry.adapter is adapter:
                        entry.leases += 1
            return adapter

        try:
            adapter = self._connect(config_provider(), breaker)
        except BaseException as e:
            with self._lock:
                self._drop_pending(connection_id, future)
            future.set_exception(e)
            raise

        with self._lock:
            self._drop_pending(connection_id, future)
            stale = self._generations.get(connection_id, 0) != generation
            if not stale:
                self._entries[connection_id] = _Entry(adapter, leases=1 if lease else 0)
        if stale:
            self._disconnect(adapter)
            future.set_exception(_StaleConnect())
            raise _StaleConnect()
        future.set_result(adapter)
        logger.info(f"Adapter registered for connection {connection_id}")
        return adapter

    def _drop_pending(self, connection_id: str, future: Future) -> None:
        if self._pending.get(connection_id) is future:
            del self._pending[connection_id]

    def get_or_create(self, connection_id: str, config_provider: ConfigProvider) -> Adapter:
        """Returns the live adapter for ``connection_id``, connecting it if needed.

        Args:
            connection_id: The registered connection id.
            config_provider: Called at most once, and only when a new adapter
                has to be built.

        Raises:
            ConnectionFailed: If connecting fails or the breaker is open.
        """
        return self._acquire(connection_id, config_provider, lease=False)

    @contextmanager
    def lease(self, connection_id: str, config_provider: ConfigProvider) -> Iterator[Adapter]:
        """Borrows the adapter for one operation.

        A leased adapter is never swept as idle. If the operation raises a
        fatal ``AdapterError`` the adapter is evicted so the next request
        reconnects.
        """
        adapter = self._acquire(connection_id, config_provider, lease=True)
        try:
            yield adapter
        except AdapterError as e:
            if e.fatal:
                logger.warning(f"Evicting adapter for {connection_id} after fatal error: {e.detail}")
                self.evict(connection_id, adapter=adapter)
            raise
        finally:
            with self._lock:
                entry = self._entries.get(connection_id)
                if entry is not None and entry.adapter is adapter and entry.leases > 0:
                    entry.leases -= 1

    def evict(self, connection_id: str, adapter: Optional[Adapter] = None, reset_breaker: bool = False) -> bool:
        """Disconnects and forgets the adapter for ``connection_id``.

        When ``adapter`` is given, only that instance is evicted, so a stale
        failure cannot remove a replacement built in the meantime. Without it,
        a connect in flight for the id is invalidated too.
        """
        pending = None
        with self._lock:
            entry = self._entries.get(connection_id)
            if entry is not None and (adapter is None or entry.adapter is adapter):
                del self._entries[connection_id]
            else:
                entry = None
            if adapter is None:
                self._generations[connection_id] = self._generations.get(connection_id, 0) + 1
                pending = self._pending.pop(connection_id, None)
            if reset_breaker:
                self._breakers.pop(connection_id, None)
        if entry is not None:
            self._disconnect(entry.adapter)
        return entry is not None or pending is not None

    def sweep_idle(self, max_idle_sec: float) -> List[str]:
        """Evicts adapters that have not been used for ``max_idle_sec``."""
        cutoff = time.monotonic() - max_idle_sec
        with self._lock:
            idle = [
                (cid, entry)
                for cid, entry in self._entries.items()
                if entry.leases == 0 and entry.adapter.last_used_at < cutoff
            ]
            for cid, _ in idle:
                del self._entries[cid]
        for cid, entry in idle:
            logger.info(f"Closing idle adapter for connection {cid}")
            self._disconnect(entry.adapter)
        return [cid for cid, _ in idle]

    def close_all(self) -> None:
        with self._lock:
            entries = list(self._entries.values())
            self._entries.clear()
        for entry in entries:
            self._disconnect(entry.adapter)

    @staticmethod
    def _disconnect(adapter: Adapter) -> None:
        try:
            adapter.disconnect()
        except Exception as e:
            logger.warning(f"Error while disconnecting {adapter}: {e}")

    def __contains__(self, connection_id: str) -> bool:
        with self._lock:
            return connection_id in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
