import pathlib
from typing import Optional

from apiflow.analytics import AnalyticsDispatcher, AuditLogSink
from apiflow.auth import ApiKeyService, SessionTokenVerifier, StoreApiKeyVerifier
from apiflow.cache import CacheBackend, InMemoryCache, RedisCache
from apiflow.common.logger import get_logger
from apiflow.common.settings import Settings, settings as default_settings
from apiflow.datasources import AdapterRegistry, ConnectionConfigResolver, ConnectionService
from apiflow.dispatch import RequestDispatcher
from apiflow.endpoints.resolver import EndpointResolver
from apiflow.endpoints.service import EndpointService
from apiflow.quota import InMemoryUsageStore, QuotaEnforcer, RedisUsageStore, UsageStore
from apiflow.store import ConfigStore, SqliteConfigStore, load_seed

logger = get_logger(__name__)


class Container:
    """Composition root. Builds every collaborator once per process."""

    def __init__(
        self,
        config: Optional[Settings] = None,
        store: Optional[ConfigStore] = None,
        cache: Optional[CacheBackend] = None,
        usage: Optional[UsageStore] = None,
        registry: Optional[AdapterRegistry] = None,
        analytics: Optional[AnalyticsDispatcher] = None,
    ):
        self.settings = config or default_settings
        cfg = self.settings

        self.store = store if store is not None else self._create_store()
        self.cache = cache if cache is not None else self._create_cache()
        self.usage = usage if usage is not None else self._create_usage_store()
        self.registry = registry if registry is not None else AdapterRegistry(
            statement_timeout_ms=cfg.statement_timeout_ms,
            breaker_fail_max=cfg.connect_breaker_fail_max,
            breaker_reset_sec=cfg.connect_breaker_reset_sec,
        )
        self.analytics = analytics if analytics is not None else AnalyticsDispatcher(
            AuditLogSink(cfg.analytics_log_path), max_workers=cfg.analytics_workers
        )

        self.quota = QuotaEnforcer(self.usage, self.store.get_plan)
        self.session_verifier = SessionTokenVerifier(
            cfg.session_token_secret, algorithms=cfg.session_token_algorithms
        )
        self.api_key_verifier = StoreApiKeyVerifier(self.store)
        self.api_keys = ApiKeyService(self.store)
        self.connections = ConnectionService(self.store, self.registry)
        self.endpoints = EndpointService(self.store, self.cache)
        self.dispatcher = RequestDispatcher(
            endpoint_resolver=EndpointResolver(self.store),
            connection_resolver=ConnectionConfigResolver(self.store),
            registry=self.registry,
            cache=self.cache,
            quota=self.quota,
            session_verifier=self.session_verifier,
            api_key_verifier=self.api_key_verifier,
            analytics=self.analytics,
            cache_ttl_seconds=cfg.cache_ttl_seconds,
            public_cache_before_auth=cfg.public_cache_before_auth,
        )

    def _create_store(self) -> ConfigStore:
        store = SqliteConfigStore(pathlib.Path(self.settings.config_store_path))
        if self.settings.seed_config_path:
            counts = load_seed(store, pathlib.Path(self.settings.seed_config_path))
            logger.info(f"Seeded config store: {counts}")
        return store

    def _create_cache(self) -> CacheBackend:
        if self.settings.redis_url:
            return RedisCache(self.settings.redis_url, default_ttl_seconds=self.settings.cache_ttl_seconds)
        return InMemoryCache(
            max_size=self.settings.cache_max_entries,
            default_ttl_seconds=self.settings.cache_ttl_seconds,
        )

    def _create_usage_store(self) -> UsageStore:
        if self.settings.redis_url:
            if isinstance(self.cache, RedisCache):
                return RedisUsageStore(self.cache.client)
            return RedisUsageStore(RedisCache(self.settings.redis_url).client)
        return InMemoryUsageStore()

    def shutdown(self) -> None:
        self.registry.close_all()
        self.analytics.shutdown(wait=True)
        close = getattr(self.store, "close", None)
        if close is not None:
            close()
