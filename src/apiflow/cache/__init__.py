from .backends import CacheBackend, InMemoryCache, RedisCache
from .keys import build_cache_key, path_prefix

__all__ = ["CacheBackend", "InMemoryCache", "RedisCache", "build_cache_key", "path_prefix"]
