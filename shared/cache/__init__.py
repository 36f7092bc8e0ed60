"""In-process caching primitives."""

from .expiring import CacheEntry, ExpiringCache, make_cache_key

__all__ = ["CacheEntry", "ExpiringCache", "make_cache_key"]
