"""
Caching for table metadata.

Column names and declared column types are looked up from the catalog before
every write. The lookups are cached in cachetools TTLCaches so repeated writes
to one table cost a single catalog query.
"""
import functools
import logging
import threading

import cachetools

logger = logging.getLogger(__name__)


class Cache:
    """Cache manager for the package.

    Thread-safe singleton that manages all TTL caches.
    """

    _instance = None
    _caches: dict[str, cachetools.TTLCache] = {}
    _lock = threading.RLock()

    @classmethod
    def get_instance(cls) -> 'Cache':
        """Get singleton instance."""
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = cls()
        return cls._instance

    def get_cache(self, name: str, maxsize: int = 100, ttl: int = 300) -> cachetools.TTLCache:
        """Get or create a TTL cache with the given name.
        """
        if name not in self._caches:
            with self._lock:
                if name not in self._caches:
                    self._caches[name] = cachetools.TTLCache(maxsize=maxsize, ttl=ttl)
        return self._caches[name]

    def clear_all(self) -> None:
        """Clear all managed caches."""
        with self._lock:
            for cache in self._caches.values():
                cache.clear()

    def clear_for_table(self, table_name: str) -> None:
        """Clear all cache entries related to a specific table.
        """
        table_lower = table_name.lower()
        with self._lock:
            for cache in self._caches.values():
                for key in [key for key in list(cache.keys()) if table_lower in str(key).lower()]:
                    cache.pop(key, None)
                    logger.debug(f'Cleared cache entry {key} for table {table_name}')


def cacheable_metadata(cache_name: str, ttl: int = 300, maxsize: int = 50):
    """Decorator for caching per-table catalog lookups.

    The wrapped function takes ``(cn, table, ...)``; results are keyed by the
    connection's engine and the table reference. ``bypass_cache=True`` skips
    the lookup and refreshes the entry.
    """
    def decorator(func):
        @functools.wraps(func)
        def wrapper(cn, table, *args, bypass_cache=False, **kwargs):
            cache = Cache.get_instance().get_cache(cache_name, ttl=ttl, maxsize=maxsize)
            key = (id(getattr(cn, 'engine', cn)), str(table).lower())

            if not bypass_cache and key in cache:
                logger.debug(f'Cache hit for {func.__name__}({table})')
                return cache[key]

            result = func(cn, table, *args, **kwargs)
            cache[key] = result
            return result

        return wrapper
    return decorator
