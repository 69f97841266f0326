"""
Caching for schema introspection.

Uses cachetools TTLCache for automatic expiration. Entries are keyed by
logical database handle and table name so that DDL on one table only clears
the entries for that table.
"""
import functools
import logging
import threading

import cachetools

logger = logging.getLogger(__name__)


class Cache:
    """Cache manager for the tablekit module.

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

        Args:
            name: Name of the cache
            maxsize: Maximum cache size
            ttl: Time-to-live in seconds

        Returns
            TTLCache instance
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

    def clear_for_table(self, namespace: str, table_name: str) -> None:
        """Clear all cache entries of one table of one logical database handle.
        """
        prefix = f'{namespace}:{table_name}:'.lower()
        with self._lock:
            for cache in self._caches.values():
                for key in [k for k in list(cache.keys()) if str(k).startswith(prefix)]:
                    cache.pop(key, None)
                    logger.debug(f'Cleared cache entry {key}')

    def clear_for_namespace(self, namespace: str) -> None:
        """Clear all cache entries of one logical database handle.
        """
        prefix = f'{namespace}:'.lower()
        with self._lock:
            for cache in self._caches.values():
                for key in [k for k in list(cache.keys()) if str(k).startswith(prefix)]:
                    cache.pop(key, None)


def _create_cache_key(namespace: str, table_name: str, method_args: tuple,
                      method_kwargs: dict) -> str:
    """Create a deterministic cache key from arguments.
    """
    args_str = ':'.join(repr(arg) for arg in method_args)
    kwargs_str = ':'.join(
        f'{k}={repr(v)}' for k, v in sorted(method_kwargs.items())
        if k != 'bypass_cache'
    )
    return f'{namespace}:{table_name}:{args_str}:{kwargs_str}'.lower()


def cacheable_strategy(cache_name: str, ttl: int = 300, maxsize: int = 50):
    """Decorator for caching strategy method results.

    The decorated method must have the signature ``(self, cn, table, ...)``
    where `cn` is a logical database handle. Respects a `bypass_cache`
    keyword argument to skip the cache lookup.

    Args:
        cache_name: Base name for the cache
        ttl: Time-to-live in seconds
        maxsize: Maximum cache size
    """
    def decorator(method):
        @functools.wraps(method)
        def wrapper(self, cn, table, *args, bypass_cache=False, **kwargs):
            if bypass_cache:
                logger.debug(f'Bypassing cache for {method.__name__}({table})')
                return method(self, cn, table, *args, **kwargs)

            specific_cache_name = f'{cache_name}_{self.__class__.__name__}_{method.__name__}'
            cache = Cache.get_instance().get_cache(specific_cache_name, ttl=ttl, maxsize=maxsize)
            cache_key = _create_cache_key(cn.cache_namespace, table, args, kwargs)

            if cache_key in cache:
                logger.debug(f'Cache hit for {method.__name__}({table})')
                return cache[cache_key]

            logger.debug(f'Cache miss for {method.__name__}({table})')
            result = method(self, cn, table, *args, **kwargs)
            cache[cache_key] = result
            return result

        return wrapper
    return decorator
