"""
Warden - TTL Cache Implementation

Provides time-to-live caching for expensive host inspections (shell-outs,
psutil calls) so repeated dashboard refreshes do not hammer the system.
"""

import json
import time
import logging
import threading
from functools import wraps
from typing import Optional, Any, Callable, Dict

logger = logging.getLogger(__name__)


# Time-to-live (seconds) for the panel's system monitoring data
CACHE_TTLS: Dict[str, float] = {
    'system_info': 3,
    'cpu_usage': 2,
    'memory_usage': 2,
    'disk_usage': 5,
    'network_stats': 2,
    'process_list': 3,
    'website_list': 10,
    'database_list': 10,
}

_MISSING = object()


class PerformanceCache:
    """Thread-safe key/value cache with per-entry TTL.

    Entries are logically absent once ``now - stored_at > ttl``. Expired
    entries are removed lazily on read, or eagerly by ``cleanup_expired()``
    which the panel runs on a fixed interval. There is no size bound.
    """

    def __init__(self):
        self._cache: Dict[str, tuple[Any, float, float]] = {}
        self._lock = threading.RLock()

    def _lookup(self, key: str) -> Any:
        with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                return _MISSING

            value, stored_at, ttl = entry

            # Check if expired
            if time.time() - stored_at > ttl:
                del self._cache[key]
                return _MISSING

            return value

    def get(self, key: str, default: Optional[Any] = None) -> Optional[Any]:
        """Get value from cache if not expired.

        Args:
            key: Cache key
            default: Returned when the key is absent or expired

        Returns:
            Cached value or ``default`` if expired/not found
        """
        value = self._lookup(key)
        return default if value is _MISSING else value

    def contains(self, key: str) -> bool:
        """Check presence without caring about the stored value (evicts if expired)."""
        return self._lookup(key) is not _MISSING

    def set(self, key: str, value: Any, ttl: float) -> None:
        """Set value in cache with TTL.

        Args:
            key: Cache key
            value: Value to cache
            ttl: Time-to-live in seconds; 0 expires on the next clock tick
        """
        with self._lock:
            self._cache[key] = (value, time.time(), ttl)

    def clear(self, key: str) -> bool:
        """Delete entry from cache.

        Returns:
            True if deleted, False if not found
        """
        with self._lock:
            return self._cache.pop(key, _MISSING) is not _MISSING

    def clear_all(self) -> None:
        """Clear all cache entries."""
        with self._lock:
            self._cache.clear()

    def cleanup_expired(self) -> int:
        """Remove all expired entries.

        Returns:
            Number of entries removed
        """
        with self._lock:
            now = time.time()
            expired = [k for k, (_, stored_at, ttl) in self._cache.items() if now - stored_at > ttl]

            for key in expired:
                del self._cache[key]

        if expired:
            logger.info(f"Cache sweep removed {len(expired)} expired entries")
        return len(expired)

    def size(self) -> int:
        """Get current cache size (may include expired entries not yet swept)."""
        with self._lock:
            return len(self._cache)

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            return {'size': len(self._cache)}


def make_cache_key(name: str, args: tuple = (), kwargs: Optional[dict] = None) -> str:
    """Build a cache key from an operation name and its call arguments."""
    payload = list(args)
    if kwargs:
        payload.append(kwargs)
    return f"{name}:{json.dumps(payload, sort_keys=True, default=str)}"


def cached(cache: PerformanceCache, name: str, ttl: float) -> Callable:
    """Memoize a callable in ``cache`` for ``ttl`` seconds.

    Usable as ``cached(cache, 'disk', 5)(func)`` or as a decorator. The key is
    derived from ``name`` plus the call arguments, so different arguments are
    cached separately. A stored ``None`` counts as a hit.
    """
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args, **kwargs):
            key = make_cache_key(name, args, kwargs)
            value = cache.get(key, _MISSING)
            if value is not _MISSING:
                logger.debug(f"Cache hit: {key}")
                return value

            logger.debug(f"Cache miss: {key}")
            value = func(*args, **kwargs)
            cache.set(key, value, ttl)
            return value

        return wrapper

    return decorator
