"""TTL-based caching for routing, feed and phrasing answers."""

import hashlib
import json
import time
from collections.abc import Callable
from typing import Any


class CacheEntry:
    """
    Cache entry with TTL support.

    Parameters
    ----------
    value : Any
        Cached value
    ttl : float
        Time-to-live in seconds
    created_at : float
        Creation timestamp on the cache's clock

    """

    def __init__(self, value: Any, ttl: float, created_at: float) -> None:
        self.value = value
        self.ttl = ttl
        self.created_at = created_at

    def is_expired(self, now: float) -> bool:
        return (now - self.created_at) > self.ttl


class TTLCache:
    """
    In-memory key/value cache with per-entry TTL.

    Keys are derived from a namespace plus JSON-serialisable parameters, so the
    same cache can hold quotes, yield feeds and phrasing answers side by side.

    Parameters
    ----------
    default_ttl : float
        Default time-to-live in seconds for cache entries
    clock : Callable[[], float]
        Monotonic time source, injectable for tests

    """

    def __init__(self, default_ttl: float = 300, clock: Callable[[], float] = time.monotonic) -> None:
        self.default_ttl = default_ttl
        self._clock = clock
        self._cache: dict[str, CacheEntry] = {}

    def _make_key(self, namespace: str, params: Any) -> str:
        key_str = json.dumps({"ns": namespace, "params": params}, sort_keys=True, default=str)
        return hashlib.sha256(key_str.encode()).hexdigest()

    def get(self, namespace: str, params: Any) -> Any | None:
        """
        Get cached value if it exists and hasn't expired.

        Parameters
        ----------
        namespace : str
            Logical cache section (e.g. 'quote', 'yields')
        params : Any
            JSON-serialisable parameters identifying the entry

        Returns
        -------
        Any | None
            Cached value if found and valid, None otherwise

        """
        key = self._make_key(namespace, params)
        entry = self._cache.get(key)

        if entry is None:
            return None

        if entry.is_expired(self._clock()):
            del self._cache[key]
            return None

        return entry.value

    def set(self, namespace: str, params: Any, value: Any, ttl: float | None = None) -> None:
        """
        Store value in cache with TTL.

        Parameters
        ----------
        namespace : str
            Logical cache section
        params : Any
            JSON-serialisable parameters identifying the entry
        value : Any
            Value to cache
        ttl : float | None
            Time-to-live in seconds. Uses default_ttl if None.

        """
        key = self._make_key(namespace, params)
        self._cache[key] = CacheEntry(value, ttl if ttl is not None else self.default_ttl, self._clock())

    def clear(self) -> None:
        """Clear all cached entries."""
        self._cache.clear()

    def cleanup_expired(self) -> int:
        """
        Remove all expired entries from cache.

        Returns
        -------
        int
            Number of entries removed

        """
        now = self._clock()
        expired = [key for key, entry in self._cache.items() if entry.is_expired(now)]
        for key in expired:
            del self._cache[key]
        return len(expired)

    def __len__(self) -> int:
        return len(self._cache)
