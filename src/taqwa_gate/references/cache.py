"""
Reference Metadata Cache

In-memory, process-wide read-through cache for largely static reference
metadata (surah listings, hadith collections, collection pages).

Design choices
--------------
- In-memory only (no persistence across process restarts).
- Per-entry expiry after `ttl_seconds`; expired entries are refreshed lazily
  on the next read, never by a background task.
- Thread-safe access using a re-entrant lock.
- Never required for correctness: a miss only costs one provider round trip,
  and serving stale data within the TTL is acceptable.
- Global singleton `reference_cache` for typical application use, while still
  allowing custom instances (and a custom clock) in tests.
"""

from __future__ import annotations

import time
from threading import RLock
from typing import Any, Awaitable, Callable, Dict, Hashable, Optional, Tuple

from ..config import settings


class ReferenceCache:
    """
    Key -> (expires_at, value) mapping with lazy expiry.
    """

    def __init__(
        self,
        ttl_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Parameters
        ----------
        ttl_seconds : float
            Lifetime of each entry. Zero or less disables caching.

        clock : Callable[[], float]
            Monotonic time source, injectable for tests.
        """
        self._store: Dict[Hashable, Tuple[float, Any]] = {}
        self._lock = RLock()
        self._ttl = ttl_seconds
        self._clock = clock

    @property
    def ttl_seconds(self) -> float:
        return self._ttl

    # ------------------------------------------------------------------
    # Core operations
    # ------------------------------------------------------------------

    def get(self, key: Hashable) -> Optional[Any]:
        """Return the cached value, or None if absent or expired."""
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if self._clock() >= expires_at:
                self._store.pop(key, None)
                return None
            return value

    def set(self, key: Hashable, value: Any) -> None:
        if self._ttl <= 0:
            return
        with self._lock:
            self._store[key] = (self._clock() + self._ttl, value)

    async def get_or_load(
        self,
        key: Hashable,
        loader: Callable[[], Awaitable[Any]],
    ) -> Any:
        """
        Return the cached value for `key`, calling `loader` on a miss.

        Loader errors propagate and nothing is cached. Two concurrent misses
        may both call the loader; the later result wins.
        """
        cached = self.get(key)
        if cached is not None:
            return cached
        value = await loader()
        if value is not None:
            self.set(key, value)
        return value

    def invalidate(self, key: Hashable) -> None:
        with self._lock:
            self._store.pop(key, None)

    def clear(self) -> None:
        """
        Remove all entries. Intended for test setup/teardown.
        """
        with self._lock:
            self._store.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)


# Global singleton used by the reference provider clients.
reference_cache = ReferenceCache(ttl_seconds=settings.reference_cache_ttl_seconds)
