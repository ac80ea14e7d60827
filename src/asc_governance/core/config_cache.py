"""Process-local TTL cache for resolved effective configuration.

Entries are keyed by ``(key, facility_id)`` with ``facility_id=None`` for the
platform-global scope. The cache is not shared across processes: another
instance's write becomes visible here within one TTL.

Every invalidation bumps a generation counter. A reader takes the generation
before going to the store and hands it back to ``put``; if a write has
invalidated in between, the result is dropped instead of cached.
"""

import time
import uuid
from collections.abc import Callable

from asc_governance.core.schemas import EffectiveConfig

CacheKey = tuple[str, uuid.UUID | None]


class EffectiveConfigCache:
    """TTL cache of EffectiveConfig results.

    Args:
        ttl_seconds: Lifetime of each entry.
        clock: Monotonic clock, injectable for tests.
    """

    def __init__(
        self,
        ttl_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: dict[CacheKey, tuple[float, EffectiveConfig]] = {}
        self._generation = 0

    @property
    def generation(self) -> int:
        return self._generation

    def get(self, key: str, facility_id: uuid.UUID | None) -> EffectiveConfig | None:
        """Return the cached result, or None if absent or expired."""
        cache_key = (key, facility_id)
        hit = self._entries.get(cache_key)
        if hit is None:
            return None
        expires_at, value = hit
        if self._clock() >= expires_at:
            del self._entries[cache_key]
            return None
        return value

    def put(
        self,
        key: str,
        facility_id: uuid.UUID | None,
        value: EffectiveConfig,
        generation: int | None = None,
    ) -> bool:
        """Store a result unless an invalidation happened after ``generation``.

        Returns:
            True if the entry was stored.
        """
        if generation is not None and generation != self._generation:
            return False
        self._entries[(key, facility_id)] = (self._clock() + self._ttl, value)
        return True

    def invalidate(self, key: str | None = None, facility_id: uuid.UUID | None = None) -> int:
        """Drop cached entries.

        - key and facility_id: that exact facility entry
        - key only: every scope of that key (global and all facilities)
        - facility_id only: every key cached for that facility
        - neither: everything

        Returns:
            Number of entries removed.
        """
        self._generation += 1
        if key is not None and facility_id is not None:
            return 1 if self._entries.pop((key, facility_id), None) is not None else 0

        if key is None and facility_id is None:
            removed = len(self._entries)
            self._entries.clear()
            return removed

        doomed = [
            cache_key
            for cache_key in self._entries
            if (key is not None and cache_key[0] == key)
            or (facility_id is not None and cache_key[1] == facility_id)
        ]
        for cache_key in doomed:
            del self._entries[cache_key]
        return len(doomed)

    def __len__(self) -> int:
        return len(self._entries)
