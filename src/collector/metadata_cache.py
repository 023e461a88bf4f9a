"""
Time-boxed cache of series lookups.

Sits in front of the metadata service so repeated views of the same subject do
not cost a remote call each. Keyed by (tenant_id, subject_id); the value is the
series id, possibly empty (an empty answer is still an answer).

Entries expire a fixed time after they were written. Expiry is lazy: a stale
entry is removed by the lookup that finds it. Safe for use from concurrent
enrichment tasks and from threads.
"""

import logging
import threading
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass
from datetime import timedelta

logger = logging.getLogger(__name__)

MetadataKey = tuple[str, str]


@dataclass(frozen=True, slots=True)
class MetadataCacheEntry:
    value: str
    inserted_at: float


class MetadataCache:
    """
    TTL cache (optionally size-bounded) of series ids.

    Features:
    - Expire-after-write; a TTL of zero disables the cache entirely
      (every lookup misses, nothing is stored)
    - Optional max_entries with least-recently-used eviction
    - Injectable monotonic clock for tests

    Usage:
        cache = MetadataCache(ttl=timedelta(minutes=10))

        series = cache.get((tenant_id, subject_id))
        if series is None:
            series = await fetch_series(...)
            cache.put((tenant_id, subject_id), series)
    """

    def __init__(
        self,
        ttl: timedelta = timedelta(0),
        max_entries: int = 0,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            ttl: Time-to-live of an entry. Zero or negative disables caching.
            max_entries: Upper bound on stored entries, 0 for unbounded
            clock: Monotonic time source in seconds
        """
        self._ttl_seconds = max(ttl.total_seconds(), 0.0)
        self._max_entries = max_entries
        self._clock = clock
        self._entries: OrderedDict[MetadataKey, MetadataCacheEntry] = OrderedDict()
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._expirations = 0
        self._evictions = 0
        logger.debug(
            "MetadataCache initialized",
            extra={"cache_size": 0, "duration_ms": self._ttl_seconds * 1000},
        )

    @property
    def enabled(self) -> bool:
        return self._ttl_seconds > 0

    def get(self, key: MetadataKey) -> str | None:
        """
        Return the cached series id, or None on a miss.

        The TTL check and the removal of a stale entry happen under one lock.
        """
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None

            if self._clock() - entry.inserted_at >= self._ttl_seconds:
                del self._entries[key]
                self._expirations += 1
                self._misses += 1
                logger.debug(
                    "Metadata cache entry expired",
                    extra={"tenant_id": key[0], "subject_id": key[1]},
                )
                return None

            self._entries.move_to_end(key)
            self._hits += 1
            return entry.value

    def put(self, key: MetadataKey, value: str) -> None:
        """Store (or overwrite) the series id for key."""
        if not self.enabled:
            return

        with self._lock:
            self._entries[key] = MetadataCacheEntry(value=value, inserted_at=self._clock())
            self._entries.move_to_end(key)
            if self._max_entries > 0:
                while len(self._entries) > self._max_entries:
                    self._entries.popitem(last=False)
                    self._evictions += 1

    def invalidate(self, key: MetadataKey) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
        logger.debug("Cleared metadata cache", extra={"cache_size": count})

    def __len__(self) -> int:
        """Current size (includes entries that have expired but were not looked up yet)."""
        with self._lock:
            return len(self._entries)

    def get_stats(self) -> dict[str, int | float]:
        """
        Get cache statistics.

        Returns:
            Dict with hits, misses, expirations, evictions, size and hit rate
        """
        with self._lock:
            lookups = self._hits + self._misses
            return {
                "hits": self._hits,
                "misses": self._misses,
                "expirations": self._expirations,
                "evictions": self._evictions,
                "size": len(self._entries),
                "hit_rate_pct": round(self._hits / lookups * 100, 1) if lookups else 0.0,
            }

    def reset_stats(self) -> None:
        """Reset cache statistics (useful for periodic reporting)."""
        with self._lock:
            self._hits = 0
            self._misses = 0
            self._expirations = 0
            self._evictions = 0
