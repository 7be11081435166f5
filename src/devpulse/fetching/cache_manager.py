"""
Thread-safe cache manager for provider responses.

This module provides centralized caching with per-entry TTL, tag based
invalidation, least-recently-used eviction and a periodic expiry sweep.
"""

import re
import time
import threading
from dataclasses import dataclass, field
from typing import Any, Optional, Dict, Callable, Iterable, List, FrozenSet, Union
import logging

from .constants import (
    DEFAULT_CACHE_TTL_MS,
    DEFAULT_CACHE_MAX_SIZE,
    DEFAULT_SWEEP_INTERVAL_SECONDS
)
from ..scheduler import SchedulerThread

logger = logging.getLogger(__name__)


def monotonic_ms() -> float:
    """Monotonic clock in milliseconds."""
    return time.monotonic() * 1000


@dataclass
class CacheEntry:
    """A cached value with its bookkeeping."""
    value: Any
    created_at: float
    ttl: float
    last_accessed_at: float
    hit_count: int = 0
    tags: FrozenSet[str] = field(default_factory=frozenset)
    # breaks ties between accesses within the same clock tick
    access_seq: int = 0

    def is_expired(self, now: float) -> bool:
        return now - self.created_at > self.ttl

    def age(self, now: float) -> float:
        return now - self.created_at


class CacheManager:
    """
    Thread-safe cache manager for storing API responses.

    Features:
    - Per-entry TTL, expired entries are treated as absent
    - Bounded size with least-recently-accessed eviction
    - Tags for bulk invalidation
    - Periodic sweep of expired entries on a scheduler thread
    - Cache hit/miss metrics for monitoring

    A single lock guards every read and write, including eviction and the
    sweep, so a concurrent promotion can never race an eviction.
    """

    def __init__(
        self,
        max_size: int = DEFAULT_CACHE_MAX_SIZE,
        default_ttl_ms: float = DEFAULT_CACHE_TTL_MS,
        clock: Callable[[], float] = monotonic_ms
    ):
        if max_size < 1:
            raise ValueError(f"max_size must be at least 1, got {max_size}")
        self.max_size = max_size
        self.default_ttl_ms = default_ttl_ms
        self._clock = clock
        self._cache: Dict[str, CacheEntry] = {}
        self._lock = threading.RLock()
        self._sweeper: Optional[SchedulerThread] = None
        self._seq = 0
        self._stats = {
            'hits': 0,
            'misses': 0,
            'stores': 0,
            'evictions': 0,
            'expirations': 0
        }

    def _next_seq(self) -> int:
        self._seq += 1
        return self._seq

    def get_entry(self, key: str) -> Optional[CacheEntry]:
        """
        Get a cache entry if it exists and hasn't expired.

        A hit refreshes the entry's access time and hit count. An expired
        entry found here is deleted and counted as a miss.

        Args:
            key: Cache key

        Returns:
            The live CacheEntry, None otherwise
        """
        with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                self._stats['misses'] += 1
                return None

            now = self._clock()
            if entry.is_expired(now):
                del self._cache[key]
                self._stats['expirations'] += 1
                self._stats['misses'] += 1
                logger.debug("Cache entry expired for key: %s", key)
                return None

            entry.hit_count += 1
            entry.last_accessed_at = now
            entry.access_seq = self._next_seq()
            self._stats['hits'] += 1
            logger.debug("Cache hit for key: %s", key)
            return entry

    def entry_age(self, entry: CacheEntry) -> float:
        """Age of an entry in milliseconds on this cache's clock."""
        return entry.age(self._clock())

    def get(self, key: str) -> Optional[Any]:
        """
        Get a value from cache if it exists and hasn't expired.

        Args:
            key: Cache key

        Returns:
            Cached value if available and valid, None otherwise
        """
        entry = self.get_entry(key)
        if entry is None:
            return None
        return entry.value

    def set(self, key: str, value: Any, ttl: Optional[float] = None, tags: Iterable[str] = ()):
        """
        Store a value in cache.

        Args:
            key: Cache key
            value: Value to store
            ttl: Time to live in milliseconds, the default TTL when None
            tags: Labels for bulk invalidation
        """
        ttl = self.default_ttl_ms if ttl is None else ttl
        with self._lock:
            if key not in self._cache and len(self._cache) >= self.max_size:
                self._evict_lru()

            now = self._clock()
            self._cache[key] = CacheEntry(
                value=value,
                created_at=now,
                ttl=ttl,
                last_accessed_at=now,
                tags=frozenset(tags),
                access_seq=self._next_seq()
            )
            self._stats['stores'] += 1
            logger.debug("Cached value for key: %s (TTL: %dms)", key, ttl)

    def get_or_fetch(
        self,
        key: str,
        fetch_func: Callable[[], Any],
        ttl: Optional[float] = None,
        tags: Iterable[str] = ()
    ) -> Any:
        """
        Get value from cache or fetch using the provided function.

        The fetch function runs outside the cache lock. Its result is only
        cached when it returns; its exceptions propagate unchanged.

        Args:
            key: Cache key
            fetch_func: Function to call on a cache miss
            ttl: Time to live for newly fetched data in milliseconds
            tags: Labels for the new entry

        Returns:
            Cached or freshly fetched value
        """
        entry = self.get_entry(key)
        if entry is not None:
            return entry.value

        logger.debug("Cache miss for key: %s, fetching new data", key)
        try:
            fresh_value = fetch_func()
        except Exception as e:
            logger.error("Failed to fetch data for key %s: %s", key, e)
            raise
        self.set(key, fresh_value, ttl, tags)
        return fresh_value

    def invalidate(self, key: str) -> bool:
        """Remove a specific key from cache."""
        with self._lock:
            if key in self._cache:
                del self._cache[key]
                logger.debug("Invalidated cache for key: %s", key)
                return True
        return False

    def invalidate_by_tag(self, tag: str) -> int:
        """Remove all entries carrying the given tag. Returns the number removed."""
        with self._lock:
            keys = [key for key, entry in self._cache.items() if tag in entry.tags]
            for key in keys:
                del self._cache[key]
        if keys:
            logger.info("Invalidated %d cache entries with tag '%s'", len(keys), tag)
        return len(keys)

    def invalidate_by_pattern(self, pattern: Union[str, re.Pattern]) -> int:
        """Remove all entries whose key matches the regular expression."""
        regex = re.compile(pattern) if isinstance(pattern, str) else pattern
        with self._lock:
            keys = [key for key in self._cache if regex.search(key)]
            for key in keys:
                del self._cache[key]
        if keys:
            logger.info("Invalidated %d cache entries matching '%s'", len(keys), regex.pattern)
        return len(keys)

    def get_by_tag(self, tag: str) -> List[Dict[str, Any]]:
        """List live entries carrying the given tag without touching access stats."""
        now = self._clock()
        with self._lock:
            return [
                {'key': key, 'value': entry.value, 'created_at': entry.created_at}
                for key, entry in self._cache.items()
                if tag in entry.tags and not entry.is_expired(now)
            ]

    def clear(self):
        """Clear all cache entries."""
        with self._lock:
            self._cache.clear()
        logger.info("Cache cleared")

    def cleanup_expired(self) -> int:
        """Remove all expired cache entries. Returns the number removed."""
        with self._lock:
            now = self._clock()
            expired_keys = [key for key, entry in self._cache.items() if entry.is_expired(now)]
            for key in expired_keys:
                del self._cache[key]
            self._stats['expirations'] += len(expired_keys)

        if expired_keys:
            logger.debug("Cleaned up %d expired cache entries", len(expired_keys))
        return len(expired_keys)

    def _evict_lru(self):
        """Evict the least recently accessed entry. Caller holds the lock."""
        if not self._cache:
            return
        lru_key = min(
            self._cache,
            key=lambda k: (self._cache[k].last_accessed_at, self._cache[k].access_seq)
        )
        del self._cache[lru_key]
        self._stats['evictions'] += 1
        logger.debug("Evicted least recently used cache entry: %s", lru_key)

    def start_sweeper(self, interval_seconds: int = DEFAULT_SWEEP_INTERVAL_SECONDS):
        """Start the periodic removal of expired entries."""
        with self._lock:
            if self._sweeper is not None and self._sweeper.is_running():
                logger.warning("Cache sweeper already running")
                return
            self._sweeper = SchedulerThread(name="cache_sweeper")
            self._sweeper.schedule_every(interval_seconds, 'seconds',
                                         self.cleanup_expired, 'cache_sweep')
            self._sweeper.start()

    def stop_sweeper(self):
        """Stop the periodic sweep. Safe to call when it never started."""
        with self._lock:
            sweeper = self._sweeper
            self._sweeper = None
        if sweeper is not None:
            sweeper.stop()
            sweeper.clear_jobs()

    def is_sweeping(self) -> bool:
        sweeper = self._sweeper
        return sweeper is not None and sweeper.is_running()

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)

    def get_stats(self, tag: Optional[str] = None) -> Dict[str, Any]:
        """
        Get cache statistics.

        Args:
            tag: Restrict size and entry ages to entries with this tag

        Returns:
            Dict with hits, misses, size, hit_rate (percent),
            oldest_entry_age_ms and newest_entry_age_ms
        """
        with self._lock:
            now = self._clock()
            entries = [
                entry for entry in self._cache.values()
                if tag is None or tag in entry.tags
            ]
            ages = [entry.age(now) for entry in entries]
            stats = dict(self._stats)

        total_requests = stats['hits'] + stats['misses']
        hit_rate = (stats['hits'] / total_requests * 100) if total_requests > 0 else 0

        return {
            **stats,
            'requests': total_requests,
            'size': len(entries),
            'max_size': self.max_size,
            'hit_rate': round(hit_rate, 2),
            'oldest_entry_age_ms': max(ages) if ages else 0,
            'newest_entry_age_ms': min(ages) if ages else 0
        }

    def reset_stats(self):
        """Reset cache statistics."""
        with self._lock:
            self._stats = {'hits': 0, 'misses': 0, 'stores': 0,
                           'evictions': 0, 'expirations': 0}
