"""Last-Known-Good Module

This module keeps the newest successful response for every cache key,
regardless of TTL. The orchestrator falls back to it when a provider is
throttled or keeps failing and the regular cache entry has already expired.

The store uses Python's cachetools library (LRUCache) so it stays bounded
without any timer: the least recently stored keys are dropped first.
"""

import time
import logging
import threading
from typing import Any, Tuple
from cachetools import LRUCache

from .constants import DEFAULT_LAST_KNOWN_GOOD_SIZE
from ..errors import CacheMiss

logger = logging.getLogger(__name__)


class LastKnownGood:
    """Thread-safe store of the last good value per cache key

    Attributes:
        store (LRUCache): key -> (provider, value, stored_at)
        max_entries (int): Maximum number of keys remembered
    """

    def __init__(self, max_entries: int = DEFAULT_LAST_KNOWN_GOOD_SIZE, clock=None):
        """Initialize the LastKnownGood instance

        Args:
            max_entries (int): Maximum number of keys remembered (default: 256)
            clock: Callable returning monotonic milliseconds
        """
        self.max_entries: int = max_entries
        self.store: LRUCache = LRUCache(maxsize=max_entries)
        self._clock = clock or (lambda: time.monotonic() * 1000)
        self._lock = threading.Lock()

    def remember(self, key: str, provider: str, value: Any) -> float:
        """Store a good value for a key

        Returns:
            float: The timestamp the entry was stored at
        """
        with self._lock:
            stored_at = self._clock()
            self.store[key] = (provider, value, stored_at)
            logger.debug('Stored last known good value for %s (total entries: %d)',
                         key, len(self.store))
            return stored_at

    def lookup(self, key: str) -> Tuple[Any, float]:
        """Retrieve the last good value for a key

        Returns:
            Tuple[Any, float]: The value and its age in milliseconds

        Raises:
            CacheMiss: If nothing was ever stored for the key or it was evicted
        """
        with self._lock:
            if key not in self.store:
                raise CacheMiss(f'No last known good value for key {key}')
            _, value, stored_at = self.store[key]
            return value, self._clock() - stored_at

    def latest_for(self, provider: str) -> Tuple[Any, float]:
        """Retrieve the newest good value stored for a provider under any key

        Raises:
            CacheMiss: If the provider has no stored value
        """
        with self._lock:
            candidates = [
                (stored_at, value)
                for owner, value, stored_at in self.store.values()
                if owner == provider
            ]
            if not candidates:
                raise CacheMiss(f'No last known good value for provider {provider}')
            stored_at, value = max(candidates, key=lambda item: item[0])
            return value, self._clock() - stored_at

    def clear(self) -> None:
        """Remove all remembered values"""
        with self._lock:
            entries_count = len(self.store)
            self.store.clear()
        logger.info('Last known good store cleared (%d entries removed)', entries_count)

    def get_info(self) -> dict:
        """Get information about the current store state

        Returns:
            dict: entry_count and the number of entries per provider
        """
        with self._lock:
            per_provider = {}
            for owner, _, _ in self.store.values():
                per_provider[owner] = per_provider.get(owner, 0) + 1
            return {
                'entry_count': len(self.store),
                'max_entries': self.max_entries,
                'per_provider': per_provider
            }
