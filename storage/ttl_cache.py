"""Time-to-live cache with lazy eviction."""
import logging
import time
from typing import Callable, Dict, Generic, Hashable, Optional, Tuple, TypeVar

logger = logging.getLogger(__name__)

V = TypeVar('V')


class TTLCache(Generic[V]):
    """
    Key/value cache whose entries expire after a fixed time-to-live.

    Expired entries are deleted when they are next looked up; there is no
    background sweep.
    """

    def __init__(self, ttl_seconds: float = 300, clock: Callable[[], float] = time.monotonic):
        """
        Initialize the cache.

        Args:
            ttl_seconds: Lifetime of an entry in seconds (default: 300)
            clock: Monotonic time source, injectable for tests
        """
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[Hashable, Tuple[float, V]] = {}

    def get(self, key: Hashable) -> Optional[V]:
        """
        Return the cached value, or None on a miss or an expired entry.

        Args:
            key: Cache key

        Returns:
            Cached value or None
        """
        entry = self._entries.get(key)
        if entry is None:
            return None

        timestamp, value = entry
        if self._clock() - timestamp < self.ttl_seconds:
            return value

        del self._entries[key]
        logger.debug(f"Evicted expired cache entry {key!r}")
        return None

    def put(self, key: Hashable, value: V) -> None:
        self._entries[key] = (self._clock(), value)

    def invalidate(self, key: Hashable) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
