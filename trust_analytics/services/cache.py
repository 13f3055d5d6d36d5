import threading
import time
from typing import Any, Callable, Hashable

from trust_analytics.core.config import settings
import structlog

logger = structlog.get_logger()


class ResultCache:
    """TTL cache for computed analytics snapshots.

    Entries expire lazily on read; there is no background sweeper and no
    capacity bound. Writers call ``invalidate_all`` after a committed write,
    which also bumps ``generation``; a snapshot computed under an older
    generation is never stored.
    """

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[Hashable, tuple[float, Any]] = {}
        self._lock = threading.Lock()
        self._generation = 0
        self.hits = 0
        self.misses = 0

    def get(self, key: Hashable) -> Any | None:
        """Cached value for ``key``, or None when absent or expired"""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.misses += 1
                return None

            stored_at, value = entry
            if self._clock() - stored_at >= self.ttl_seconds:
                del self._entries[key]
                self.misses += 1
                return None

            self.hits += 1
            return value

    @property
    def generation(self) -> int:
        with self._lock:
            return self._generation

    def set(self, key: Hashable, value: Any, generation: int | None = None) -> bool:
        """Store ``value`` unless an invalidation happened after ``generation`` was read"""
        with self._lock:
            if generation is not None and generation != self._generation:
                return False
            self._entries[key] = (self._clock(), value)
            return True

    def invalidate_all(self) -> int:
        """Drop every entry; returns how many were dropped"""
        with self._lock:
            dropped = len(self._entries)
            self._entries.clear()
            self._generation += 1

        if dropped:
            logger.info("result_cache_invalidated", entries=dropped)
        return dropped

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


# Shared instance for the API process
result_cache = ResultCache(ttl_seconds=settings.cache_ttl_seconds)
