#!/usr/bin/env python3
"""
In-Memory Caching and Request Coalescing

Provides a lightweight in-memory cache with TTL (Time-To-Live) support, a
single-flight group that lets concurrent callers of the same logical read
share one outstanding request, and a timeout bound for backend calls.
"""

import asyncio
import logging
import threading
import time
from typing import Any, Awaitable, Callable, Dict, Hashable, Optional, Set, TypeVar
from dataclasses import dataclass

from .exceptions import OperationTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar('T')


@dataclass
class CacheEntry:
    """A single cache entry with metadata. A ttl of None never expires."""
    key: str
    value: Any
    created_at: float
    ttl_seconds: Optional[float]
    access_count: int = 0
    last_accessed: float = 0.0

    def is_expired(self, now: Optional[float] = None) -> bool:
        """Check if this entry has expired."""
        if self.ttl_seconds is None:
            return False
        now = time.monotonic() if now is None else now
        return now >= (self.created_at + self.ttl_seconds)


_MISSING = object()


class InMemoryCache:
    """
    Thread-safe in-memory cache with TTL support.

    Features:
    - TTL (Time-To-Live) expiration, or no expiry when ttl is None
    - Thread-safe operations
    - LRU eviction when size limits are reached
    - Hit/miss statistics
    """

    def __init__(self,
                 default_ttl: Optional[float] = 900,
                 max_entries: int = 1000,
                 clock: Callable[[], float] = time.monotonic):
        """
        Initialize in-memory cache.

        Args:
            default_ttl: Default TTL in seconds (None disables expiry)
            max_entries: Maximum number of entries before LRU eviction
            clock: Monotonic clock, injectable for tests
        """
        self.default_ttl = default_ttl
        self.max_entries = max_entries
        self._clock = clock

        self._cache: Dict[str, CacheEntry] = {}
        self._lock = threading.RLock()

        # Statistics
        self._stats = {
            'hits': 0,
            'misses': 0,
            'sets': 0,
            'evictions': 0,
        }

        logger.debug(f"Initialized cache with TTL={default_ttl}s, max_entries={max_entries}")

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get value from cache.

        Args:
            key: Cache key
            default: Default value if key not found or expired

        Returns:
            Cached value or default
        """
        with self._lock:
            entry = self._cache.get(key)

            if entry is None:
                self._stats['misses'] += 1
                return default

            if entry.is_expired(self._clock()):
                del self._cache[key]
                self._stats['misses'] += 1
                logger.debug(f"Cache key expired: {key}")
                return default

            self._stats['hits'] += 1
            entry.access_count += 1
            entry.last_accessed = self._clock()
            return entry.value

    def set(self, key: str, value: Any, ttl: Any = _MISSING) -> None:
        """
        Set value in cache.

        Args:
            key: Cache key
            value: Value to cache
            ttl: TTL in seconds (uses default if omitted, None never expires)
        """
        if ttl is _MISSING:
            ttl = self.default_ttl

        with self._lock:
            self._cache[key] = CacheEntry(
                key=key,
                value=value,
                created_at=self._clock(),
                ttl_seconds=ttl
            )
            self._stats['sets'] += 1

            if len(self._cache) > self.max_entries:
                self._evict_lru()

            logger.debug(f"Cached key: {key} (TTL: {ttl}s)")

    def delete(self, key: str) -> bool:
        """
        Delete key from cache.

        Returns:
            True if key was deleted, False if not found
        """
        with self._lock:
            if key in self._cache:
                del self._cache[key]
                logger.debug(f"Deleted cache key: {key}")
                return True
            return False

    def has(self, key: str) -> bool:
        """Check if key exists and is not expired."""
        with self._lock:
            entry = self._cache.get(key)
            return entry is not None and not entry.is_expired(self._clock())

    def clear(self) -> None:
        """Clear all entries from cache."""
        with self._lock:
            count = len(self._cache)
            self._cache.clear()
            logger.debug(f"Cleared {count} cache entries")

    def get_keys(self) -> Set[str]:
        """Get all live cache keys."""
        with self._lock:
            now = self._clock()
            return {key for key, entry in self._cache.items() if not entry.is_expired(now)}

    def update(self, key: str, mutator: Callable[[Any], Any]) -> bool:
        """
        Replace a live entry's value in place, keeping its age.

        Returns:
            True if a live entry was updated
        """
        with self._lock:
            entry = self._cache.get(key)
            if entry is None or entry.is_expired(self._clock()):
                return False
            entry.value = mutator(entry.value)
            return True

    def _evict_lru(self) -> None:
        """Evict least recently used entries."""
        entries_by_access = sorted(
            self._cache.values(),
            key=lambda e: e.last_accessed or e.created_at
        )

        evict_count = len(self._cache) - self.max_entries
        for entry in entries_by_access[:evict_count]:
            del self._cache[entry.key]
            self._stats['evictions'] += 1

        logger.debug(f"Evicted {evict_count} LRU entries")

    def cleanup(self) -> int:
        """
        Remove expired entries.

        Returns:
            Number of entries removed
        """
        with self._lock:
            now = self._clock()
            expired_keys = [key for key, entry in self._cache.items() if entry.is_expired(now)]
            for key in expired_keys:
                del self._cache[key]

            if expired_keys:
                logger.debug(f"Cleaned up {len(expired_keys)} expired entries")

            return len(expired_keys)

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        with self._lock:
            total_requests = self._stats['hits'] + self._stats['misses']
            hit_rate = (self._stats['hits'] / total_requests * 100) if total_requests > 0 else 0

            return {
                'entries': len(self._cache),
                'hits': self._stats['hits'],
                'misses': self._stats['misses'],
                'hit_rate': hit_rate,
                'sets': self._stats['sets'],
                'evictions': self._stats['evictions'],
                'max_entries': self.max_entries,
                'default_ttl': self.default_ttl
            }


class SingleFlight:
    """
    Coalesces concurrent calls for the same key into one outstanding task.

    The first caller for a key starts the work; every caller that arrives
    while it is outstanding awaits the same result (or exception). A waiter
    being cancelled does not cancel the shared task.
    """

    def __init__(self, name: str = 'single_flight'):
        self.name = name
        self._inflight: Dict[Hashable, 'asyncio.Future[Any]'] = {}
        self.started = 0
        self.joined = 0

    def in_flight(self, key: Hashable) -> bool:
        """Check whether a call for key is outstanding."""
        return key in self._inflight

    async def do(self, key: Hashable, factory: Callable[[], Awaitable[T]]) -> T:
        """
        Run factory() for key unless a call for key is already outstanding.

        Args:
            key: Identity of the logical read
            factory: Zero-argument coroutine function producing the value

        Returns:
            The shared result
        """
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(factory())
            self._inflight[key] = task
            self.started += 1
            task.add_done_callback(lambda done, k=key: self._forget(k, done))
            logger.debug(f"[{self.name}] Started call for {key}")
        else:
            self.joined += 1
            logger.debug(f"[{self.name}] Joined in-flight call for {key}")

        return await asyncio.shield(task)

    def _forget(self, key: Hashable, done: 'asyncio.Future[Any]') -> None:
        if self._inflight.get(key) is done:
            del self._inflight[key]
        # Mark the exception as retrieved when every waiter was cancelled
        if not done.cancelled():
            done.exception()


async def bounded_call(operation: str, awaitable: Awaitable[T], timeout_seconds: Optional[float]) -> T:
    """
    Await a backend call with an upper bound.

    Raises:
        OperationTimeoutError: If the bound is exceeded
    """
    if timeout_seconds is None:
        return await awaitable
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout_seconds)
    except asyncio.TimeoutError as e:
        logger.warning(f"{operation} timed out after {timeout_seconds}s")
        raise OperationTimeoutError(operation, timeout_seconds) from e
