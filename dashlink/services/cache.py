"""
CacheManager - Async-compatible response cache with TTL expiry.

Features:
- Memory-based cache bounded by max_size (oldest entry evicted first)
- TTL per entry, expired entries evicted lazily on lookup
- Substring-pattern invalidation for use after mutations
"""

import asyncio
import hashlib
import time
from dataclasses import dataclass
from typing import Any, Callable, Generic, TypeVar

from loguru import logger

T = TypeVar("T")


@dataclass
class CacheEntry(Generic[T]):
    """A single cache entry with metadata."""

    key: str
    data: T
    stored_at: float
    ttl: float

    def is_expired(self, now: float) -> bool:
        """Check if entry is past its TTL."""
        return now - self.stored_at >= self.ttl


class CacheManager:
    """
    Async-compatible cache manager with TTL.

    Usage:
        cache = CacheManager(max_size=100, default_ttl=300)

        entry = await cache.get("customers:all")
        if entry:
            return entry.data

        data = await fetch_data()
        await cache.set("customers:all", data)
    """

    def __init__(
        self,
        max_size: int = 100,
        default_ttl: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
        debug: bool = False,
    ):
        self._memory: dict[str, CacheEntry[Any]] = {}
        self._max_size = max_size
        self._default_ttl = default_ttl
        self._clock = clock
        self._debug = debug
        self._lock = asyncio.Lock()
        self._stats = CacheStats()

    @staticmethod
    def generate_key(
        resource: str,
        params: dict[str, Any] | None = None,
        method: str = "GET",
    ) -> str:
        """Generate a cache key from method, resource and params."""
        full_key = f"{method.upper()} {resource}"
        if params:
            sorted_params = "&".join(f"{k}={v}" for k, v in sorted(params.items()))
            full_key = f"{full_key}?{sorted_params}"

        # Hash long keys, keeping the resource readable for invalidation
        if len(full_key) > 200:
            hash_val = hashlib.md5(full_key.encode()).hexdigest()[:16]
            return f"{method.upper()} {resource}#{hash_val}"

        return full_key

    async def get(self, key: str) -> CacheEntry[Any] | None:
        """
        Get a live entry from cache.

        Returns None on a miss or when the entry has expired.
        """
        async with self._lock:
            entry = self._memory.get(key)
            if entry is None:
                self._stats.misses += 1
                self._log(f"MISS: {key[:50]}")
                return None

            if entry.is_expired(self._clock()):
                del self._memory[key]
                self._stats.misses += 1
                self._stats.expirations += 1
                self._log(f"EXPIRED: {key[:50]}")
                return None

            self._stats.hits += 1
            self._log(f"HIT: {key[:50]}")
            return entry

    async def set(self, key: str, data: Any, ttl: float | None = None) -> None:
        """Store data under key, replacing any previous entry."""
        ttl = ttl if ttl is not None else self._default_ttl
        entry = CacheEntry(key=key, data=data, stored_at=self._clock(), ttl=ttl)

        async with self._lock:
            if len(self._memory) >= self._max_size and key not in self._memory:
                self._evict_oldest()

            self._memory[key] = entry
            self._log(f"SET: {key[:50]} (TTL: {ttl}s)")

    async def delete(self, key: str) -> bool:
        """Delete a specific key from cache."""
        async with self._lock:
            if key in self._memory:
                del self._memory[key]
                self._log(f"DELETE: {key[:50]}")
                return True
            return False

    async def invalidate(self, pattern: str | None = None) -> int:
        """
        Invalidate all keys containing pattern, or everything if no pattern.

        Returns:
            Number of entries invalidated
        """
        async with self._lock:
            if pattern is None:
                count = len(self._memory)
                self._memory.clear()
                self._log(f"CLEAR: {count} entries removed")
                return count

            keys_to_delete = [k for k in self._memory if pattern in k]
            for key in keys_to_delete:
                del self._memory[key]

            if keys_to_delete:
                self._log(
                    f"INVALIDATE: {len(keys_to_delete)} entries matching '{pattern}'"
                )

            return len(keys_to_delete)

    async def cleanup_expired(self) -> int:
        """Remove all expired entries. Returns count of removed entries."""
        async with self._lock:
            now = self._clock()
            expired_keys = [k for k, v in self._memory.items() if v.is_expired(now)]
            for key in expired_keys:
                del self._memory[key]

            if expired_keys:
                self._stats.expirations += len(expired_keys)
                self._log(f"CLEANUP: {len(expired_keys)} expired entries removed")

            return len(expired_keys)

    def keys(self) -> list[str]:
        """Keys currently stored, expired or not."""
        return list(self._memory.keys())

    def _evict_oldest(self) -> None:
        if not self._memory:
            return

        oldest_key = min(self._memory, key=lambda k: self._memory[k].stored_at)
        del self._memory[oldest_key]
        self._stats.evictions += 1
        self._log(f"EVICT: {oldest_key[:50]}")

    def get_stats(self) -> "CacheStats":
        """Get cache statistics."""
        self._stats.size = len(self._memory)
        self._stats.max_size = self._max_size
        return self._stats

    def _log(self, message: str) -> None:
        """Log debug message if debug mode is enabled."""
        if self._debug:
            logger.debug(f"[CacheManager] {message}")


@dataclass
class CacheStats:
    """Cache statistics."""

    hits: int = 0
    misses: int = 0
    expirations: int = 0
    evictions: int = 0
    size: int = 0
    max_size: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        if total == 0:
            return 0.0
        return self.hits / total

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "hits": self.hits,
            "misses": self.misses,
            "expirations": self.expirations,
            "evictions": self.evictions,
            "size": self.size,
            "max_size": self.max_size,
            "hit_rate": f"{self.hit_rate:.2%}",
        }
