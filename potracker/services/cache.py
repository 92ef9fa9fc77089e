"""
TTLCache - In-memory response cache with per-entry expiration.

Features:
- Per-entry TTL; overwriting a key replaces both value and lifetime
- Explicit expiry index (min-heap of deadlines)
- Lazy purge on every read, so an entry is a miss from its deadline on
- Optional periodic sweep task that reclaims entries nobody reads again
- Substring-based invalidation

All operations are synchronous: they never suspend, so check-then-act
sequences cannot interleave with other coroutines.
"""

import asyncio
import heapq
import time
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Callable, Generic, TypeVar

from loguru import logger

T = TypeVar("T")

DEFAULT_TTL = timedelta(minutes=5)


@dataclass
class CacheEntry(Generic[T]):
    """A single cache entry."""

    value: T
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


class TTLCache:
    """
    Key/value store with time-based eviction.

    Usage:
        cache = TTLCache(default_ttl=timedelta(minutes=1))
        cache.set("vendors", data)
        cached = cache.get("vendors")

        # Optional background sweep (needs a running event loop)
        cache.start(interval=timedelta(seconds=30))
        ...
        await cache.close()
    """

    def __init__(
        self,
        default_ttl: timedelta = DEFAULT_TTL,
        clock: Callable[[], float] = time.monotonic,
        debug: bool = False,
    ):
        self._entries: dict[str, CacheEntry[Any]] = {}
        # (deadline, key); stale rows are skipped when popped
        self._expiry_index: list[tuple[float, str]] = []
        self._default_ttl = default_ttl
        self._clock = clock
        self._debug = debug
        self._stats = CacheStats()
        self._sweep_task: asyncio.Task[None] | None = None

    def set(self, key: str, value: Any, ttl: timedelta | None = None) -> None:
        """
        Store a value.

        Args:
            key: Cache key
            value: Data to cache
            ttl: Time to live (uses default if not specified)
        """
        ttl = self._default_ttl if ttl is None else ttl
        expires_at = self._clock() + ttl.total_seconds()

        self._entries[key] = CacheEntry(value=value, expires_at=expires_at)
        heapq.heappush(self._expiry_index, (expires_at, key))
        self._log(f"SET: {key[:50]}... (TTL: {ttl.total_seconds()}s)")

    def get(self, key: str, default: Any = None) -> Any:
        """Return the cached value, or ``default`` on a miss."""
        self.purge_expired()

        entry = self._entries.get(key)
        if entry is None:
            self._stats.misses += 1
            self._log(f"MISS: {key[:50]}...")
            return default

        self._stats.hits += 1
        self._log(f"HIT: {key[:50]}...")
        return entry.value

    def has(self, key: str) -> bool:
        self.purge_expired()
        return key in self._entries

    def delete(self, key: str) -> bool:
        """Delete a specific key from cache."""
        if self._entries.pop(key, None) is None:
            return False
        self._log(f"DELETE: {key[:50]}...")
        return True

    def invalidate_pattern(self, pattern: str) -> int:
        """
        Invalidate all keys containing a substring.

        Args:
            pattern: Substring to match in keys

        Returns:
            Number of entries invalidated
        """
        keys_to_delete = [k for k in self._entries if pattern in k]
        for key in keys_to_delete:
            del self._entries[key]

        if keys_to_delete:
            self._log(f"INVALIDATE: {len(keys_to_delete)} entries matching '{pattern}'")

        return len(keys_to_delete)

    def clear(self) -> None:
        """Clear all cache entries."""
        count = len(self._entries)
        self._entries.clear()
        self._expiry_index.clear()
        self._log(f"CLEAR: {count} entries removed")

    def size(self) -> int:
        self.purge_expired()
        return len(self._entries)

    def __len__(self) -> int:
        return self.size()

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and self.has(key)

    def purge_expired(self) -> int:
        """Remove all entries whose deadline has passed. Returns count removed."""
        now = self._clock()
        removed = 0

        while self._expiry_index and self._expiry_index[0][0] <= now:
            expires_at, key = heapq.heappop(self._expiry_index)
            entry = self._entries.get(key)
            # Skip index rows left behind by overwrite or delete
            if entry is None or entry.expires_at != expires_at:
                continue
            del self._entries[key]
            removed += 1

        if removed:
            self._stats.expirations += removed
            self._log(f"EXPIRE: {removed} entries removed")

        return removed

    def start(self, interval: timedelta = timedelta(seconds=30)) -> None:
        """Start the periodic sweep on the running event loop."""
        if self._sweep_task is not None and not self._sweep_task.done():
            return
        self._sweep_task = asyncio.create_task(self._sweep(interval.total_seconds()))
        logger.debug(f"TTLCache sweep started (every {interval.total_seconds()}s)")

    async def close(self) -> None:
        """Stop the periodic sweep, if running."""
        task, self._sweep_task = self._sweep_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.debug("TTLCache sweep stopped")

    async def _sweep(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            self.purge_expired()

    def get_stats(self) -> "CacheStats":
        """Get cache statistics."""
        self._stats.size = len(self._entries)
        return self._stats

    def _log(self, message: str) -> None:
        """Log debug message if debug mode is enabled."""
        if self._debug:
            logger.debug(f"[TTLCache] {message}")


@dataclass
class CacheStats:
    """Cache statistics."""

    hits: int = 0
    misses: int = 0
    expirations: int = 0
    size: int = 0

    @property
    def hit_rate(self) -> float:
        """Calculate cache hit rate."""
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
            "size": self.size,
            "hit_rate": f"{self.hit_rate:.2%}",
        }
