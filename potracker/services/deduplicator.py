"""
RequestDeduplicator - Prevents duplicate concurrent requests.

When multiple callers request the same resource simultaneously,
only one actual request is made and the result is shared.
"""

import asyncio
from typing import Any, Awaitable, Callable, TypeVar

from loguru import logger

T = TypeVar("T")


class RequestDeduplicator:
    """
    Deduplicates concurrent async requests.

    ``execute`` is a plain (non-async) method: the check for an in-flight
    request and the registration of a new one happen before control returns
    to the caller, so two calls issued back to back can never both start a
    request for the same key.

    Usage:
        dedup = RequestDeduplicator()

        async def fetch_data(url: str):
            return await dedup.execute(url, lambda: http_client.get(url))
    """

    def __init__(self, debug: bool = False):
        self._in_flight: dict[str, asyncio.Future[Any]] = {}
        # Every running operation, including ones detached from their key
        self._running: set[asyncio.Future[Any]] = set()
        self._debug = debug
        self._stats = DeduplicatorStats()

    def execute(
        self,
        key: str,
        operation: Callable[[], Awaitable[T]],
    ) -> "asyncio.Future[T]":
        """
        Execute an operation with deduplication.

        If an operation with the same key is already in flight, return a
        handle to it instead of starting a new one. Every handle for a key
        resolves to the identical value or raises the identical exception.

        Awaiting callers are shielded from each other: cancelling one
        awaiting caller does not cancel the shared operation.

        Args:
            key: Unique identifier for this operation
            operation: Async callable to run if nothing is in flight

        Returns:
            Awaitable handle on the shared outcome
        """
        task = self._in_flight.get(key)
        if task is not None:
            self._stats.deduplicated += 1
            self._log(f"DEDUPE: Joining in-flight request: {key[:50]}...")
            return asyncio.shield(task)

        task = asyncio.ensure_future(operation())
        self._in_flight[key] = task
        self._running.add(task)
        self._stats.total += 1
        self._log(f"NEW: Starting request: {key[:50]}...")
        task.add_done_callback(lambda done: self._settle(key, done))
        return asyncio.shield(task)

    def _settle(self, key: str, task: "asyncio.Future[Any]") -> None:
        """Drop the registration for a finished operation."""
        self._running.discard(task)
        # A cancelled-then-reissued key may already point at a newer task
        if self._in_flight.get(key) is task:
            del self._in_flight[key]

        if task.cancelled():
            self._log(f"ABORTED: {key[:50]}...")
        elif task.exception() is not None:
            self._log(f"FAILED: {key[:50]}...: {task.exception()!r}")
        else:
            self._log(f"DONE: Request completed: {key[:50]}...")

    def cancel(self, key: str) -> bool:
        """
        Detach an in-flight request from its key.

        The underlying operation keeps running and callers already holding
        a handle still receive its outcome; the next ``execute`` for this
        key starts a fresh operation.
        """
        if self._in_flight.pop(key, None) is None:
            return False
        self._log(f"CANCEL: Request detached: {key[:50]}...")
        return True

    def clear(self) -> None:
        """Detach all in-flight requests without aborting them."""
        count = len(self._in_flight)
        self._in_flight.clear()
        if count:
            self._log(f"CLEAR: {count} requests detached")

    def abort_all(self) -> int:
        """Cancel every running operation, detached ones included. Used on shutdown."""
        tasks = list(self._running)
        for task in tasks:
            task.cancel()
        self._in_flight.clear()
        self._running.clear()
        count = len(tasks)
        if count:
            logger.debug(f"[Deduplicator] ABORT_ALL: {count} requests cancelled")
        return count

    def get_pending_count(self) -> int:
        """Get number of in-flight requests."""
        return len(self._in_flight)

    def get_pending_keys(self) -> list[str]:
        """Get keys of all in-flight requests."""
        return list(self._in_flight.keys())

    def get_stats(self) -> "DeduplicatorStats":
        """Get deduplication statistics."""
        self._stats.in_flight = len(self._in_flight)
        return self._stats

    def _log(self, message: str) -> None:
        """Log debug message if debug mode is enabled."""
        if self._debug:
            logger.debug(f"[Deduplicator] {message}")


class DeduplicatorStats:
    """Statistics for request deduplication."""

    def __init__(self):
        self.total: int = 0  # Total unique requests made
        self.deduplicated: int = 0  # Requests that were deduplicated
        self.in_flight: int = 0  # Current in-flight requests

    @property
    def dedup_rate(self) -> float:
        """Calculate deduplication rate."""
        total = self.total + self.deduplicated
        if total == 0:
            return 0.0
        return self.deduplicated / total

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "total_requests": self.total,
            "deduplicated": self.deduplicated,
            "in_flight": self.in_flight,
            "dedup_rate": f"{self.dedup_rate:.2%}",
        }
