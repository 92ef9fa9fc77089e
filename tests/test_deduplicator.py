"""Tests for RequestDeduplicator coalescing, detach and abort semantics."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from potracker.services.deduplicator import RequestDeduplicator


def gated(event: asyncio.Event, result=None, error: Exception | None = None):
    """Async callable that settles only once ``event`` is set."""

    async def operation():
        await event.wait()
        if error is not None:
            raise error
        return result

    return AsyncMock(side_effect=operation)


class TestCoalescing:
    """Concurrent calls on one key share a single execution."""

    def setup_method(self):
        self.dedup = RequestDeduplicator()

    async def test_executes_and_returns_result(self):
        operation = AsyncMock(return_value={"data": "test"})

        result = await self.dedup.execute("key1", operation)

        assert result == {"data": "test"}
        operation.assert_called_once()

    async def test_parallel_calls_share_one_execution(self):
        release = asyncio.Event()
        shared = {"data": "shared"}
        operation = gated(release, result=shared)

        handles = [self.dedup.execute("sameKey", operation) for _ in range(3)]
        # Registered before any of them had a chance to run
        assert self.dedup.get_pending_count() == 1

        release.set()
        results = await asyncio.gather(*handles)

        assert operation.call_count == 1
        assert all(r is shared for r in results)
        assert self.dedup.get_pending_count() == 0

    async def test_parallel_calls_share_identical_error(self):
        release = asyncio.Event()
        error = RuntimeError("Shared failure")
        operation = gated(release, error=error)

        first = self.dedup.execute("rejectKey", operation)
        second = self.dedup.execute("rejectKey", operation)
        release.set()

        results = await asyncio.gather(first, second, return_exceptions=True)

        assert results[0] is error
        assert results[1] is error
        assert operation.call_count == 1

    async def test_distinct_keys_never_coalesce(self):
        operation = AsyncMock(return_value={"data": "test"})

        await asyncio.gather(
            self.dedup.execute("key1", operation),
            self.dedup.execute("key2", operation),
            self.dedup.execute("key3", operation),
        )

        assert operation.call_count == 3

    async def test_new_request_after_previous_completes(self):
        operation = AsyncMock(side_effect=[{"data": "first"}, {"data": "second"}])

        first = await self.dedup.execute("key", operation)
        second = await self.dedup.execute("key", operation)

        assert operation.call_count == 2
        assert first == {"data": "first"}
        assert second == {"data": "second"}

    async def test_failure_clears_registration(self):
        operation = AsyncMock(side_effect=RuntimeError("Failed"))

        with pytest.raises(RuntimeError, match="Failed"):
            await self.dedup.execute("failKey", operation)

        assert self.dedup.get_pending_count() == 0

    async def test_cancelled_waiter_does_not_cancel_shared_operation(self):
        release = asyncio.Event()
        operation = gated(release, result="ok")

        impatient = self.dedup.execute("key", operation)
        patient = self.dedup.execute("key", operation)
        impatient.cancel()
        release.set()

        assert await patient == "ok"

    def test_stats(self):
        stats = self.dedup.get_stats().to_dict()
        assert stats == {
            "total_requests": 0,
            "deduplicated": 0,
            "in_flight": 0,
            "dedup_rate": "0.00%",
        }


class TestDetach:
    """cancel/clear detach bookkeeping without aborting work."""

    def setup_method(self):
        self.dedup = RequestDeduplicator()

    async def test_cancel_detaches_but_result_still_delivered(self):
        release = asyncio.Event()
        handle = self.dedup.execute("cancelKey", gated(release, result="late"))

        assert self.dedup.cancel("cancelKey") is True
        assert self.dedup.get_pending_count() == 0
        assert self.dedup.cancel("cancelKey") is False

        release.set()
        assert await handle == "late"

    async def test_reissue_after_cancel_starts_fresh_operation(self):
        release_old = asyncio.Event()
        release_new = asyncio.Event()
        old_op = gated(release_old, result="old")
        new_op = gated(release_new, result="new")

        old = self.dedup.execute("key", old_op)
        self.dedup.cancel("key")
        new = self.dedup.execute("key", new_op)
        assert new_op.call_count == 1

        # The old operation settling must not drop the new registration
        release_old.set()
        assert await old == "old"
        assert self.dedup.get_pending_keys() == ["key"]

        release_new.set()
        assert await new == "new"
        assert self.dedup.get_pending_count() == 0

    async def test_clear_detaches_everything(self):
        release = asyncio.Event()
        handles = [
            self.dedup.execute(key, gated(release, result=key))
            for key in ("key1", "key2", "key3")
        ]
        assert self.dedup.get_pending_count() == 3

        self.dedup.clear()
        assert self.dedup.get_pending_count() == 0

        release.set()
        assert await asyncio.gather(*handles) == ["key1", "key2", "key3"]

    async def test_abort_all_cancels_outstanding_work(self):
        release = asyncio.Event()
        handle = self.dedup.execute("key", gated(release, result="never"))

        assert self.dedup.abort_all() == 1
        assert self.dedup.get_pending_count() == 0

        with pytest.raises(asyncio.CancelledError):
            await handle

    async def test_abort_all_reaches_detached_work(self):
        release = asyncio.Event()
        detached = self.dedup.execute("key", gated(release, result="old"))
        self.dedup.cancel("key")
        current = self.dedup.execute("key", gated(release, result="new"))

        assert self.dedup.abort_all() == 2

        for handle in (detached, current):
            with pytest.raises(asyncio.CancelledError):
                await handle
