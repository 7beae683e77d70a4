"""Tests for the per-key admission queue.

Tests cover:
- Concurrency bound and FIFO admission order
- Minimum spacing between admissions
- Failure isolation between callers
- Limit validation, status snapshots and clear_queue
"""

import asyncio
import time

import pytest
from pydantic import ValidationError

from creative_orchestrator.errors import QueueCleared
from creative_orchestrator.utils.rate_limiter import (
    DEFAULT_QUEUE_LIMITS,
    QueueLimits,
    RateLimitedClient,
    RateLimitedQueue,
)


class TestQueueLimits:
    """Test limit validation."""

    def test_zero_concurrency_rejected(self):
        with pytest.raises(ValidationError):
            QueueLimits(max_concurrent=0, min_interval_ms=0)

    def test_negative_interval_rejected(self):
        with pytest.raises(ValidationError):
            QueueLimits(max_concurrent=1, min_interval_ms=-1)

    def test_builtin_budgets(self):
        """Pro image tier is throttled much harder than the standard tier."""
        assert DEFAULT_QUEUE_LIMITS["image:pro"].max_concurrent == 5
        assert DEFAULT_QUEUE_LIMITS["image:standard"].max_concurrent == 50
        assert DEFAULT_QUEUE_LIMITS["video:sora"].min_interval_ms == 2000

    def test_unknown_key_uses_default(self):
        queue = RateLimitedQueue(
            {"image:pro": QueueLimits(max_concurrent=2, min_interval_ms=0)},
            default_limits=QueueLimits(max_concurrent=7, min_interval_ms=5)
        )
        assert queue.limits_for("image:pro").max_concurrent == 2
        assert queue.limits_for("other:key").max_concurrent == 7


class TestConcurrency:
    """Test the in-flight bound and admission order."""

    async def test_never_exceeds_max_concurrent(self):
        """Twenty callers against a limit of three never overlap more than three."""
        queue = RateLimitedQueue({"k": QueueLimits(max_concurrent=3, min_interval_ms=0)})
        active = 0
        peak = 0

        async def task():
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1
            return "ok"

        results = await asyncio.gather(*(queue.enqueue("k", task) for _ in range(20)))

        assert results == ["ok"] * 20
        assert peak == 3
        assert queue.get_stats()["k"]["peak_in_flight"] == 3
        assert queue.get_stats()["k"]["admitted_total"] == 20

    async def test_fifo_admission(self):
        """With one slot, callers start in the order they enqueued."""
        queue = RateLimitedQueue({"k": QueueLimits(max_concurrent=1, min_interval_ms=0)})
        started = []

        def make_task(i):
            async def task():
                started.append(i)
                await asyncio.sleep(0.001)
                return i
            return task

        waiters = []
        for i in range(8):
            waiters.append(asyncio.create_task(queue.enqueue("k", make_task(i))))
            await asyncio.sleep(0)
        await asyncio.gather(*waiters)

        assert started == list(range(8))

    async def test_keys_are_independent(self):
        """A saturated key does not hold up another key."""
        queue = RateLimitedQueue({
            "slow": QueueLimits(max_concurrent=1, min_interval_ms=0),
            "fast": QueueLimits(max_concurrent=1, min_interval_ms=0),
        })
        release = asyncio.Event()

        async def blocker():
            await release.wait()

        async def quick():
            return "done"

        blocked = asyncio.create_task(queue.enqueue("slow", blocker))
        await asyncio.sleep(0)
        assert await asyncio.wait_for(queue.enqueue("fast", quick), timeout=1) == "done"
        release.set()
        await blocked


class TestMinimumInterval:
    """Test pacing between admissions."""

    async def test_admissions_spaced_by_interval(self):
        queue = RateLimitedQueue({"k": QueueLimits(max_concurrent=10, min_interval_ms=50)})
        admitted_at = []

        async def task():
            admitted_at.append(time.monotonic())

        await asyncio.gather(*(queue.enqueue("k", task) for _ in range(4)))

        gaps = [b - a for a, b in zip(admitted_at, admitted_at[1:])]
        assert len(gaps) == 3
        # Small tolerance for timer granularity.
        assert all(gap >= 0.045 for gap in gaps)

    async def test_first_admission_is_immediate(self):
        queue = RateLimitedQueue({"k": QueueLimits(max_concurrent=1, min_interval_ms=5000)})

        async def task():
            return 1

        assert await asyncio.wait_for(queue.enqueue("k", task), timeout=0.5) == 1


class TestFailureIsolation:
    """Test that one failing task only affects its own caller."""

    async def test_failure_releases_slot(self):
        queue = RateLimitedQueue({"k": QueueLimits(max_concurrent=1, min_interval_ms=0)})

        async def boom():
            raise RuntimeError("provider exploded")

        async def fine():
            return "fine"

        results = await asyncio.gather(
            queue.enqueue("k", boom),
            queue.enqueue("k", fine),
            queue.enqueue("k", fine),
            return_exceptions=True
        )

        assert isinstance(results[0], RuntimeError)
        assert results[1:] == ["fine", "fine"]
        assert queue.get_queue_status("k").in_flight == 0


class TestStatusAndClear:
    """Test non-blocking status and clear_queue."""

    async def test_status_reflects_in_flight_and_waiting(self):
        queue = RateLimitedQueue({"k": QueueLimits(max_concurrent=1, min_interval_ms=0)})
        release = asyncio.Event()

        async def task():
            await release.wait()

        tasks = [asyncio.create_task(queue.enqueue("k", task)) for _ in range(3)]
        await asyncio.sleep(0.01)

        status = queue.get_queue_status("k")
        assert status.in_flight == 1
        assert status.waiting == 2

        release.set()
        await asyncio.gather(*tasks)
        status = queue.get_queue_status("k")
        assert (status.in_flight, status.waiting) == (0, 0)

    def test_status_for_unused_key(self):
        queue = RateLimitedQueue()
        status = queue.get_queue_status("never:used")
        assert (status.in_flight, status.waiting) == (0, 0)

    async def test_clear_rejects_waiters_but_not_in_flight(self):
        queue = RateLimitedQueue({"k": QueueLimits(max_concurrent=1, min_interval_ms=0)})
        release = asyncio.Event()

        async def running():
            await release.wait()
            return "finished"

        async def never_admitted():
            return "should not run"

        first = asyncio.create_task(queue.enqueue("k", running))
        await asyncio.sleep(0)
        waiting = [asyncio.create_task(queue.enqueue("k", never_admitted)) for _ in range(2)]
        await asyncio.sleep(0.01)

        assert queue.clear_queue("k") == 2
        release.set()

        assert await first == "finished"
        for task in waiting:
            with pytest.raises(QueueCleared):
                await task
        assert queue.get_queue_status("k").waiting == 0


class TestRateLimitedClient:
    async def test_counts_requests_and_peak(self):
        client = RateLimitedClient(max_concurrent=2, max_per_minute=100)
        gate = asyncio.Event()

        async def call():
            await gate.wait()
            return "ok"

        tasks = [asyncio.create_task(client._execute_with_limits(call())) for _ in range(4)]
        await asyncio.sleep(0.01)
        assert client.get_stats()["current_concurrent"] == 2

        gate.set()
        assert await asyncio.gather(*tasks) == ["ok"] * 4
        stats = client.get_stats()
        assert stats["total_requests"] == 4
        assert stats["concurrent_peak"] == 2
        assert stats["current_concurrent"] == 0
