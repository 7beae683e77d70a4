"""Rate limiting utilities for API clients and provider job submission."""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Coroutine, Dict, Mapping, Optional, TypeVar

from aiolimiter import AsyncLimiter
from pydantic import BaseModel, Field

from ..errors import QueueCleared

logger = logging.getLogger(__name__)

T = TypeVar('T')


class RateLimitedClient:
    """
    Base class for API clients with rate limiting.

    Provides concurrent request limiting (via semaphore) and
    per-minute rate limiting (via AsyncLimiter).
    """

    def __init__(self, max_concurrent: int = 10, max_per_minute: int = 60):
        """
        Initialize rate limiter.

        Args:
            max_concurrent: Maximum number of concurrent requests
            max_per_minute: Maximum requests per minute
        """
        self.semaphore = asyncio.Semaphore(max_concurrent)
        self.rate_limiter = AsyncLimiter(max_per_minute, 60)  # max_rate per 60 seconds

        self._stats = {
            "total_requests": 0,
            "concurrent_peak": 0,
            "current_concurrent": 0
        }

    async def _execute_with_limits(self, coro: Coroutine[Any, Any, T]) -> T:
        """
        Execute a coroutine with rate limiting applied.

        Args:
            coro: The coroutine to execute

        Returns:
            The result of the coroutine
        """
        async with self.semaphore:
            self._stats["current_concurrent"] += 1
            self._stats["concurrent_peak"] = max(
                self._stats["concurrent_peak"],
                self._stats["current_concurrent"]
            )

            try:
                async with self.rate_limiter:
                    self._stats["total_requests"] += 1
                    return await coro
            finally:
                self._stats["current_concurrent"] -= 1

    def get_stats(self) -> dict:
        """Return a copy of the request counters."""
        return self._stats.copy()


class QueueLimits(BaseModel):
    """Concurrency and pacing budget for one provider+tier key."""
    max_concurrent: int = Field(..., gt=0, description="Maximum tasks running at once")
    min_interval_ms: int = Field(default=0, ge=0, description="Minimum spacing between admissions")


class QueueStatus(BaseModel):
    """Point-in-time view of one queue key."""
    in_flight: int = Field(..., ge=0)
    waiting: int = Field(..., ge=0)


# Per provider+tier budgets. Intervals are 60000 / requests-per-minute.
DEFAULT_QUEUE_LIMITS: Dict[str, QueueLimits] = {
    "image:standard": QueueLimits(max_concurrent=50, min_interval_ms=120),
    "image:pro": QueueLimits(max_concurrent=5, min_interval_ms=3000),
    "image:seedream": QueueLimits(max_concurrent=10, min_interval_ms=1000),
    "video:sora": QueueLimits(max_concurrent=3, min_interval_ms=2000),
    "speech:tts": QueueLimits(max_concurrent=5, min_interval_ms=200),
}


class _KeyState:
    """Mutable admission state for a single key.

    ``turnstile`` is held by the caller at the head of the line while it waits
    for a slot and for the pacing interval, so only that caller can admit.
    """

    def __init__(self, limits: QueueLimits):
        self.limits = limits
        self.in_flight = 0
        self.waiting = 0
        self.last_admitted_at: Optional[float] = None
        self.epoch = 0
        self.turnstile = asyncio.Lock()
        self.slot_freed = asyncio.Event()
        self.admitted_total = 0
        self.peak_in_flight = 0


class RateLimitedQueue:
    """
    FIFO admission gate shared by every caller targeting a provider+tier key.

    At most ``max_concurrent`` tasks per key run at once, and successive
    admissions for a key are spaced by at least ``min_interval_ms``. Keys are
    fully independent of each other.
    """

    def __init__(
        self,
        limits: Optional[Mapping[str, QueueLimits]] = None,
        default_limits: Optional[QueueLimits] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        """
        Initialize the queue.

        Args:
            limits: Budgets per key; unknown keys use ``default_limits``
            default_limits: Budget for keys with no explicit entry
            clock: Monotonic clock in seconds
        """
        self._limits: Dict[str, QueueLimits] = {
            key: QueueLimits.model_validate(value) for key, value in (limits or {}).items()
        }
        self._default_limits = default_limits or QueueLimits(max_concurrent=5, min_interval_ms=1000)
        self._clock = clock
        self._states: Dict[str, _KeyState] = {}

    def limits_for(self, key: str) -> QueueLimits:
        return self._limits.get(key, self._default_limits)

    def _state_for(self, key: str) -> _KeyState:
        state = self._states.get(key)
        if state is None:
            state = _KeyState(self.limits_for(key))
            self._states[key] = state
            logger.debug(
                "Queue: created key=%s max_concurrent=%d min_interval_ms=%d",
                key,
                state.limits.max_concurrent,
                state.limits.min_interval_ms
            )
        return state

    async def enqueue(self, key: str, task: Callable[[], Awaitable[T]]) -> T:
        """
        Run ``task()`` once the key admits it and return its result.

        Args:
            key: Provider+tier key, e.g. "image:pro"
            task: Zero-argument coroutine factory; apply any timeout inside it

        Returns:
            Whatever ``task()`` returns

        Raises:
            QueueCleared: If clear_queue() dropped this caller while it waited
            Any exception raised by ``task()``
        """
        state = self._state_for(key)
        epoch = state.epoch
        state.waiting += 1
        admitted = False
        try:
            async with state.turnstile:
                await self._await_admission(key, state, epoch)
                state.waiting -= 1
                state.in_flight += 1
                admitted = True
                state.last_admitted_at = self._clock()
                state.admitted_total += 1
                state.peak_in_flight = max(state.peak_in_flight, state.in_flight)
        finally:
            if not admitted:
                state.waiting -= 1

        logger.debug("Queue: admitted key=%s in_flight=%d waiting=%d", key, state.in_flight, state.waiting)
        try:
            return await task()
        finally:
            self._release(state)

    async def _await_admission(self, key: str, state: _KeyState, epoch: int) -> None:
        while state.in_flight >= state.limits.max_concurrent:
            self._check_epoch(key, state, epoch)
            state.slot_freed.clear()
            await state.slot_freed.wait()
        self._check_epoch(key, state, epoch)

        if state.last_admitted_at is not None:
            interval = state.limits.min_interval_ms / 1000.0
            delay = state.last_admitted_at + interval - self._clock()
            if delay > 0:
                await asyncio.sleep(delay)
                self._check_epoch(key, state, epoch)

    @staticmethod
    def _check_epoch(key: str, state: _KeyState, epoch: int) -> None:
        if state.epoch != epoch:
            raise QueueCleared(f"Queue for {key} was cleared")

    @staticmethod
    def _release(state: _KeyState) -> None:
        state.in_flight -= 1
        state.slot_freed.set()

    def get_queue_status(self, key: str) -> QueueStatus:
        """Return in-flight and waiting counts for ``key`` without blocking."""
        state = self._states.get(key)
        if state is None:
            return QueueStatus(in_flight=0, waiting=0)
        return QueueStatus(in_flight=state.in_flight, waiting=state.waiting)

    def clear_queue(self, key: str) -> int:
        """
        Reject every caller still waiting on ``key``.

        In-flight tasks are left to finish.

        Returns:
            Number of callers that were waiting
        """
        state = self._states.get(key)
        if state is None:
            return 0
        dropped = state.waiting
        state.epoch += 1
        state.slot_freed.set()
        logger.info("Queue: cleared key=%s dropped=%d", key, dropped)
        return dropped

    def get_stats(self) -> Dict[str, Dict[str, int]]:
        """Admission counters per key."""
        return {
            key: {
                "admitted_total": state.admitted_total,
                "peak_in_flight": state.peak_in_flight,
                "in_flight": state.in_flight,
                "waiting": state.waiting,
            }
            for key, state in self._states.items()
        }
