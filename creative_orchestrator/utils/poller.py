"""Turns fire-and-forget provider jobs into awaitable results."""

import asyncio
import inspect
import logging
from typing import Awaitable, Callable, Optional, Union

from pydantic import BaseModel

from ..errors import PermanentProviderError, ProviderError
from ..models import JobStatus
from ..providers.base import ProviderClient

logger = logging.getLogger(__name__)

ProgressHook = Callable[[int], Union[None, Awaitable[None]]]


class PollOutcome(BaseModel):
    """How a wait ended."""
    status: JobStatus
    progress: int = 0
    result_url: Optional[str] = None
    error: Optional[str] = None
    timed_out: bool = False
    polls: int = 0
    poll_errors: int = 0


class JobPoller:
    """
    Polls one provider job on a fixed interval until it is terminal or the
    wall-clock budget runs out.

    Timing out abandons the wait only; the provider job keeps running.
    """

    def __init__(self, interval: float, timeout: float):
        """
        Args:
            interval: Seconds between polls
            timeout: Default wall-clock budget per wait_for call, in seconds
        """
        if interval <= 0:
            raise ValueError("poll interval must be positive")
        self.interval = interval
        self.timeout = timeout

    async def wait_for(
        self,
        provider: ProviderClient,
        job_id: str,
        on_progress: Optional[ProgressHook] = None,
        timeout: Optional[float] = None
    ) -> PollOutcome:
        """
        Wait for ``job_id`` to complete or fail.

        Args:
            provider: Client that owns the job
            job_id: Provider-side job id
            on_progress: Called with the progress percentage after every poll
            timeout: Overrides the default budget for this call

        Returns:
            PollOutcome; ``timed_out`` is set (status ABANDONED) when the
            budget ran out first
        """
        loop = asyncio.get_running_loop()
        budget = self.timeout if timeout is None else timeout
        deadline = loop.time() + budget
        polls = 0
        poll_errors = 0
        progress = 0
        last_status = JobStatus.PENDING

        while True:
            try:
                result = await provider.poll(job_id)
            except PermanentProviderError as e:
                logger.error("Poller: %s job %s cannot be polled: %s", provider.name, job_id, e)
                return PollOutcome(
                    status=JobStatus.FAILED,
                    progress=progress,
                    error=str(e),
                    polls=polls,
                    poll_errors=poll_errors + 1
                )
            except (ProviderError, OSError, asyncio.TimeoutError) as e:
                poll_errors += 1
                logger.warning(
                    "Poller: %s job %s poll failed (%d so far), will keep polling: %s",
                    provider.name,
                    job_id,
                    poll_errors,
                    e
                )
            else:
                polls += 1
                progress = result.progress
                if result.status != last_status:
                    logger.debug("Poller: %s job %s -> %s", provider.name, job_id, result.status.value)
                    last_status = result.status
                if on_progress is not None:
                    maybe_awaitable = on_progress(progress)
                    if inspect.isawaitable(maybe_awaitable):
                        await maybe_awaitable

                if result.status == JobStatus.COMPLETED:
                    return PollOutcome(
                        status=JobStatus.COMPLETED,
                        progress=100,
                        result_url=result.result_url,
                        polls=polls,
                        poll_errors=poll_errors
                    )
                if result.status == JobStatus.FAILED:
                    return PollOutcome(
                        status=JobStatus.FAILED,
                        progress=progress,
                        error=result.error or "provider reported failure",
                        polls=polls,
                        poll_errors=poll_errors
                    )

            remaining = deadline - loop.time()
            if remaining <= 0:
                logger.warning(
                    "Poller: %s job %s still %s after %.1fs, abandoning wait",
                    provider.name,
                    job_id,
                    last_status.value,
                    budget
                )
                return PollOutcome(
                    status=JobStatus.ABANDONED,
                    progress=progress,
                    error=f"timed out after {budget:.0f}s",
                    timed_out=True,
                    polls=polls,
                    poll_errors=poll_errors
                )
            await asyncio.sleep(min(self.interval, remaining))
