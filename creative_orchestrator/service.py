"""In-process run registry: submit requests, stream their events, abort them."""

import asyncio
import logging
from collections import deque
from typing import AsyncIterator, Deque, Dict, Optional

from pydantic import BaseModel

from .events import EventChannel
from .models import GenerationRequest, RunRecord, RunStatus, generate_run_id
from .workflow import Services, run_workflow

logger = logging.getLogger(__name__)


class RunHandle:
    """Everything the service keeps for one live run."""

    def __init__(self, record: RunRecord, channel: EventChannel, history_size: int = 500):
        self.record = record
        self.channel = channel
        self.cancel = asyncio.Event()
        self.task: Optional[asyncio.Task] = None
        self.pump: Optional[asyncio.Task] = None
        self.history: Deque[BaseModel] = deque(maxlen=history_size)
        self._received = 0
        self._finished = False
        self._changed = asyncio.Condition()

    @property
    def run_id(self) -> str:
        return self.record.run_id

    @property
    def done(self) -> bool:
        return self.task is not None and self.task.done()

    async def pump_events(self) -> None:
        """Drain the channel into history until it closes, whether or not anyone is listening."""
        try:
            async for event in self.channel:
                self.history.append(event)
                self._received += 1
                async with self._changed:
                    self._changed.notify_all()
        finally:
            self._finished = True
            async with self._changed:
                self._changed.notify_all()

    async def events(self) -> AsyncIterator[BaseModel]:
        """
        Stream events starting from the oldest one still in history.

        Any number of subscribers may attach at any time. One that falls
        more than ``history_size`` events behind skips ahead.
        """
        position = self._received - len(self.history)
        while True:
            oldest = self._received - len(self.history)
            position = max(position, oldest)
            if position < self._received:
                event = self.history[position - oldest]
                position += 1
                yield event
                continue
            if self._finished:
                return
            async with self._changed:
                await self._changed.wait_for(lambda: self._received > position or self._finished)


class GenerationService:
    """
    Accepts generation requests and runs each one as a background task.

    All runs share one service container, so provider limits hold across runs.
    """

    def __init__(self, services: Services):
        self.services = services
        self.runs: Dict[str, RunHandle] = {}

    def submit(self, request: GenerationRequest) -> str:
        """
        Start a run and return its id immediately.

        Must be called from inside a running event loop.
        """
        run_id = generate_run_id()
        while run_id in self.runs:
            run_id = generate_run_id()

        record = RunRecord(run_id=run_id, request=request)
        handle = RunHandle(record, EventChannel(maxsize=self.services.config.event_channel_size))
        handle.pump = asyncio.create_task(handle.pump_events(), name=f"events-{run_id}")
        handle.task = asyncio.create_task(self._run(handle), name=f"run-{run_id}")
        self.runs[run_id] = handle
        logger.info("Service: submitted run_id=%s mode=%s", run_id, request.mode.value)
        return run_id

    async def _run(self, handle: RunHandle) -> RunRecord:
        try:
            return await run_workflow(
                handle.record.request,
                self.services,
                handle.channel,
                cancel=handle.cancel,
                run_id=handle.run_id,
                record=handle.record
            )
        except Exception as e:
            # run_workflow has already recorded, persisted and published the failure.
            logger.error("Service: run_id=%s ended with %s", handle.run_id, type(e).__name__)
            return handle.record

    def get_handle(self, run_id: str) -> Optional[RunHandle]:
        return self.runs.get(run_id)

    def events(self, run_id: str) -> AsyncIterator[BaseModel]:
        """
        Async iterator over a run's progress events.

        Raises:
            KeyError: Unknown run id
        """
        handle = self.runs.get(run_id)
        if handle is None:
            raise KeyError(run_id)
        return handle.events()

    async def get_run(self, run_id: str) -> Optional[RunRecord]:
        """Run record from memory, or from disk for runs started by an earlier process."""
        handle = self.runs.get(run_id)
        if handle is not None:
            return handle.record
        return await self.services.output_manager.load_run_record(run_id)

    def abort(self, run_id: str) -> bool:
        """
        Set the run's abort signal.

        Returns:
            False if the run is unknown or already finished
        """
        handle = self.runs.get(run_id)
        if handle is None or handle.done or handle.record.status != RunStatus.RUNNING:
            return False
        handle.cancel.set()
        logger.info("Service: abort requested for run_id=%s", run_id)
        return True

    async def wait(self, run_id: str) -> RunRecord:
        """Wait for the run to finish and its events to land in history."""
        handle = self.runs[run_id]
        record = await handle.task
        await handle.pump
        return record

    async def shutdown(self) -> None:
        """Abort every live run and wait for the tasks to finish."""
        live = [h for h in self.runs.values() if not h.done]
        for handle in live:
            handle.cancel.set()
        if live:
            logger.info("Service: waiting for %d runs to stop", len(live))
            await asyncio.gather(*(h.task for h in live), return_exceptions=True)
            await asyncio.gather(*(h.pump for h in live), return_exceptions=True)
