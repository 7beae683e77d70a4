"""Typed progress events and the channel that carries them to the transport."""

import asyncio
import logging
from datetime import datetime
from typing import Annotated, Any, AsyncIterator, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter

logger = logging.getLogger(__name__)


class _Event(BaseModel):
    ts: str = Field(default_factory=lambda: datetime.now().isoformat(timespec="milliseconds"))


class StartEvent(_Event):
    type: Literal["start"] = "start"
    run_id: str
    goal: str


class PhaseEvent(_Event):
    type: Literal["phase"] = "phase"
    name: str
    detail: Optional[str] = None


class ThoughtEvent(_Event):
    type: Literal["thought"] = "thought"
    text: str
    iteration: Optional[int] = None


class HeartbeatEvent(_Event):
    type: Literal["heartbeat"] = "heartbeat"
    elapsed_seconds: float
    iteration: Optional[int] = None


class ActionEvent(_Event):
    type: Literal["action"] = "action"
    tool: str
    input: Dict[str, Any] = Field(default_factory=dict)
    iteration: Optional[int] = None


class ObservationEvent(_Event):
    type: Literal["observation"] = "observation"
    tool: str
    result: Dict[str, Any] = Field(default_factory=dict)
    iteration: Optional[int] = None


class UnitAssetStartEvent(_Event):
    type: Literal["unit_asset_start"] = "unit_asset_start"
    unit_index: int
    stage: str
    attempt: int = 1


class UnitAssetProgressEvent(_Event):
    type: Literal["unit_asset_progress"] = "unit_asset_progress"
    unit_index: int
    stage: str
    progress: int


class UnitAssetCompleteEvent(_Event):
    type: Literal["unit_asset_complete"] = "unit_asset_complete"
    unit_index: int
    stage: str
    result_url: str


class UnitAssetErrorEvent(_Event):
    type: Literal["unit_asset_error"] = "unit_asset_error"
    unit_index: int
    stage: str
    message: str
    will_retry: bool = False


class PromptReadyEvent(_Event):
    type: Literal["prompt_ready"] = "prompt_ready"
    prompt_length: int


class CompleteEvent(_Event):
    type: Literal["complete"] = "complete"
    artifact_url: Optional[str]
    succeeded_units: List[int] = Field(default_factory=list)
    failed_units: List[int] = Field(default_factory=list)


class ErrorEvent(_Event):
    type: Literal["error"] = "error"
    message: str


ProgressEvent = Annotated[
    Union[
        StartEvent,
        PhaseEvent,
        ThoughtEvent,
        HeartbeatEvent,
        ActionEvent,
        ObservationEvent,
        UnitAssetStartEvent,
        UnitAssetProgressEvent,
        UnitAssetCompleteEvent,
        UnitAssetErrorEvent,
        PromptReadyEvent,
        CompleteEvent,
        ErrorEvent,
    ],
    Field(discriminator="type"),
]

progress_event_adapter = TypeAdapter(ProgressEvent)

# Safe to drop when the consumer falls behind.
ADVISORY_EVENT_TYPES = frozenset({"thought", "heartbeat", "unit_asset_progress"})

_CLOSED = object()


class EventChannel:
    """
    Single-consumer queue between event producers and the transport.

    Advisory events are dropped when the channel is full; every other event
    waits for space. Closing never waits: a consumer stops once the queue is
    empty and the channel is closed.
    """

    def __init__(self, maxsize: int = 1000):
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._closed = False
        self.dropped = 0

    @property
    def closed(self) -> bool:
        return self._closed

    async def publish(self, event: BaseModel) -> None:
        """Put ``event`` on the channel; a closed channel ignores it."""
        if self._closed:
            logger.debug("Events: channel closed, ignoring %s", getattr(event, "type", "?"))
            return
        if getattr(event, "type", None) in ADVISORY_EVENT_TYPES:
            try:
                self._queue.put_nowait(event)
            except asyncio.QueueFull:
                self.dropped += 1
                logger.debug("Events: dropped advisory %s (total dropped=%d)", event.type, self.dropped)
            return
        await self._queue.put(event)

    async def close(self) -> None:
        """Mark the end of the stream."""
        if self._closed:
            return
        self._closed = True
        # Wakes a consumer blocked on an empty queue.
        if not self._queue.full():
            self._queue.put_nowait(_CLOSED)

    async def __aiter__(self) -> AsyncIterator[BaseModel]:
        while True:
            if self._closed and self._queue.empty():
                return
            item = await self._queue.get()
            if item is _CLOSED:
                return
            yield item

    def drain_nowait(self) -> List[BaseModel]:
        """Return whatever is queued right now without waiting."""
        items = []
        while True:
            try:
                item = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                return items
            if item is not _CLOSED:
                items.append(item)
