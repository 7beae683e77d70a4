"""Shared fakes and fixtures. Nothing here touches the network."""

import asyncio
import itertools
import json
from typing import Any, Callable, Dict, List, Optional, Union

import pytest

from creative_orchestrator.config import Config
from creative_orchestrator.events import EventChannel
from creative_orchestrator.models import JobStatus, ModelTurn, ToolCallRequest
from creative_orchestrator.providers.base import PollResult, ProviderClient, SubmitResult
from creative_orchestrator.utils.output_manager import OutputManager
from creative_orchestrator.utils.poller import JobPoller
from creative_orchestrator.utils.rate_limiter import QueueLimits, RateLimitedQueue
from creative_orchestrator.workflow import Services


_call_ids = itertools.count(1)


def tool_call(name: str, arguments: Union[Dict[str, Any], str, None] = None, call_id: Optional[str] = None) -> ToolCallRequest:
    """Build a raw tool call; dict arguments are JSON-encoded."""
    if arguments is None:
        raw = "{}"
    elif isinstance(arguments, str):
        raw = arguments
    else:
        raw = json.dumps(arguments)
    return ToolCallRequest(id=call_id or f"call_{next(_call_ids)}", name=name, arguments=raw)


def tool_turn(*calls: ToolCallRequest, text: str = "") -> ModelTurn:
    return ModelTurn(text=text, tool_calls=list(calls), finish_reason="tool_calls")


def text_turn(text: str) -> ModelTurn:
    return ModelTurn(text=text, finish_reason="stop")


def plan_args(titles: List[str], theme: str = "tech", **slide_extra) -> Dict[str, Any]:
    return {
        "theme_style": theme,
        "narrative_approach": "problem, evidence, resolution",
        "slides": [
            {"title": title, "image_prompt": f"{title} prompt", "key_points": [f"{title} point"], **slide_extra}
            for title in titles
        ],
    }


class ScriptedModel:
    """
    Fake reasoning model that replays a fixed list of turns.

    Entries may be ModelTurn objects or exceptions to raise. Once the script
    runs out every further turn is plain text with no tool calls.
    """

    def __init__(self, turns: List[Union[ModelTurn, Exception]]):
        self.turns = list(turns)
        self.calls: List[List[Dict[str, Any]]] = []

    async def stream_turn(self, messages, tools, on_text=None, max_tokens=4000) -> ModelTurn:
        self.calls.append([dict(m) for m in messages])
        if not self.turns:
            return text_turn("I have nothing more to add.")
        turn = self.turns.pop(0)
        if isinstance(turn, Exception):
            raise turn
        if on_text is not None and turn.text:
            await on_text(turn.text)
        return turn


class FakeProvider(ProviderClient):
    """
    Scripted provider.

    Jobs report PROCESSING for ``polls_until_done`` polls, then COMPLETED,
    or FAILED when ``fail_when(prompt)`` is true. ``submit_errors`` are raised
    by successive submits (None entries submit normally). ``raise_when(prompt)``
    may return an exception for submit to raise, and jobs whose prompt matches
    ``hold_when`` stay PROCESSING until ``release`` is set.
    """

    def __init__(
        self,
        name: str = "image",
        polls_until_done: int = 1,
        fail_when: Optional[Callable[[str], bool]] = None,
        submit_errors: Optional[List[Optional[Exception]]] = None,
        sync: bool = False,
        never_finish: bool = False,
        raise_when: Optional[Callable[[str], Optional[Exception]]] = None,
        hold_when: Optional[Callable[[str], bool]] = None
    ):
        self.name = name
        self.polls_until_done = polls_until_done
        self.fail_when = fail_when or (lambda prompt: False)
        self.submit_errors = list(submit_errors or [])
        self.sync = sync
        self.never_finish = never_finish
        self.raise_when = raise_when or (lambda prompt: None)
        self.hold_when = hold_when or (lambda prompt: False)
        self.release = asyncio.Event()
        self.submissions: List[Dict[str, Any]] = []
        self.poll_count = 0
        self._jobs: Dict[str, Dict[str, Any]] = {}
        self._ids = itertools.count(1)

    async def submit(self, prompt: str, config: Dict[str, Any]) -> SubmitResult:
        self.submissions.append({"prompt": prompt, "config": dict(config)})
        if self.submit_errors:
            error = self.submit_errors.pop(0)
            if error is not None:
                raise error
        error = self.raise_when(prompt)
        if error is not None:
            raise error
        number = next(self._ids)
        url = f"https://cdn.test/{self.name}/{number}"
        if self.sync:
            return SubmitResult(sync_result_url=url)
        job_id = f"{self.name}-job-{number}"
        self._jobs[job_id] = {"prompt": prompt, "polls": 0, "url": url}
        return SubmitResult(job_id=job_id)

    async def poll(self, job_id: str) -> PollResult:
        self.poll_count += 1
        job = self._jobs[job_id]
        job["polls"] += 1
        if self.never_finish or job["polls"] <= self.polls_until_done:
            return PollResult(status=JobStatus.PROCESSING, progress=50)
        if self.hold_when(job["prompt"]) and not self.release.is_set():
            return PollResult(status=JobStatus.PROCESSING, progress=90)
        if self.fail_when(job["prompt"]):
            return PollResult(status=JobStatus.FAILED, error="content rejected")
        return PollResult(status=JobStatus.COMPLETED, progress=100, result_url=job["url"])


class FakeSearchClient:
    def __init__(self, answer: str = "Tides are caused by the moon.", error: Optional[Exception] = None):
        self.answer = answer
        self.error = error
        self.queries: List[Dict[str, Any]] = []

    async def search(self, query: str, search_type: str = "background", max_results: int = 5) -> Dict[str, Any]:
        self.queries.append({"query": query, "search_type": search_type})
        if self.error is not None:
            raise self.error
        return {
            "answer": self.answer,
            "results": [
                {"title": "Tide basics", "url": "https://example.org/tides", "content": "Gravity of the moon."},
                {"title": "Ocean data", "url": "https://example.org/data", "content": "Two tides per day."},
            ],
        }


class FakeContextManager:
    """Formats search results like ContextManager without tokenizing."""

    def summarize_search_results(self, query, answer, results, max_tokens=1200, max_sources=5) -> str:
        lines = [f"Search: {query}"]
        if answer:
            lines.append(f"Summary: {answer}")
        if results:
            lines.append("Details:")
            for r in results[:max_sources]:
                lines.append(f"- {r.get('title', '')} ({r.get('url', '')}): {r.get('content', '')}")
        return "\n".join(lines)


@pytest.fixture
def channel():
    return EventChannel(maxsize=0)


@pytest.fixture
def output_manager(tmp_path):
    return OutputManager(base_dir=str(tmp_path / "output"))


@pytest.fixture
def config(tmp_path):
    return Config(
        openai_api_key="sk-test-00000000000000000000",
        tavily_api_key="tvly-test-000000000000000000",
        image_api_key="img-test-key",
        output_dir=str(tmp_path / "output"),
        agent_max_iterations=6,
        heartbeat_interval_seconds=60,
        event_channel_size=0,
    )


@pytest.fixture
def fast_queue():
    return RateLimitedQueue(default_limits=QueueLimits(max_concurrent=10, min_interval_ms=0))


def make_services(
    config: Config,
    output_manager: OutputManager,
    model: ScriptedModel,
    image_provider: Optional[FakeProvider] = None,
    video_provider: Optional[FakeProvider] = None,
    speech_provider: Optional[FakeProvider] = None,
    search_client: Optional[FakeSearchClient] = None,
    queue: Optional[RateLimitedQueue] = None
) -> Services:
    return Services(
        config=config,
        llm=model,
        queue=queue or RateLimitedQueue(default_limits=QueueLimits(max_concurrent=10, min_interval_ms=0)),
        output_manager=output_manager,
        image_providers={"standard": image_provider or FakeProvider("image")},
        image_poller=JobPoller(interval=0.01, timeout=2.0),
        video_provider=video_provider or FakeProvider("video"),
        video_poller=JobPoller(interval=0.01, timeout=2.0),
        speech_provider=speech_provider,
        search_client=search_client,
        context_manager=FakeContextManager(),
    )
