"""Tool-calling planning loop: turns a creative goal into a finalized plan and brief."""

import asyncio
import contextlib
import logging
from typing import Any, Dict, List, Optional

from ..errors import (
    PermanentProviderError,
    PlanningIncomplete,
    ReasoningModelError,
    RunAborted,
    ToolArgumentError,
    TransientProviderError
)
from ..events import ActionEvent, EventChannel, HeartbeatEvent, ObservationEvent, ThoughtEvent
from ..models import AgentState, GenerationRequest, ModelTurn, PlanningResult, ToolCallRequest
from ..prompts import NO_TOOL_CALL_NUDGE, build_initial_user_message, planner_system_message
from .toolkit import PlanningToolkit, ToolResult
from .tools import TOOL_SPECS, parse_tool_call

logger = logging.getLogger(__name__)


def _assistant_message(turn: ModelTurn) -> Dict[str, Any]:
    message: Dict[str, Any] = {"role": "assistant", "content": turn.text or None}
    if turn.tool_calls:
        message["tool_calls"] = [
            {
                "id": call.id,
                "type": "function",
                "function": {"name": call.name, "arguments": call.arguments or "{}"},
            }
            for call in turn.tool_calls
        ]
    return message


class PlanningAgent:
    """
    Drives the reasoning model through planning tools until finalize_prompt
    succeeds or the iteration budget runs out.

    The model client only needs ``stream_turn(messages, tools, on_text, max_tokens)``
    returning a ModelTurn (see OpenAIClient.stream_turn).
    """

    def __init__(
        self,
        llm,
        toolkit: PlanningToolkit,
        channel: EventChannel,
        max_iterations: int = 15,
        heartbeat_interval: float = 30.0,
        max_tokens: int = 4000
    ):
        """
        Args:
            llm: Reasoning model client
            toolkit: Tool handlers bound to this run
            channel: Event channel for thoughts, actions and observations
            max_iterations: Model turn budget
            heartbeat_interval: Seconds between heartbeat events
            max_tokens: Completion token cap per turn
        """
        self.llm = llm
        self.toolkit = toolkit
        self.channel = channel
        self.max_iterations = max_iterations
        self.heartbeat_interval = heartbeat_interval
        self.max_tokens = max_tokens

    async def run(
        self,
        request: GenerationRequest,
        cancel: Optional[asyncio.Event] = None
    ) -> PlanningResult:
        """
        Plan the piece described by ``request``.

        Args:
            request: Goal, style and reference assets
            cancel: Abort signal, checked before every model turn and tool call

        Returns:
            PlanningResult with the frozen plan and the final brief

        Raises:
            PlanningIncomplete: Budget exhausted before finalize_prompt succeeded
            ReasoningModelError: The model rejected the request or stayed unreachable
            RunAborted: ``cancel`` was set
        """
        state = AgentState(max_iterations=self.max_iterations)
        messages: List[Dict[str, Any]] = [
            {"role": "system", "content": planner_system_message(request.mode)},
            {"role": "user", "content": build_initial_user_message(request)},
        ]
        logger.info("Planner: starting (mode=%s, budget=%d)", request.mode.value, state.max_iterations)

        heartbeat = asyncio.create_task(self._heartbeat(state))
        try:
            while state.iteration < state.max_iterations:
                self._check_abort(cancel)
                state.iteration += 1
                logger.debug("Planner: iteration %d/%d", state.iteration, state.max_iterations)

                try:
                    turn = await self.llm.stream_turn(
                        messages,
                        TOOL_SPECS,
                        on_text=self._thought_sink(state),
                        max_tokens=self.max_tokens
                    )
                except PermanentProviderError as e:
                    logger.error("Planner: reasoning model rejected the request: %s", e)
                    raise ReasoningModelError(f"Reasoning model error: {e}", state=state) from e
                except TransientProviderError as e:
                    if state.iteration >= state.max_iterations:
                        raise ReasoningModelError(
                            f"Reasoning model unavailable on the last iteration: {e}",
                            state=state
                        ) from e
                    logger.warning("Planner: transient model error on iteration %d: %s", state.iteration, e)
                    await self.channel.publish(ThoughtEvent(
                        text=f"Model temporarily unavailable ({e}); retrying",
                        iteration=state.iteration,
                    ))
                    continue

                if not turn.tool_calls:
                    logger.info("Planner: iteration %d produced no tool call, nudging", state.iteration)
                    messages.append({"role": "assistant", "content": turn.text or ""})
                    messages.append({"role": "user", "content": NO_TOOL_CALL_NUDGE})
                    continue

                messages.append(_assistant_message(turn))
                for call in turn.tool_calls:
                    self._check_abort(cancel)
                    result = await self._run_tool(call, state)
                    messages.append({
                        "role": "tool",
                        "tool_call_id": call.id,
                        "content": result.to_message_content(),
                    })

                if state.is_complete:
                    logger.info(
                        "Planner: finalized after %d iterations (%d units, %d materials)",
                        state.iteration,
                        len(state.plan.units),
                        len(state.collected_materials)
                    )
                    return PlanningResult(
                        plan=state.plan,
                        final_prompt=state.final_prompt,
                        collected_materials=list(state.collected_materials),
                        iterations=state.iteration,
                    )
        finally:
            heartbeat.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await heartbeat

        logger.warning("Planner: budget of %d iterations exhausted without finalize_prompt", state.max_iterations)
        raise PlanningIncomplete(
            f"Planning did not finalize within {state.max_iterations} iterations",
            state=state
        )

    async def _run_tool(self, call: ToolCallRequest, state: AgentState) -> ToolResult:
        """Execute one tool call; every failure becomes an unsuccessful ToolResult."""
        try:
            parsed = parse_tool_call(call)
        except ToolArgumentError as e:
            logger.warning("Planner: rejected call to %r: %s", call.name, e)
            await self.channel.publish(ActionEvent(
                tool=call.name,
                input={"raw_arguments": call.arguments[:500]},
                iteration=state.iteration,
            ))
            result = ToolResult(success=False, error=str(e))
            await self._observe(call.name, result, state)
            return result

        await self.channel.publish(ActionEvent(
            tool=parsed.kind.value,
            input=parsed.raw_arguments,
            iteration=state.iteration,
        ))
        try:
            result = await self.toolkit.execute(parsed, state)
        except AssertionError:
            raise
        except Exception as e:
            logger.exception("Planner: tool %s crashed", parsed.kind.value)
            result = ToolResult(success=False, error=f"{type(e).__name__}: {e}")
        await self._observe(parsed.kind.value, result, state)
        return result

    async def _observe(self, tool: str, result: ToolResult, state: AgentState) -> None:
        await self.channel.publish(ObservationEvent(
            tool=tool,
            result=result.model_dump(exclude_none=True),
            iteration=state.iteration,
        ))

    def _thought_sink(self, state: AgentState):
        iteration = state.iteration

        async def sink(delta: str) -> None:
            await self.channel.publish(ThoughtEvent(text=delta, iteration=iteration))

        return sink

    async def _heartbeat(self, state: AgentState) -> None:
        loop = asyncio.get_running_loop()
        started = loop.time()
        while True:
            await asyncio.sleep(self.heartbeat_interval)
            await self.channel.publish(HeartbeatEvent(
                elapsed_seconds=round(loop.time() - started, 1),
                iteration=state.iteration,
            ))

    @staticmethod
    def _check_abort(cancel: Optional[asyncio.Event]) -> None:
        if cancel is not None and cancel.is_set():
            raise RunAborted("Run aborted during planning")
