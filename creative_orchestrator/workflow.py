"""LangGraph pipeline definition and the service container it runs on."""

import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, Optional

from langgraph.graph import END, StateGraph

from .agents.assembly import assemble_artifact
from .agents.assets import (
    IMAGE_TIER_PRO,
    IMAGE_TIER_STANDARD,
    UnitJobRunner,
    generate_primary_assets,
    transform_units
)
from .agents.planner import PlanningAgent
from .agents.toolkit import PlanningToolkit
from .config import Config
from .errors import PipelineFatal, PlanningError, RunAborted
from .events import CompleteEvent, ErrorEvent, EventChannel, StartEvent
from .models import (
    GenerationMode,
    GenerationRequest,
    RunRecord,
    RunStatus,
    Unit,
    WorkflowState,
    create_initial_state,
    generate_run_id
)
from .providers.base import ProviderClient
from .providers.image import TaskApiProvider
from .providers.speech import SpeechProvider
from .providers.video import SoraVideoProvider
from .utils.context_manager import ContextManager
from .utils.key_cache import ApiKeyCache
from .utils.logging_utils import attach_run_log, detach_run_log
from .utils.openai_client import OpenAIClient
from .utils.output_manager import OutputManager
from .utils.poller import JobPoller
from .utils.progress import ProgressCallback, wrap_node_with_progress
from .utils.rate_limiter import RateLimitedQueue
from .utils.tavily_client import TavilyClient

logger = logging.getLogger(__name__)


class Services:
    """
    Long-lived collaborators shared by every run in the process.

    The queue in particular must be shared: its limits are per provider,
    not per run.
    """

    def __init__(
        self,
        config: Config,
        llm,
        queue: RateLimitedQueue,
        output_manager: OutputManager,
        image_providers: Dict[str, ProviderClient],
        image_poller: JobPoller,
        video_provider: Optional[ProviderClient] = None,
        video_poller: Optional[JobPoller] = None,
        speech_provider: Optional[ProviderClient] = None,
        search_client: Optional[TavilyClient] = None,
        context_manager: Optional[ContextManager] = None,
        key_cache: Optional[ApiKeyCache] = None
    ):
        self.config = config
        self.llm = llm
        self.queue = queue
        self.output_manager = output_manager
        self.image_providers = image_providers
        self.image_poller = image_poller
        self.video_provider = video_provider
        self.video_poller = video_poller
        self.speech_provider = speech_provider
        self.search_client = search_client
        self.context_manager = context_manager or ContextManager(model=config.model_name)
        self.key_cache = key_cache


def create_services(config: Config) -> Services:
    """
    Build the production service container from configuration.

    Args:
        config: Application configuration

    Returns:
        Services wired to the real providers
    """
    key_cache = ApiKeyCache(config.api_key_for, ttl_seconds=config.api_key_cache_ttl_seconds)
    queue = RateLimitedQueue(config.resolved_queue_limits(), config.default_queue_limits())
    output_manager = OutputManager(config.output_dir)

    openai_client = OpenAIClient(
        api_key=config.openai_api_key,
        model=config.model_name,
        max_concurrent=config.max_concurrent_openai,
        max_per_minute=config.max_rate_openai_per_min
    )
    tavily_client = TavilyClient(
        api_key=config.tavily_api_key,
        max_concurrent=config.max_concurrent_tavily,
        max_per_minute=config.max_rate_tavily_per_min
    )

    image_providers: Dict[str, ProviderClient] = {
        IMAGE_TIER_STANDARD: TaskApiProvider(config.image_api_base_url, config.image_model_standard, key_cache),
        IMAGE_TIER_PRO: TaskApiProvider(config.image_api_base_url, config.image_model_pro, key_cache),
    }
    if not config.image_api_key:
        logger.warning("No IMAGE_API_KEY configured; image jobs will fail")

    return Services(
        config=config,
        llm=openai_client,
        queue=queue,
        output_manager=output_manager,
        image_providers=image_providers,
        image_poller=JobPoller(config.image_poll_interval_seconds, config.image_poll_timeout_seconds),
        video_provider=SoraVideoProvider(openai_client.client, output_manager, model=config.video_model),
        video_poller=JobPoller(config.video_poll_interval_seconds, config.video_poll_timeout_seconds),
        speech_provider=SpeechProvider(
            openai_client,
            output_manager,
            voice=config.tts_voice,
            model=config.tts_model
        ),
        search_client=tavily_client,
        context_manager=ContextManager(model=config.model_name),
        key_cache=key_cache,
    )


async def _checkpoint(
    services: Services,
    record: RunRecord,
    phase: str,
    state: Dict[str, Any]
) -> None:
    """Copy pipeline state into the run record and persist it."""
    record.phase = phase
    if state.get("plan") is not None:
        record.plan = state["plan"]
    if state.get("final_prompt"):
        record.final_prompt = state["final_prompt"]
    if state.get("artifact_url"):
        record.artifact_url = state["artifact_url"]
    if state.get("fatal_error"):
        record.error = state["fatal_error"]
    await services.output_manager.write_run_record(record)


def route_after_plan(state: WorkflowState) -> str:
    """Send a failed planning phase straight to save_outputs."""
    if state.get("fatal_error") or state.get("plan") is None:
        return "failed"
    return "continue"


def create_workflow(
    services: Services,
    channel: EventChannel,
    record: RunRecord,
    cancel: Optional[asyncio.Event] = None,
    progress_callback: Optional[ProgressCallback] = None
):
    """
    Create and compile the pipeline graph for one run.

    Args:
        services: Shared service container
        channel: Event channel for this run
        record: Run record persisted at each phase boundary and whenever a unit settles
        cancel: Abort signal for this run
        progress_callback: Phase timing and phase events

    Returns:
        Compiled StateGraph
    """
    config = services.config
    cancel = cancel or asyncio.Event()
    runner = UnitJobRunner(
        services.queue,
        channel,
        retry_attempts=config.unit_retry_attempts,
        cancel=cancel
    )

    # Phase checkpoints and per-unit writes share run.json.
    record_lock = asyncio.Lock()

    def _wrap(node_func, node_name: str):
        if progress_callback is None:
            return node_func
        return wrap_node_with_progress(node_func, node_name, progress_callback)

    async def checkpoint(phase: str, update: Dict[str, Any]) -> None:
        async with record_lock:
            await _checkpoint(services, record, phase, update)

    async def persist_unit(unit: Unit) -> None:
        """Write run.json as soon as one unit settles."""
        async with record_lock:
            try:
                await services.output_manager.write_run_record(record)
            except OSError as e:
                # The next phase checkpoint writes the same state.
                logger.warning("Workflow: could not persist unit %d of run_id=%s: %s", unit.index, record.run_id, e)

    async def plan(state: WorkflowState) -> Dict[str, Any]:
        request = state['request']
        run_id = state['run_id']
        toolkit = PlanningToolkit(
            request,
            services.search_client,
            channel,
            services.context_manager,
            observation_max_tokens=config.observation_max_tokens
        )
        agent = PlanningAgent(
            services.llm,
            toolkit,
            channel,
            max_iterations=config.agent_max_iterations,
            heartbeat_interval=config.heartbeat_interval_seconds,
            max_tokens=config.agent_max_tokens
        )
        try:
            result = await agent.run(request, cancel)
        except PlanningError as e:
            logger.error("Workflow: planning failed for run_id=%s: %s", run_id, e)
            partial = e.state.model_dump(mode="json") if e.state is not None else None
            await services.output_manager.write_snapshot(
                run_id,
                "plan",
                {"error": str(e), "error_type": type(e).__name__, "agent_state": partial}
            )
            update = {"fatal_error": f"Planning failed: {e}", "phase_log": ["plan"]}
            await checkpoint("plan", update)
            return update

        await services.output_manager.write_snapshot(
            run_id,
            "plan",
            {
                "iterations": result.iterations,
                "plan": result.plan.model_dump(mode="json"),
                "collected_materials": result.collected_materials,
            }
        )
        update = {
            "plan": result.plan,
            "final_prompt": result.final_prompt,
            "collected_materials": result.collected_materials,
            "phase_log": ["plan"],
            "metadata": {**state['metadata'], "planning_iterations": result.iterations},
        }
        await checkpoint("plan", update)
        return update

    async def generate_assets(state: WorkflowState) -> Dict[str, Any]:
        record.plan = state['plan']
        failed = await generate_primary_assets(
            state['plan'],
            state['request'],
            runner,
            services.image_providers,
            services.image_poller,
            on_unit_update=persist_unit
        )
        update = {
            "plan": state['plan'],
            "phase_log": ["generate_assets"],
            "metadata": {**state['metadata'], "image_failures": failed},
        }
        await checkpoint("generate_assets", update)
        return update

    async def transform(state: WorkflowState) -> Dict[str, Any]:
        request = state['request']
        if request.mode != GenerationMode.VIDEO:
            logger.info("Workflow: transform phase skipped in %s mode", request.mode.value)
            return {"phase_log": ["transform_units"]}
        if services.video_provider is None or services.video_poller is None:
            raise PipelineFatal("Video mode requires a video provider")

        record.plan = state['plan']
        failed = await transform_units(
            state['plan'],
            state['run_id'],
            runner,
            services.video_provider,
            services.video_poller,
            services.speech_provider,
            on_unit_update=persist_unit
        )
        update = {
            "plan": state['plan'],
            "phase_log": ["transform_units"],
            "metadata": {**state['metadata'], "transform_failures": failed},
        }
        await checkpoint("transform_units", update)
        return update

    async def assemble(state: WorkflowState) -> Dict[str, Any]:
        if cancel.is_set():
            logger.info("Workflow: run aborted, skipping assembly")
            return {"phase_log": ["assemble"]}
        try:
            result = await assemble_artifact(
                state['run_id'],
                state['plan'],
                state['request'],
                services.output_manager,
                final_prompt=state['final_prompt']
            )
        except PipelineFatal as e:
            logger.error("Workflow: %s", e)
            update = {"fatal_error": str(e), "phase_log": ["assemble"]}
            await checkpoint("assemble", update)
            return update

        record.succeeded_units = result.succeeded_units
        record.failed_units = result.failed_units
        update = {
            "artifact_url": result.artifact_url,
            "phase_log": ["assemble"],
            "metadata": {
                **state['metadata'],
                "succeeded_units": result.succeeded_units,
                "failed_units": result.failed_units,
                "files": result.files,
            },
        }
        await checkpoint("assemble", update)
        return update

    async def save_outputs(state: WorkflowState) -> Dict[str, Any]:
        if cancel.is_set():
            record.status = RunStatus.ABORTED
            record.error = record.error or "aborted"
        elif state.get('fatal_error'):
            record.status = RunStatus.FAILED
        else:
            record.status = RunStatus.COMPLETED
        if state.get('plan') is not None and not record.succeeded_units:
            record.failed_units = [u.index for u in state['plan'].units if not u.eligible_for_assembly]
        record.completed_at = datetime.now().isoformat()

        metadata = {
            **state['metadata'],
            "completed_at": record.completed_at,
            "status": record.status.value,
            "phases": state.get('phase_log', []) + ["save_outputs"],
        }
        await services.output_manager.write_snapshot(state['run_id'], "final", metadata)
        await checkpoint("save_outputs", state)
        return {"phase_log": ["save_outputs"], "metadata": metadata}

    graph = StateGraph(WorkflowState)
    graph.add_node("plan", _wrap(plan, "plan"))
    graph.add_node("generate_assets", _wrap(generate_assets, "generate_assets"))
    graph.add_node("transform_units", _wrap(transform, "transform_units"))
    graph.add_node("assemble", _wrap(assemble, "assemble"))
    graph.add_node("save_outputs", _wrap(save_outputs, "save_outputs"))

    graph.set_entry_point("plan")
    graph.add_conditional_edges(
        "plan",
        route_after_plan,
        {
            "continue": "generate_assets",
            "failed": "save_outputs"
        }
    )
    graph.add_edge("generate_assets", "transform_units")
    graph.add_edge("transform_units", "assemble")
    graph.add_edge("assemble", "save_outputs")
    graph.add_edge("save_outputs", END)

    return graph.compile()


async def run_workflow(
    request: GenerationRequest,
    services: Services,
    channel: EventChannel,
    cancel: Optional[asyncio.Event] = None,
    run_id: Optional[str] = None,
    record: Optional[RunRecord] = None
) -> RunRecord:
    """
    Run the complete pipeline for one request.

    Always publishes a terminal ``complete`` or ``error`` event and closes
    the channel.

    Args:
        request: The generation request
        services: Shared service container
        channel: Event channel for this run
        cancel: Abort signal
        run_id: Run id (generated when omitted)
        record: Pre-created run record (the service registers it before starting)

    Returns:
        The final run record
    """
    run_id = run_id or generate_run_id()
    record = record or RunRecord(run_id=run_id, request=request)
    cancel = cancel or asyncio.Event()
    output_manager = services.output_manager

    output_manager.create_run_directory(run_id)
    handler = attach_run_log(run_id, str(output_manager.base_dir))
    await output_manager.write_run_record(record)

    progress_callback = ProgressCallback(channel)
    workflow = create_workflow(services, channel, record, cancel, progress_callback=progress_callback)

    logger.info("Workflow: starting run_id=%s mode=%s goal=%s", run_id, request.mode.value, request.goal)
    try:
        await channel.publish(StartEvent(run_id=run_id, goal=request.goal))
        final_state = await workflow.ainvoke(create_initial_state(request, run_id))
        progress_callback.on_workflow_complete(final_state)

        if record.status == RunStatus.COMPLETED:
            await channel.publish(CompleteEvent(
                artifact_url=record.artifact_url,
                succeeded_units=record.succeeded_units,
                failed_units=record.failed_units,
            ))
        elif record.status == RunStatus.ABORTED:
            await channel.publish(ErrorEvent(message="Run aborted"))
        else:
            await channel.publish(ErrorEvent(message=record.error or "Run failed"))
        logger.info("Workflow: finished run_id=%s status=%s", run_id, record.status.value)
        return record
    except RunAborted as e:
        logger.info("Workflow: run_id=%s aborted: %s", run_id, e)
        record.status = RunStatus.ABORTED
        record.error = "aborted"
        record.completed_at = datetime.now().isoformat()
        await output_manager.write_run_record(record)
        await channel.publish(ErrorEvent(message="Run aborted"))
        return record
    except Exception as e:
        logger.exception("Workflow failed")
        record.status = RunStatus.FAILED
        record.error = f"{type(e).__name__}: {e}"
        record.completed_at = datetime.now().isoformat()
        await output_manager.write_run_record(record)
        await channel.publish(ErrorEvent(message=record.error))
        raise
    finally:
        await channel.close()
        detach_run_log(handler)
