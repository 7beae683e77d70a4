"""Progress tracking for pipeline execution."""

import inspect
import logging
from datetime import datetime
from typing import Any, Dict, Optional

from ..events import EventChannel, PhaseEvent

logger = logging.getLogger(__name__)


class ProgressCallback:
    """Publishes phase events and logs per-node timing."""

    def __init__(self, channel: Optional[EventChannel] = None):
        """
        Initialize progress tracker.

        Args:
            channel: Event channel that receives phase events (optional)
        """
        self.channel = channel
        self.start_time = datetime.now()
        self.node_times: Dict[str, datetime] = {}
        self.durations: Dict[str, float] = {}

    async def on_node_start(self, node_name: str, state: Dict[str, Any]):
        """
        Called when a node starts execution.

        Args:
            node_name: Name of the node
            state: Current pipeline state
        """
        self.node_times[node_name] = datetime.now()
        logger.info("Starting: %s", node_name)

        detail = None
        plan = state.get('plan')
        if node_name == "plan":
            logger.info("   Goal: %s", state['request'].goal)
        elif plan is not None:
            detail = f"{len(plan.units)} units"
            logger.info("   Units: %d", len(plan.units))

        if self.channel is not None:
            await self.channel.publish(PhaseEvent(name=node_name, detail=detail))

    async def on_node_end(self, node_name: str, result: Dict[str, Any]):
        """
        Called when a node completes execution.

        Args:
            node_name: Name of the node
            result: Node result (updated state fields)
        """
        if node_name in self.node_times:
            duration = (datetime.now() - self.node_times[node_name]).total_seconds()
            self.durations[node_name] = duration
            logger.info("Completed: %s (%.1fs)", node_name, duration)
        else:
            logger.info("Completed: %s", node_name)

        if result.get('fatal_error'):
            logger.warning("   Fatal: %s", result['fatal_error'])
        meta = result.get('metadata') or {}
        if 'failed_units' in meta:
            logger.info("   Failed units: %s", meta['failed_units'])

    def on_workflow_complete(self, state: Dict[str, Any]):
        """
        Called when the whole pipeline completes.

        Args:
            state: Final pipeline state
        """
        duration = (datetime.now() - self.start_time).total_seconds()
        logger.info("Pipeline complete in %.1fs", duration)
        logger.info("   Run ID: %s", state['run_id'])
        if state.get('artifact_url'):
            logger.info("   Artifact: %s", state['artifact_url'])

    def on_error(self, node_name: str, error: Exception):
        """
        Called when a node encounters an error.

        Args:
            node_name: Name of the node
            error: Exception that occurred
        """
        logger.error("Error in %s: %s", node_name, str(error))


def wrap_node_with_progress(
    node_func,
    node_name: str,
    progress_callback: ProgressCallback
):
    """
    Wrap an async node function with progress tracking.

    Args:
        node_func: The node coroutine function to wrap
        node_name: Name of the node
        progress_callback: Progress callback instance

    Returns:
        Wrapped coroutine function
    """
    if not inspect.iscoroutinefunction(node_func):
        raise TypeError(f"Node {node_name} must be a coroutine function")

    async def async_wrapped(state: Dict[str, Any]) -> Dict[str, Any]:
        try:
            await progress_callback.on_node_start(node_name, state)
            result = await node_func(state)
            await progress_callback.on_node_end(node_name, result)
            return result
        except Exception as e:
            progress_callback.on_error(node_name, e)
            raise

    return async_wrapped
