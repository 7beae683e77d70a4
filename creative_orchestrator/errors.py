"""Exception taxonomy for the orchestration engine."""

from __future__ import annotations

from typing import Any, Optional


class OrchestratorError(Exception):
    """Base class for all orchestration errors."""


class ProviderError(OrchestratorError):
    """An external generation provider rejected or failed a request."""

    def __init__(self, message: str, provider: str = "", status_code: Optional[int] = None):
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code


class TransientProviderError(ProviderError):
    """Timeouts, 5xx and 429 responses. Safe to retry unchanged."""


class PermanentProviderError(ProviderError):
    """Bad input or auth failure. Retrying unchanged will fail again."""


class PlanningError(OrchestratorError):
    """The planning loop ended without a finalized plan.

    The partial agent state is kept on the exception for diagnostics.
    """

    def __init__(self, message: str, state: Any = None):
        super().__init__(message)
        self.state = state


class PlanningIncomplete(PlanningError):
    """The iteration budget ran out before finalize_prompt succeeded."""


class ReasoningModelError(PlanningError):
    """The reasoning model could not be reached or refused the request."""


class ToolArgumentError(OrchestratorError):
    """A tool call carried arguments that could not be parsed or validated."""

    def __init__(self, message: str, tool_name: str = ""):
        super().__init__(message)
        self.tool_name = tool_name


class PipelineUnitFailure(OrchestratorError):
    """One unit failed after exhausting its retry budget."""

    def __init__(self, message: str, unit_index: int, stage: str):
        super().__init__(message)
        self.unit_index = unit_index
        self.stage = stage


class PipelineFatal(OrchestratorError):
    """Planning failed or no unit survived to assembly."""


class RunAborted(OrchestratorError):
    """The run's abort signal was set."""


class QueueCleared(OrchestratorError):
    """A waiting caller was dropped by RateLimitedQueue.clear_queue."""
