"""Data models and state definitions for the generation pipeline."""

import operator
import random
import uuid
from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Dict, List, Optional, TypedDict

from pydantic import BaseModel, Field


class AssetStatus(str, Enum):
    """Lifecycle of one unit asset (image, transformed clip)."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class JobStatus(str, Enum):
    """Provider job states as tracked by the poller."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    ABANDONED = "abandoned"


class JobKind(str, Enum):
    IMAGE = "image"
    VIDEO = "video"
    SPEECH = "speech"
    ARTIFACT = "artifact"


class RunStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    ABORTED = "aborted"


class GenerationMode(str, Enum):
    """Which product the pipeline assembles."""
    VIDEO = "video"
    DECK = "deck"
    IMAGES = "images"


_JOB_TRANSITIONS = {
    JobStatus.PENDING: {JobStatus.PROCESSING, JobStatus.COMPLETED, JobStatus.FAILED},
    JobStatus.PROCESSING: {JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.ABANDONED},
    JobStatus.COMPLETED: set(),
    JobStatus.FAILED: set(),
    JobStatus.ABANDONED: set(),
}


class ReferenceAsset(BaseModel):
    """Reference material supplied with a request."""
    url: str = Field(..., description="Asset URL")
    description: str = Field(default="", description="What the asset shows or why it matters")


class GenerationRequest(BaseModel):
    """A creative goal submitted by the external collaborator."""
    goal: str = Field(..., min_length=1, description="Natural-language creative goal")
    reference_assets: List[ReferenceAsset] = Field(default_factory=list, description="Optional reference material")
    style: Optional[str] = Field(None, description="Optional style direction")
    mode: GenerationMode = Field(default=GenerationMode.VIDEO, description="Artifact to assemble")


class Job(BaseModel):
    """Handle to one request against an external provider."""
    id: str = Field(default_factory=lambda: uuid.uuid4().hex[:12], description="Internal job id")
    provider: str = Field(..., description="Provider name")
    kind: JobKind = Field(..., description="What the job produces")
    owner: Optional[int] = Field(None, description="Owning unit index, None for run-level work")
    attempt: int = Field(default=1, ge=1, description="1 for the first submission, 2+ for retries")
    payload: Dict[str, Any] = Field(default_factory=dict, description="Submission payload")
    external_id: Optional[str] = Field(None, description="Provider-side job id")
    status: JobStatus = Field(default=JobStatus.PENDING)
    progress: int = Field(default=0, ge=0, le=100, description="Progress percentage")
    result_url: Optional[str] = Field(None, description="Result reference once completed")
    error: Optional[str] = Field(None, description="Failure reason")
    created_at: str = Field(default_factory=lambda: datetime.now().isoformat())
    finished_at: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return not _JOB_TRANSITIONS[self.status]

    def transition(self, status: JobStatus) -> None:
        """
        Move the job to ``status``.

        Raises:
            ValueError: If the state machine does not allow the move
        """
        if status not in _JOB_TRANSITIONS[self.status]:
            raise ValueError(f"Job {self.id}: illegal transition {self.status.value} -> {status.value}")
        self.status = status
        if self.is_terminal:
            self.finished_at = datetime.now().isoformat()
            if status == JobStatus.COMPLETED:
                self.progress = 100


class UnitImageConfig(BaseModel):
    """Primary asset request for one unit."""
    prompt: str = Field(..., description="Image generation prompt")
    aspect_ratio: str = Field(default="16:9", description="Requested aspect ratio")
    style: Optional[str] = Field(None, description="Style hint appended to the prompt")
    status: AssetStatus = Field(default=AssetStatus.PENDING)
    result_url: Optional[str] = None
    error: Optional[str] = None


class UnitAssetState(BaseModel):
    """Secondary asset (e.g. image-to-video clip) for one unit."""
    prompt: str = Field(default="", description="Transform prompt")
    status: AssetStatus = Field(default=AssetStatus.PENDING)
    result_url: Optional[str] = None
    error: Optional[str] = None


class Unit(BaseModel):
    """One independently generated sub-artifact (slide, scene)."""
    index: int = Field(..., ge=0, description="Position in the plan")
    title: str = Field(..., description="Unit title")
    prompt: str = Field(default="", description="Textual generation prompt")
    layout: str = Field(default="content", description="Layout hint")
    animations: List[str] = Field(default_factory=list, description="Animation hints")
    key_points: List[str] = Field(default_factory=list, description="Key content points")
    chart_type: Optional[str] = Field(None, description="Chart kind if the unit carries a chart")
    chart_config: Optional[Dict[str, Any]] = Field(None, description="Chart configuration")
    narration: Optional[str] = Field(None, description="Voice-over text")
    display_text: Optional[str] = Field(None, description="On-screen subtitle text")
    camera: Optional[str] = Field(None, description="Camera movement hint")
    mood: Optional[str] = Field(None, description="Mood or lighting hint")
    search_results: Optional[str] = Field(None, description="Research attached to this unit")
    image_config: Optional[UnitImageConfig] = None
    transform: Optional[UnitAssetState] = None
    narration_audio_url: Optional[str] = None
    narration_error: Optional[str] = None
    jobs: List[Job] = Field(default_factory=list, description="Append-only job history")

    @property
    def eligible_for_assembly(self) -> bool:
        """Primary asset done, and the transform done when one was requested."""
        if self.image_config is None or self.image_config.status != AssetStatus.COMPLETED:
            return False
        if self.transform is None:
            return True
        return self.transform.status == AssetStatus.COMPLETED

    @property
    def asset_url(self) -> Optional[str]:
        """Final asset for assembly: the transformed clip when present."""
        if self.transform is not None and self.transform.result_url:
            return self.transform.result_url
        if self.image_config is not None:
            return self.image_config.result_url
        return None


class GenerationPlan(BaseModel):
    """The planner's structured output."""
    theme: str = Field(..., description="Theme or visual style")
    narrative: str = Field(default="", description="Overall narrative approach")
    units: List[Unit] = Field(default_factory=list, description="Ordered units")
    aspect_ratio: str = Field(default="16:9", description="Default aspect ratio")
    transition: str = Field(default="slide", description="Transition style between units")
    color_palette: List[str] = Field(default_factory=list, description="Hex colors")
    interaction_types: List[str] = Field(default_factory=list, description="Interaction hints")
    finalized: bool = Field(default=False, description="Frozen by finalize_prompt")


class AgentState(BaseModel):
    """Working memory of one planning run."""
    iteration: int = Field(default=0, ge=0)
    max_iterations: int = Field(default=15, ge=1)
    is_complete: bool = False
    collected_materials: List[str] = Field(default_factory=list)
    plan: Optional[GenerationPlan] = None
    final_prompt: Optional[str] = None


class PlanningResult(BaseModel):
    """What a successful planning run hands to the pipeline."""
    plan: GenerationPlan
    final_prompt: str
    collected_materials: List[str] = Field(default_factory=list)
    iterations: int = Field(..., ge=1)


class ToolCallRequest(BaseModel):
    """One tool invocation requested by the reasoning model."""
    id: str = Field(..., description="Call id to echo back with the result")
    name: str = Field(..., description="Requested tool name")
    arguments: str = Field(default="", description="Raw JSON argument text")


class ModelTurn(BaseModel):
    """A complete streamed model turn."""
    text: str = ""
    tool_calls: List[ToolCallRequest] = Field(default_factory=list)
    finish_reason: Optional[str] = None


class RunRecord(BaseModel):
    """Persisted state of one pipeline run."""
    run_id: str
    status: RunStatus = RunStatus.RUNNING
    phase: str = "start"
    request: GenerationRequest
    plan: Optional[GenerationPlan] = None
    final_prompt: Optional[str] = None
    artifact_url: Optional[str] = None
    succeeded_units: List[int] = Field(default_factory=list)
    failed_units: List[int] = Field(default_factory=list)
    error: Optional[str] = None
    started_at: str = Field(default_factory=lambda: datetime.now().isoformat())
    updated_at: Optional[str] = None
    completed_at: Optional[str] = None


class WorkflowState(TypedDict):
    """
    State passed between pipeline nodes.

    Units live inside ``plan``; nodes return the updated plan as a whole.
    """
    run_id: str
    request: GenerationRequest
    plan: Optional[GenerationPlan]
    final_prompt: str
    collected_materials: List[str]
    artifact_url: Optional[str]
    fatal_error: Optional[str]
    phase_log: Annotated[List[str], operator.add]     # Completed phases (accumulated)
    metadata: Dict[str, Any]


def create_initial_state(request: GenerationRequest, run_id: str) -> WorkflowState:
    """
    Create initial pipeline state for a new run.

    Args:
        request: The submitted generation request
        run_id: Unique run identifier

    Returns:
        WorkflowState: Initial state with empty collections
    """
    return WorkflowState(
        run_id=run_id,
        request=request,
        plan=None,
        final_prompt="",
        collected_materials=[],
        artifact_url=None,
        fatal_error=None,
        phase_log=[],
        metadata={
            "started_at": datetime.now().isoformat(),
            "goal": request.goal,
            "mode": request.mode.value,
            "run_id": run_id
        }
    )


def generate_run_id() -> str:
    """
    Generate a unique run identifier.

    Format: run_YYYYMMDD_HHMMSS_XXX
    where XXX is a 3-digit random number for uniqueness.
    """
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    random_suffix = random.randint(100, 999)
    return f"run_{timestamp}_{random_suffix}"
