"""Planning tool definitions: the closed set of tools, their schemas and argument models."""

from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, ValidationError

from ..errors import ToolArgumentError
from ..models import ToolCallRequest
from ..utils.json_repair import ParseTier, parse_json_lenient


class ToolKind(str, Enum):
    """Every tool the planning loop can execute."""
    PLAN_STRUCTURE = "plan_structure"
    WEB_SEARCH = "web_search"
    GENERATE_CHART_DATA = "generate_chart_data"
    FINALIZE_PROMPT = "finalize_prompt"


LAYOUTS = ["title", "content", "two-column", "image-focus", "chart", "quote", "timeline", "comparison", "scene"]
CHART_TYPES = ["bar", "line", "pie", "gauge", "radar"]
SEARCH_TYPES = ["facts", "statistics", "trends", "background", "news"]


class SlideArgs(BaseModel):
    title: str
    subtitle: Optional[str] = None
    layout: str = "content"
    key_points: List[str] = Field(default_factory=list)
    image_prompt: Optional[str] = None
    image_aspect_ratio: Optional[str] = None
    chart_type: Optional[str] = None
    animations: List[str] = Field(default_factory=list)
    narration: Optional[str] = None
    display_text: Optional[str] = None
    camera: Optional[str] = None
    mood: Optional[str] = None


class PlanStructureArgs(BaseModel):
    theme_style: str
    narrative_approach: str = ""
    slides: List[SlideArgs] = Field(default_factory=list)
    transitions: str = "slide"
    interaction_preferences: List[str] = Field(default_factory=list)
    aspect_ratio: Optional[str] = None


class WebSearchArgs(BaseModel):
    query: str = Field(..., min_length=1)
    search_type: Literal["facts", "statistics", "trends", "background", "news"] = "background"
    slide_index: Optional[int] = Field(None, ge=0)


class DataPoint(BaseModel):
    label: str
    value: float


class ChartDataArgs(BaseModel):
    slide_index: int = Field(..., ge=0)
    chart_type: str = "bar"
    data_description: str = ""
    data_points: List[DataPoint] = Field(..., min_length=1)


class FinalizeArgs(BaseModel):
    additional_requirements: List[str] = Field(default_factory=list)
    special_effects: List[str] = Field(default_factory=list)


ToolArgs = Union[PlanStructureArgs, WebSearchArgs, ChartDataArgs, FinalizeArgs]

_ARG_MODELS = {
    ToolKind.PLAN_STRUCTURE: PlanStructureArgs,
    ToolKind.WEB_SEARCH: WebSearchArgs,
    ToolKind.GENERATE_CHART_DATA: ChartDataArgs,
    ToolKind.FINALIZE_PROMPT: FinalizeArgs,
}


class ParsedToolCall(BaseModel):
    """A tool call whose name and arguments have been validated."""
    call_id: str
    kind: ToolKind
    args: ToolArgs
    raw_arguments: Dict[str, Any] = Field(default_factory=dict)


def parse_tool_call(call: ToolCallRequest) -> ParsedToolCall:
    """
    Resolve a raw model tool call into a typed one.

    Raises:
        ToolArgumentError: Unknown tool, unparseable JSON or invalid arguments
    """
    try:
        kind = ToolKind(call.name)
    except ValueError:
        known = ", ".join(k.value for k in ToolKind)
        raise ToolArgumentError(f"Unknown tool '{call.name}'. Available tools: {known}", tool_name=call.name)

    raw, tier = parse_json_lenient(call.arguments, context=f"{call.name} arguments")
    if tier == ParseTier.EMPTY and call.arguments.strip():
        raise ToolArgumentError("Arguments malformed (not a JSON object), retry", tool_name=call.name)

    try:
        args = _ARG_MODELS[kind].model_validate(raw)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'arguments'}: {err['msg']}"
            for err in e.errors()[:5]
        )
        raise ToolArgumentError(f"Arguments malformed ({problems}), retry", tool_name=call.name)

    return ParsedToolCall(call_id=call.id, kind=kind, args=args, raw_arguments=raw)


def _function(name: ToolKind, description: str, parameters: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "type": "function",
        "function": {
            "name": name.value,
            "description": description,
            "parameters": parameters,
        },
    }


TOOL_SPECS: List[Dict[str, Any]] = [
    _function(
        ToolKind.PLAN_STRUCTURE,
        "Plan (or replace) the ordered units of the piece: theme, narrative, and per-unit "
        "content, image prompt, optional chart and narration. Call this first.",
        {
            "type": "object",
            "properties": {
                "theme_style": {"type": "string", "description": "Visual theme, e.g. 'tech', 'nature', 'minimal'"},
                "narrative_approach": {"type": "string", "description": "How the story unfolds across units"},
                "slides": {
                    "type": "array",
                    "description": "Units in presentation order",
                    "items": {
                        "type": "object",
                        "properties": {
                            "title": {"type": "string"},
                            "subtitle": {"type": "string"},
                            "layout": {"type": "string", "enum": LAYOUTS},
                            "key_points": {"type": "array", "items": {"type": "string"}},
                            "image_prompt": {"type": "string", "description": "Detailed English prompt for the unit image"},
                            "image_aspect_ratio": {"type": "string", "enum": ["16:9", "9:16", "1:1", "4:3", "3:4"]},
                            "chart_type": {"type": "string", "enum": CHART_TYPES},
                            "animations": {"type": "array", "items": {"type": "string"}},
                            "narration": {"type": "string", "description": "Voice-over for video units"},
                            "display_text": {"type": "string", "description": "Short on-screen text"},
                            "camera": {"type": "string", "description": "Camera movement, e.g. 'slow push in'"},
                            "mood": {"type": "string"},
                        },
                        "required": ["title"],
                    },
                },
                "transitions": {"type": "string"},
                "interaction_preferences": {"type": "array", "items": {"type": "string"}},
                "aspect_ratio": {"type": "string", "description": "Default aspect ratio for all units"},
            },
            "required": ["theme_style", "slides"],
        },
    ),
    _function(
        ToolKind.WEB_SEARCH,
        "Search the web for facts, statistics or background. Results are added to the collected "
        "materials and, when slide_index is given, attached to that unit.",
        {
            "type": "object",
            "properties": {
                "query": {"type": "string"},
                "search_type": {"type": "string", "enum": SEARCH_TYPES},
                "slide_index": {"type": "integer", "minimum": 0},
            },
            "required": ["query"],
        },
    ),
    _function(
        ToolKind.GENERATE_CHART_DATA,
        "Build a chart configuration for one unit from labelled data points.",
        {
            "type": "object",
            "properties": {
                "slide_index": {"type": "integer", "minimum": 0},
                "chart_type": {"type": "string", "enum": CHART_TYPES},
                "data_description": {"type": "string"},
                "data_points": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {"label": {"type": "string"}, "value": {"type": "number"}},
                        "required": ["label", "value"],
                    },
                },
            },
            "required": ["slide_index", "chart_type", "data_points"],
        },
    ),
    _function(
        ToolKind.FINALIZE_PROMPT,
        "Freeze the plan and produce the final generation brief. Call once planning is complete; "
        "this ends the planning session.",
        {
            "type": "object",
            "properties": {
                "additional_requirements": {"type": "array", "items": {"type": "string"}},
                "special_effects": {"type": "array", "items": {"type": "string"}},
            },
        },
    ),
]
