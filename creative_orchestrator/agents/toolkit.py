"""Planning tool handlers operating on one run's AgentState."""

import logging
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from ..errors import ProviderError
from ..events import EventChannel, PromptReadyEvent, ThoughtEvent
from ..models import (
    AgentState,
    GenerationMode,
    GenerationPlan,
    GenerationRequest,
    Unit,
    UnitImageConfig,
)
from ..prompts import build_final_brief
from ..utils.context_manager import ContextManager
from ..utils.tavily_client import TavilyClient
from .storyboard import clip_seconds_for, truncate_narration
from .tools import (
    ChartDataArgs,
    DataPoint,
    FinalizeArgs,
    ParsedToolCall,
    PlanStructureArgs,
    SlideArgs,
    ToolKind,
    WebSearchArgs,
)

logger = logging.getLogger(__name__)

COLOR_SCHEMES: Dict[str, List[str]] = {
    "tech": ["#0f172a", "#3b82f6", "#06b6d4", "#e2e8f0"],
    "business": ["#1e293b", "#2563eb", "#f59e0b", "#f8fafc"],
    "nature": ["#14532d", "#22c55e", "#a3e635", "#f0fdf4"],
    "creative": ["#581c87", "#ec4899", "#f97316", "#fdf4ff"],
    "minimal": ["#111827", "#6b7280", "#d1d5db", "#ffffff"],
    "warm": ["#7c2d12", "#f97316", "#fbbf24", "#fff7ed"],
}

DEFAULT_OUTLINE = [
    ("Introduction", "title"),
    ("Background", "content"),
    ("Key Insight", "image-focus"),
    ("Evidence", "chart"),
    ("Conclusion", "content"),
]


class ToolResult(BaseModel):
    """What a tool reports back into the conversation."""
    success: bool
    data: Dict[str, Any] = Field(default_factory=dict)
    error: Optional[str] = None

    def to_message_content(self) -> str:
        return self.model_dump_json(exclude_none=True)


def color_scheme_for(theme: str) -> List[str]:
    lowered = (theme or "").lower()
    for name, palette in COLOR_SCHEMES.items():
        if name in lowered:
            return list(palette)
    return list(COLOR_SCHEMES["tech"])


def build_chart_config(
    chart_type: str,
    title: str,
    data_points: List[DataPoint],
    palette: Optional[List[str]] = None
) -> Dict[str, Any]:
    """
    Build an ECharts option object for one unit.

    Unknown chart types fall back to a plain bar chart.
    """
    labels = [p.label for p in data_points]
    values = [p.value for p in data_points]
    base: Dict[str, Any] = {
        "backgroundColor": "transparent",
        "title": {"text": title, "left": "center", "textStyle": {"color": "#fff"}},
        "tooltip": {"trigger": "item" if chart_type in ("pie", "gauge", "radar") else "axis"},
    }
    if palette:
        base["color"] = palette

    if chart_type == "bar":
        return {
            **base,
            "xAxis": {"type": "category", "data": labels, "axisLabel": {"color": "#ccc"}},
            "yAxis": {"type": "value", "axisLabel": {"color": "#ccc"}},
            "series": [{"type": "bar", "data": values, "itemStyle": {"borderRadius": [4, 4, 0, 0]}}],
        }
    if chart_type == "line":
        return {
            **base,
            "xAxis": {"type": "category", "data": labels, "axisLabel": {"color": "#ccc"}},
            "yAxis": {"type": "value", "axisLabel": {"color": "#ccc"}},
            "series": [{"type": "line", "data": values, "smooth": True, "areaStyle": {"opacity": 0.3}}],
        }
    if chart_type == "pie":
        return {
            **base,
            "series": [{
                "type": "pie",
                "radius": ["40%", "70%"],
                "data": [{"name": p.label, "value": p.value} for p in data_points],
                "label": {"show": True, "formatter": "{b}: {d}%", "color": "#fff"},
            }],
        }
    if chart_type == "gauge":
        return {
            **base,
            "series": [{
                "type": "gauge",
                "progress": {"show": True},
                "data": [{"value": values[0] if values else 0, "name": labels[0] if labels else ""}],
            }],
        }
    if chart_type == "radar":
        peak = max(values) if values else 0
        return {
            **base,
            "radar": {"indicator": [{"name": label, "max": peak * 1.2} for label in labels]},
            "series": [{"type": "radar", "data": [{"value": values}]}],
        }
    return {
        **base,
        "xAxis": {"type": "category", "data": labels},
        "yAxis": {"type": "value"},
        "series": [{"type": "bar", "data": values}],
    }


class PlanningToolkit:
    """
    Executes planning tools for one run.

    Tool failures (bad index, search outage, frozen plan) come back as
    unsuccessful ToolResults so the model can adjust.
    """

    def __init__(
        self,
        request: GenerationRequest,
        search_client: Optional[TavilyClient],
        channel: EventChannel,
        context_manager: ContextManager,
        observation_max_tokens: int = 1200,
        default_aspect_ratio: Optional[str] = None
    ):
        self.request = request
        self.search_client = search_client
        self.channel = channel
        self.context_manager = context_manager
        self.observation_max_tokens = observation_max_tokens
        self.default_aspect_ratio = default_aspect_ratio or (
            "16:9" if request.mode != GenerationMode.IMAGES else "1:1"
        )

    async def execute(self, call: ParsedToolCall, state: AgentState) -> ToolResult:
        kind = call.kind
        if kind is ToolKind.PLAN_STRUCTURE:
            return self._plan_structure(call.args, state)
        elif kind is ToolKind.WEB_SEARCH:
            return await self._web_search(call.args, state)
        elif kind is ToolKind.GENERATE_CHART_DATA:
            return self._generate_chart_data(call.args, state)
        elif kind is ToolKind.FINALIZE_PROMPT:
            return await self._finalize_prompt(call.args, state)
        raise AssertionError(f"Unhandled tool kind: {kind}")

    # plan_structure

    def _unit_from_slide(self, index: int, slide: SlideArgs, aspect_ratio: str) -> Unit:
        key_points = [p for p in slide.key_points if p.strip()]
        prompt = slide.image_prompt or (
            f"{slide.title}: {', '.join(key_points)}" if key_points else slide.title
        )
        narration = slide.narration
        if narration and self.request.mode == GenerationMode.VIDEO:
            narration = truncate_narration(narration, clip_seconds_for(narration))
        return Unit(
            index=index,
            title=slide.title,
            prompt=prompt,
            layout=slide.layout,
            animations=slide.animations,
            key_points=key_points,
            chart_type=slide.chart_type,
            narration=narration,
            display_text=slide.display_text or slide.subtitle,
            camera=slide.camera,
            mood=slide.mood,
            image_config=UnitImageConfig(
                prompt=prompt,
                aspect_ratio=slide.image_aspect_ratio or aspect_ratio,
                style=self.request.style,
            ),
        )

    def _plan_structure(self, args: PlanStructureArgs, state: AgentState) -> ToolResult:
        if state.plan is not None and state.plan.finalized:
            return ToolResult(success=False, error="The plan is already finalized and can no longer change")

        slides = args.slides
        if not slides:
            logger.warning("plan_structure: no units supplied, using the default outline")
            slides = [
                SlideArgs(title=title, layout=layout, key_points=[self.request.goal])
                for title, layout in DEFAULT_OUTLINE
            ]

        aspect_ratio = args.aspect_ratio or self.default_aspect_ratio
        units = [self._unit_from_slide(i, slide, aspect_ratio) for i, slide in enumerate(slides)]
        state.plan = GenerationPlan(
            theme=args.theme_style,
            narrative=args.narrative_approach,
            units=units,
            aspect_ratio=aspect_ratio,
            transition=args.transitions,
            color_palette=color_scheme_for(args.theme_style),
            interaction_types=args.interaction_preferences,
        )
        logger.info("plan_structure: %d units, theme=%s", len(units), args.theme_style)
        return ToolResult(
            success=True,
            data={
                "units": len(units),
                "titles": [u.title for u in units],
                "images_to_generate": sum(1 for u in units if u.image_config is not None),
                "color_palette": state.plan.color_palette,
            },
        )

    # web_search

    async def _web_search(self, args: WebSearchArgs, state: AgentState) -> ToolResult:
        if self.search_client is None:
            return ToolResult(success=False, error="Web search is not configured for this run")

        await self.channel.publish(ThoughtEvent(text=f"Searching: {args.query}", iteration=state.iteration))
        try:
            response = await self.search_client.search(args.query, search_type=args.search_type)
        except ProviderError as e:
            logger.warning("web_search failed for %r: %s", args.query, e)
            return ToolResult(success=False, error=f"Search unavailable: {e}")

        results = response.get("results", [])
        summary = self.context_manager.summarize_search_results(
            args.query,
            response.get("answer"),
            results,
            max_tokens=self.observation_max_tokens,
        )
        state.collected_materials.append(summary)

        attached = False
        if args.slide_index is not None and state.plan is not None and not state.plan.finalized:
            if args.slide_index < len(state.plan.units):
                state.plan.units[args.slide_index].search_results = summary
                attached = True

        return ToolResult(
            success=True,
            data={
                "summary": summary,
                "result_count": len(results),
                "sources": [{"title": r.get("title", ""), "url": r.get("url", "")} for r in results[:5]],
                "attached_to_unit": args.slide_index if attached else None,
            },
        )

    # generate_chart_data

    def _generate_chart_data(self, args: ChartDataArgs, state: AgentState) -> ToolResult:
        plan = state.plan
        if plan is None:
            return ToolResult(success=False, error="Call plan_structure before adding charts")
        if plan.finalized:
            return ToolResult(success=False, error="The plan is already finalized and can no longer change")
        if args.slide_index >= len(plan.units):
            return ToolResult(
                success=False,
                error=f"slide_index {args.slide_index} out of range (plan has {len(plan.units)} units)",
            )

        unit = plan.units[args.slide_index]
        title = args.data_description or unit.title
        unit.chart_type = args.chart_type
        unit.chart_config = build_chart_config(args.chart_type, title, args.data_points, plan.color_palette)
        return ToolResult(
            success=True,
            data={"slide_index": args.slide_index, "chart_type": args.chart_type, "points": len(args.data_points)},
        )

    # finalize_prompt

    async def _finalize_prompt(self, args: FinalizeArgs, state: AgentState) -> ToolResult:
        if state.is_complete and state.final_prompt is not None:
            return ToolResult(
                success=True,
                data={
                    "already_finalized": True,
                    "prompt_length": len(state.final_prompt),
                    "final_prompt": state.final_prompt,
                },
            )
        plan = state.plan
        if plan is None:
            return ToolResult(success=False, error="Call plan_structure before finalize_prompt")

        await self.channel.publish(ThoughtEvent(
            text=f"Assembling final brief ({len(plan.units)} units, {len(state.collected_materials)} materials)",
            iteration=state.iteration,
        ))
        brief = build_final_brief(
            plan,
            state.collected_materials,
            args.additional_requirements,
            args.special_effects,
            mode=self.request.mode,
        )
        plan.finalized = True
        state.final_prompt = brief
        state.is_complete = True
        await self.channel.publish(PromptReadyEvent(prompt_length=len(brief)))

        return ToolResult(
            success=True,
            data={
                "prompt_length": len(brief),
                "final_prompt": brief,
                "units": len(plan.units),
                "materials": len(state.collected_materials),
                "images_to_generate": sum(1 for u in plan.units if u.image_config is not None),
            },
        )
