"""Prompt templates for the planning agent and the final generation brief."""

from __future__ import annotations

import json
from typing import List

from .models import GenerationMode, GenerationPlan, GenerationRequest

PLANNER_SYSTEM_MESSAGE = (
    "You are a creative director planning a multi-part generated piece. "
    "Work in steps using the tools provided. "
    "First call plan_structure with an ordered list of units (slides or scenes), each with a concrete, "
    "detailed English image prompt. "
    "Use web_search when facts, statistics or recent developments would make the piece more accurate, "
    "and attach results to the unit they support. "
    "Use generate_chart_data only for units whose content is genuinely quantitative. "
    "When the plan is complete, call finalize_prompt exactly once; that ends the session. "
    "Every turn must call at least one tool."
)

_MODE_GUIDANCE = {
    GenerationMode.VIDEO: (
        "The output is a narrated video. Plan 4 to 8 scenes. Give every scene a short narration line "
        "(one sentence), a camera movement and a mood. Image prompts describe the first frame of each scene."
    ),
    GenerationMode.DECK: (
        "The output is a slide deck. Plan 5 to 10 slides with clear layouts and 2 to 4 key points each."
    ),
    GenerationMode.IMAGES: (
        "The output is a coherent image set. Plan 3 to 8 images sharing one visual language."
    ),
}

NO_TOOL_CALL_NUDGE = (
    "You did not call any tool. Every turn must call a tool. "
    "If the plan is ready, call finalize_prompt now; otherwise call the next tool you need."
)


def planner_system_message(mode: GenerationMode) -> str:
    return f"{PLANNER_SYSTEM_MESSAGE}\n\n{_MODE_GUIDANCE[mode]}"


def build_initial_user_message(request: GenerationRequest) -> str:
    """Seed message carrying the goal, style and reference assets."""
    sections = [f"<goal>\n{request.goal.strip()}\n</goal>"]
    if request.style:
        sections.append(f"<style>\n{request.style.strip()}\n</style>")
    if request.reference_assets:
        refs = "\n".join(
            f"- {asset.url}" + (f": {asset.description}" if asset.description else "")
            for asset in request.reference_assets
        )
        sections.append(f"<reference_assets>\n{refs}\n</reference_assets>")
    sections.append("Plan the piece now. Start with plan_structure.")
    return "\n\n".join(sections)


def build_final_brief(
    plan: GenerationPlan,
    collected_materials: List[str],
    additional_requirements: List[str],
    special_effects: List[str],
    mode: GenerationMode = GenerationMode.DECK
) -> str:
    """
    Render the finalized plan as one detailed natural-language brief.

    Asset slots are written as {{ASSET_<index>}} placeholders that the
    assembler replaces with result URLs.
    """
    kind = {"video": "narrated video", "deck": "slide deck", "images": "image set"}[mode.value]
    lines = [
        f"# Brief: {plan.theme} {kind}",
        "",
        f"**Narrative**: {plan.narrative or 'n/a'}",
        f"**Palette**: {', '.join(plan.color_palette) or 'n/a'}",
        f"**Aspect ratio**: {plan.aspect_ratio}",
        f"**Transitions**: {plan.transition}",
    ]
    if plan.interaction_types:
        lines.append(f"**Interactions**: {', '.join(plan.interaction_types)}")
    lines += ["", f"## Units ({len(plan.units)})", ""]

    for unit in plan.units:
        lines.append(f"### {unit.index + 1}. {unit.title}")
        lines.append(f"**Layout**: {unit.layout}")
        if unit.key_points:
            lines.append(f"**Key points**: {'; '.join(unit.key_points)}")
        if unit.image_config is not None:
            lines.append(f"**Asset**: {{{{ASSET_{unit.index}}}}}")
            lines.append(f"**Asset prompt**: {unit.image_config.prompt}")
            lines.append(f"**Asset aspect ratio**: {unit.image_config.aspect_ratio}")
        if unit.animations:
            lines.append(f"**Animations**: {', '.join(unit.animations)}")
        if unit.narration:
            lines.append(f"**Narration**: {unit.narration}")
        if unit.display_text:
            lines.append(f"**On-screen text**: {unit.display_text}")
        if unit.search_results:
            lines += ["**Research**:", unit.search_results]
        if unit.chart_config is not None:
            lines += [
                f"**Chart** ({unit.chart_type}):",
                "```json",
                json.dumps(unit.chart_config, indent=2, ensure_ascii=False),
                "```",
            ]
        lines.append("")

    if collected_materials:
        lines += ["## Supporting materials", ""]
        lines += [m for m in collected_materials]
        lines.append("")
    if additional_requirements:
        lines += ["## Additional requirements", ""]
        lines += [f"- {r}" for r in additional_requirements]
        lines.append("")
    if special_effects:
        lines += ["## Special effects", ""]
        lines += [f"- {e}" for e in special_effects]
        lines.append("")

    lines.append("Keep every unit in the listed order and cite research sources where used.")
    return "\n".join(lines)
