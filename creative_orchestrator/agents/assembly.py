"""Final assembly: orders successful units and writes the run's artifact files."""

import json
import logging
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from ..errors import PipelineFatal
from ..models import GenerationMode, GenerationPlan, GenerationRequest, Unit
from ..utils.output_manager import OutputManager
from .storyboard import clip_seconds_for

logger = logging.getLogger(__name__)


class AssemblyResult(BaseModel):
    """Where the artifact landed and which units made it in."""
    artifact_url: str
    succeeded_units: List[int] = Field(default_factory=list)
    failed_units: List[int] = Field(default_factory=list)
    files: Dict[str, str] = Field(default_factory=dict)


def split_units(plan: GenerationPlan) -> tuple[List[Unit], List[Unit]]:
    """Partition units into (eligible, failed), both in plan order."""
    ordered = sorted(plan.units, key=lambda u: u.index)
    eligible = [u for u in ordered if u.eligible_for_assembly]
    failed = [u for u in ordered if not u.eligible_for_assembly]
    return eligible, failed


def _unit_error(unit: Unit) -> str:
    if unit.image_config is not None and unit.image_config.error:
        return unit.image_config.error
    if unit.transform is not None and unit.transform.error:
        return unit.transform.error
    if unit.image_config is None:
        return "no asset configured"
    return "asset not completed"


def format_srt_timestamp(seconds: float) -> str:
    millis = int(round(seconds * 1000))
    hours, millis = divmod(millis, 3_600_000)
    minutes, millis = divmod(millis, 60_000)
    secs, millis = divmod(millis, 1000)
    return f"{hours:02d}:{minutes:02d}:{secs:02d},{millis:03d}"


def build_concat_list(units: List[Unit]) -> str:
    """ffmpeg concat-demuxer input listing the clips in order."""
    lines = ["ffconcat version 1.0"]
    for unit in units:
        lines.append(f"file '{unit.asset_url}'")
        lines.append(f"duration {clip_seconds_for(unit.narration)}")
    return "\n".join(lines) + "\n"


def build_srt(units: List[Unit]) -> str:
    """Subtitles timed to the clip sequence; units without text still advance the clock."""
    blocks = []
    cursor = 0.0
    cue = 1
    for unit in units:
        duration = clip_seconds_for(unit.narration)
        text = unit.display_text or unit.narration
        if text:
            blocks.append(
                f"{cue}\n"
                f"{format_srt_timestamp(cursor)} --> {format_srt_timestamp(cursor + duration)}\n"
                f"{text.strip()}\n"
            )
            cue += 1
        cursor += duration
    return "\n".join(blocks)


def build_document(
    plan: GenerationPlan,
    units: List[Unit],
    failed: List[Unit],
    mode: GenerationMode
) -> str:
    """Markdown deck (slides separated by ---) or image set for the non-video modes."""
    heading = "Deck" if mode == GenerationMode.DECK else "Image set"
    lines = [f"# {plan.theme} {heading}", ""]
    if plan.narrative:
        lines += [plan.narrative, ""]

    for position, unit in enumerate(units, start=1):
        if mode == GenerationMode.DECK:
            lines += ["---", "", f"## {position}. {unit.title}", ""]
            lines.append(f"![{unit.title}]({unit.asset_url})")
            lines.append("")
            for point in unit.key_points:
                lines.append(f"- {point}")
            if unit.key_points:
                lines.append("")
            if unit.chart_config is not None:
                lines += [
                    "```echarts",
                    json.dumps(unit.chart_config, ensure_ascii=False),
                    "```",
                    "",
                ]
            if unit.narration:
                lines += [f"> {unit.narration}", ""]
        else:
            lines.append(f"![{position}. {unit.title}]({unit.asset_url})")
            lines.append("")

    if failed:
        lines += ["## Omitted units", ""]
        for unit in failed:
            lines.append(f"- Unit {unit.index} ({unit.title}): {_unit_error(unit)}")
        lines.append("")
    return "\n".join(lines)


def fill_brief(final_prompt: str, units: List[Unit], failed: List[Unit]) -> str:
    """Replace each {{ASSET_i}} placeholder with the unit's asset, or an omission note."""
    brief = final_prompt
    for unit in units:
        brief = brief.replace(f"{{{{ASSET_{unit.index}}}}}", unit.asset_url or "")
    for unit in failed:
        brief = brief.replace(f"{{{{ASSET_{unit.index}}}}}", f"[omitted: unit {unit.index} failed]")
    return brief


def build_manifest(
    run_id: str,
    plan: GenerationPlan,
    request: GenerationRequest,
    units: List[Unit],
    failed: List[Unit]
) -> Dict:
    return {
        "run_id": run_id,
        "mode": request.mode.value,
        "theme": plan.theme,
        "aspect_ratio": plan.aspect_ratio,
        "transition": plan.transition,
        "units": [
            {
                "index": unit.index,
                "title": unit.title,
                "asset_url": unit.asset_url,
                "image_url": unit.image_config.result_url if unit.image_config else None,
                "narration": unit.narration,
                "narration_audio_url": unit.narration_audio_url,
                "narration_error": unit.narration_error,
                "display_text": unit.display_text,
            }
            for unit in units
        ],
        "failed_units": [{"index": unit.index, "title": unit.title, "error": _unit_error(unit)} for unit in failed],
    }


async def assemble_artifact(
    run_id: str,
    plan: GenerationPlan,
    request: GenerationRequest,
    output_manager: OutputManager,
    final_prompt: Optional[str] = None
) -> AssemblyResult:
    """
    Phase 4: write the artifact for every eligible unit, in plan order.

    Failed units are left out and listed; nothing is substituted for them.

    Raises:
        PipelineFatal: No unit is eligible for assembly
    """
    units, failed = split_units(plan)
    if not units:
        raise PipelineFatal(f"No unit is eligible for assembly ({len(failed)} failed)")

    files: Dict[str, str] = {}
    if request.mode == GenerationMode.VIDEO:
        files["concat"] = await output_manager.write_artifact(run_id, "video_concat.txt", build_concat_list(units))
        files["subtitles"] = await output_manager.write_artifact(run_id, "subtitles.srt", build_srt(units))
        artifact_url = files["concat"]
    else:
        name = "deck.md" if request.mode == GenerationMode.DECK else "images.md"
        files["document"] = await output_manager.write_artifact(
            run_id,
            name,
            build_document(plan, units, failed, request.mode)
        )
        artifact_url = files["document"]

    if final_prompt:
        files["brief"] = await output_manager.write_artifact(run_id, "brief.md", fill_brief(final_prompt, units, failed))

    manifest = build_manifest(run_id, plan, request, units, failed)
    manifest["files"] = dict(files)
    files["manifest"] = await output_manager.write_artifact(
        run_id,
        "manifest.json",
        json.dumps(manifest, indent=2, ensure_ascii=False)
    )

    logger.info(
        "Assembly: %s artifact with %d units (%d omitted)",
        request.mode.value,
        len(units),
        len(failed)
    )
    return AssemblyResult(
        artifact_url=artifact_url,
        succeeded_units=[u.index for u in units],
        failed_units=[u.index for u in failed],
        files=files,
    )
