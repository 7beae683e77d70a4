"""Scene helpers for the narrated video flow: pacing limits and per-scene prompts."""

from typing import Optional

from ..models import GenerationPlan, Unit
from ..providers.video import LANDSCAPE_SIZE, PORTRAIT_SIZE

# Spoken pace used to size narration, and silence kept at the clip edges.
CHARS_PER_SECOND = 3.5
BUFFER_SECONDS = 2
CLIP_SECONDS = (8, 12)


def narration_char_limit(seconds: int) -> int:
    """Longest narration that fits a clip of ``seconds`` (15s -> 45, 10s -> 28)."""
    return max(0, int((seconds - BUFFER_SECONDS) * CHARS_PER_SECOND))


def clip_seconds_for(narration: Optional[str]) -> int:
    """Shortest supported clip whose narration budget fits the text."""
    length = len(narration or "")
    for seconds in CLIP_SECONDS:
        if length <= narration_char_limit(seconds):
            return seconds
    return CLIP_SECONDS[-1]


def truncate_narration(narration: str, seconds: int) -> str:
    """Trim narration to the clip's budget, preferring a word boundary."""
    limit = narration_char_limit(seconds)
    text = narration.strip()
    if len(text) <= limit:
        return text
    cut = text[:limit]
    if " " in cut:
        cut = cut.rsplit(" ", 1)[0]
    return cut.rstrip(",;:- ")


def select_video_size(aspect_ratio: str) -> str:
    return PORTRAIT_SIZE if aspect_ratio in ("9:16", "3:4") else LANDSCAPE_SIZE


def first_frame_prompt(unit: Unit, plan: GenerationPlan, style: Optional[str] = None) -> str:
    """Prompt for the still frame a scene's clip starts from."""
    lines = [f"{style or plan.theme} style."]
    lines.append(f"Scene: {unit.prompt}")
    if unit.key_points:
        lines.append(f"Action: {unit.key_points[0]}")
    if unit.mood:
        lines.append(f"Mood: {unit.mood}")
    lines.append("High quality, detailed illustration, consistent style, cinematic composition.")
    return "\n".join(lines)


def _shot_type(camera: Optional[str]) -> str:
    camera = (camera or "").lower()
    if "close" in camera:
        return "Close-up shot"
    if "wide" in camera:
        return "Wide shot"
    if "aerial" in camera:
        return "Aerial shot"
    return "Medium shot"


def video_prompt(unit: Unit) -> str:
    """Motion prompt for turning a scene's first frame into a clip."""
    parts = [f"{_shot_type(unit.camera)}, eye level", unit.prompt]
    if unit.key_points:
        parts.append(unit.key_points[0])
    if unit.narration:
        parts.append(f'Voiceover: "{unit.narration}"')
    if unit.display_text:
        parts.append(f'Display text on screen: "{unit.display_text}"')
    parts.append(f"Camera: {unit.camera or 'slow smooth tracking'}")
    if unit.mood:
        parts.append(f"Mood and lighting: {unit.mood}")
    return "\n".join(parts)
