"""Tests for scene pacing and prompt helpers."""

from creative_orchestrator.agents.storyboard import (
    clip_seconds_for,
    first_frame_prompt,
    narration_char_limit,
    select_video_size,
    truncate_narration,
    video_prompt,
)
from creative_orchestrator.models import GenerationPlan, Unit
from creative_orchestrator.providers.video import LANDSCAPE_SIZE, PORTRAIT_SIZE


class TestNarrationPacing:
    def test_char_limits(self):
        assert narration_char_limit(15) == 45
        assert narration_char_limit(10) == 28
        assert narration_char_limit(12) == 35
        assert narration_char_limit(8) == 21

    def test_shortest_clip_that_fits(self):
        assert clip_seconds_for(None) == 8
        assert clip_seconds_for("x" * 21) == 8
        assert clip_seconds_for("x" * 22) == 12
        assert clip_seconds_for("x" * 200) == 12

    def test_truncate_on_word_boundary(self):
        text = "The moon pulls the ocean and the water rises along every shore"
        cut = truncate_narration(text, 8)
        assert len(cut) <= 21
        assert text.startswith(cut)
        assert not cut.endswith(" ")

    def test_short_narration_untouched(self):
        assert truncate_narration("  Tides rise.  ", 8) == "Tides rise."


class TestScenePrompts:
    """Test first-frame and motion prompt composition."""

    def test_video_size_by_aspect_ratio(self):
        assert select_video_size("9:16") == PORTRAIT_SIZE
        assert select_video_size("3:4") == PORTRAIT_SIZE
        assert select_video_size("16:9") == LANDSCAPE_SIZE

    def test_first_frame_prompt(self):
        unit = Unit(index=0, title="Moon", prompt="A full moon over the sea", key_points=["water rising"], mood="calm")
        plan = GenerationPlan(theme="nature", units=[unit])

        prompt = first_frame_prompt(unit, plan)

        assert prompt.startswith("nature style.")
        assert "Scene: A full moon over the sea" in prompt
        assert "Action: water rising" in prompt
        assert "Mood: calm" in prompt

    def test_style_overrides_theme(self):
        unit = Unit(index=0, title="Moon", prompt="A full moon")
        plan = GenerationPlan(theme="nature", units=[unit])
        assert first_frame_prompt(unit, plan, "watercolor").startswith("watercolor style.")

    def test_video_prompt_shot_types(self):
        assert video_prompt(Unit(index=0, title="a", camera="close up on waves")).startswith("Close-up shot")
        assert video_prompt(Unit(index=0, title="a", camera="aerial drone")).startswith("Aerial shot")
        assert video_prompt(Unit(index=0, title="a")).startswith("Medium shot")

    def test_video_prompt_carries_narration(self):
        unit = Unit(index=0, title="a", prompt="Waves", narration="Tides rise twice a day", display_text="2x daily")
        prompt = video_prompt(unit)
        assert 'Voiceover: "Tides rise twice a day"' in prompt
        assert 'Display text on screen: "2x daily"' in prompt
        assert "Camera: slow smooth tracking" in prompt
