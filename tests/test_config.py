"""Tests for configuration validation and queue limit resolution."""

import pytest
from pydantic import ValidationError

from creative_orchestrator.config import Config, load_config
from creative_orchestrator.utils.rate_limiter import DEFAULT_QUEUE_LIMITS, QueueLimits

OPENAI_KEY = "sk-test-00000000000000000000"
TAVILY_KEY = "tvly-test-000000000000000000"


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    for name in ("OPENAI_API_KEY", "TAVILY_API_KEY", "IMAGE_API_KEY", "QUEUE_LIMITS", "TTS_VOICE"):
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


class TestConfigValidation:
    def test_key_prefixes(self, clean_env):
        with pytest.raises(ValidationError):
            Config(openai_api_key="pk-" + "0" * 20, tavily_api_key=TAVILY_KEY)
        with pytest.raises(ValidationError):
            Config(openai_api_key=OPENAI_KEY, tavily_api_key="abc-" + "0" * 20)

    def test_voice_normalized(self, clean_env):
        config = Config(openai_api_key=OPENAI_KEY, tavily_api_key=TAVILY_KEY, tts_voice="Nova")
        assert config.tts_voice == "nova"

    def test_invalid_voice(self, clean_env):
        with pytest.raises(ValidationError):
            Config(openai_api_key=OPENAI_KEY, tavily_api_key=TAVILY_KEY, tts_voice="robot")

    def test_api_key_lookup(self, clean_env):
        config = Config(openai_api_key=OPENAI_KEY, tavily_api_key=TAVILY_KEY, image_api_key="img")
        assert config.api_key_for("image") == "img"
        assert config.api_key_for("tavily") == TAVILY_KEY
        assert config.api_key_for("unknown") is None


class TestQueueLimits:
    """Test configured overrides merging over the built-in budgets."""

    def test_defaults(self, clean_env):
        config = Config(openai_api_key=OPENAI_KEY, tavily_api_key=TAVILY_KEY)
        assert config.resolved_queue_limits() == DEFAULT_QUEUE_LIMITS
        assert config.default_queue_limits() == QueueLimits(max_concurrent=5, min_interval_ms=1000)

    def test_override_from_environment(self, clean_env):
        clean_env.setenv("OPENAI_API_KEY", OPENAI_KEY)
        clean_env.setenv("TAVILY_API_KEY", TAVILY_KEY)
        clean_env.setenv("QUEUE_LIMITS", '{"image:pro": {"max_concurrent": 1, "min_interval_ms": 500}}')

        limits = load_config().resolved_queue_limits()

        assert limits["image:pro"] == QueueLimits(max_concurrent=1, min_interval_ms=500)
        assert limits["video:sora"] == DEFAULT_QUEUE_LIMITS["video:sora"]


class TestLoadConfig:
    def test_missing_keys_raise_value_error(self, clean_env):
        with pytest.raises(ValueError) as exc:
            load_config()
        assert "Configuration error" in str(exc.value)
