"""Configuration management with Pydantic validation."""

from typing import Dict, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings
from dotenv import load_dotenv

from .utils.rate_limiter import DEFAULT_QUEUE_LIMITS, QueueLimits


class Config(BaseSettings):
    """Application configuration with validation."""

    # API Keys
    openai_api_key: str = Field(..., min_length=20, description="OpenAI API key")
    tavily_api_key: str = Field(..., min_length=20, description="Tavily API key")
    image_api_key: Optional[str] = Field(default=None, description="Async image task API key")

    # Reasoning model
    model_name: str = Field(default="gpt-5.2", description="OpenAI model driving the planning loop")
    agent_max_iterations: int = Field(default=15, ge=1, le=50, description="Planning loop iteration budget")
    agent_max_tokens: int = Field(default=4000, ge=256, le=32000, description="Max tokens per model turn")
    heartbeat_interval_seconds: float = Field(default=30.0, gt=0, le=300, description="Planning heartbeat period")
    observation_max_tokens: int = Field(default=1200, ge=100, le=8000, description="Token cap for one tool observation")

    # Image task provider
    image_api_base_url: str = Field(default="https://api.kie.ai/api/v1", description="Async image task API base URL")
    image_model_standard: str = Field(default="nano-banana", description="Image model for the standard tier")
    image_model_pro: str = Field(default="nano-banana-pro", description="Image model for the pro tier")

    # Video and speech providers
    video_model: str = Field(default="sora-2", description="Image-to-video model")
    tts_model: str = Field(default="tts-1-hd", description="OpenAI TTS model")
    tts_voice: str = Field(
        default="alloy",
        description="TTS voice (alloy, echo, fable, onyx, nova, shimmer)"
    )

    # Async job polling
    image_poll_interval_seconds: float = Field(default=3.0, gt=0, le=60, description="Image job poll interval")
    image_poll_timeout_seconds: float = Field(default=180.0, gt=0, le=3600, description="Image job wait budget")
    video_poll_interval_seconds: float = Field(default=10.0, gt=0, le=120, description="Video job poll interval")
    video_poll_timeout_seconds: float = Field(default=1800.0, gt=0, le=7200, description="Video job wait budget")

    # Provider submission queue
    queue_limits: Dict[str, QueueLimits] = Field(
        default_factory=dict,
        description="Per provider:tier overrides, JSON in the environment"
    )
    default_max_concurrent: int = Field(default=5, ge=1, le=100, description="Concurrency for unlisted keys")
    default_min_interval_ms: int = Field(default=1000, ge=0, le=60000, description="Pacing for unlisted keys")

    # Rate Limiting for the OpenAI and Tavily clients
    max_concurrent_tavily: int = Field(default=5, ge=1, le=20, description="Max concurrent Tavily calls")
    max_concurrent_openai: int = Field(default=10, ge=1, le=50, description="Max concurrent OpenAI calls")
    max_rate_tavily_per_min: int = Field(default=100, ge=10, le=500, description="Tavily calls per minute")
    max_rate_openai_per_min: int = Field(default=500, ge=10, le=5000, description="OpenAI calls per minute")

    # Pipeline
    unit_retry_attempts: int = Field(default=1, ge=0, le=5, description="Automatic retries per failed unit job")
    event_channel_size: int = Field(default=1000, ge=0, le=100000, description="Progress channel capacity (0 = unbounded)")
    api_key_cache_ttl_seconds: float = Field(default=300.0, ge=0, description="API key cache lifetime")

    # Output Management
    output_dir: str = Field(default="output", description="Directory for run records and artifacts")
    max_output_age_days: int = Field(default=7, ge=1, le=365, description="Delete outputs older than N days")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False

    @field_validator("tts_voice")
    @classmethod
    def validate_tts_voice(cls, v: str) -> str:
        """Validate TTS voice is one of the supported options."""
        valid_voices = {"alloy", "echo", "fable", "onyx", "nova", "shimmer"}
        if v.lower() not in valid_voices:
            raise ValueError(f"tts_voice must be one of {valid_voices}, got '{v}'")
        return v.lower()

    @field_validator("openai_api_key")
    @classmethod
    def validate_openai_key(cls, v: str) -> str:
        """Validate OpenAI API key format."""
        if not v.startswith("sk-"):
            raise ValueError("openai_api_key must start with 'sk-'")
        return v

    @field_validator("tavily_api_key")
    @classmethod
    def validate_tavily_key(cls, v: str) -> str:
        """Validate Tavily API key format."""
        if not v.startswith("tvly-"):
            raise ValueError("tavily_api_key must start with 'tvly-'")
        return v

    def resolved_queue_limits(self) -> Dict[str, QueueLimits]:
        """Built-in provider budgets with any configured overrides applied."""
        merged = dict(DEFAULT_QUEUE_LIMITS)
        merged.update(self.queue_limits)
        return merged

    def default_queue_limits(self) -> QueueLimits:
        return QueueLimits(
            max_concurrent=self.default_max_concurrent,
            min_interval_ms=self.default_min_interval_ms
        )

    def api_key_for(self, provider: str) -> Optional[str]:
        """Look up the configured key for a provider name."""
        keys = {
            "openai": self.openai_api_key,
            "tavily": self.tavily_api_key,
            "image": self.image_api_key,
        }
        return keys.get(provider)


def load_config() -> Config:
    """
    Load configuration from environment variables.

    Returns:
        Config: Validated configuration object

    Raises:
        ValueError: If configuration is invalid or required vars are missing
    """
    load_dotenv()

    try:
        return Config()
    except Exception as e:
        raise ValueError(f"Configuration error: {e}\nPlease check your .env file or environment variables.")


# Global config instance (lazy-loaded)
_config: Optional[Config] = None


def get_config() -> Config:
    """
    Get global configuration instance (singleton pattern).

    Returns:
        Config: Global configuration object
    """
    global _config
    if _config is None:
        _config = load_config()
    return _config
