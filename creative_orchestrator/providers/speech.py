"""Narration synthesis. Completes synchronously, so there is nothing to poll."""

import logging
from pathlib import Path
from typing import Any, Dict

from ..errors import PermanentProviderError
from ..utils.openai_client import OpenAIClient
from ..utils.output_manager import OutputManager
from .base import PollResult, ProviderClient, SubmitResult

logger = logging.getLogger(__name__)


class SpeechProvider(ProviderClient):
    """Synthesizes narration with OpenAI TTS and stores it under the run directory."""

    name = "speech"

    def __init__(
        self,
        openai_client: OpenAIClient,
        output_manager: OutputManager,
        voice: str = "alloy",
        model: str = "tts-1-hd",
        speed: float = 1.0
    ):
        self.openai_client = openai_client
        self.output_manager = output_manager
        self.voice = voice
        self.model = model
        self.speed = speed

    async def submit(self, prompt: str, config: Dict[str, Any]) -> SubmitResult:
        """
        Args:
            prompt: Narration text
            config: Needs ``run_id`` and ``filename``; may override ``voice``/``speed``
        """
        audio = await self.openai_client.generate_speech(
            prompt,
            voice=config.get("voice", self.voice),
            model=self.model,
            speed=config.get("speed", self.speed)
        )
        path = await self.output_manager.save_audio(
            config["run_id"],
            audio,
            filename=config.get("filename", "narration.mp3")
        )
        return SubmitResult(sync_result_url=Path(path).resolve().as_uri())

    async def poll(self, job_id: str) -> PollResult:
        raise PermanentProviderError("Speech jobs complete at submit time", provider=self.name)
