"""OpenAI API client with retry logic and rate limiting."""

import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

import tiktoken
from openai import (
    APIConnectionError,
    APITimeoutError,
    AsyncOpenAI,
    InternalServerError,
    OpenAIError,
    RateLimitError
)
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type
)

from ..models import ModelTurn, ToolCallRequest
from ..providers.base import classify_openai_error
from .rate_limiter import RateLimitedClient

logger = logging.getLogger(__name__)

_TRANSIENT_OPENAI_ERRORS = (APIConnectionError, APITimeoutError, RateLimitError, InternalServerError)

TextSink = Callable[[str], Awaitable[None]]


class OpenAIClient(RateLimitedClient):
    """
    OpenAI API client for tool-calling chat turns and speech synthesis.

    Inherits rate limiting from RateLimitedClient and adds
    retry logic with exponential backoff.
    """

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-5.2",
        max_concurrent: int = 10,
        max_per_minute: int = 500,
        client: Optional[AsyncOpenAI] = None
    ):
        """
        Initialize OpenAI client.

        Args:
            api_key: OpenAI API key
            model: Model to use for generation (default: gpt-5.2)
            max_concurrent: Maximum concurrent requests
            max_per_minute: Maximum requests per minute
            client: Preconfigured AsyncOpenAI instance (tests)
        """
        super().__init__(max_concurrent, max_per_minute)
        self.client = client or AsyncOpenAI(api_key=api_key)
        self.model = model

        try:
            self.encoding = tiktoken.encoding_for_model(model)
        except KeyError:
            # If model not found, use cl100k_base (GPT-4/GPT-3.5)
            self.encoding = tiktoken.get_encoding("cl100k_base")
        logger.info(
            "OpenAIClient initialized (model=%s, max_concurrent=%d, max_per_minute=%d)",
            self.model,
            max_concurrent,
            max_per_minute
        )

    def count_tokens(self, text: str) -> int:
        """Count tokens in a text string."""
        return len(self.encoding.encode(text))

    def count_message_tokens(self, messages: List[Dict[str, Any]]) -> int:
        """Rough prompt size of a chat history (content plus tool arguments)."""
        total = 0
        for message in messages:
            total += 4
            content = message.get("content")
            if isinstance(content, str):
                total += self.count_tokens(content)
            for call in message.get("tool_calls") or []:
                total += self.count_tokens(call["function"]["arguments"])
        return total

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=4, max=10),
        retry=retry_if_exception_type(_TRANSIENT_OPENAI_ERRORS),
        reraise=True
    )
    async def _stream_turn_impl(
        self,
        messages: List[Dict[str, Any]],
        tools: List[Dict[str, Any]],
        on_text: Optional[TextSink],
        max_tokens: int
    ) -> ModelTurn:
        """
        Stream one chat completion, forwarding text deltas as they arrive.

        Tool call fragments are accumulated by their stream index.
        """
        stream = await self.client.chat.completions.create(
            model=self.model,
            messages=messages,
            tools=tools,
            tool_choice="auto",
            max_completion_tokens=max_tokens,
            stream=True
        )

        text_parts: List[str] = []
        calls: Dict[int, Dict[str, str]] = {}
        finish_reason = None
        async for chunk in stream:
            if not chunk.choices:
                continue
            choice = chunk.choices[0]
            delta = choice.delta
            if delta is not None and delta.content:
                text_parts.append(delta.content)
                if on_text is not None:
                    await on_text(delta.content)
            for fragment in (delta.tool_calls if delta is not None else None) or []:
                entry = calls.setdefault(fragment.index, {"id": "", "name": "", "arguments": ""})
                if fragment.id:
                    entry["id"] = fragment.id
                if fragment.function is not None:
                    if fragment.function.name:
                        entry["name"] += fragment.function.name
                    if fragment.function.arguments:
                        entry["arguments"] += fragment.function.arguments
            if choice.finish_reason:
                finish_reason = choice.finish_reason

        tool_calls = [
            ToolCallRequest(id=entry["id"] or f"call_{index}", name=entry["name"], arguments=entry["arguments"])
            for index, entry in sorted(calls.items())
        ]
        return ModelTurn(text="".join(text_parts), tool_calls=tool_calls, finish_reason=finish_reason)

    async def stream_turn(
        self,
        messages: List[Dict[str, Any]],
        tools: List[Dict[str, Any]],
        on_text: Optional[TextSink] = None,
        max_tokens: int = 4000
    ) -> ModelTurn:
        """
        Run one tool-calling model turn with rate limiting.

        Args:
            messages: Chat history in OpenAI message format
            tools: Tool specs in OpenAI function-calling format
            on_text: Awaited with each streamed text delta
            max_tokens: Completion token cap

        Returns:
            The assembled turn (text plus tool calls)

        Raises:
            TransientProviderError: Retries exhausted on network/5xx/429
            PermanentProviderError: Request rejected (auth, bad request, unknown model)
        """
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(
                "OpenAI turn: model=%s messages=%d prompt_tokens~%d",
                self.model,
                len(messages),
                self.count_message_tokens(messages)
            )
        try:
            return await self._execute_with_limits(
                self._stream_turn_impl(messages, tools, on_text, max_tokens)
            )
        except OpenAIError as e:
            raise classify_openai_error("openai", e) from e

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=4, max=10),
        retry=retry_if_exception_type(_TRANSIENT_OPENAI_ERRORS),
        reraise=True
    )
    async def _generate_speech_impl(
        self,
        text: str,
        voice: str = "alloy",
        model: str = "tts-1-hd",
        speed: Optional[float] = None
    ) -> bytes:
        """
        Internal implementation of speech generation with retry.

        Raises:
            OpenAIError: If API call fails
            ValueError: If text exceeds character limit
        """
        # OpenAI TTS has a 4096 character limit
        if len(text) > 4096:
            raise ValueError(
                f"Text length ({len(text)}) exceeds OpenAI TTS limit of 4096 characters. "
                "Please chunk the text before calling this method."
            )

        logger.debug(
            "OpenAI TTS: model=%s voice=%s text_chars=%d",
            model,
            voice,
            len(text)
        )
        request_kwargs = {
            "model": model,
            "voice": voice,
            "input": text
        }
        if speed is not None:
            request_kwargs["speed"] = speed
        response = await self.client.audio.speech.create(**request_kwargs)
        return response.content

    async def generate_speech(
        self,
        text: str,
        voice: str = "alloy",
        model: str = "tts-1-hd",
        speed: Optional[float] = None
    ) -> bytes:
        """
        Generate speech from text with rate limiting.

        Args:
            text: Text to convert to speech (max 4096 characters)
            voice: Voice to use (alloy, echo, fable, onyx, nova, shimmer)
            model: TTS model to use (tts-1 or tts-1-hd)
            speed: Optional speech speed (e.g., 1.2)

        Returns:
            Audio data as bytes (MP3 format)
        """
        try:
            return await self._execute_with_limits(
                self._generate_speech_impl(text, voice, model, speed)
            )
        except OpenAIError as e:
            raise classify_openai_error("openai", e) from e
