"""Uniform contract for external generation providers."""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import httpx
from openai import (
    APIConnectionError,
    APIStatusError,
    APITimeoutError,
    OpenAIError,
    RateLimitError,
)
from pydantic import BaseModel, Field, model_validator

from ..errors import PermanentProviderError, ProviderError, TransientProviderError
from ..models import JobStatus

RETRYABLE_STATUS_CODES = {408, 409, 425, 429, 500, 502, 503, 504}


class SubmitResult(BaseModel):
    """Either a finished result or a job handle to poll."""
    job_id: Optional[str] = None
    sync_result_url: Optional[str] = None

    @model_validator(mode="after")
    def _exactly_one(self) -> "SubmitResult":
        if (self.job_id is None) == (self.sync_result_url is None):
            raise ValueError("SubmitResult needs exactly one of job_id or sync_result_url")
        return self


class PollResult(BaseModel):
    """Normalized provider job status."""
    status: JobStatus
    progress: int = Field(default=0, ge=0, le=100)
    result_url: Optional[str] = None
    error: Optional[str] = None


class ProviderClient(ABC):
    """
    One external creative-AI provider.

    Implementations adapt provider-specific request and status shapes to
    ``SubmitResult`` and ``PollResult`` and raise ``TransientProviderError`` or
    ``PermanentProviderError`` on failure.
    """

    name: str = "provider"

    @abstractmethod
    async def submit(self, prompt: str, config: Dict[str, Any]) -> SubmitResult:
        """Start a generation request."""

    @abstractmethod
    async def poll(self, job_id: str) -> PollResult:
        """Fetch the current status of a job started by ``submit``."""


def classify_http_status(provider: str, status_code: int, detail: str = "") -> ProviderError:
    """Map an HTTP failure status to the transient/permanent taxonomy."""
    message = f"{provider} returned HTTP {status_code}"
    if detail:
        message = f"{message}: {detail[:300]}"
    if status_code in RETRYABLE_STATUS_CODES or status_code >= 500:
        return TransientProviderError(message, provider=provider, status_code=status_code)
    return PermanentProviderError(message, provider=provider, status_code=status_code)


def classify_http_error(provider: str, exc: httpx.HTTPError) -> ProviderError:
    """Classify an httpx exception raised by a request."""
    if isinstance(exc, httpx.HTTPStatusError):
        return classify_http_status(provider, exc.response.status_code, exc.response.text)
    # Connection resets, timeouts, protocol errors.
    return TransientProviderError(f"{provider} request failed: {exc}", provider=provider)


def classify_openai_error(provider: str, exc: OpenAIError) -> ProviderError:
    """Classify an OpenAI SDK exception."""
    if isinstance(exc, (APITimeoutError, APIConnectionError, RateLimitError)):
        return TransientProviderError(f"{provider}: {exc}", provider=provider)
    if isinstance(exc, APIStatusError):
        return classify_http_status(provider, exc.status_code, str(exc))
    return PermanentProviderError(f"{provider}: {exc}", provider=provider)
