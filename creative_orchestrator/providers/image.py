"""Async-task image generation over HTTP."""

import logging
from typing import Any, Dict, Iterable, Optional

import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential
)

from ..errors import PermanentProviderError, TransientProviderError
from ..models import JobStatus
from ..utils.key_cache import ApiKeyCache
from .base import PollResult, ProviderClient, SubmitResult, classify_http_error

logger = logging.getLogger(__name__)

_STATUS_ALIASES = {
    JobStatus.PENDING: {"pending", "queued", "queuing", "waiting", "submitted", "created"},
    JobStatus.PROCESSING: {"processing", "running", "generating", "in_progress", "started"},
    JobStatus.COMPLETED: {"completed", "success", "succeeded", "done", "finished"},
    JobStatus.FAILED: {"failed", "fail", "error", "cancelled", "canceled", "generate_failed"},
}


def normalize_status(raw: Any) -> JobStatus:
    """Map a provider status string onto the job state machine."""
    value = str(raw or "").strip().lower()
    for status, aliases in _STATUS_ALIASES.items():
        if value in aliases:
            return status
    logger.warning("Image provider: unknown status %r, treating as processing", raw)
    return JobStatus.PROCESSING


def normalize_progress(raw: Any) -> int:
    """Accept 0-1 fractions, 0-100 percentages and numeric strings."""
    try:
        value = float(str(raw).rstrip("%"))
    except (TypeError, ValueError):
        return 0
    if 0 < value <= 1:
        value *= 100
    return max(0, min(100, int(value)))


def _pluck(data: Dict[str, Any], keys: Iterable[str]) -> Any:
    """Return the first present key, preferring a nested ``data`` envelope over the top level."""
    for source in (data.get("data") if isinstance(data.get("data"), dict) else {}, data):
        for key in keys:
            value = source.get(key)
            if value not in (None, "", []):
                return value
    return None


def _first_url(value: Any) -> Optional[str]:
    if isinstance(value, list):
        return _first_url(value[0]) if value else None
    if isinstance(value, dict):
        return _first_url(value.get("url") or value.get("urls"))
    return str(value) if value else None


class TaskApiProvider(ProviderClient):
    """
    Image provider exposing create-task and task-status endpoints.

    Submit returns either a task id or, for fast models, the image URL
    directly. Status payloads are normalized by ``normalize_status``.
    """

    def __init__(
        self,
        base_url: str,
        model: str,
        key_cache: ApiKeyCache,
        name: str = "image",
        submit_path: str = "/jobs/createTask",
        status_path: str = "/jobs/recordInfo",
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        """
        Initialize the provider.

        Args:
            base_url: API root, e.g. https://api.kie.ai/api/v1
            model: Model identifier sent with every task
            key_cache: Source of the bearer token (looked up as ``name``)
            name: Provider name used for keys, logs and errors
            submit_path: Task creation path
            status_path: Task status path (task id passed as ``taskId``)
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport (tests)
        """
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.name = name
        self.submit_path = submit_path
        self.status_path = status_path
        self.timeout = timeout
        self._key_cache = key_cache
        self._transport = transport

    def _headers(self) -> Dict[str, str]:
        key = self._key_cache.get(self.name)
        if not key:
            raise PermanentProviderError(f"No API key configured for {self.name}", provider=self.name)
        return {"Authorization": f"Bearer {key}"}

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=4, max=10),
        retry=retry_if_exception_type(TransientProviderError),
        reraise=True
    )
    async def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        async with httpx.AsyncClient(transport=self._transport, timeout=self.timeout) as client:
            try:
                response = await client.request(
                    method,
                    f"{self.base_url}{path}",
                    headers=self._headers(),
                    **kwargs
                )
                response.raise_for_status()
            except httpx.HTTPError as e:
                error = classify_http_error(self.name, e)
                if error.status_code in (401, 403):
                    self._key_cache.invalidate(self.name)
                logger.warning("%s %s %s failed: %s", self.name, method, path, error)
                raise error from e
            data = response.json()

        # Some task APIs report errors in a 200 envelope.
        code = data.get("code") if isinstance(data, dict) else None
        if isinstance(code, int) and code >= 400:
            message = data.get("msg") or data.get("message") or "request rejected"
            if code == 429 or code >= 500:
                raise TransientProviderError(f"{self.name}: {message}", provider=self.name, status_code=code)
            raise PermanentProviderError(f"{self.name}: {message}", provider=self.name, status_code=code)
        return data

    async def submit(self, prompt: str, config: Dict[str, Any]) -> SubmitResult:
        payload = {
            "model": config.get("model", self.model),
            "input": {
                "prompt": prompt,
                "aspect_ratio": config.get("aspect_ratio", "16:9"),
            },
        }
        reference_urls = config.get("reference_urls")
        if reference_urls:
            payload["input"]["image_urls"] = list(reference_urls)

        logger.debug("%s submit: model=%s prompt_chars=%d", self.name, payload["model"], len(prompt))
        data = await self._request("POST", self.submit_path, json=payload)

        url = _first_url(_pluck(data, ("url", "image_url", "resultUrls", "images")))
        if url:
            return SubmitResult(sync_result_url=url)
        task_id = _pluck(data, ("taskId", "task_id", "id"))
        if not task_id:
            raise PermanentProviderError(f"{self.name}: submit response had no task id", provider=self.name)
        return SubmitResult(job_id=str(task_id))

    async def poll(self, job_id: str) -> PollResult:
        data = await self._request("GET", self.status_path, params={"taskId": job_id})
        status = normalize_status(_pluck(data, ("state", "status")))
        result_url = None
        if status == JobStatus.COMPLETED:
            result_url = _first_url(_pluck(data, ("resultUrls", "result_url", "url", "images")))
            if not result_url:
                return PollResult(status=JobStatus.FAILED, error="completed without a result URL")
        error = None
        if status == JobStatus.FAILED:
            error = str(_pluck(data, ("failMsg", "error", "errorMessage")) or "generation failed")
        return PollResult(
            status=status,
            progress=normalize_progress(_pluck(data, ("progress", "percent"))),
            result_url=result_url,
            error=error
        )
