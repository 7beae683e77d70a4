"""Image-to-video generation through OpenAI video jobs."""

import logging
import mimetypes
from pathlib import Path
from typing import Any, Dict, Optional, Tuple
from urllib.parse import urlparse

import aiofiles
import httpx
from openai import AsyncOpenAI, OpenAIError

from ..models import JobStatus
from ..utils.output_manager import OutputManager
from .base import (
    PollResult,
    ProviderClient,
    SubmitResult,
    classify_http_error,
    classify_http_status,
    classify_openai_error
)

logger = logging.getLogger(__name__)

SUPPORTED_SECONDS = (4, 8, 12)
PORTRAIT_SIZE = "720x1280"
LANDSCAPE_SIZE = "1280x720"

_STATUS_MAP = {
    "queued": JobStatus.PENDING,
    "in_progress": JobStatus.PROCESSING,
    "completed": JobStatus.COMPLETED,
    "failed": JobStatus.FAILED,
}


def snap_seconds(seconds: Any) -> str:
    """Closest clip length the video API accepts, as the string it expects."""
    try:
        value = float(seconds)
    except (TypeError, ValueError):
        value = SUPPORTED_SECONDS[1]
    return str(min(SUPPORTED_SECONDS, key=lambda s: abs(s - value)))


class SoraVideoProvider(ProviderClient):
    """
    Turns a still frame plus a motion prompt into a short clip.

    The frame is fetched and attached as the job's input reference. Once the
    job completes, the MP4 is downloaded into the run directory and the
    result URL is a file:// URI.
    """

    name = "video"

    def __init__(
        self,
        client: AsyncOpenAI,
        output_manager: OutputManager,
        model: str = "sora-2",
        download_timeout: float = 300.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.client = client
        self.output_manager = output_manager
        self.model = model
        self.download_timeout = download_timeout
        self._transport = transport
        # job id -> (run id, filename) for the clip download
        self._destinations: Dict[str, Tuple[Optional[str], str]] = {}

    async def _fetch_reference(self, url: str) -> Tuple[str, bytes, str]:
        """Load the input frame from a file:// URI or over HTTP."""
        parsed = urlparse(url)
        filename = Path(parsed.path).name or "frame.png"
        content_type = mimetypes.guess_type(filename)[0] or "image/png"
        if parsed.scheme == "file":
            async with aiofiles.open(parsed.path, "rb") as f:
                return filename, await f.read(), content_type

        async with httpx.AsyncClient(transport=self._transport, timeout=self.download_timeout) as client:
            try:
                response = await client.get(url)
                response.raise_for_status()
            except httpx.HTTPError as e:
                raise classify_http_error(self.name, e) from e
            return filename, response.content, response.headers.get("content-type", content_type)

    async def _download_video(self, job_id: str) -> str:
        """Stream the finished MP4 to disk; the content endpoint needs the API key."""
        run_id, filename = self._destinations.get(job_id, (None, f"{job_id}.mp4"))
        path = self.output_manager.video_path(run_id, filename)
        url = f"{str(self.client.base_url).rstrip('/')}/videos/{job_id}/content"
        headers = {"Authorization": f"Bearer {self.client.api_key}"}

        async with httpx.AsyncClient(transport=self._transport, timeout=self.download_timeout) as client:
            try:
                async with client.stream("GET", url, headers=headers) as response:
                    if response.status_code >= 400:
                        await response.aread()
                        raise classify_http_status(self.name, response.status_code, response.text)
                    async with aiofiles.open(path, "wb") as f:
                        async for chunk in response.aiter_bytes():
                            await f.write(chunk)
            except httpx.HTTPError as e:
                raise classify_http_error(self.name, e) from e

        self._destinations.pop(job_id, None)
        logger.info("Video: downloaded %s -> %s", job_id, str(path))
        return path.resolve().as_uri()

    async def submit(self, prompt: str, config: Dict[str, Any]) -> SubmitResult:
        """
        Args:
            prompt: Motion prompt
            config: ``image_url``, ``size``, ``seconds``; ``run_id`` and
                ``filename`` decide where the finished clip is stored
        """
        request_kwargs: Dict[str, Any] = {
            "model": config.get("model", self.model),
            "prompt": prompt,
            "size": config.get("size", LANDSCAPE_SIZE),
            "seconds": snap_seconds(config.get("seconds", 8)),
        }
        image_url = config.get("image_url")
        if image_url:
            request_kwargs["input_reference"] = await self._fetch_reference(image_url)

        logger.debug(
            "Video submit: model=%s size=%s seconds=%s reference=%s",
            request_kwargs["model"],
            request_kwargs["size"],
            request_kwargs["seconds"],
            bool(image_url)
        )
        try:
            video = await self.client.videos.create(**request_kwargs)
        except OpenAIError as e:
            raise classify_openai_error(self.name, e) from e
        self._destinations[video.id] = (config.get("run_id"), config.get("filename") or f"{video.id}.mp4")
        return SubmitResult(job_id=video.id)

    async def poll(self, job_id: str) -> PollResult:
        try:
            video = await self.client.videos.retrieve(job_id)
        except OpenAIError as e:
            raise classify_openai_error(self.name, e) from e

        status = _STATUS_MAP.get(video.status, JobStatus.PROCESSING)
        progress = int(getattr(video, "progress", 0) or 0)
        if status == JobStatus.COMPLETED:
            return PollResult(status=status, progress=100, result_url=await self._download_video(job_id))
        if status == JobStatus.FAILED:
            err = getattr(video, "error", None)
            err_code = getattr(err, "code", "unknown") if err else "unknown"
            err_msg = getattr(err, "message", "no details") if err else "no details"
            return PollResult(status=status, progress=progress, error=f"[{err_code}] {err_msg}")
        return PollResult(status=status, progress=max(0, min(100, progress)))
