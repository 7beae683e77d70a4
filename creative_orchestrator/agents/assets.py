"""Per-unit asset generation: primary images (phase 2) and video/narration transforms (phase 3)."""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, NoReturn, Optional

from ..errors import (
    PermanentProviderError,
    PipelineUnitFailure,
    QueueCleared,
    RunAborted,
    TransientProviderError
)
from ..events import (
    EventChannel,
    UnitAssetCompleteEvent,
    UnitAssetErrorEvent,
    UnitAssetProgressEvent,
    UnitAssetStartEvent
)
from ..models import (
    AssetStatus,
    GenerationMode,
    GenerationPlan,
    GenerationRequest,
    Job,
    JobKind,
    JobStatus,
    Unit,
    UnitAssetState
)
from ..providers.base import ProviderClient, SubmitResult
from ..utils.poller import JobPoller
from ..utils.rate_limiter import RateLimitedQueue
from .storyboard import clip_seconds_for, first_frame_prompt, select_video_size, video_prompt

logger = logging.getLogger(__name__)

STAGE_IMAGE = "image"
STAGE_VIDEO = "video"
STAGE_SPEECH = "speech"

IMAGE_TIER_STANDARD = "standard"
IMAGE_TIER_PRO = "pro"
VIDEO_TIER = "sora"
SPEECH_TIER = "tts"

ABORTED = "aborted"

# Layouts whose images carry legible text or diagrams.
_TEXT_HEAVY_LAYOUTS = {"chart", "timeline", "comparison"}
_TEXT_HEAVY_STYLE_WORDS = ("infographic", "diagram", "chart", "typography")


def select_image_tier(unit: Unit, request: GenerationRequest) -> str:
    """
    Pick the image tier for one unit.

    The pro tier is reserved for deck units that need precise text or
    diagrams; video frames and image sets always use the standard tier.
    """
    if request.mode != GenerationMode.DECK:
        return IMAGE_TIER_STANDARD
    if unit.chart_type or unit.layout in _TEXT_HEAVY_LAYOUTS:
        return IMAGE_TIER_PRO
    style = (request.style or "").lower()
    if any(word in style for word in _TEXT_HEAVY_STYLE_WORDS):
        return IMAGE_TIER_PRO
    return IMAGE_TIER_STANDARD


def queue_key(provider: ProviderClient, tier: str) -> str:
    return f"{provider.name}:{tier}"


class UnitJobRunner:
    """
    Runs one unit stage as provider jobs: queue admission, submit, poll.

    Each attempt is a brand-new Job appended to the unit's history, so a
    retry only starts after the previous job is terminal. Transient submit
    errors and provider-reported failures are retried; permanent submit
    errors, poll timeouts and exceptions outside the provider error
    taxonomy are not.
    """

    def __init__(
        self,
        queue: RateLimitedQueue,
        channel: EventChannel,
        retry_attempts: int = 1,
        cancel: Optional[asyncio.Event] = None,
        submit_timeout: float = 120.0
    ):
        self.queue = queue
        self.channel = channel
        self.retry_attempts = retry_attempts
        self.cancel = cancel
        self.submit_timeout = submit_timeout

    @property
    def aborted(self) -> bool:
        return self.cancel is not None and self.cancel.is_set()

    async def run(
        self,
        unit: Unit,
        stage: str,
        kind: JobKind,
        provider: ProviderClient,
        key: str,
        prompt: str,
        config: Dict[str, Any],
        poller: Optional[JobPoller] = None
    ) -> str:
        """
        Produce one asset for ``unit``.

        Args:
            unit: Owning unit; jobs are appended to ``unit.jobs``
            stage: Stage label used in events and errors
            kind: Job kind recorded on each attempt
            provider: Client to submit to
            key: Rate-limited queue key
            prompt: Generation prompt
            config: Provider-specific submit options
            poller: Waits on asynchronous jobs; required unless the provider is synchronous

        Returns:
            Result URL of the completed job

        Raises:
            PipelineUnitFailure: Every attempt failed, or the run was aborted
        """
        attempts = 1 + max(0, self.retry_attempts)
        last_error = "no attempt made"

        for attempt in range(1, attempts + 1):
            if self.aborted:
                raise PipelineUnitFailure(ABORTED, unit_index=unit.index, stage=stage)

            job = Job(
                provider=provider.name,
                kind=kind,
                owner=unit.index,
                attempt=attempt,
                payload={"prompt": prompt, **config},
            )
            unit.jobs.append(job)
            await self.channel.publish(UnitAssetStartEvent(unit_index=unit.index, stage=stage, attempt=attempt))

            try:
                submitted = await self.queue.enqueue(key, lambda: self._submit(provider, prompt, config))
            except (RunAborted, QueueCleared) as e:
                job.error = ABORTED
                job.transition(JobStatus.FAILED)
                logger.info("Unit %d %s: not admitted (%s)", unit.index, stage, e)
                raise PipelineUnitFailure(ABORTED, unit_index=unit.index, stage=stage) from e
            except PermanentProviderError as e:
                job.error = str(e)
                job.transition(JobStatus.FAILED)
                await self._report_error(unit, stage, job.error, will_retry=False)
                raise PipelineUnitFailure(
                    f"{stage} rejected by {provider.name}: {e}",
                    unit_index=unit.index,
                    stage=stage
                ) from e
            except (TransientProviderError, asyncio.TimeoutError, OSError) as e:
                last_error = str(e) or type(e).__name__
                job.error = last_error
                job.transition(JobStatus.FAILED)
                await self._report_error(unit, stage, last_error, will_retry=attempt < attempts)
                continue
            except Exception as e:
                # Malformed provider responses and client-side validation errors.
                await self._fail_unexpected(unit, stage, job, e, "submit")

            if submitted.sync_result_url:
                job.result_url = submitted.sync_result_url
                job.transition(JobStatus.COMPLETED)
                await self._report_complete(unit, stage, job.result_url)
                return job.result_url

            if poller is None:
                job.error = f"{provider.name} returned a job id but no poller is configured"
                job.transition(JobStatus.FAILED)
                await self._report_error(unit, stage, job.error, will_retry=False)
                raise PipelineUnitFailure(job.error, unit_index=unit.index, stage=stage)

            job.external_id = submitted.job_id
            job.transition(JobStatus.PROCESSING)

            async def on_progress(progress: int, job: Job = job) -> None:
                job.progress = max(0, min(100, progress))
                await self.channel.publish(UnitAssetProgressEvent(
                    unit_index=unit.index,
                    stage=stage,
                    progress=job.progress,
                ))

            try:
                outcome = await poller.wait_for(provider, submitted.job_id, on_progress=on_progress)
            except Exception as e:
                await self._fail_unexpected(unit, stage, job, e, "poll")

            if outcome.status == JobStatus.COMPLETED and outcome.result_url:
                job.result_url = outcome.result_url
                job.transition(JobStatus.COMPLETED)
                await self._report_complete(unit, stage, job.result_url)
                return job.result_url

            if outcome.timed_out:
                # The provider job may still finish; starting another would
                # put two live jobs on one unit.
                job.error = outcome.error
                job.transition(JobStatus.ABANDONED)
                await self._report_error(unit, stage, job.error, will_retry=False)
                raise PipelineUnitFailure(
                    f"{stage} abandoned: {outcome.error}",
                    unit_index=unit.index,
                    stage=stage
                )

            last_error = outcome.error or "provider reported failure"
            job.error = last_error
            job.transition(JobStatus.FAILED)
            await self._report_error(unit, stage, last_error, will_retry=attempt < attempts)

        raise PipelineUnitFailure(
            f"{stage} failed after {attempts} attempts: {last_error}",
            unit_index=unit.index,
            stage=stage
        )

    async def _submit(self, provider: ProviderClient, prompt: str, config: Dict[str, Any]) -> SubmitResult:
        if self.aborted:
            raise RunAborted("Run aborted before submission")
        return await asyncio.wait_for(provider.submit(prompt, config), timeout=self.submit_timeout)

    async def _fail_unexpected(self, unit: Unit, stage: str, job: Job, error: Exception, step: str) -> NoReturn:
        """Fail the job on an exception outside the provider taxonomy; not retried."""
        logger.exception("Unit %d %s: unexpected %s error", unit.index, stage, step)
        job.error = f"{type(error).__name__}: {error}"
        job.transition(JobStatus.FAILED)
        await self._report_error(unit, stage, job.error, will_retry=False)
        raise PipelineUnitFailure(
            f"{stage} {step} failed: {job.error}",
            unit_index=unit.index,
            stage=stage
        ) from error

    async def _report_complete(self, unit: Unit, stage: str, result_url: str) -> None:
        logger.info("Unit %d %s: completed", unit.index, stage)
        await self.channel.publish(UnitAssetCompleteEvent(unit_index=unit.index, stage=stage, result_url=result_url))

    async def _report_error(self, unit: Unit, stage: str, message: str, will_retry: bool) -> None:
        if will_retry:
            logger.warning("Unit %d %s: attempt failed, retrying: %s", unit.index, stage, message)
        else:
            logger.error("Unit %d %s: failed: %s", unit.index, stage, message)
        await self.channel.publish(UnitAssetErrorEvent(
            unit_index=unit.index,
            stage=stage,
            message=message,
            will_retry=will_retry,
        ))


def _styled_prompt(prompt: str, style: Optional[str]) -> str:
    return f"{prompt}\nStyle: {style}" if style else prompt


UnitUpdateHook = Callable[[Unit], Awaitable[None]]


async def _notify(on_unit_update: Optional[UnitUpdateHook], unit: Unit) -> None:
    if on_unit_update is not None:
        await on_unit_update(unit)


def _unexpected_failure(unit: Unit, stage: str, error: Exception) -> PipelineUnitFailure:
    logger.exception("Unit %d %s: unexpected error", unit.index, stage)
    return PipelineUnitFailure(f"{stage} failed: {type(error).__name__}: {error}", unit_index=unit.index, stage=stage)


async def generate_primary_assets(
    plan: GenerationPlan,
    request: GenerationRequest,
    runner: UnitJobRunner,
    image_providers: Dict[str, ProviderClient],
    poller: JobPoller,
    on_unit_update: Optional[UnitUpdateHook] = None
) -> List[int]:
    """
    Phase 2: generate every unit's primary image concurrently.

    Units already completed (resumed runs) are left alone. Failures are
    recorded on the unit and never stop the others.

    Args:
        plan: Finalized plan; units are updated in place
        request: The generation request
        runner: Job runner shared by the run
        image_providers: Providers keyed by tier
        poller: Poller for image jobs
        on_unit_update: Awaited each time a unit's image reaches a terminal state

    Returns:
        Indices of units whose primary asset failed
    """
    references = [a.url for a in request.reference_assets if a.url.startswith(("http://", "https://"))]

    async def produce(unit: Unit) -> str:
        image_config = unit.image_config
        tier = select_image_tier(unit, request)
        provider = image_providers.get(tier) or image_providers[IMAGE_TIER_STANDARD]
        if request.mode == GenerationMode.VIDEO:
            prompt = first_frame_prompt(unit, plan, image_config.style)
        else:
            prompt = _styled_prompt(image_config.prompt, image_config.style)
        config: Dict[str, Any] = {"aspect_ratio": image_config.aspect_ratio}
        if references:
            config["reference_urls"] = references
        return await runner.run(
            unit,
            STAGE_IMAGE,
            JobKind.IMAGE,
            provider,
            queue_key(provider, tier),
            prompt,
            config,
            poller=poller
        )

    async def generate_one(unit: Unit) -> None:
        image_config = unit.image_config
        if image_config is None or image_config.status == AssetStatus.COMPLETED:
            return
        image_config.status = AssetStatus.PROCESSING
        image_config.error = None
        try:
            url = await produce(unit)
        except PipelineUnitFailure as e:
            image_config.status = AssetStatus.FAILED
            image_config.error = str(e)
        except Exception as e:
            image_config.status = AssetStatus.FAILED
            image_config.error = str(_unexpected_failure(unit, STAGE_IMAGE, e))
        else:
            image_config.status = AssetStatus.COMPLETED
            image_config.result_url = url
        await _notify(on_unit_update, unit)

    await asyncio.gather(*(generate_one(unit) for unit in plan.units))
    failed = [u.index for u in plan.units if u.image_config is not None and u.image_config.status == AssetStatus.FAILED]
    logger.info(
        "Assets: primary phase done (%d units, %d failed)",
        len(plan.units),
        len(failed)
    )
    return failed


async def transform_units(
    plan: GenerationPlan,
    run_id: str,
    runner: UnitJobRunner,
    video_provider: ProviderClient,
    video_poller: JobPoller,
    speech_provider: Optional[ProviderClient] = None,
    on_unit_update: Optional[UnitUpdateHook] = None
) -> List[int]:
    """
    Phase 3: turn each unit's image into a clip and synthesize its narration.

    Units whose primary asset failed are skipped. A narration failure is
    recorded on the unit without making it ineligible for assembly.
    ``on_unit_update`` is awaited whenever a clip or narration settles.

    Returns:
        Indices of units whose transform failed
    """
    size = select_video_size(plan.aspect_ratio)

    async def clip(unit: Unit) -> None:
        transform = unit.transform
        if transform.status == AssetStatus.COMPLETED:
            return
        transform.status = AssetStatus.PROCESSING
        transform.error = None
        config = {
            "image_url": unit.image_config.result_url,
            "size": size,
            "seconds": clip_seconds_for(unit.narration),
            "run_id": run_id,
            "filename": f"unit_{unit.index:02d}.mp4",
        }
        try:
            url = await runner.run(
                unit,
                STAGE_VIDEO,
                JobKind.VIDEO,
                video_provider,
                queue_key(video_provider, VIDEO_TIER),
                transform.prompt,
                config,
                poller=video_poller
            )
        except PipelineUnitFailure as e:
            transform.status = AssetStatus.FAILED
            transform.error = str(e)
        except Exception as e:
            transform.status = AssetStatus.FAILED
            transform.error = str(_unexpected_failure(unit, STAGE_VIDEO, e))
        else:
            transform.status = AssetStatus.COMPLETED
            transform.result_url = url
        await _notify(on_unit_update, unit)

    async def narrate(unit: Unit) -> None:
        if speech_provider is None or not unit.narration or unit.narration_audio_url:
            return
        config = {"run_id": run_id, "filename": f"unit_{unit.index:02d}.mp3"}
        try:
            unit.narration_audio_url = await runner.run(
                unit,
                STAGE_SPEECH,
                JobKind.SPEECH,
                speech_provider,
                queue_key(speech_provider, SPEECH_TIER),
                unit.narration,
                config
            )
            unit.narration_error = None
        except PipelineUnitFailure as e:
            unit.narration_error = str(e)
        except Exception as e:
            unit.narration_error = str(_unexpected_failure(unit, STAGE_SPEECH, e))
        await _notify(on_unit_update, unit)

    async def transform_one(unit: Unit) -> None:
        if unit.image_config is None or unit.image_config.status != AssetStatus.COMPLETED:
            unit.transform = UnitAssetState(
                prompt=video_prompt(unit),
                status=AssetStatus.SKIPPED,
                error="primary asset unavailable",
            )
            return
        if unit.transform is None:
            unit.transform = UnitAssetState(prompt=video_prompt(unit))
        await asyncio.gather(clip(unit), narrate(unit))

    await asyncio.gather(*(transform_one(unit) for unit in plan.units))
    failed = [u.index for u in plan.units if u.transform is not None and u.transform.status == AssetStatus.FAILED]
    logger.info(
        "Assets: transform phase done (%d units, %d failed, %d narration errors)",
        len(plan.units),
        len(failed),
        sum(1 for u in plan.units if u.narration_error)
    )
    return failed
