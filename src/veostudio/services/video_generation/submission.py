"""Video submission service.

Creates the durable job record, enriches the prompt, starts the Veo
long-running operation and stores its handle. Returns as soon as the
operation is accepted; completion is picked up by the reconciler.

Workflow:
1. Reject anonymous callers
2. Insert job row (processing, progress=10, no handle) before any upstream call
3. Best-effort prompt enrichment
4. Encode reference media and build the predict request
5. Acquire an access token (failure is fatal here)
6. Submit to predictLongRunning
7. Persist the operation handle and return the job
Any failure after step 2 marks the job failed before the error propagates.
"""

import time
from dataclasses import dataclass, field

import structlog

from veostudio.models.video_job import VideoJob
from veostudio.services.exceptions import (
    CredentialAcquisitionError,
    SubmissionError,
    Unauthorized,
)
from veostudio.services.vertex.credentials import ServiceAccountCredentialProvider
from veostudio.services.vertex.enrichment import PromptEnricher, PromptPreset
from veostudio.services.vertex.veo_client import (
    ReferenceMedia,
    VeoClient,
    build_instance,
    build_parameters,
)
from veostudio.uow import UnitOfWorkFactory

logger = structlog.get_logger(__name__)


@dataclass
class SubmissionRequest:
    """User-supplied generation parameters."""

    prompt: str
    model: str
    duration_seconds: int = 5
    frame_size: str = "1280x720"
    reference_media: list[ReferenceMedia] = field(default_factory=list)
    preset: PromptPreset = PromptPreset.NONE
    translate_prompt: bool = False
    generate_audio: bool = False
    resolution: str = "720p"


class VideoSubmissionService:
    """Starts Veo generations and records them as VideoJob rows."""

    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        credentials: ServiceAccountCredentialProvider,
        enricher: PromptEnricher,
        veo_client: VeoClient,
    ):
        self.uow_factory = uow_factory
        self.credentials = credentials
        self.enricher = enricher
        self.veo_client = veo_client

    async def submit(self, owner_id: str | None, request: SubmissionRequest) -> VideoJob:
        """Submit a generation request for owner_id.

        Args:
            owner_id: Signed-in user's identifier
            request: Generation parameters

        Returns:
            The processing job with its operation handle attached

        Raises:
            Unauthorized: If owner_id is empty
            SubmissionError: Any submission failure (subclasses
                CredentialAcquisitionError, UpstreamBillingError, UpstreamError);
                the job has been marked failed
        """
        if not owner_id:
            raise Unauthorized("Unauthorized")

        start_time = time.time()
        job = VideoJob(
            owner_id=owner_id,
            prompt=request.prompt,
            model=request.model,
            duration_seconds=request.duration_seconds,
            frame_size=request.frame_size,
            resolution=request.resolution,
            preset=request.preset.value,
            generate_audio=request.generate_audio,
            translate_prompt=request.translate_prompt,
        )
        job.mark_processing()

        try:
            async with await self.uow_factory() as uow:
                await uow.video_jobs.add(job)

            logger.info(
                "video.submit.started",
                video_id=job.id,
                owner_id=owner_id,
                model=job.model,
                reference_count=len(request.reference_media),
            )

            prompt = await self.enricher.enrich(
                request.prompt,
                preset=request.preset,
                translate=request.translate_prompt,
                generate_audio=request.generate_audio,
            )

            instance = build_instance(prompt, request.reference_media)
            parameters = build_parameters(
                duration_seconds=request.duration_seconds,
                frame_size=request.frame_size,
                generate_audio=request.generate_audio,
                resolution=request.resolution,
            )

            token = await self.credentials.acquire_token()
            if not token:
                raise CredentialAcquisitionError("Access token acquisition failed at submission")

            operation_handle = await self.veo_client.start_generation(
                token, job.model, instance, parameters
            )
            job.attach_operation(operation_handle)

            async with await self.uow_factory() as uow:
                await uow.video_jobs.set_operation_handle(job)
                if prompt != request.prompt:
                    await uow.video_jobs.update_enhanced_prompt(job.id, prompt)
                    job.enhanced_prompt = prompt

            logger.info(
                "video.submit.succeeded",
                video_id=job.id,
                operation_handle=operation_handle,
                duration_seconds=time.time() - start_time,
            )
            return job

        except SubmissionError as e:
            await self._mark_failed(job, e.user_message)
            logger.error(
                "video.submit.failed",
                video_id=job.id,
                error_type=type(e).__name__,
                error_message=str(e),
            )
            raise

        except Exception as e:
            await self._mark_failed(job, str(e))
            logger.error(
                "video.submit.failed",
                video_id=job.id,
                error_type=type(e).__name__,
                error_message=str(e),
                exc_info=True,
            )
            raise SubmissionError(
                message=f"Unexpected submission error: {e}",
                user_message=f"Failed to reach the video engine: {str(e) or type(e).__name__}",
            ) from e

    async def _mark_failed(self, job: VideoJob, error_message: str) -> None:
        """Best-effort failure write; errors here are logged and swallowed."""
        try:
            job.mark_failed(error_message)
            async with await self.uow_factory() as uow:
                await uow.video_jobs.save_transition(job)
        except Exception as e:
            logger.error(
                "video.submit.mark_failed_error",
                video_id=job.id,
                error_type=type(e).__name__,
                error_message=str(e),
            )
