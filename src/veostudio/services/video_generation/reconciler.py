"""Video job reconciliation.

Brings a local VideoJob in line with its Veo long-running operation. Called
from client polling (single job or batches) and from the optional sweep
worker; safe to run concurrently for the same job.

State machine:
    queued -> processing -> completed | failed   (terminal states are final)

Reconcile steps for a processing job:
1. No handle and older than the stale threshold -> failed
2. No handle yet -> unchanged
3. No access token -> unchanged (transient)
4. Malformed poll response -> unchanged (transient)
5. Error: transient and not done -> unchanged; otherwise -> failed
6. Done: artifact -> completed (progress 100); no artifact -> failed
7. Still running -> progress + 2, capped at 99

Writes go through VideoJobRepository.save_transition, which only updates rows
that are still processing. A lost race re-reads and returns the stored row.
"""

import asyncio
from datetime import datetime, timedelta
from typing import Callable, Sequence

import structlog

from veostudio.core.timezone import utcnow
from veostudio.models.video_job import VideoJob, VideoJobStatus
from veostudio.services.exceptions import MalformedUpstreamResponse, TransientError
from veostudio.services.vertex.credentials import ServiceAccountCredentialProvider
from veostudio.services.vertex.veo_client import VeoClient
from veostudio.uow import UnitOfWorkFactory

logger = structlog.get_logger(__name__)

STALE_WITHOUT_HANDLE = timedelta(hours=1)
MAX_BATCH_SIZE = 5


class VideoJobReconciler:
    """Polls Veo operations and records their outcome on VideoJob rows."""

    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        credentials: ServiceAccountCredentialProvider,
        veo_client: VeoClient,
        stale_after: timedelta = STALE_WITHOUT_HANDLE,
        max_batch_size: int = MAX_BATCH_SIZE,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.uow_factory = uow_factory
        self.credentials = credentials
        self.veo_client = veo_client
        self.stale_after = stale_after
        self.max_batch_size = max_batch_size
        self.clock = clock

    async def reconcile(self, job_id: str, owner_id: str | None = None) -> VideoJob | None:
        """Reconcile one job with its upstream operation.

        Args:
            job_id: Job to reconcile
            owner_id: When given, only the owner's job is considered

        Returns:
            The job after reconciliation (unchanged when nothing was learned),
            or None if the job does not exist or an unexpected error occurred.
        """
        try:
            return await self._reconcile(job_id, owner_id)
        except Exception as e:
            logger.error(
                "video.reconcile.error",
                video_id=job_id,
                error_type=type(e).__name__,
                error_message=str(e),
                exc_info=True,
            )
            return None

    async def reconcile_many(
        self, job_ids: Sequence[str], owner_id: str | None = None
    ) -> list[VideoJob]:
        """Reconcile up to max_batch_size jobs concurrently.

        Duplicate ids are collapsed and only the first max_batch_size distinct
        ids are processed; callers with more pending jobs send further batches.
        One failing reconciliation does not affect the others.

        Returns:
            Reconciled jobs in request order, without missing or failed entries
        """
        if not job_ids:
            return []

        distinct_ids = list(dict.fromkeys(job_ids))
        selected = distinct_ids[: self.max_batch_size]
        if len(distinct_ids) > len(selected):
            logger.info(
                "video.reconcile.batch_truncated",
                requested=len(distinct_ids),
                processed=len(selected),
            )

        results = await asyncio.gather(
            *(self.reconcile(job_id, owner_id) for job_id in selected),
            return_exceptions=True,
        )

        jobs = []
        for job_id, result in zip(selected, results):
            if isinstance(result, BaseException):
                logger.error(
                    "video.reconcile.error",
                    video_id=job_id,
                    error_type=type(result).__name__,
                    error_message=str(result),
                )
            elif result is not None:
                jobs.append(result)
        return jobs

    async def _load(self, job_id: str, owner_id: str | None) -> VideoJob | None:
        async with await self.uow_factory() as uow:
            if owner_id is None:
                return await uow.video_jobs.get_by_id(job_id)
            return await uow.video_jobs.get_for_owner(job_id, owner_id)

    async def _reconcile(self, job_id: str, owner_id: str | None) -> VideoJob | None:
        job = await self._load(job_id, owner_id)
        if job is None:
            return None

        if job.status != VideoJobStatus.PROCESSING:
            return job

        if not job.operation_handle:
            if job.is_stale_without_handle(self.clock(), self.stale_after):
                logger.warning(
                    "video.reconcile.stale_without_handle",
                    video_id=job.id,
                    created_at=job.created_at.isoformat(),
                )
                job.mark_failed("No operation handle was recorded within the staleness window")
                return await self._persist(job)
            return job

        token = await self.credentials.acquire_token()
        if not token:
            logger.warning("video.reconcile.no_token", video_id=job.id)
            return job

        try:
            operation = await self.veo_client.fetch_operation(
                token, job.model, job.operation_handle
            )
            logger.debug(
                "video.reconcile.polled",
                video_id=job.id,
                done=operation.done,
                error_code=operation.error_code,
                error_message=operation.error_message,
            )
            operation.raise_for_transient_error()
        except MalformedUpstreamResponse as e:
            logger.warning("video.reconcile.malformed_response", video_id=job.id, error=str(e))
            return job
        except TransientError as e:
            # Job stays processing, next poll retries
            logger.info("video.reconcile.transient_error", video_id=job.id, error=str(e))
            return job

        if operation.has_error:
            logger.error(
                "video.reconcile.failed",
                video_id=job.id,
                done=operation.done,
                error_code=operation.error_code,
                error_message=operation.error_message,
            )
            job.mark_failed(
                f"Vertex operation error ({operation.error_code}): {operation.error_message}"
            )
            return await self._persist(job)

        if operation.done:
            result_uri = operation.result_uri()
            if result_uri:
                job.mark_completed(result_uri, completed_at=self.clock())
            else:
                logger.warning("video.reconcile.no_artifact", video_id=job.id)
                job.mark_failed("Operation finished without a video")
            return await self._persist(job)

        previous_progress = job.progress
        if job.advance_progress() == previous_progress:
            return job
        return await self._persist(job, require_progress_increase=True)

    async def _persist(self, job: VideoJob, require_progress_increase: bool = False) -> VideoJob:
        async with await self.uow_factory() as uow:
            if await uow.video_jobs.save_transition(job, require_progress_increase):
                logger.info(
                    "video.reconcile.updated",
                    video_id=job.id,
                    status=job.status.value,
                    progress=job.progress,
                )
                return job
            current = await uow.video_jobs.get_by_id(job.id)

        logger.info("video.reconcile.superseded", video_id=job.id, attempted=job.status.value)
        return current if current is not None else job
