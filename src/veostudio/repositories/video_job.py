"""VideoJob repository.

Provides data access methods for VideoJob entities. Every state write is a
targeted UPDATE keyed by job id and guarded by the expected current status, so
concurrent reconciliations of the same job cannot resurrect a terminal state or
move progress backwards.
"""

from datetime import datetime

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from veostudio.models.video_job import VideoJob, VideoJobStatus, VideoJobSummary

_SUMMARY_COLUMNS = (
    VideoJob.id,
    VideoJob.owner_id,
    VideoJob.prompt,
    VideoJob.model,
    VideoJob.duration_seconds,
    VideoJob.frame_size,
    VideoJob.resolution,
    VideoJob.status,
    VideoJob.progress,
    VideoJob.operation_handle,
    VideoJob.created_at,
    VideoJob.completed_at,
)


class VideoJobRepository:
    """Repository for VideoJob entities."""

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def add(self, job: VideoJob) -> VideoJob:
        """Persist new video job to database.

        Args:
            job: VideoJob entity to persist

        Returns:
            Persisted job
        """
        self.session.add(job)
        await self.session.flush()
        return job

    async def get_by_id(self, job_id: str) -> VideoJob | None:
        """Retrieve video job by id.

        Bypasses the session identity map so concurrent writers are observed.
        """
        result = await self.session.execute(
            select(VideoJob)
            .where(VideoJob.id == job_id)  # type: ignore[arg-type]
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_for_owner(self, job_id: str, owner_id: str) -> VideoJob | None:
        """Retrieve video job by id, scoped to its owner."""
        result = await self.session.execute(
            select(VideoJob)
            .where(VideoJob.id == job_id)  # type: ignore[arg-type]
            .where(VideoJob.owner_id == owner_id)  # type: ignore[arg-type]
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_for_owner(self, owner_id: str, limit: int = 50) -> list[VideoJobSummary]:
        """List an owner's jobs, most recent first, without the result payload.

        Inline results can be tens of megabytes of base64, so only the
        lightweight columns are selected.

        Args:
            owner_id: Requesting user's identifier
            limit: Maximum number of jobs returned

        Returns:
            Job summaries ordered by creation time (newest first)
        """
        result = await self.session.execute(
            select(*_SUMMARY_COLUMNS)
            .where(VideoJob.owner_id == owner_id)  # type: ignore[arg-type]
            .order_by(VideoJob.created_at.desc())  # type: ignore[union-attr]
            .limit(limit)
        )
        return [VideoJobSummary.model_validate(dict(row)) for row in result.mappings().all()]

    async def get_latest_for_owner(self, owner_id: str) -> VideoJob | None:
        """Retrieve the owner's most recently created job."""
        result = await self.session.execute(
            select(VideoJob)
            .where(VideoJob.owner_id == owner_id)  # type: ignore[arg-type]
            .order_by(VideoJob.created_at.desc())  # type: ignore[union-attr]
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def get_result_uri(self, job_id: str, owner_id: str) -> str | None:
        """Load only the result URI of an owner's job."""
        result = await self.session.execute(
            select(VideoJob.result_uri)
            .where(VideoJob.id == job_id)  # type: ignore[arg-type]
            .where(VideoJob.owner_id == owner_id)  # type: ignore[arg-type]
        )
        return result.scalar_one_or_none()

    async def list_processing(
        self, limit: int = 20, created_after: datetime | None = None
    ) -> list[tuple[str, datetime]]:
        """(id, created_at) of jobs still processing, oldest first.

        Args:
            limit: Maximum number of rows
            created_after: Only jobs created strictly after this time (sweep cursor)
        """
        query = select(VideoJob.id, VideoJob.created_at).where(
            VideoJob.status == VideoJobStatus.PROCESSING  # type: ignore[arg-type]
        )
        if created_after is not None:
            query = query.where(VideoJob.created_at > created_after)  # type: ignore[operator]

        result = await self.session.execute(
            query.order_by(VideoJob.created_at.asc()).limit(limit)  # type: ignore[union-attr]
        )
        return [(row.id, row.created_at) for row in result.all()]

    async def set_operation_handle(self, job: VideoJob) -> bool:
        """Persist job.operation_handle unless the row already has one.

        Query:
            UPDATE video_jobs SET operation_handle = :handle
            WHERE id = :id AND operation_handle IS NULL

        Returns:
            True if the handle was written, False if one was already set
        """
        result = await self.session.execute(
            update(VideoJob)
            .where(VideoJob.id == job.id)  # type: ignore[arg-type]
            .where(VideoJob.operation_handle.is_(None))  # type: ignore[union-attr]
            .values(operation_handle=job.operation_handle)
        )
        return result.rowcount == 1  # type: ignore[attr-defined]

    async def save_transition(
        self, job: VideoJob, require_progress_increase: bool = False
    ) -> bool:
        """Compare-and-set the job's lifecycle fields.

        Writes status, progress, result_uri, completed_at and error_message only
        while the stored row is still processing. With require_progress_increase
        (a plain progress bump), the write also requires the stored progress to be
        lower than the new value, so progress never decreases.

        Query:
            UPDATE video_jobs SET status = :status, progress = :progress, ...
            WHERE id = :id AND status = 'processing' [AND progress < :progress]

        Args:
            job: In-memory job carrying the new field values
            require_progress_increase: Also guard on the stored progress being lower

        Returns:
            True if the row was updated, False if another writer got there first
        """
        stmt = (
            update(VideoJob)
            .where(VideoJob.id == job.id)  # type: ignore[arg-type]
            .where(VideoJob.status == VideoJobStatus.PROCESSING)  # type: ignore[arg-type]
        )
        if require_progress_increase:
            stmt = stmt.where(VideoJob.progress < job.progress)  # type: ignore[arg-type]

        result = await self.session.execute(
            stmt.values(
                status=job.status,
                progress=job.progress,
                result_uri=job.result_uri,
                completed_at=job.completed_at,
                error_message=job.error_message,
            )
        )
        return result.rowcount == 1  # type: ignore[attr-defined]

    async def update_enhanced_prompt(self, job_id: str, enhanced_prompt: str) -> None:
        """Record the prompt actually sent upstream."""
        await self.session.execute(
            update(VideoJob)
            .where(VideoJob.id == job_id)  # type: ignore[arg-type]
            .values(enhanced_prompt=enhanced_prompt)
        )

    async def delete_for_owner(self, job_id: str, owner_id: str) -> bool:
        """Delete an owner's job.

        Returns:
            True if a row was deleted
        """
        result = await self.session.execute(
            delete(VideoJob)
            .where(VideoJob.id == job_id)  # type: ignore[arg-type]
            .where(VideoJob.owner_id == owner_id)  # type: ignore[arg-type]
        )
        return result.rowcount == 1  # type: ignore[attr-defined]
