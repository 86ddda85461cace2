"""Reconcile worker for jobs nobody is polling.

Client polling drives reconciliation while a user has the page open. This
worker sweeps the remaining processing jobs so they still reach a terminal
state (and stale jobs without a handle are failed) after the client leaves.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime

import structlog

from veostudio.core.config import Settings
from veostudio.models.video_job import VideoJobStatus
from veostudio.services.video_generation.reconciler import VideoJobReconciler
from veostudio.uow import UnitOfWorkFactory

logger = structlog.get_logger()


@dataclass
class SweepResult:
    """Outcome of one sweep over processing jobs.

    ``next_cursor`` is the creation time of the last job scanned when the
    sweep hit its limit; passing it to the next sweep continues after that
    job. None means the sweep reached the newest job and the next one starts
    over from the oldest.
    """

    scanned: int = 0
    completed: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    still_processing: int = 0
    errors: int = 0
    next_cursor: datetime | None = None


async def sweep_processing_jobs(
    uow_factory: UnitOfWorkFactory,
    reconciler: VideoJobReconciler,
    limit: int = 20,
    created_after: datetime | None = None,
) -> SweepResult:
    """Reconcile up to ``limit`` processing jobs, oldest first.

    Jobs are reconciled in chunks of the reconciler's batch size so a sweep
    never exceeds the concurrency of a client batch.

    Args:
        uow_factory: Unit of Work factory
        reconciler: Shared reconciler instance
        limit: Maximum number of jobs reconciled in this sweep
        created_after: Cursor from the previous sweep's ``next_cursor``
    """
    async with await uow_factory() as uow:
        rows = await uow.video_jobs.list_processing(limit=limit, created_after=created_after)

    job_ids = [job_id for job_id, _ in rows]
    result = SweepResult(scanned=len(job_ids))
    if rows and len(rows) >= limit:
        result.next_cursor = rows[-1][1]

    chunk_size = max(1, reconciler.max_batch_size)

    for start in range(0, len(job_ids), chunk_size):
        chunk = job_ids[start : start + chunk_size]
        jobs = await reconciler.reconcile_many(chunk)
        result.errors += len(chunk) - len(jobs)

        for job in jobs:
            if job.status == VideoJobStatus.COMPLETED:
                result.completed.append(job.id)
            elif job.status == VideoJobStatus.FAILED:
                result.failed.append(job.id)
            else:
                result.still_processing += 1

    return result


async def run_reconcile_worker(
    uow_factory: UnitOfWorkFactory,
    reconciler: VideoJobReconciler,
    settings: Settings,
) -> None:
    """Main entry point for the reconcile worker.

    Infinite polling loop that sweeps processing jobs every
    RECONCILE_POLL_INTERVAL_SECONDS. Each sweep continues after the last job
    of the previous one, so every processing job is visited even when more
    than a batch is outstanding. Individual reconciliation failures are
    absorbed by the reconciler; unexpected sweep errors are logged and the
    loop continues on the next poll.

    Worker lifecycle:
    - Started by the FastAPI lifespan when RECONCILE_WORKER_ENABLED is set
    - Runs until asyncio.CancelledError (app shutdown)

    Args:
        uow_factory: Unit of Work factory
        reconciler: Shared reconciler instance
        settings: Application settings (poll interval, batch size)
    """
    poll_interval = settings.reconcile_poll_interval_seconds
    batch_size = settings.reconcile_worker_batch_size

    logger.info(
        "worker.started",
        worker="reconcile_worker",
        poll_interval=poll_interval,
        batch_size=batch_size,
    )

    cursor = None
    try:
        while True:
            try:
                result = await sweep_processing_jobs(
                    uow_factory, reconciler, limit=batch_size, created_after=cursor
                )
                cursor = result.next_cursor
                if result.scanned:
                    logger.info(
                        "reconcile.sweep_completed",
                        scanned=result.scanned,
                        completed=len(result.completed),
                        failed=len(result.failed),
                        still_processing=result.still_processing,
                        errors=result.errors,
                    )
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(
                    "reconcile.sweep_error",
                    error=str(e),
                    error_type=type(e).__name__,
                )

            await asyncio.sleep(poll_interval)

    except asyncio.CancelledError:
        logger.info("worker.stopped", worker="reconcile_worker")
        raise
