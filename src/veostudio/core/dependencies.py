"""Service wiring and FastAPI Unit of Work injection."""

from datetime import timedelta
from typing import AsyncGenerator

import httpx
from fastapi import Request

from veostudio.core.config import Settings
from veostudio.services.vertex.credentials import ServiceAccountCredentialProvider
from veostudio.services.vertex.enrichment import PromptEnricher
from veostudio.services.vertex.veo_client import VeoClient
from veostudio.services.video_generation.reconciler import VideoJobReconciler
from veostudio.services.video_generation.submission import VideoSubmissionService
from veostudio.uow import UnitOfWork, UnitOfWorkFactory


def build_video_services(
    settings: Settings,
    uow_factory: UnitOfWorkFactory,
    transport: httpx.AsyncBaseTransport | None = None,
) -> tuple[VideoSubmissionService, VideoJobReconciler]:
    """Wire the submission service and reconciler from one VertexConfig.

    Args:
        settings: Settings loaded once at process start
        uow_factory: Unit of Work factory shared by both services
        transport: Optional httpx transport for all Vertex calls (tests)

    Returns:
        (submission_service, reconciler)
    """
    config = settings.vertex_config()
    credentials = ServiceAccountCredentialProvider(config, transport=transport)
    veo_client = VeoClient(config, transport=transport)
    enricher = PromptEnricher(config, credentials, transport=transport)

    submission_service = VideoSubmissionService(
        uow_factory=uow_factory,
        credentials=credentials,
        enricher=enricher,
        veo_client=veo_client,
    )
    reconciler = VideoJobReconciler(
        uow_factory=uow_factory,
        credentials=credentials,
        veo_client=veo_client,
        stale_after=timedelta(seconds=settings.stale_job_seconds),
        max_batch_size=settings.max_sync_batch_size,
    )
    return submission_service, reconciler


async def get_uow(request: Request) -> AsyncGenerator[UnitOfWork, None]:
    """FastAPI dependency for Unit of Work injection.

    Retrieves the UoW factory from app.state and yields a UoW instance.
    The UoW is automatically committed on successful request completion
    or rolled back if an exception occurs.

    Example:
        @router.get("/api/videos")
        async def list_videos(uow: UnitOfWork = Depends(get_uow)):
            return await uow.video_jobs.list_for_owner(owner_id)
    """
    uow_factory = request.app.state.uow_factory
    async with await uow_factory() as uow:
        yield uow
