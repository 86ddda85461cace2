"""Video generation API endpoints.

This module implements REST endpoints for the video job lifecycle:
- POST /api/videos - Submit a generation request (multipart form with optional references)
- GET /api/videos - List the caller's most recent jobs (no result payload)
- GET /api/videos/{video_id}/url - Fetch the result URI of a completed job
- POST /api/videos/{video_id}/sync - Reconcile one job with its upstream operation
- POST /api/videos/sync - Reconcile a batch of jobs
- DELETE /api/videos/latest - Delete the caller's most recent job
- DELETE /api/videos/{video_id} - Delete one job
- GET /api/videos/{video_id}/download - Download the generated file

Every endpoint is scoped to the signed-in user resolved from the session token.
"""

import base64
import binascii
from datetime import datetime
from typing import Annotated

import structlog
from fastapi import APIRouter, Depends, File, Form, HTTPException, Response, UploadFile, status
from fastapi.responses import RedirectResponse
from pydantic import BaseModel, ConfigDict, Field

from veostudio.api.dependencies import (
    get_current_user_id,
    get_reconciler,
    get_settings,
    get_submission_service,
)
from veostudio.core.config import Settings
from veostudio.core.dependencies import get_uow
from veostudio.services.exceptions import SubmissionError, Unauthorized
from veostudio.services.vertex.enrichment import PromptPreset
from veostudio.services.vertex.veo_client import ReferenceMedia
from veostudio.services.video_generation.reconciler import VideoJobReconciler
from veostudio.services.video_generation.submission import (
    SubmissionRequest,
    VideoSubmissionService,
)
from veostudio.uow import UnitOfWork

logger = structlog.get_logger()
router = APIRouter(prefix="/api/videos", tags=["videos"])


# Request/Response Models


class VideoJobDTO(BaseModel):
    """Job summary returned to clients.

    Note: Does NOT include the result URI. Inline results can be very large;
    clients fetch them through GET /api/videos/{video_id}/url once completed.
    """

    model_config = ConfigDict(from_attributes=True)

    id: str = Field(..., description="Job identifier (vid_<epoch-ms>_<random>)")
    status: str = Field(..., description="Job status (queued, processing, completed, failed)")
    progress: int = Field(..., description="Coarse progress 0-100")
    prompt: str = Field(..., description="Prompt as submitted by the user")
    model: str = Field(..., description="Veo model identifier")
    duration_seconds: int = Field(..., description="Requested clip duration")
    frame_size: str = Field(..., description="Requested frame size")
    resolution: str = Field(..., description="Requested output resolution")
    created_at: datetime = Field(..., description="Submission time (UTC)")
    completed_at: datetime | None = Field(
        default=None,
        description="Completion time (UTC), null unless completed",
    )


class SyncBatchRequest(BaseModel):
    """Request model for batch reconciliation."""

    video_ids: list[str] = Field(
        default_factory=list,
        description="Job ids to reconcile; only the first few distinct ids are processed",
    )


class ResultUriResponse(BaseModel):
    result_uri: str = Field(..., description="Data URI or remote storage URI of the video")


class DeleteResponse(BaseModel):
    success: bool
    deleted_id: str | None = None


# API Endpoints


@router.post("", response_model=VideoJobDTO, status_code=status.HTTP_201_CREATED)
async def create_video(
    prompt: Annotated[str, Form(min_length=1)],
    model: Annotated[str | None, Form()] = None,
    seconds: Annotated[int, Form(ge=1, le=60)] = 5,
    size: Annotated[str, Form()] = "1280x720",
    resolution: Annotated[str, Form()] = "720p",
    preset: Annotated[str, Form()] = PromptPreset.NONE.value,
    generate_audio: Annotated[bool, Form(alias="generateAudio")] = False,
    translate_prompt: Annotated[bool, Form(alias="translatePrompt")] = False,
    input_reference: Annotated[list[UploadFile] | None, File()] = None,
    owner_id: str = Depends(get_current_user_id),
    settings: Settings = Depends(get_settings),
    service: VideoSubmissionService = Depends(get_submission_service),
) -> VideoJobDTO:
    """Submit a video generation request.

    Returns as soon as the upstream operation is accepted; clients poll the
    sync endpoints for progress.

    Raises:
        HTTPException: 401 if no session, 422 for an unknown preset or
            model, 502 if the submission failed (detail is user-facing)
    """
    try:
        prompt_preset = PromptPreset(preset)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Unknown preset: {preset}",
        )

    model_id = model or settings.default_video_model
    if model_id not in settings.allowed_video_models_list:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Unsupported model: {model_id}",
        )

    reference_media = []
    for upload in input_reference or []:
        data = await upload.read()
        if data:
            reference_media.append(
                ReferenceMedia(data=data, mime_type=upload.content_type or "image/png")
            )

    request = SubmissionRequest(
        prompt=prompt,
        model=model_id,
        duration_seconds=seconds,
        frame_size=size,
        reference_media=reference_media,
        preset=prompt_preset,
        translate_prompt=translate_prompt,
        generate_audio=generate_audio,
        resolution=resolution,
    )

    try:
        job = await service.submit(owner_id, request)
    except Unauthorized:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    except SubmissionError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=e.user_message)

    return VideoJobDTO.model_validate(job)


@router.get("", response_model=list[VideoJobDTO])
async def list_videos(
    owner_id: str = Depends(get_current_user_id),
    settings: Settings = Depends(get_settings),
    uow: UnitOfWork = Depends(get_uow),
) -> list[VideoJobDTO]:
    """List the caller's jobs, most recent first."""
    summaries = await uow.video_jobs.list_for_owner(owner_id, limit=settings.video_list_limit)
    return [VideoJobDTO.model_validate(summary) for summary in summaries]


@router.get("/{video_id}/url", response_model=ResultUriResponse)
async def get_video_url(
    video_id: str,
    owner_id: str = Depends(get_current_user_id),
    uow: UnitOfWork = Depends(get_uow),
) -> ResultUriResponse:
    """Return the result URI of a completed job.

    Raises:
        HTTPException: 404 if the job does not exist or has no result
    """
    result_uri = await uow.video_jobs.get_result_uri(video_id, owner_id)
    if not result_uri:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Video not found")
    return ResultUriResponse(result_uri=result_uri)


@router.post("/sync", response_model=list[VideoJobDTO])
async def sync_videos(
    request: SyncBatchRequest,
    owner_id: str = Depends(get_current_user_id),
    reconciler: VideoJobReconciler = Depends(get_reconciler),
) -> list[VideoJobDTO]:
    """Reconcile a batch of the caller's jobs.

    Missing jobs and jobs whose reconciliation errored are omitted.
    """
    jobs = await reconciler.reconcile_many(request.video_ids, owner_id=owner_id)
    return [VideoJobDTO.model_validate(job) for job in jobs]


@router.post("/{video_id}/sync", response_model=VideoJobDTO | None)
async def sync_video(
    video_id: str,
    owner_id: str = Depends(get_current_user_id),
    reconciler: VideoJobReconciler = Depends(get_reconciler),
) -> VideoJobDTO | None:
    """Reconcile one job; returns null if it does not exist or errored."""
    job = await reconciler.reconcile(video_id, owner_id=owner_id)
    if job is None:
        return None
    return VideoJobDTO.model_validate(job)


@router.delete("/latest", response_model=DeleteResponse)
async def delete_latest_video(
    owner_id: str = Depends(get_current_user_id),
    uow: UnitOfWork = Depends(get_uow),
) -> DeleteResponse:
    """Delete the caller's most recently created job, if any."""
    job = await uow.video_jobs.get_latest_for_owner(owner_id)
    if job is None:
        return DeleteResponse(success=False)

    deleted = await uow.video_jobs.delete_for_owner(job.id, owner_id)
    if deleted:
        logger.info("video.deleted", video_id=job.id, owner_id=owner_id, latest=True)
    return DeleteResponse(success=deleted, deleted_id=job.id if deleted else None)


@router.delete("/{video_id}", response_model=DeleteResponse)
async def delete_video(
    video_id: str,
    owner_id: str = Depends(get_current_user_id),
    uow: UnitOfWork = Depends(get_uow),
) -> DeleteResponse:
    """Delete one of the caller's jobs.

    Raises:
        HTTPException: 404 if the job does not exist
    """
    if not await uow.video_jobs.delete_for_owner(video_id, owner_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Video not found")

    logger.info("video.deleted", video_id=video_id, owner_id=owner_id)
    return DeleteResponse(success=True, deleted_id=video_id)


def _decode_data_uri(uri: str) -> tuple[str, bytes]:
    """Split ``data:<mime>;base64,<payload>`` into (mime, bytes).

    Raises:
        ValueError: If the URI is not a base64 data URI
    """
    header, sep, payload = uri.partition(",")
    if not sep or not header.startswith("data:") or not header.endswith(";base64"):
        raise ValueError("Not a base64 data URI")
    mime_type = header[len("data:") : -len(";base64")] or "application/octet-stream"
    try:
        return mime_type, base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValueError(f"Invalid base64 payload: {e}")


@router.get("/{video_id}/download")
async def download_video(
    video_id: str,
    owner_id: str = Depends(get_current_user_id),
    uow: UnitOfWork = Depends(get_uow),
) -> Response:
    """Download the generated file.

    Inline results are decoded and returned as an attachment; remote results
    redirect to their storage URI.

    Raises:
        HTTPException: 404 if the job does not exist, 400 if it has no content
    """
    job = await uow.video_jobs.get_for_owner(video_id, owner_id)
    if job is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Video not found")
    if not job.result_uri:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No video content")

    if not job.result_uri.startswith("data:"):
        return RedirectResponse(job.result_uri, status_code=status.HTTP_307_TEMPORARY_REDIRECT)

    try:
        mime_type, content = _decode_data_uri(job.result_uri)
    except ValueError as e:
        logger.error("video.download.invalid_data_uri", video_id=video_id, error=str(e))
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No video content")

    extension = "mp4" if "video" in mime_type else "png"
    return Response(
        content=content,
        media_type=mime_type,
        headers={
            "Content-Disposition": f'attachment; filename="generated-{video_id}.{extension}"'
        },
    )
