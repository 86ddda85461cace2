"""VideoJob entity - one user-requested Veo generation attempt and its lifecycle."""

import secrets
import time
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from sqlalchemy import Column, DateTime, Text
from sqlmodel import Field, SQLModel

from veostudio.core.timezone import ensure_utc, utcnow

INITIAL_PROGRESS = 10
PROGRESS_STEP = 2
PROGRESS_CAP = 99


class VideoJobStatus(str, Enum):
    """VideoJob lifecycle status."""

    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (VideoJobStatus.COMPLETED, VideoJobStatus.FAILED)


class InvalidStateTransition(Exception):
    """Raised when attempting an invalid video job state transition."""

    pass


def generate_video_id() -> str:
    """Create a new job id (``vid_<epoch-ms>_<random>``), never reused."""
    return f"vid_{int(time.time() * 1000)}_{secrets.token_hex(4)}"


class VideoJob(SQLModel, table=True):
    """VideoJob correlates a local record with a long-running Vertex operation."""

    __tablename__ = "video_jobs"  # type: ignore[assignment]

    id: str = Field(default_factory=generate_video_id, primary_key=True, max_length=64)
    owner_id: str = Field(index=True, max_length=255)
    prompt: str = Field(sa_column=Column(Text, nullable=False))
    enhanced_prompt: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    model: str = Field(max_length=100)
    duration_seconds: int = Field(ge=1)
    frame_size: str = Field(max_length=20)
    resolution: str = Field(default="720p", max_length=10)
    preset: str = Field(default="none", max_length=20)
    generate_audio: bool = Field(default=False)
    translate_prompt: bool = Field(default=False)

    status: VideoJobStatus = Field(default=VideoJobStatus.QUEUED, index=True)
    progress: int = Field(default=0, ge=0, le=100)
    operation_handle: Optional[str] = Field(default=None, max_length=512)
    result_uri: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    error_message: Optional[str] = Field(default=None, max_length=1000)

    created_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False, index=True),
    )
    completed_at: Optional[datetime] = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )

    def mark_processing(self) -> None:
        """Transition from queued to processing with the initial progress value.

        Raises:
            InvalidStateTransition: If current status is not queued
        """
        if self.status != VideoJobStatus.QUEUED:
            raise InvalidStateTransition(
                f"Cannot mark processing from {self.status.value}. Job must be queued."
            )
        self.status = VideoJobStatus.PROCESSING
        self.progress = max(self.progress, INITIAL_PROGRESS)

    def attach_operation(self, operation_handle: str) -> None:
        """Record the upstream operation handle. A handle is never overwritten.

        Raises:
            InvalidStateTransition: If a handle is already attached
            ValueError: If operation_handle is empty
        """
        if self.operation_handle:
            raise InvalidStateTransition(
                f"Job {self.id} already has operation handle {self.operation_handle}."
            )
        if not operation_handle:
            raise ValueError("operation_handle is required")
        self.operation_handle = operation_handle

    def advance_progress(self, step: int = PROGRESS_STEP, cap: int = PROGRESS_CAP) -> int:
        """Bump progress by a fixed step, capped below 100. Never decreases.

        Raises:
            InvalidStateTransition: If current status is not processing
        """
        if self.status != VideoJobStatus.PROCESSING:
            raise InvalidStateTransition(
                f"Cannot advance progress from {self.status.value}. Job must be processing."
            )
        current = self.progress or 0
        self.progress = max(current, min(cap, current + step))
        return self.progress

    def mark_completed(self, result_uri: str, completed_at: Optional[datetime] = None) -> None:
        """Transition from processing to completed.

        Raises:
            InvalidStateTransition: If current status is not processing
            ValueError: If result_uri is empty
        """
        if self.status != VideoJobStatus.PROCESSING:
            raise InvalidStateTransition(
                f"Cannot mark completed from {self.status.value}. Job must be processing."
            )
        if not result_uri:
            raise ValueError("result_uri is required")
        self.status = VideoJobStatus.COMPLETED
        self.progress = 100
        self.result_uri = result_uri
        self.completed_at = completed_at or utcnow()

    def mark_failed(self, error_message: Optional[str] = None) -> None:
        """Transition from any non-terminal state to failed.

        Raises:
            InvalidStateTransition: If current status is already terminal
        """
        if VideoJobStatus(self.status).is_terminal:
            raise InvalidStateTransition(
                f"Cannot mark failed from terminal state {self.status.value}."
            )
        self.status = VideoJobStatus.FAILED
        self.result_uri = None
        self.completed_at = None
        if error_message:
            self.error_message = error_message[:1000]

    def is_stale_without_handle(self, now: datetime, max_age: timedelta) -> bool:
        """True when the job never obtained an operation handle and is older than max_age."""
        if self.operation_handle:
            return False
        return now - ensure_utc(self.created_at) > max_age


class VideoJobSummary(SQLModel):
    """Lightweight projection of VideoJob for listings (no result payload)."""

    id: str
    owner_id: str
    prompt: str
    model: str
    duration_seconds: int
    frame_size: str
    resolution: str
    status: VideoJobStatus
    progress: int
    operation_handle: Optional[str] = None
    created_at: datetime
    completed_at: Optional[datetime] = None
