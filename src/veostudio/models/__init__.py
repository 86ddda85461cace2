"""SQLModel database entities.

All models are imported here to ensure they're registered with SQLModel metadata
for Alembic autogenerate support.
"""

from veostudio.models.user_session import UserSession
from veostudio.models.video_job import (
    InvalidStateTransition,
    VideoJob,
    VideoJobStatus,
    VideoJobSummary,
    generate_video_id,
)

__all__ = [
    "UserSession",
    "VideoJob",
    "VideoJobStatus",
    "VideoJobSummary",
    "InvalidStateTransition",
    "generate_video_id",
]
