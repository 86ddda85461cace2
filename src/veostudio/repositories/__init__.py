"""Repository layer.

Provides data access abstractions for all domain entities.
Each repository is self-contained, no base classes.
"""

from veostudio.repositories.user_session import UserSessionRepository
from veostudio.repositories.video_job import VideoJobRepository

__all__ = [
    "UserSessionRepository",
    "VideoJobRepository",
]
