"""Veo job orchestration: submission and reconciliation."""

from veostudio.services.video_generation.reconciler import VideoJobReconciler
from veostudio.services.video_generation.submission import (
    SubmissionRequest,
    VideoSubmissionService,
)

__all__ = [
    "SubmissionRequest",
    "VideoJobReconciler",
    "VideoSubmissionService",
]
