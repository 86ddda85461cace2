"""create_video_jobs_and_user_sessions

Revision ID: 3f1a9c2e7b10
Revises:
Create Date: 2026-10-19 10:12:41.318204

"""

from typing import Sequence, Union

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "3f1a9c2e7b10"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

video_job_status = sa.Enum(
    "QUEUED", "PROCESSING", "COMPLETED", "FAILED", name="videojobstatus"
)


def upgrade() -> None:
    """Create video_jobs and user_sessions tables."""
    op.create_table(
        "video_jobs",
        sa.Column("id", sa.String(length=64), nullable=False),
        sa.Column("owner_id", sa.String(length=255), nullable=False),
        sa.Column("prompt", sa.Text(), nullable=False),
        sa.Column("enhanced_prompt", sa.Text(), nullable=True),
        sa.Column("model", sa.String(length=100), nullable=False),
        sa.Column("duration_seconds", sa.Integer(), nullable=False),
        sa.Column("frame_size", sa.String(length=20), nullable=False),
        sa.Column("resolution", sa.String(length=10), nullable=False),
        sa.Column("preset", sa.String(length=20), nullable=False),
        sa.Column("generate_audio", sa.Boolean(), nullable=False),
        sa.Column("translate_prompt", sa.Boolean(), nullable=False),
        sa.Column("status", video_job_status, nullable=False),
        sa.Column("progress", sa.Integer(), nullable=False),
        sa.Column("operation_handle", sa.String(length=512), nullable=True),
        sa.Column("result_uri", sa.Text(), nullable=True),
        sa.Column("error_message", sa.String(length=1000), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_video_jobs_owner_id", "video_jobs", ["owner_id"])
    op.create_index("ix_video_jobs_status", "video_jobs", ["status"])
    op.create_index("ix_video_jobs_created_at", "video_jobs", ["created_at"])

    # Owned by the authentication service; created here so a fresh database is usable
    op.create_table(
        "user_sessions",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("token", sa.String(length=255), nullable=False),
        sa.Column("user_id", sa.String(length=255), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_user_sessions_token", "user_sessions", ["token"], unique=True)
    op.create_index("ix_user_sessions_user_id", "user_sessions", ["user_id"])


def downgrade() -> None:
    """Drop video_jobs and user_sessions tables."""
    op.drop_index("ix_user_sessions_user_id", table_name="user_sessions")
    op.drop_index("ix_user_sessions_token", table_name="user_sessions")
    op.drop_table("user_sessions")

    op.drop_index("ix_video_jobs_created_at", table_name="video_jobs")
    op.drop_index("ix_video_jobs_status", table_name="video_jobs")
    op.drop_index("ix_video_jobs_owner_id", table_name="video_jobs")
    op.drop_table("video_jobs")
    video_job_status.drop(op.get_bind(), checkfirst=True)
