"""UserSession entity - sign-in sessions written by the authentication service."""

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import Column, DateTime
from sqlmodel import Field, SQLModel

from veostudio.core.timezone import utcnow


class UserSession(SQLModel, table=True):
    """UserSession maps an opaque session token to the signed-in user.

    Rows are owned by the external authentication service; this backend only reads them.
    """

    __tablename__ = "user_sessions"  # type: ignore[assignment]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    token: str = Field(unique=True, index=True, max_length=255)
    user_id: str = Field(index=True, max_length=255)
    expires_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    created_at: datetime = Field(
        default_factory=utcnow, sa_column=Column(DateTime(timezone=True), nullable=False)
    )
