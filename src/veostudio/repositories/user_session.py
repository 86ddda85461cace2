"""UserSession repository.

Resolves session tokens issued by the authentication service to user ids.
"""

from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from veostudio.models.user_session import UserSession


class UserSessionRepository:
    """Read-only repository for UserSession entities."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_active_user_id(self, token: str, now: datetime) -> str | None:
        """Return the user id for an unexpired session token.

        Args:
            token: Opaque session token from the Authorization header or cookie
            now: Current UTC time

        Returns:
            User id if the session exists and has not expired, None otherwise
        """
        result = await self.session.execute(
            select(UserSession.user_id)
            .where(UserSession.token == token)  # type: ignore[arg-type]
            .where(UserSession.expires_at > now)  # type: ignore[arg-type]
        )
        return result.scalar_one_or_none()
