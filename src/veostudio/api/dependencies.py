"""FastAPI dependencies for request validation and common operations.

This module provides reusable FastAPI dependencies for:
- Settings and service access from app.state
- Resolving the signed-in user from a session token
"""

from typing import Annotated

from fastapi import Cookie, Depends, Header, HTTPException, Request, status

from veostudio.core.config import Settings
from veostudio.core.timezone import utcnow
from veostudio.services.video_generation.reconciler import VideoJobReconciler
from veostudio.services.video_generation.submission import VideoSubmissionService
from veostudio.uow import UnitOfWorkFactory

SESSION_COOKIE = "session_token"


def get_settings(request: Request) -> Settings:
    """Get the settings instance loaded at startup."""
    return request.app.state.settings


def get_uow_factory(request: Request) -> UnitOfWorkFactory:
    """Get UnitOfWork factory from app state."""
    return request.app.state.uow_factory


def get_submission_service(request: Request) -> VideoSubmissionService:
    return request.app.state.submission_service


def get_reconciler(request: Request) -> VideoJobReconciler:
    return request.app.state.reconciler


def _extract_session_token(authorization: str | None, cookie_token: str | None) -> str | None:
    if authorization:
        scheme, _, credentials = authorization.partition(" ")
        if scheme.lower() == "bearer" and credentials.strip():
            return credentials.strip()
    return cookie_token or None


async def get_current_user_id(
    authorization: Annotated[str | None, Header()] = None,
    session_token: Annotated[str | None, Cookie(alias=SESSION_COOKIE)] = None,
    uow_factory: UnitOfWorkFactory = Depends(get_uow_factory),
) -> str:
    """Resolve the signed-in user from the session issued by the auth service.

    Accepts ``Authorization: Bearer <token>`` or the ``session_token`` cookie.
    The lookup runs in its own Unit of Work, so the connection is back in the
    pool before the endpoint makes any upstream call.

    Raises:
        HTTPException: 401 Unauthorized if no unexpired session matches
    """
    token = _extract_session_token(authorization, session_token)
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")

    async with await uow_factory() as uow:
        user_id = await uow.user_sessions.get_active_user_id(token, utcnow())
    if not user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")

    return user_id
