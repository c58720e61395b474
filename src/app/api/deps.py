"""FastAPI dependency injection for app-scoped services and the session user.

Services are created once in the application lifespan and stored on
``app.state``; these helpers fetch them per request and answer 503 while
they are missing (startup not finished, or a misconfigured test app).
"""

from __future__ import annotations

from typing import Any

from fastapi import HTTPException, Request, status

from src.app.core.security import SESSION_COOKIE_NAME, verify_session_token
from src.app.meetings.schemas import SessionUser


def _get_state(request: Request, name: str, label: str) -> Any:
    value = getattr(request.app.state, name, None)
    if value is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{label} not available",
        )
    return value


def get_owner_repository(request: Request) -> Any:
    """Retrieve OwnerRepository from app.state, 503 if not available."""
    return _get_state(request, "owner_repository", "Owner repository")


def get_meeting_repository(request: Request) -> Any:
    """Retrieve MeetingRepository from app.state, 503 if not available."""
    return _get_state(request, "meeting_repository", "Meeting repository")


def get_lifecycle(request: Request) -> Any:
    """Retrieve LifecycleManager from app.state, 503 if not available."""
    return _get_state(request, "lifecycle", "Meeting lifecycle")


def get_notification_bus(request: Request) -> Any:
    """Retrieve NotificationBus from app.state, 503 if not available."""
    return _get_state(request, "notification_bus", "Notification bus")


def get_oauth_manager(request: Request) -> Any:
    """Retrieve GoogleOAuthManager from app.state, 503 if not available."""
    return _get_state(request, "oauth_manager", "OAuth client")


async def get_session_user(request: Request) -> SessionUser | None:
    """Session user from the cookie, or None for anonymous requests."""
    token = request.cookies.get(SESSION_COOKIE_NAME)
    if not token:
        return None
    return verify_session_token(token)
