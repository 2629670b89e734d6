"""FastAPI dependencies shared by the Examclock routers."""

from __future__ import annotations

from collections.abc import Callable

from fastapi import HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from examclock.lifecycle.notifications import NotificationBroadcaster
from examclock.lifecycle.service import WindowLifecycleService


def get_session_factory(request: Request) -> Callable[[], AsyncSession]:
    """Extract session factory from FastAPI app state.

    Args:
        request: Incoming FastAPI request.

    Returns:
        Callable that produces AsyncSession instances.
    """
    return request.app.state.session_factory


def get_lifecycle(request: Request) -> WindowLifecycleService:
    """Extract the lifecycle service from FastAPI app state."""
    return request.app.state.lifecycle


def get_broadcaster(request: Request) -> NotificationBroadcaster:
    """Extract the notification broadcaster from the lifecycle service.

    Raises:
        HTTPException: 503 if the service is not wired to an in-process
            broadcaster.
    """
    broadcaster = get_lifecycle(request).broadcaster
    if broadcaster is None:
        raise HTTPException(status_code=503, detail="Event streaming unavailable")
    return broadcaster
