"""Server-Sent Events (SSE) endpoint for window status changes.

Each owner has a room; a dashboard subscribes to its owner's room and
receives an abbreviated ``status_change`` event whenever one of the
owner's windows transitions. Dashboards refetch ``GET /windows`` on
(re)connect to reconcile full state.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, Request
from sse_starlette.sse import EventSourceResponse

from examclock.lifecycle.notifications import NotificationBroadcaster
from examclock.logging import get_logger
from examclock.web.dependencies import get_broadcaster

logger = get_logger(__name__)


def create_events_router() -> APIRouter:
    """Create the events router with the per-owner SSE stream.

    Returns:
        FastAPI router configured with the /events/owners/{owner_id}/stream
        endpoint.
    """
    router = APIRouter(prefix="/events", tags=["events"])

    @router.get("/owners/{owner_id}/stream")
    async def stream_owner_events(
        owner_id: UUID,
        request: Request,
        broadcaster: NotificationBroadcaster = Depends(get_broadcaster),  # noqa: B008
    ) -> EventSourceResponse:
        """Stream status changes of one owner's windows.

        Args:
            owner_id: Owner whose room to join.
            request: FastAPI request object for disconnection detection.
            broadcaster: Injected notification broadcaster.

        Returns:
            EventSourceResponse that streams SSE events.
        """
        logger.info("event_stream_opened", owner_id=str(owner_id))

        async def event_generator() -> AsyncIterator[dict[str, Any]]:
            events = broadcaster.subscribe(owner_id)
            try:
                async for event in events:
                    if await request.is_disconnected():
                        logger.info("event_stream_closed", owner_id=str(owner_id))
                        break
                    yield event.to_dict()
            finally:
                await events.aclose()

        return EventSourceResponse(event_generator())

    return router
