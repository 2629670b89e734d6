"""Exam window REST API endpoints for Examclock.

Provides routes for creating, listing and editing windows, toggling their
visibility, owner-driven state changes, and the on-demand "refresh
statuses" sweep dashboards call when they (re)connect.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from examclock.database.models.window import ExamWindow, SchedulingMode, WindowStatus
from examclock.database.queries.window import (
    count_active_enrollments,
    count_active_enrollments_by_window,
    create_window,
    get_window,
    list_windows,
    set_window_active,
    update_window_config,
)
from examclock.errors import (
    ConfigurationError,
    InvalidTransitionError,
    TransientPersistenceError,
    WindowNotFoundError,
)
from examclock.lifecycle.notifications import StatusChange
from examclock.lifecycle.service import WindowLifecycleService
from examclock.lifecycle.state_machine import WindowSnapshot
from examclock.web.dependencies import get_lifecycle, get_session_factory

logger = structlog.get_logger(__name__)


# --- Pydantic Schemas ---


class WindowCreate(BaseModel):
    """Request schema for creating a window."""

    owner_id: UUID
    capacity: int = Field(..., ge=1)
    mode: SchedulingMode = SchedulingMode.timed
    starts_at: datetime | None = None
    duration_minutes: int | None = Field(default=None, ge=1)
    exam_id: UUID | None = None
    notes: str | None = None
    active: bool = True


class WindowUpdate(BaseModel):
    """Request schema for editing a window's configuration.

    Omitted fields keep their current value; an explicit null clears
    ``starts_at``, ``duration_minutes`` or ``notes``.
    """

    mode: SchedulingMode | None = None
    starts_at: datetime | None = None
    duration_minutes: int | None = Field(default=None, ge=1)
    capacity: int | None = Field(default=None, ge=1)
    notes: str | None = None


class WindowStatusUpdate(BaseModel):
    """Request schema for an owner-chosen state change."""

    status: WindowStatus


class WindowActiveUpdate(BaseModel):
    """Request schema for toggling a window's visibility."""

    active: bool


class WindowResponse(BaseModel):
    """Response schema for window data."""

    id: UUID
    owner_id: UUID
    exam_id: UUID | None
    mode: SchedulingMode
    starts_at: datetime | None
    ends_at: datetime | None
    duration_minutes: int | None
    capacity: int
    enrolled_count: int
    status: WindowStatus
    closed_by_owner: bool
    active: bool
    notes: str | None
    created_at: datetime
    updated_at: datetime


class StatusChangeResponse(BaseModel):
    """Response schema for one applied transition."""

    window_id: UUID
    previous_state: WindowStatus
    new_state: WindowStatus
    timestamp: datetime


class StatusRefreshResponse(BaseModel):
    """Response schema for an on-demand status refresh."""

    updated_count: int
    changes: list[StatusChangeResponse]


def window_response(window: ExamWindow, enrolled_count: int) -> WindowResponse:
    """Build a WindowResponse with UTC instants and the active count."""
    return WindowResponse(
        id=window.id,
        owner_id=window.owner_id,
        exam_id=window.exam_id,
        mode=window.mode,
        starts_at=window.start_instant,
        ends_at=window.end_instant,
        duration_minutes=window.duration_minutes,
        capacity=window.capacity,
        enrolled_count=enrolled_count,
        status=window.status,
        closed_by_owner=window.closed_by_owner,
        active=window.active,
        notes=window.notes,
        created_at=window.created_at,
        updated_at=window.updated_at,
    )


def _conflict(e: InvalidTransitionError) -> HTTPException:
    logger.info(
        "window_state_change_refused",
        window_id=str(e.window_id),
        reason=e.reason,
    )
    return HTTPException(status_code=409, detail={"reason": e.reason, "message": str(e)})


def change_response(change: StatusChange) -> StatusChangeResponse:
    return StatusChangeResponse(
        window_id=change.window_id,
        previous_state=change.previous_state,
        new_state=change.new_state,
        timestamp=change.timestamp,
    )


# --- Router ---


def create_windows_router() -> APIRouter:
    """Create the windows router.

    Routes:
        GET /windows/ - List windows with current states
        POST /windows/ - Create a window
        PATCH /windows/update-statuses - Run an on-demand sweep
        GET /windows/{window_id} - Get one window
        PUT /windows/{window_id} - Edit scheduling configuration
        PATCH /windows/{window_id}/active - Toggle visibility
        PATCH /windows/{window_id}/status - Set the state by hand
        PATCH /windows/{window_id}/toggle-enrollment - Close or reopen enrollment
    """
    router = APIRouter(prefix="/windows", tags=["windows"])

    @router.get("/", response_model=list[WindowResponse])
    async def list_windows_endpoint(
        owner_id: UUID | None = None,
        status: str | None = None,
        session_factory: Callable[[], AsyncSession] = Depends(get_session_factory),  # noqa: B008
    ) -> list[WindowResponse]:
        """List windows, optionally filtered by owner and state.

        Raises:
            HTTPException: 400 if status is invalid.
        """
        statuses = None
        if status is not None:
            try:
                statuses = [WindowStatus[status]]
            except KeyError:
                logger.warning("invalid_status_filter", status=status)
                raise HTTPException(status_code=400, detail=f"Invalid status: {status}")

        async with session_factory() as session:
            windows = await list_windows(session, owner_id=owner_id, statuses=statuses)
            counts = await count_active_enrollments_by_window(
                session, [w.id for w in windows]
            )

        logger.info(
            "windows_listed",
            count=len(windows),
            owner_id=str(owner_id) if owner_id else None,
            status=status,
        )
        return [window_response(w, counts.get(w.id, 0)) for w in windows]

    @router.post("/", response_model=WindowResponse, status_code=201)
    async def create_window_endpoint(
        window_data: WindowCreate,
        session_factory: Callable[[], AsyncSession] = Depends(get_session_factory),  # noqa: B008
        lifecycle: WindowLifecycleService = Depends(get_lifecycle),  # noqa: B008
    ) -> WindowResponse:
        """Create a window and arm its timers if it falls in the horizon.

        Raises:
            HTTPException: 422 if the scheduling configuration is malformed.
        """
        try:
            async with session_factory() as session:
                window = await create_window(
                    session,
                    owner_id=window_data.owner_id,
                    capacity=window_data.capacity,
                    mode=window_data.mode,
                    starts_at=window_data.starts_at,
                    duration_minutes=window_data.duration_minutes,
                    exam_id=window_data.exam_id,
                    notes=window_data.notes,
                    active=window_data.active,
                )
        except ConfigurationError as e:
            logger.warning("window_rejected", error=str(e), field=e.field)
            raise HTTPException(status_code=422, detail=str(e))

        if lifecycle.scheduler.is_running:
            lifecycle.scheduler.track(WindowSnapshot.from_model(window))

        return window_response(window, 0)

    @router.patch("/update-statuses", response_model=StatusRefreshResponse)
    async def update_statuses_endpoint(
        owner_id: UUID | None = None,
        lifecycle: WindowLifecycleService = Depends(get_lifecycle),  # noqa: B008
    ) -> StatusRefreshResponse:
        """Recompute and persist the state of an owner's windows (or all).

        Applied changes are also pushed to the owner's subscribers.
        """
        changes = await lifecycle.trigger_sweep(owner_id)
        return StatusRefreshResponse(
            updated_count=len(changes),
            changes=[change_response(c) for c in changes],
        )

    @router.get("/{window_id}", response_model=WindowResponse)
    async def get_window_endpoint(
        window_id: UUID,
        session_factory: Callable[[], AsyncSession] = Depends(get_session_factory),  # noqa: B008
    ) -> WindowResponse:
        """Get a single window by ID.

        Raises:
            HTTPException: 404 if window not found.
        """
        async with session_factory() as session:
            window = await get_window(session, window_id)
            if window is None:
                logger.warning("window_not_found", window_id=str(window_id))
                raise HTTPException(status_code=404, detail="Window not found")
            count = await count_active_enrollments(session, window_id)

        return window_response(window, count)

    @router.put("/{window_id}", response_model=WindowResponse)
    async def update_window_endpoint(
        window_id: UUID,
        update: WindowUpdate,
        session_factory: Callable[[], AsyncSession] = Depends(get_session_factory),  # noqa: B008
        lifecycle: WindowLifecycleService = Depends(get_lifecycle),  # noqa: B008
    ) -> WindowResponse:
        """Edit a window and re-evaluate it against its new configuration.

        Timers armed for the old start or end are replaced, and any
        transition the edit makes due is applied before returning.

        Raises:
            HTTPException: 404 if window not found, 422 if the resulting
                configuration is malformed.
        """
        changes = update.model_dump(exclude_unset=True)
        try:
            async with lifecycle.locks.hold(window_id):
                async with session_factory() as session:
                    window = await update_window_config(session, window_id, **changes)
        except ConfigurationError as e:
            logger.warning("window_update_rejected", window_id=str(window_id), error=str(e))
            raise HTTPException(status_code=422, detail=str(e))

        if window is None:
            logger.warning("window_not_found", window_id=str(window_id))
            raise HTTPException(status_code=404, detail="Window not found")

        await lifecycle.on_window_edited(window_id)

        async with session_factory() as session:
            window = await get_window(session, window_id)
            count = await count_active_enrollments(session, window_id)

        return window_response(window, count)

    @router.patch("/{window_id}/active", response_model=WindowResponse)
    async def set_window_active_endpoint(
        window_id: UUID,
        update: WindowActiveUpdate,
        session_factory: Callable[[], AsyncSession] = Depends(get_session_factory),  # noqa: B008
    ) -> WindowResponse:
        """Show or hide a window. The lifecycle state is unaffected.

        Raises:
            HTTPException: 404 if window not found.
        """
        async with session_factory() as session:
            window = await set_window_active(session, window_id, update.active)
            if window is None:
                logger.warning("window_not_found", window_id=str(window_id))
                raise HTTPException(status_code=404, detail="Window not found")
            count = await count_active_enrollments(session, window_id)

        return window_response(window, count)

    async def _read_window(
        session_factory: Callable[[], AsyncSession], window_id: UUID
    ) -> WindowResponse:
        async with session_factory() as session:
            window = await get_window(session, window_id)
            count = await count_active_enrollments(session, window_id)
        return window_response(window, count)

    @router.patch("/{window_id}/status", response_model=WindowResponse)
    async def set_window_status_endpoint(
        window_id: UUID,
        update: WindowStatusUpdate,
        session_factory: Callable[[], AsyncSession] = Depends(get_session_factory),  # noqa: B008
        lifecycle: WindowLifecycleService = Depends(get_lifecycle),  # noqa: B008
    ) -> WindowResponse:
        """Move a window to a state chosen by its owner.

        Open-ended windows are started and finished this way. The change
        is pushed to the owner's subscribers.

        Raises:
            HTTPException: 404 if window not found, 409 if the lifecycle
                forbids the change, 503 if the write failed.
        """
        try:
            await lifecycle.set_state(window_id, update.status)
        except WindowNotFoundError:
            logger.warning("window_not_found", window_id=str(window_id))
            raise HTTPException(status_code=404, detail="Window not found")
        except InvalidTransitionError as e:
            raise _conflict(e)
        except TransientPersistenceError as e:
            logger.error("window_state_write_failed", window_id=str(window_id), error=str(e))
            raise HTTPException(status_code=503, detail="State change could not be saved")

        return await _read_window(session_factory, window_id)

    @router.patch("/{window_id}/toggle-enrollment", response_model=WindowResponse)
    async def toggle_enrollment_endpoint(
        window_id: UUID,
        session_factory: Callable[[], AsyncSession] = Depends(get_session_factory),  # noqa: B008
        lifecycle: WindowLifecycleService = Depends(get_lifecycle),  # noqa: B008
    ) -> WindowResponse:
        """Close enrollment on a scheduled window, or reopen a closed one.

        A window closed this way stays closed when seats free up.

        Raises:
            HTTPException: 404 if window not found, 409 if the window has
                started or reopening would exceed capacity, 503 if the
                write failed.
        """
        try:
            await lifecycle.toggle_enrollment(window_id)
        except WindowNotFoundError:
            logger.warning("window_not_found", window_id=str(window_id))
            raise HTTPException(status_code=404, detail="Window not found")
        except InvalidTransitionError as e:
            raise _conflict(e)
        except TransientPersistenceError as e:
            logger.error("window_state_write_failed", window_id=str(window_id), error=str(e))
            raise HTTPException(status_code=503, detail="State change could not be saved")

        return await _read_window(session_factory, window_id)

    return router
