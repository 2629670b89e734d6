"""Exam window query functions for Examclock.

Provides the persistence contract the lifecycle core depends on: reading
windows, listing them with filters, counting active enrollments, and
writing a new lifecycle state with compare-and-set semantics.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import datetime
from typing import Any
from uuid import UUID

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from examclock.database.models.base import ensure_utc
from examclock.database.models.enrollment import Enrollment
from examclock.database.models.window import ExamWindow, SchedulingMode, WindowStatus
from examclock.errors import ConfigurationError, TransientPersistenceError

logger = structlog.get_logger(__name__)


def validate_window_config(
    mode: SchedulingMode,
    capacity: int,
    starts_at: datetime | None,
    duration_minutes: int | None,
) -> None:
    """Validate a window's scheduling configuration.

    Args:
        mode: Scheduling mode.
        capacity: Maximum concurrent active enrollments.
        starts_at: Start instant (timed windows only).
        duration_minutes: Duration (timed windows only).

    Raises:
        ConfigurationError: If the combination is malformed.
    """
    if capacity < 1:
        raise ConfigurationError("Capacity must be at least 1", field="capacity")

    if mode == SchedulingMode.timed:
        if starts_at is None:
            raise ConfigurationError("Timed windows require a start instant", field="starts_at")
        if duration_minutes is None or duration_minutes < 1:
            raise ConfigurationError(
                "Timed windows require a positive duration", field="duration_minutes"
            )
    else:
        if starts_at is not None or duration_minutes is not None:
            raise ConfigurationError(
                "Open-ended windows must not define a start instant or duration"
            )


async def create_window(
    session: AsyncSession,
    owner_id: UUID,
    capacity: int,
    mode: SchedulingMode = SchedulingMode.timed,
    starts_at: datetime | None = None,
    duration_minutes: int | None = None,
    exam_id: UUID | None = None,
    notes: str | None = None,
    active: bool = True,
) -> ExamWindow:
    """Create a new exam window in the ``scheduled`` state.

    Args:
        session: Active async database session.
        owner_id: Identifier of the owning professor.
        capacity: Maximum concurrent active enrollments.
        mode: Scheduling mode.
        starts_at: Start instant, required for timed windows.
        duration_minutes: Duration, required for timed windows.
        exam_id: Optional reference to the exam content.
        notes: Optional free-text notes.
        active: Initial visibility flag.

    Returns:
        The newly created ExamWindow instance.

    Raises:
        ConfigurationError: If the scheduling configuration is malformed.
    """
    validate_window_config(mode, capacity, starts_at, duration_minutes)

    window = ExamWindow(
        owner_id=owner_id,
        exam_id=exam_id,
        mode=mode,
        starts_at=starts_at,
        duration_minutes=duration_minutes,
        capacity=capacity,
        status=WindowStatus.scheduled,
        active=active,
        notes=notes,
    )

    session.add(window)
    await session.commit()
    await session.refresh(window)

    logger.info(
        "window_created",
        window_id=str(window.id),
        owner_id=str(owner_id),
        mode=mode.value,
        capacity=capacity,
    )

    return window


async def get_window(
    session: AsyncSession,
    window_id: UUID,
) -> ExamWindow | None:
    """Retrieve a window by ID.

    Args:
        session: Active async database session.
        window_id: UUID of the window to retrieve.

    Returns:
        The ExamWindow instance if found, None otherwise.
    """
    stmt = select(ExamWindow).where(ExamWindow.id == window_id)
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def list_windows(
    session: AsyncSession,
    owner_id: UUID | None = None,
    statuses: Iterable[WindowStatus] | None = None,
    exclude_statuses: Iterable[WindowStatus] | None = None,
    starts_before: datetime | None = None,
    timed_only: bool = False,
) -> list[ExamWindow]:
    """List windows with optional filters.

    Args:
        session: Active async database session.
        owner_id: Only windows owned by this owner.
        statuses: Only windows in one of these states.
        exclude_statuses: Skip windows in any of these states.
        starts_before: Only windows starting at or before this instant
            (implies timed windows).
        timed_only: Only timed windows.

    Returns:
        Matching windows ordered by start instant, then creation time.
    """
    stmt = select(ExamWindow)

    if owner_id is not None:
        stmt = stmt.where(ExamWindow.owner_id == owner_id)

    if statuses is not None:
        stmt = stmt.where(ExamWindow.status.in_(list(statuses)))

    if exclude_statuses is not None:
        stmt = stmt.where(ExamWindow.status.not_in(list(exclude_statuses)))

    if timed_only or starts_before is not None:
        stmt = stmt.where(ExamWindow.mode == SchedulingMode.timed)

    if starts_before is not None:
        stmt = stmt.where(ExamWindow.starts_at <= starts_before)

    stmt = stmt.order_by(ExamWindow.starts_at.asc(), ExamWindow.created_at.asc())

    result = await session.execute(stmt)
    return list(result.scalars().all())


async def count_active_enrollments(
    session: AsyncSession,
    window_id: UUID,
) -> int:
    """Count enrollments of a window that have not been cancelled.

    Args:
        session: Active async database session.
        window_id: UUID of the window.

    Returns:
        Number of active enrollments.
    """
    stmt = (
        select(func.count(Enrollment.id))
        .where(Enrollment.window_id == window_id)
        .where(Enrollment.cancelled_at.is_(None))
    )
    result = await session.execute(stmt)
    return int(result.scalar_one())


async def count_active_enrollments_by_window(
    session: AsyncSession,
    window_ids: Sequence[UUID],
) -> dict[UUID, int]:
    """Count active enrollments for several windows in one query.

    Args:
        session: Active async database session.
        window_ids: Windows to count for.

    Returns:
        Mapping of window id to active enrollment count. Windows without
        active enrollments map to 0.
    """
    counts: dict[UUID, int] = {window_id: 0 for window_id in window_ids}
    if not window_ids:
        return counts

    stmt = (
        select(Enrollment.window_id, func.count(Enrollment.id))
        .where(Enrollment.window_id.in_(list(window_ids)))
        .where(Enrollment.cancelled_at.is_(None))
        .group_by(Enrollment.window_id)
    )
    result = await session.execute(stmt)
    for window_id, count in result.all():
        counts[window_id] = int(count)
    return counts


async def update_window_state(
    session: AsyncSession,
    window_id: UUID,
    new_state: WindowStatus,
    expected_state: WindowStatus | None = None,
    closed_by_owner: bool | None = None,
) -> bool:
    """Write a new lifecycle state, optionally as a compare-and-set.

    When ``expected_state`` is given, the row is only updated if its
    current state still equals it, so a transition computed from a stale
    read never overwrites a newer state.

    Args:
        session: Active async database session.
        window_id: UUID of the window to update.
        new_state: State to write.
        expected_state: State the row must currently hold.
        closed_by_owner: New value for the manual-close flag, written in
            the same statement. None leaves it unchanged.

    Returns:
        True if a row was updated, False if the window is missing or its
        state no longer matched ``expected_state``.

    Raises:
        TransientPersistenceError: If the database write fails.
    """
    stmt = update(ExamWindow).where(ExamWindow.id == window_id)
    if expected_state is not None:
        stmt = stmt.where(ExamWindow.status == expected_state)
    values: dict[str, Any] = {"status": new_state}
    if closed_by_owner is not None:
        values["closed_by_owner"] = closed_by_owner
    stmt = stmt.values(**values).execution_options(synchronize_session=False)

    try:
        result = await session.execute(stmt)
        await session.commit()
    except SQLAlchemyError as e:
        await session.rollback()
        raise TransientPersistenceError(window_id, str(e)) from e

    applied = result.rowcount == 1

    logger.debug(
        "window_state_written",
        window_id=str(window_id),
        new_state=new_state.value,
        expected_state=expected_state.value if expected_state else None,
        applied=applied,
    )

    return applied


_UNSET: Any = object()


async def update_window_config(
    session: AsyncSession,
    window_id: UUID,
    starts_at: datetime | None = _UNSET,
    duration_minutes: int | None = _UNSET,
    capacity: int | None = None,
    mode: SchedulingMode | None = None,
    notes: str | None = _UNSET,
) -> ExamWindow | None:
    """Edit a window's scheduling configuration.

    Only the given fields change. The lifecycle state is left untouched;
    callers re-evaluate the window afterwards so any transition the edit
    makes due is applied through the normal path.

    Args:
        session: Active async database session.
        window_id: UUID of the window to edit.
        starts_at: New start instant (None clears it, for open-ended).
        duration_minutes: New duration (None clears it, for open-ended).
        capacity: New capacity.
        mode: New scheduling mode.
        notes: New notes.

    Returns:
        The updated window, or None if it does not exist.

    Raises:
        ConfigurationError: If the resulting configuration is malformed,
            the window has finished, or a started window would move its
            start or change mode.
    """
    window = await get_window(session, window_id)
    if window is None:
        return None

    if window.status == WindowStatus.finished:
        raise ConfigurationError("Finished windows cannot be edited")

    new_mode = mode if mode is not None else window.mode
    new_capacity = capacity if capacity is not None else window.capacity
    new_starts_at = window.starts_at if starts_at is _UNSET else starts_at
    new_duration = window.duration_minutes if duration_minutes is _UNSET else duration_minutes

    validate_window_config(new_mode, new_capacity, new_starts_at, new_duration)

    if window.status == WindowStatus.in_progress and (
        new_mode != window.mode or ensure_utc(new_starts_at) != window.start_instant
    ):
        raise ConfigurationError(
            "A window in progress can only change its duration, capacity or notes"
        )

    window.mode = new_mode
    window.capacity = new_capacity
    window.starts_at = new_starts_at
    window.duration_minutes = new_duration
    if notes is not _UNSET:
        window.notes = notes

    await session.commit()
    await session.refresh(window)

    logger.info(
        "window_config_updated",
        window_id=str(window_id),
        mode=new_mode.value,
        capacity=new_capacity,
        duration_minutes=new_duration,
    )
    return window


async def set_window_active(
    session: AsyncSession,
    window_id: UUID,
    active: bool,
) -> ExamWindow | None:
    """Toggle the owner-controlled visibility flag.

    The flag is orthogonal to the lifecycle state and never triggers a
    transition.

    Args:
        session: Active async database session.
        window_id: UUID of the window to update.
        active: New visibility flag.

    Returns:
        The updated window, or None if it does not exist.
    """
    window = await get_window(session, window_id)
    if window is None:
        return None

    window.active = active
    await session.commit()
    await session.refresh(window)

    logger.info("window_visibility_changed", window_id=str(window_id), active=active)
    return window
