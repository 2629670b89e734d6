"""Enrollment query functions for Examclock.

Creates, reactivates and cancels enrollments while enforcing the admission
rules that keep the active count within a window's capacity. Callers must
serialize these functions per window (see ``WindowLocks``) and invoke the
capacity-triggered transition after each successful mutation.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from examclock.database.models.enrollment import Enrollment
from examclock.database.models.window import ExamWindow, WindowStatus
from examclock.database.queries.window import count_active_enrollments, get_window
from examclock.errors import (
    EnrollmentNotFoundError,
    EnrollmentRejectedError,
    WindowNotFoundError,
)

logger = structlog.get_logger(__name__)


async def get_enrollment(
    session: AsyncSession,
    enrollment_id: UUID,
) -> Enrollment | None:
    """Retrieve an enrollment by ID.

    Args:
        session: Active async database session.
        enrollment_id: UUID of the enrollment.

    Returns:
        The Enrollment instance if found, None otherwise.
    """
    stmt = select(Enrollment).where(Enrollment.id == enrollment_id)
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def find_enrollment(
    session: AsyncSession,
    window_id: UUID,
    participant_id: UUID,
) -> Enrollment | None:
    """Find a participant's enrollment (active or cancelled) for a window."""
    stmt = select(Enrollment).where(
        Enrollment.window_id == window_id,
        Enrollment.participant_id == participant_id,
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def list_enrollments(
    session: AsyncSession,
    window_id: UUID,
    include_cancelled: bool = False,
) -> list[Enrollment]:
    """List enrollments of a window, oldest first.

    Args:
        session: Active async database session.
        window_id: UUID of the window.
        include_cancelled: Also return cancelled enrollments.

    Returns:
        List of Enrollment instances.
    """
    stmt = select(Enrollment).where(Enrollment.window_id == window_id)
    if not include_cancelled:
        stmt = stmt.where(Enrollment.cancelled_at.is_(None))
    stmt = stmt.order_by(Enrollment.enrolled_at.asc())

    result = await session.execute(stmt)
    return list(result.scalars().all())


def _check_admission(window: ExamWindow, active_count: int, now: datetime) -> None:
    """Raise EnrollmentRejectedError unless the window accepts a new enrollment."""
    if not window.active:
        raise EnrollmentRejectedError(
            window.id, "window_inactive", "This window is not open for enrollment"
        )

    if window.status != WindowStatus.scheduled:
        raise EnrollmentRejectedError(
            window.id,
            "window_not_scheduled",
            f"Cannot enroll while the window is {window.status.value}",
        )

    start = window.start_instant
    if start is not None and now >= start:
        raise EnrollmentRejectedError(
            window.id, "window_started", "Cannot enroll in a window that has started"
        )

    if active_count >= window.capacity:
        raise EnrollmentRejectedError(
            window.id, "capacity_reached", "No seats left in this window"
        )


async def create_enrollment(
    session: AsyncSession,
    window_id: UUID,
    participant_id: UUID,
    now: datetime,
) -> Enrollment:
    """Enroll a participant, reactivating a cancelled enrollment if present.

    Args:
        session: Active async database session.
        window_id: UUID of the window to enroll in.
        participant_id: UUID of the participant.
        now: Current instant (UTC), used for admission and ``enrolled_at``.

    Returns:
        The created or reactivated Enrollment.

    Raises:
        WindowNotFoundError: If the window does not exist.
        EnrollmentRejectedError: If an admission rule is violated or the
            participant is already actively enrolled.
    """
    window = await get_window(session, window_id)
    if window is None:
        raise WindowNotFoundError(window_id)

    existing = await find_enrollment(session, window_id, participant_id)
    if existing is not None and existing.is_active:
        raise EnrollmentRejectedError(
            window_id, "already_enrolled", "Participant is already enrolled in this window"
        )

    active_count = await count_active_enrollments(session, window_id)
    _check_admission(window, active_count, now)

    if existing is not None:
        existing.cancelled_at = None
        existing.enrolled_at = now
        enrollment = existing
        event = "enrollment_reactivated"
    else:
        enrollment = Enrollment(
            window_id=window_id,
            participant_id=participant_id,
            enrolled_at=now,
        )
        session.add(enrollment)
        event = "enrollment_created"

    await session.commit()
    await session.refresh(enrollment)

    logger.info(
        event,
        enrollment_id=str(enrollment.id),
        window_id=str(window_id),
        participant_id=str(participant_id),
        active_count=active_count + 1,
        capacity=window.capacity,
    )

    return enrollment


async def cancel_enrollment(
    session: AsyncSession,
    enrollment_id: UUID,
    now: datetime,
    participant_id: UUID | None = None,
) -> Enrollment:
    """Cancel an active enrollment.

    Args:
        session: Active async database session.
        enrollment_id: UUID of the enrollment to cancel.
        now: Current instant (UTC), stored as ``cancelled_at``.
        participant_id: When given, the enrollment must belong to this
            participant.

    Returns:
        The cancelled Enrollment.

    Raises:
        EnrollmentNotFoundError: If no matching active enrollment exists.
        EnrollmentRejectedError: If the window has already started.
    """
    enrollment = await get_enrollment(session, enrollment_id)
    if (
        enrollment is None
        or not enrollment.is_active
        or (participant_id is not None and enrollment.participant_id != participant_id)
    ):
        raise EnrollmentNotFoundError(enrollment_id)

    window = await get_window(session, enrollment.window_id)
    if window is None:
        raise WindowNotFoundError(enrollment.window_id)

    start = window.start_instant
    if start is not None and now >= start:
        raise EnrollmentRejectedError(
            window.id,
            "window_started",
            "Cannot cancel an enrollment once the window has started",
        )

    enrollment.cancelled_at = now
    await session.commit()
    await session.refresh(enrollment)

    logger.info(
        "enrollment_cancelled",
        enrollment_id=str(enrollment_id),
        window_id=str(enrollment.window_id),
        participant_id=str(enrollment.participant_id),
    )

    return enrollment


async def record_attendance(
    session: AsyncSession,
    enrollment_id: UUID,
    attended: bool,
) -> Enrollment:
    """Record whether the participant attended.

    Attendance does not affect capacity and never triggers a transition.

    Raises:
        EnrollmentNotFoundError: If the enrollment does not exist.
    """
    enrollment = await get_enrollment(session, enrollment_id)
    if enrollment is None:
        raise EnrollmentNotFoundError(enrollment_id)

    enrollment.attended = attended
    await session.commit()
    await session.refresh(enrollment)

    logger.info(
        "attendance_recorded",
        enrollment_id=str(enrollment_id),
        window_id=str(enrollment.window_id),
        attended=attended,
    )
    return enrollment
