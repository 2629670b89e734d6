"""Capacity-triggered transitions.

Whenever the active enrollment count of a window changes, the window may
have to close for enrollment (it just filled up) or reopen (a seat was
freed). ``CapacityTransition`` wraps the enrollment mutations so the
admission check and the write happen under the window lock, then applies
the capacity rule once the lock is released.

The transition is a side effect of the enrollment, never a precondition:
a failure to apply it is logged and left for the sweep to repair, and the
enrollment itself still succeeds.
"""

from __future__ import annotations

from collections.abc import Callable
from uuid import UUID

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from examclock.database.models.enrollment import Enrollment
from examclock.database.queries.enrollment import (
    cancel_enrollment,
    create_enrollment,
    get_enrollment,
)
from examclock.errors import EnrollmentNotFoundError, TransientPersistenceError
from examclock.lifecycle.locks import WindowLocks
from examclock.lifecycle.notifications import StatusChange
from examclock.lifecycle.precise_delay import Clock, SystemClock
from examclock.lifecycle.transitions import TransitionApplier

logger = structlog.get_logger(__name__)

SessionFactory = Callable[[], AsyncSession]


class CapacityTransition:
    """Serializes enrollment changes and applies the capacity rule after them."""

    def __init__(
        self,
        session_factory: SessionFactory,
        applier: TransitionApplier,
        locks: WindowLocks,
        clock: Clock | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.applier = applier
        self.locks = locks
        self.clock = clock or SystemClock()
        self._logger = logger.bind(component="CapacityTransition")

    async def enroll(self, window_id: UUID, participant_id: UUID) -> Enrollment:
        """Enroll a participant and re-evaluate the window's capacity state.

        Raises:
            WindowNotFoundError: If the window does not exist.
            EnrollmentRejectedError: If an admission rule is violated.
        """
        async with self.locks.hold(window_id):
            async with self.session_factory() as session:
                enrollment = await create_enrollment(
                    session, window_id, participant_id, self.clock.now()
                )

        await self.on_enrollment_changed(window_id)
        return enrollment

    async def cancel(
        self, enrollment_id: UUID, participant_id: UUID | None = None
    ) -> Enrollment:
        """Cancel an enrollment and re-evaluate the window's capacity state.

        Raises:
            EnrollmentNotFoundError: If no matching active enrollment exists.
            EnrollmentRejectedError: If the window has already started.
        """
        async with self.session_factory() as session:
            existing = await get_enrollment(session, enrollment_id)
        if existing is None:
            raise EnrollmentNotFoundError(enrollment_id)
        window_id = existing.window_id

        async with self.locks.hold(window_id):
            async with self.session_factory() as session:
                enrollment = await cancel_enrollment(
                    session, enrollment_id, self.clock.now(), participant_id=participant_id
                )

        await self.on_enrollment_changed(window_id)
        return enrollment

    async def on_enrollment_changed(self, window_id: UUID) -> StatusChange | None:
        """Apply the capacity rule to a window after its enrollments changed.

        Never raises.

        Returns:
            The applied change, or None if the state was already correct or
            the transition could not be applied.
        """
        try:
            return await self.applier.apply_capacity(window_id)
        except TransientPersistenceError as e:
            self._logger.warning(
                "capacity_transition_deferred",
                window_id=str(window_id),
                error=str(e),
            )
        except Exception as e:
            self._logger.error(
                "capacity_transition_failed",
                window_id=str(window_id),
                error=str(e),
                exc_info=True,
            )
        return None
