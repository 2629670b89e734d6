"""Shared read-compute-write path for window transitions.

Every trigger (scheduler firing, sweep pass, enrollment change, owner
action) applies
transitions through ``TransitionApplier``, which:

1. Takes the per-window lock.
2. Re-reads the window (and, for capacity rules, the active enrollment
   count) in a fresh session.
3. Evaluates the state machine at the current instant.
4. Writes the result as a compare-and-set against the state it read.
5. Forwards the applied change to the StatusObserver.

Because the write is conditional on the state that was read, applying an
already-applied transition is a no-op no matter which trigger gets there
first.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from uuid import UUID

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from examclock.database.models.window import WindowStatus
from examclock.database.queries.window import (
    count_active_enrollments,
    get_window,
    update_window_state,
)
from examclock.errors import InvalidTransitionError, WindowNotFoundError
from examclock.lifecycle.locks import WindowLocks
from examclock.lifecycle.notifications import StatusChange, StatusObserver
from examclock.lifecycle.precise_delay import Clock, SystemClock
from examclock.lifecycle.state_machine import (
    WindowSnapshot,
    capacity_state,
    manual_transition_error,
    next_state,
    time_based_state,
    toggled_enrollment_state,
    validate_transition,
)

logger = structlog.get_logger(__name__)

SessionFactory = Callable[[], AsyncSession]


class TransitionApplier:
    """Applies state machine results to persisted windows.

    Attributes:
        session_factory: Callable returning a new ``AsyncSession``.
        locks: Per-window lock registry shared by all trigger paths.
        observer: Receiver of applied transitions.
        clock: Source of the current instant.
    """

    def __init__(
        self,
        session_factory: SessionFactory,
        locks: WindowLocks,
        observer: StatusObserver,
        clock: Clock | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.locks = locks
        self.observer = observer
        self.clock = clock or SystemClock()
        self._logger = logger.bind(component="TransitionApplier")

    async def reconcile(
        self,
        window_id: UUID,
        include_capacity: bool = False,
        publish: bool = True,
    ) -> StatusChange | None:
        """Bring one window to the state the full state machine dictates.

        Args:
            window_id: Window to reconcile.
            include_capacity: Also evaluate the capacity rule against the
                current active enrollment count.
            publish: Forward the change to the observer. Callers batching
                notifications (the sweep) pass False and publish themselves.

        Returns:
            The applied change, or None if nothing changed.

        Raises:
            TransientPersistenceError: If the state write fails.
        """
        return await self._evaluate(
            window_id, capacity_only=False, include_capacity=include_capacity, publish=publish
        )

    async def apply_capacity(self, window_id: UUID, publish: bool = True) -> StatusChange | None:
        """Apply only the capacity rule to one window.

        If a time-based transition is already due, the capacity rule is
        skipped: time-based transitions take priority and are left to the
        scheduler and the sweep.

        Raises:
            TransientPersistenceError: If the state write fails.
        """
        return await self._evaluate(
            window_id, capacity_only=True, include_capacity=True, publish=publish
        )

    async def apply_manual(self, window_id: UUID, target: WindowStatus) -> StatusChange | None:
        """Move a window to an owner-chosen state.

        Closing enrollment by hand sets ``closed_by_owner`` so the capacity
        rule does not reopen the window; reopening clears it.

        Returns:
            The applied change, or None if the window already holds
            ``target`` or a concurrent transition got there first.

        Raises:
            WindowNotFoundError: If the window does not exist.
            InvalidTransitionError: If the change is not allowed.
            TransientPersistenceError: If the state write fails.
        """
        return await self._apply_manual(window_id, lambda snapshot: target)

    async def toggle_enrollment(self, window_id: UUID) -> StatusChange | None:
        """Flip a window between ``scheduled`` and ``enrollment_closed``.

        Raises:
            WindowNotFoundError: If the window does not exist.
            InvalidTransitionError: If the window has started or finished,
                or reopening would exceed capacity.
            TransientPersistenceError: If the state write fails.
        """
        return await self._apply_manual(window_id, toggled_enrollment_state)

    async def _apply_manual(
        self,
        window_id: UUID,
        choose: Callable[[WindowSnapshot], WindowStatus | None],
    ) -> StatusChange | None:
        async with self.locks.hold(window_id):
            async with self.session_factory() as session:
                window = await get_window(session, window_id)
                if window is None:
                    raise WindowNotFoundError(window_id)

                snapshot = WindowSnapshot.from_model(window)
                target = choose(snapshot)
                if target is None:
                    raise InvalidTransitionError(
                        window_id,
                        snapshot.status.value,
                        "enrollment toggle",
                        reason="not_toggleable",
                    )
                if target == snapshot.status:
                    return None

                now = self.clock.now()
                enrolled_count = await count_active_enrollments(session, window_id)
                reason = manual_transition_error(snapshot, target, now, enrolled_count)
                if reason is not None:
                    raise InvalidTransitionError(
                        window_id, snapshot.status.value, target.value, reason=reason
                    )

                closed_by_owner: bool | None = None
                if target == WindowStatus.enrollment_closed:
                    closed_by_owner = True
                elif target == WindowStatus.scheduled:
                    closed_by_owner = False

                change = await self._write(
                    session,
                    snapshot,
                    target,
                    now,
                    enrolled_count,
                    closed_by_owner=closed_by_owner,
                )

        if change is not None:
            self._logger.info(
                "window_state_set_by_owner",
                window_id=str(window_id),
                to_state=target.value,
            )
            await self.observer.notify_status_change(change.owner_id, [change])

        return change

    async def _evaluate(
        self,
        window_id: UUID,
        capacity_only: bool,
        include_capacity: bool,
        publish: bool,
    ) -> StatusChange | None:
        async with self.locks.hold(window_id):
            async with self.session_factory() as session:
                window = await get_window(session, window_id)
                if window is None:
                    self._logger.warning("window_missing", window_id=str(window_id))
                    return None

                snapshot = WindowSnapshot.from_model(window)
                now = self.clock.now()
                enrolled_count: int | None = None

                if capacity_only:
                    if time_based_state(snapshot, now) is not None:
                        self._logger.debug(
                            "capacity_rule_skipped",
                            window_id=str(window_id),
                            reason="time_transition_due",
                        )
                        return None
                    enrolled_count = await count_active_enrollments(session, window_id)
                    target = capacity_state(snapshot, now, enrolled_count)
                else:
                    if include_capacity:
                        enrolled_count = await count_active_enrollments(session, window_id)
                    target = next_state(snapshot, now, enrolled_count)

                if target is None:
                    return None

                change = await self._write(session, snapshot, target, now, enrolled_count)

        if change is not None and publish:
            await self.observer.notify_status_change(change.owner_id, [change])

        return change

    async def _write(
        self,
        session: AsyncSession,
        snapshot: WindowSnapshot,
        target: WindowStatus,
        now: datetime,
        enrolled_count: int | None,
        closed_by_owner: bool | None = None,
    ) -> StatusChange | None:
        if not validate_transition(snapshot.status, target):
            self._logger.error(
                "invalid_transition_computed",
                window_id=str(snapshot.id),
                from_state=snapshot.status.value,
                to_state=target.value,
            )
            return None

        applied = await update_window_state(
            session,
            snapshot.id,
            target,
            expected_state=snapshot.status,
            closed_by_owner=closed_by_owner,
        )
        if not applied:
            self._logger.info(
                "window_transition_superseded",
                window_id=str(snapshot.id),
                expected_state=snapshot.status.value,
                target_state=target.value,
            )
            return None

        self._logger.info(
            "window_transition",
            window_id=str(snapshot.id),
            owner_id=str(snapshot.owner_id),
            from_state=snapshot.status.value,
            to_state=target.value,
            enrolled_count=enrolled_count,
            capacity=snapshot.capacity,
        )

        return StatusChange(
            window_id=snapshot.id,
            owner_id=snapshot.owner_id,
            previous_state=snapshot.status,
            new_state=target,
            timestamp=now,
        )
