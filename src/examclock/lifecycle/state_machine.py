"""Exam window lifecycle state machine.

This module is the single source of truth for which lifecycle state a
window should be in. It is pure: given the same snapshot, instant and
enrollment count it always returns the same answer, which is what makes
every trigger path (timers, sweeps, enrollment changes) safe to race.

Rules, in priority order:

1. Timed and ``now >= start + duration`` and not finished -> ``finished``.
2. Timed and ``start <= now <= start + duration`` and neither in progress
   nor finished -> ``in_progress``.
3. Open-ended windows are exempt from rules 1 and 2.
4. Capacity (only when an enrollment count is supplied):
   ``scheduled`` with ``count >= capacity`` -> ``enrollment_closed``;
   ``enrollment_closed`` with ``count < capacity``, not closed by the
   owner and not yet started (or open-ended) -> ``scheduled``.
5. Owners may also move a window by hand along VALID_TRANSITIONS; this
   is the only way an open-ended window starts or finishes.

Time-based results always win over capacity. Nothing ever leaves
``in_progress`` except to ``finished``, and ``finished`` is absorbing.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, ConfigDict

from examclock.database.models.base import ensure_utc
from examclock.database.models.window import ExamWindow, SchedulingMode, WindowStatus

# States a capacity change may never move a window out of.
TIME_LOCKED_STATES: frozenset[WindowStatus] = frozenset(
    {WindowStatus.in_progress, WindowStatus.finished}
)

# Authoritative set of edges any rule can produce.
VALID_TRANSITIONS: dict[WindowStatus, set[WindowStatus]] = {
    WindowStatus.scheduled: {
        WindowStatus.enrollment_closed,
        WindowStatus.in_progress,
        WindowStatus.finished,
    },
    WindowStatus.enrollment_closed: {
        WindowStatus.scheduled,
        WindowStatus.in_progress,
        WindowStatus.finished,
    },
    WindowStatus.in_progress: {WindowStatus.finished},
    WindowStatus.finished: set(),
}


class TransitionKind(str, Enum):
    """Time-based transitions the scheduler can arm a timer for."""

    START = "start"
    FINISH = "finish"


class WindowSnapshot(BaseModel):
    """Immutable view of the fields the state machine reads.

    Attributes:
        id: Window identifier.
        owner_id: Owner identifier, carried for notification routing.
        mode: Scheduling mode.
        starts_at: Start instant (UTC), timed windows only.
        duration_minutes: Duration, timed windows only.
        capacity: Maximum concurrent active enrollments.
        status: Lifecycle state at read time.
        closed_by_owner: Enrollment was closed by hand.
    """

    model_config = ConfigDict(frozen=True)

    id: UUID
    owner_id: UUID
    mode: SchedulingMode
    starts_at: datetime | None = None
    duration_minutes: int | None = None
    capacity: int
    status: WindowStatus
    closed_by_owner: bool = False

    @classmethod
    def from_model(cls, window: ExamWindow) -> WindowSnapshot:
        """Build a snapshot from a persisted window row."""
        return cls(
            id=window.id,
            owner_id=window.owner_id,
            mode=window.mode,
            starts_at=ensure_utc(window.starts_at),
            duration_minutes=window.duration_minutes,
            capacity=window.capacity,
            status=window.status,
            closed_by_owner=bool(window.closed_by_owner),
        )

    @property
    def is_timed(self) -> bool:
        return (
            self.mode == SchedulingMode.timed
            and self.starts_at is not None
            and self.duration_minutes is not None
        )

    @property
    def ends_at(self) -> datetime | None:
        if not self.is_timed or self.starts_at is None or self.duration_minutes is None:
            return None
        return self.starts_at + timedelta(minutes=self.duration_minutes)

    def has_started(self, now: datetime) -> bool:
        """Whether a timed window's start instant has been reached."""
        return self.is_timed and self.starts_at is not None and now >= self.starts_at


def validate_transition(current: WindowStatus, target: WindowStatus) -> bool:
    """Check a transition against VALID_TRANSITIONS."""
    return target in VALID_TRANSITIONS.get(current, set())


def time_based_state(window: WindowSnapshot, now: datetime) -> WindowStatus | None:
    """Apply rules 1-3 only.

    Args:
        window: Window snapshot.
        now: Current instant (timezone-aware).

    Returns:
        The state a time-based transition would move to, or None.
    """
    start = window.starts_at
    end = window.ends_at
    if start is None or end is None:
        return None

    if now >= end and window.status != WindowStatus.finished:
        return WindowStatus.finished

    if start <= now <= end and window.status not in TIME_LOCKED_STATES:
        return WindowStatus.in_progress

    return None


def capacity_state(
    window: WindowSnapshot,
    now: datetime,
    enrolled_count: int,
) -> WindowStatus | None:
    """Apply rule 4 only.

    Over-capacity counts (e.g. from migrated data) are treated as closed
    rather than rejected. A window the owner closed by hand stays closed
    when seats free up.

    Args:
        window: Window snapshot.
        now: Current instant (timezone-aware).
        enrolled_count: Active enrollment count.

    Returns:
        ``enrollment_closed``, ``scheduled`` or None.
    """
    if window.status == WindowStatus.scheduled and enrolled_count >= window.capacity:
        return WindowStatus.enrollment_closed

    if (
        window.status == WindowStatus.enrollment_closed
        and not window.closed_by_owner
        and enrolled_count < window.capacity
        and not window.has_started(now)
    ):
        return WindowStatus.scheduled

    return None


def next_state(
    window: WindowSnapshot,
    now: datetime,
    enrolled_count: int | None = None,
) -> WindowStatus | None:
    """Compute the next lifecycle state of a window.

    Args:
        window: Window snapshot.
        now: Current instant (timezone-aware).
        enrolled_count: Active enrollment count. The capacity rule is only
            evaluated when this is supplied.

    Returns:
        The state to transition to, or None if the window is already
        where it should be.
    """
    target = time_based_state(window, now)
    if target is not None:
        return target

    if enrolled_count is None:
        return None

    return capacity_state(window, now, enrolled_count)


def due_instants(window: WindowSnapshot) -> list[tuple[TransitionKind, datetime]]:
    """Instants at which a time-based transition of this window becomes due.

    Only transitions that can still happen from the current state are
    returned; open-ended windows have none.
    """
    if window.status == WindowStatus.finished:
        return []

    start = window.starts_at
    end = window.ends_at
    if start is None or end is None:
        return []

    instants: list[tuple[TransitionKind, datetime]] = []
    if window.status not in TIME_LOCKED_STATES:
        instants.append((TransitionKind.START, start))
    instants.append((TransitionKind.FINISH, end))
    return instants


def manual_transition_error(
    window: WindowSnapshot,
    target: WindowStatus,
    now: datetime,
    enrolled_count: int,
) -> str | None:
    """Check an owner-requested state change.

    Returns:
        A reason code if the change is refused, None if it is allowed.
    """
    if not validate_transition(window.status, target):
        return "invalid_transition"

    if target == WindowStatus.scheduled:
        if window.has_started(now):
            return "window_started"
        if enrolled_count >= window.capacity:
            return "capacity_reached"

    return None


def toggled_enrollment_state(window: WindowSnapshot) -> WindowStatus | None:
    """Opposite enrollment state of a window that has not started, or None."""
    if window.status == WindowStatus.scheduled:
        return WindowStatus.enrollment_closed
    if window.status == WindowStatus.enrollment_closed:
        return WindowStatus.scheduled
    return None
