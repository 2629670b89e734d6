"""Unit tests for the window lifecycle state machine.

Tests cover:
- VALID_TRANSITIONS definition
- Time-based rules and their boundaries
- Capacity rule and its boundary
- Priority of time over capacity
- Open-ended windows
- Due instants used by the scheduler
- Idempotence across the state and time grid
- Owner-driven state changes
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone

import pytest

from examclock.database.models.window import ExamWindow, SchedulingMode, WindowStatus
from examclock.lifecycle.state_machine import (
    TIME_LOCKED_STATES,
    VALID_TRANSITIONS,
    TransitionKind,
    WindowSnapshot,
    capacity_state,
    due_instants,
    manual_transition_error,
    next_state,
    time_based_state,
    toggled_enrollment_state,
    validate_transition,
)

START = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)
DURATION = 90
END = START + timedelta(minutes=DURATION)


def timed(status: WindowStatus = WindowStatus.scheduled, capacity: int = 2) -> WindowSnapshot:
    return WindowSnapshot(
        id=uuid.uuid4(),
        owner_id=uuid.uuid4(),
        mode=SchedulingMode.timed,
        starts_at=START,
        duration_minutes=DURATION,
        capacity=capacity,
        status=status,
    )


def open_ended(
    status: WindowStatus = WindowStatus.scheduled, capacity: int = 1
) -> WindowSnapshot:
    return WindowSnapshot(
        id=uuid.uuid4(),
        owner_id=uuid.uuid4(),
        mode=SchedulingMode.open_ended,
        capacity=capacity,
        status=status,
    )


class TestValidTransitions:
    """Test the VALID_TRANSITIONS mapping and validation."""

    def test_every_status_is_defined(self) -> None:
        assert set(VALID_TRANSITIONS) == set(WindowStatus)

    def test_finished_is_absorbing(self) -> None:
        assert VALID_TRANSITIONS[WindowStatus.finished] == set()

    def test_in_progress_only_finishes(self) -> None:
        assert VALID_TRANSITIONS[WindowStatus.in_progress] == {WindowStatus.finished}

    @pytest.mark.parametrize(
        "current,target,expected",
        [
            (WindowStatus.scheduled, WindowStatus.enrollment_closed, True),
            (WindowStatus.enrollment_closed, WindowStatus.scheduled, True),
            (WindowStatus.scheduled, WindowStatus.in_progress, True),
            (WindowStatus.enrollment_closed, WindowStatus.finished, True),
            (WindowStatus.in_progress, WindowStatus.scheduled, False),
            (WindowStatus.in_progress, WindowStatus.enrollment_closed, False),
            (WindowStatus.finished, WindowStatus.in_progress, False),
            (WindowStatus.scheduled, WindowStatus.scheduled, False),
        ],
    )
    def test_validate_transition(
        self, current: WindowStatus, target: WindowStatus, expected: bool
    ) -> None:
        assert validate_transition(current, target) is expected


class TestTimeRules:
    """Rules 1-3: time-based transitions of timed windows."""

    def test_before_start_no_change(self) -> None:
        assert next_state(timed(), START - timedelta(milliseconds=1)) is None

    def test_exactly_at_start_goes_in_progress(self) -> None:
        assert next_state(timed(), START) == WindowStatus.in_progress

    def test_just_before_end_goes_in_progress(self) -> None:
        now = END - timedelta(milliseconds=1)
        assert next_state(timed(), now) == WindowStatus.in_progress

    def test_exactly_at_end_goes_finished(self) -> None:
        assert next_state(timed(), END) == WindowStatus.finished

    def test_closed_window_starts(self) -> None:
        window = timed(WindowStatus.enrollment_closed)
        assert next_state(window, START + timedelta(minutes=1)) == WindowStatus.in_progress

    def test_in_progress_window_stays_until_end(self) -> None:
        window = timed(WindowStatus.in_progress)
        assert next_state(window, START + timedelta(minutes=30)) is None

    def test_in_progress_window_finishes(self) -> None:
        window = timed(WindowStatus.in_progress)
        assert next_state(window, END + timedelta(seconds=1)) == WindowStatus.finished

    def test_missed_start_goes_straight_to_finished(self) -> None:
        """A window whose whole interval passed unobserved skips in_progress."""
        assert next_state(timed(), END + timedelta(days=1)) == WindowStatus.finished

    def test_finished_never_changes(self) -> None:
        window = timed(WindowStatus.finished)
        assert next_state(window, END + timedelta(days=1), enrolled_count=0) is None

    @pytest.mark.parametrize("status", list(WindowStatus))
    def test_open_ended_never_time_transitions(self, status: WindowStatus) -> None:
        window = open_ended(status)
        far_future = START + timedelta(days=3650)
        assert time_based_state(window, far_future) is None


class TestCapacityRule:
    """Rule 4: enrollment count against capacity."""

    def test_reaching_capacity_closes(self) -> None:
        before_start = START - timedelta(hours=1)
        assert capacity_state(timed(capacity=2), before_start, 2) == WindowStatus.enrollment_closed

    def test_below_capacity_stays_open(self) -> None:
        before_start = START - timedelta(hours=1)
        assert capacity_state(timed(capacity=2), before_start, 1) is None

    def test_over_capacity_closes(self) -> None:
        before_start = START - timedelta(hours=1)
        assert capacity_state(timed(capacity=2), before_start, 5) == WindowStatus.enrollment_closed

    def test_freed_seat_reopens(self) -> None:
        window = timed(WindowStatus.enrollment_closed, capacity=2)
        before_start = START - timedelta(hours=1)
        assert capacity_state(window, before_start, 1) == WindowStatus.scheduled

    def test_full_closed_window_stays_closed(self) -> None:
        window = timed(WindowStatus.enrollment_closed, capacity=2)
        assert capacity_state(window, START - timedelta(hours=1), 2) is None

    def test_no_reopen_after_start(self) -> None:
        window = timed(WindowStatus.enrollment_closed, capacity=2)
        assert capacity_state(window, START, 0) is None

    def test_open_ended_reopens_any_time(self) -> None:
        window = open_ended(WindowStatus.enrollment_closed, capacity=1)
        assert capacity_state(window, START + timedelta(days=365), 0) == WindowStatus.scheduled

    @pytest.mark.parametrize("status", sorted(TIME_LOCKED_STATES, key=lambda s: s.value))
    def test_time_locked_states_ignore_capacity(self, status: WindowStatus) -> None:
        window = timed(status, capacity=2)
        assert capacity_state(window, START + timedelta(minutes=1), 0) is None
        assert capacity_state(window, START + timedelta(minutes=1), 10) is None


class TestPriority:
    """Time-based results win over capacity results."""

    def test_time_wins_when_both_apply(self) -> None:
        window = timed(capacity=1)
        assert next_state(window, START, enrolled_count=1) == WindowStatus.in_progress

    def test_capacity_ignored_without_count(self) -> None:
        window = timed(capacity=1)
        assert next_state(window, START - timedelta(hours=1)) is None

    def test_capacity_applied_with_count(self) -> None:
        window = timed(capacity=1)
        now = START - timedelta(hours=1)
        assert next_state(window, now, enrolled_count=1) == WindowStatus.enrollment_closed

    def test_pure_function(self) -> None:
        window = timed(capacity=2)
        now = START - timedelta(minutes=5)
        results = {next_state(window, now, enrolled_count=2) for _ in range(10)}
        assert results == {WindowStatus.enrollment_closed}
        assert window.status == WindowStatus.scheduled


class TestDueInstants:
    def test_scheduled_window_has_start_and_finish(self) -> None:
        assert due_instants(timed()) == [
            (TransitionKind.START, START),
            (TransitionKind.FINISH, END),
        ]

    def test_in_progress_window_only_finishes(self) -> None:
        assert due_instants(timed(WindowStatus.in_progress)) == [(TransitionKind.FINISH, END)]

    def test_finished_window_has_none(self) -> None:
        assert due_instants(timed(WindowStatus.finished)) == []

    def test_open_ended_window_has_none(self) -> None:
        assert due_instants(open_ended()) == []


class TestWindowSnapshot:
    def test_from_model_tags_naive_start_as_utc(self) -> None:
        window = ExamWindow(
            id=uuid.uuid4(),
            owner_id=uuid.uuid4(),
            mode=SchedulingMode.timed,
            starts_at=START.replace(tzinfo=None),
            duration_minutes=DURATION,
            capacity=3,
            status=WindowStatus.scheduled,
            active=True,
        )

        snapshot = WindowSnapshot.from_model(window)

        assert snapshot.starts_at == START
        assert snapshot.ends_at == END
        assert snapshot.is_timed

    def test_snapshot_is_frozen(self) -> None:
        snapshot = timed()
        with pytest.raises(Exception):
            snapshot.status = WindowStatus.finished  # type: ignore[misc]

    def test_has_started(self) -> None:
        snapshot = timed()
        assert not snapshot.has_started(START - timedelta(seconds=1))
        assert snapshot.has_started(START)
        assert not open_ended().has_started(START)


class TestIdempotence:
    """Applying a computed transition leaves nothing further to do."""

    INSTANTS = [
        START - timedelta(hours=1),
        START - timedelta(microseconds=1),
        START,
        START + timedelta(minutes=1),
        END - timedelta(microseconds=1),
        END,
        END + timedelta(hours=1),
    ]

    @pytest.mark.parametrize("status", list(WindowStatus))
    @pytest.mark.parametrize("now", INSTANTS)
    @pytest.mark.parametrize("enrolled_count", [None, 0, 1, 2, 3])
    @pytest.mark.parametrize("closed_by_owner", [False, True])
    def test_timed_window_settles_in_one_step(
        self,
        status: WindowStatus,
        now: datetime,
        enrolled_count: int | None,
        closed_by_owner: bool,
    ) -> None:
        window = timed(status).model_copy(update={"closed_by_owner": closed_by_owner})

        target = next_state(window, now, enrolled_count)
        if target is None:
            return

        assert validate_transition(status, target)
        settled = window.model_copy(update={"status": target})
        assert next_state(settled, now, enrolled_count) is None

    @pytest.mark.parametrize("status", list(WindowStatus))
    @pytest.mark.parametrize("enrolled_count", [None, 0, 1, 2])
    def test_open_ended_window_settles_in_one_step(
        self, status: WindowStatus, enrolled_count: int | None
    ) -> None:
        window = open_ended(status)

        target = next_state(window, START, enrolled_count)
        if target is None:
            return

        settled = window.model_copy(update={"status": target})
        assert next_state(settled, START, enrolled_count) is None


class TestIncompleteTimedWindow:
    def test_missing_start_has_no_time_transition(self) -> None:
        window = timed().model_copy(update={"starts_at": None})

        assert window.ends_at is None
        assert time_based_state(window, END + timedelta(days=1)) is None
        assert due_instants(window) == []

    def test_missing_duration_has_no_time_transition(self) -> None:
        window = timed().model_copy(update={"duration_minutes": None})

        assert time_based_state(window, END + timedelta(days=1)) is None
        assert due_instants(window) == []


class TestOwnerActions:
    def test_owner_closed_window_does_not_reopen(self) -> None:
        window = timed(WindowStatus.enrollment_closed).model_copy(
            update={"closed_by_owner": True}
        )
        assert capacity_state(window, START - timedelta(hours=1), 0) is None

    def test_owner_closed_window_still_starts(self) -> None:
        window = timed(WindowStatus.enrollment_closed).model_copy(
            update={"closed_by_owner": True}
        )
        assert next_state(window, START, 0) == WindowStatus.in_progress

    @pytest.mark.parametrize(
        "status,target",
        [
            (WindowStatus.scheduled, WindowStatus.in_progress),
            (WindowStatus.in_progress, WindowStatus.finished),
            (WindowStatus.enrollment_closed, WindowStatus.in_progress),
            (WindowStatus.scheduled, WindowStatus.enrollment_closed),
        ],
    )
    def test_allowed_open_ended_moves(
        self, status: WindowStatus, target: WindowStatus
    ) -> None:
        assert manual_transition_error(open_ended(status), target, START, 0) is None

    @pytest.mark.parametrize(
        "status,target",
        [
            (WindowStatus.finished, WindowStatus.in_progress),
            (WindowStatus.in_progress, WindowStatus.scheduled),
            (WindowStatus.finished, WindowStatus.scheduled),
        ],
    )
    def test_backward_moves_refused(self, status: WindowStatus, target: WindowStatus) -> None:
        assert (
            manual_transition_error(open_ended(status), target, START, 0)
            == "invalid_transition"
        )

    def test_reopen_refused_when_full(self) -> None:
        window = open_ended(WindowStatus.enrollment_closed, capacity=1)
        assert (
            manual_transition_error(window, WindowStatus.scheduled, START, 1)
            == "capacity_reached"
        )

    def test_reopen_refused_after_start(self) -> None:
        window = timed(WindowStatus.enrollment_closed)
        assert (
            manual_transition_error(window, WindowStatus.scheduled, START, 0)
            == "window_started"
        )

    @pytest.mark.parametrize(
        "status,expected",
        [
            (WindowStatus.scheduled, WindowStatus.enrollment_closed),
            (WindowStatus.enrollment_closed, WindowStatus.scheduled),
            (WindowStatus.in_progress, None),
            (WindowStatus.finished, None),
        ],
    )
    def test_toggled_enrollment_state(
        self, status: WindowStatus, expected: WindowStatus | None
    ) -> None:
        assert toggled_enrollment_state(timed(status)) == expected
