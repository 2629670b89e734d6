"""Integration tests for enrollment query functions.

Tests run against SQLite to verify the admission rules: capacity,
window state, start instant, visibility, duplicates and reactivation.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from examclock.database.models.window import SchedulingMode, WindowStatus
from examclock.database.queries.enrollment import (
    cancel_enrollment,
    create_enrollment,
    find_enrollment,
    get_enrollment,
    list_enrollments,
    record_attendance,
)
from examclock.database.queries.window import (
    count_active_enrollments,
    create_window,
    set_window_active,
    update_window_state,
)
from examclock.errors import (
    EnrollmentNotFoundError,
    EnrollmentRejectedError,
    WindowNotFoundError,
)

START = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)
BEFORE = START - timedelta(hours=1)


async def window_with_capacity(session: AsyncSession, capacity: int = 2):
    return await create_window(
        session,
        owner_id=uuid.uuid4(),
        capacity=capacity,
        mode=SchedulingMode.timed,
        starts_at=START,
        duration_minutes=60,
    )


class TestCreateEnrollment:
    @pytest.mark.asyncio
    async def test_creates_active_enrollment(self, db_session: AsyncSession) -> None:
        window = await window_with_capacity(db_session)
        participant_id = uuid.uuid4()

        enrollment = await create_enrollment(db_session, window.id, participant_id, BEFORE)

        assert enrollment.window_id == window.id
        assert enrollment.participant_id == participant_id
        assert enrollment.is_active
        assert enrollment.attended is None
        assert await count_active_enrollments(db_session, window.id) == 1

    @pytest.mark.asyncio
    async def test_unknown_window(self, db_session: AsyncSession) -> None:
        with pytest.raises(WindowNotFoundError):
            await create_enrollment(db_session, uuid.uuid4(), uuid.uuid4(), BEFORE)

    @pytest.mark.asyncio
    async def test_capacity_reached(self, db_session: AsyncSession) -> None:
        window = await window_with_capacity(db_session, capacity=1)
        await create_enrollment(db_session, window.id, uuid.uuid4(), BEFORE)

        with pytest.raises(EnrollmentRejectedError) as exc_info:
            await create_enrollment(db_session, window.id, uuid.uuid4(), BEFORE)

        assert exc_info.value.reason == "capacity_reached"

    @pytest.mark.asyncio
    async def test_duplicate_enrollment(self, db_session: AsyncSession) -> None:
        window = await window_with_capacity(db_session)
        participant_id = uuid.uuid4()
        await create_enrollment(db_session, window.id, participant_id, BEFORE)

        with pytest.raises(EnrollmentRejectedError) as exc_info:
            await create_enrollment(db_session, window.id, participant_id, BEFORE)

        assert exc_info.value.reason == "already_enrolled"

    @pytest.mark.asyncio
    async def test_started_window(self, db_session: AsyncSession) -> None:
        window = await window_with_capacity(db_session)

        with pytest.raises(EnrollmentRejectedError) as exc_info:
            await create_enrollment(db_session, window.id, uuid.uuid4(), START)

        assert exc_info.value.reason == "window_started"

    @pytest.mark.asyncio
    async def test_closed_window(self, db_session: AsyncSession) -> None:
        window = await window_with_capacity(db_session)
        await update_window_state(db_session, window.id, WindowStatus.enrollment_closed)
        db_session.expire_all()

        with pytest.raises(EnrollmentRejectedError) as exc_info:
            await create_enrollment(db_session, window.id, uuid.uuid4(), BEFORE)

        assert exc_info.value.reason == "window_not_scheduled"

    @pytest.mark.asyncio
    async def test_hidden_window(self, db_session: AsyncSession) -> None:
        window = await window_with_capacity(db_session)
        await set_window_active(db_session, window.id, False)

        with pytest.raises(EnrollmentRejectedError) as exc_info:
            await create_enrollment(db_session, window.id, uuid.uuid4(), BEFORE)

        assert exc_info.value.reason == "window_inactive"

    @pytest.mark.asyncio
    async def test_reactivates_cancelled_enrollment(self, db_session: AsyncSession) -> None:
        window = await window_with_capacity(db_session)
        participant_id = uuid.uuid4()
        first = await create_enrollment(db_session, window.id, participant_id, BEFORE)
        await cancel_enrollment(db_session, first.id, BEFORE)

        again = await create_enrollment(
            db_session, window.id, participant_id, BEFORE + timedelta(minutes=5)
        )

        assert again.id == first.id
        assert again.is_active
        assert await count_active_enrollments(db_session, window.id) == 1


class TestCancelEnrollment:
    @pytest.mark.asyncio
    async def test_cancel_frees_seat(self, db_session: AsyncSession) -> None:
        window = await window_with_capacity(db_session)
        enrollment = await create_enrollment(db_session, window.id, uuid.uuid4(), BEFORE)

        cancelled = await cancel_enrollment(db_session, enrollment.id, BEFORE)

        assert not cancelled.is_active
        assert await count_active_enrollments(db_session, window.id) == 0

    @pytest.mark.asyncio
    async def test_cancel_twice_is_not_found(self, db_session: AsyncSession) -> None:
        window = await window_with_capacity(db_session)
        enrollment = await create_enrollment(db_session, window.id, uuid.uuid4(), BEFORE)
        await cancel_enrollment(db_session, enrollment.id, BEFORE)

        with pytest.raises(EnrollmentNotFoundError):
            await cancel_enrollment(db_session, enrollment.id, BEFORE)

    @pytest.mark.asyncio
    async def test_other_participant_cannot_cancel(self, db_session: AsyncSession) -> None:
        window = await window_with_capacity(db_session)
        enrollment = await create_enrollment(db_session, window.id, uuid.uuid4(), BEFORE)

        with pytest.raises(EnrollmentNotFoundError):
            await cancel_enrollment(
                db_session, enrollment.id, BEFORE, participant_id=uuid.uuid4()
            )

    @pytest.mark.asyncio
    async def test_cannot_cancel_after_start(self, db_session: AsyncSession) -> None:
        window = await window_with_capacity(db_session)
        enrollment = await create_enrollment(db_session, window.id, uuid.uuid4(), BEFORE)

        with pytest.raises(EnrollmentRejectedError) as exc_info:
            await cancel_enrollment(db_session, enrollment.id, START + timedelta(minutes=1))

        assert exc_info.value.reason == "window_started"


@pytest.mark.asyncio
async def test_list_and_find(db_session: AsyncSession) -> None:
    window = await window_with_capacity(db_session, capacity=3)
    keep = await create_enrollment(db_session, window.id, uuid.uuid4(), BEFORE)
    dropped = await create_enrollment(
        db_session, window.id, uuid.uuid4(), BEFORE + timedelta(minutes=1)
    )
    await cancel_enrollment(db_session, dropped.id, BEFORE + timedelta(minutes=2))

    active = await list_enrollments(db_session, window.id)
    everything = await list_enrollments(db_session, window.id, include_cancelled=True)

    assert [e.id for e in active] == [keep.id]
    assert [e.id for e in everything] == [keep.id, dropped.id]
    found = await find_enrollment(db_session, window.id, dropped.participant_id)
    assert found is not None and not found.is_active
    assert await get_enrollment(db_session, uuid.uuid4()) is None


@pytest.mark.asyncio
async def test_record_attendance(db_session: AsyncSession) -> None:
    window = await window_with_capacity(db_session)
    enrollment = await create_enrollment(db_session, window.id, uuid.uuid4(), BEFORE)

    updated = await record_attendance(db_session, enrollment.id, True)

    assert updated.attended is True
    with pytest.raises(EnrollmentNotFoundError):
        await record_attendance(db_session, uuid.uuid4(), False)
