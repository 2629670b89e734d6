"""Exam window model for Examclock.

Defines the ExamWindow table together with the WindowStatus lifecycle
enum and the SchedulingMode enum.
"""

from __future__ import annotations

import enum
import uuid
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, DateTime, Index, Integer, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from examclock.database.models.base import Base, TimestampMixin, ensure_utc

if TYPE_CHECKING:
    from examclock.database.models.enrollment import Enrollment


class WindowStatus(enum.Enum):
    """Lifecycle states of an exam window.

    States:
        scheduled: Open for enrollment, not yet started.
        enrollment_closed: Capacity reached or closed by the owner, not yet
            started.
        in_progress: The exam is running.
        finished: The exam is over. Absorbing.
    """

    scheduled = "scheduled"
    enrollment_closed = "enrollment_closed"
    in_progress = "in_progress"
    finished = "finished"


class SchedulingMode(enum.Enum):
    """How a window is placed in time.

    Modes:
        timed: Fixed start instant and duration; time drives the lifecycle.
        open_ended: No start or duration; only capacity and manual owner
            action change its state.
    """

    timed = "timed"
    open_ended = "open_ended"


class ExamWindow(TimestampMixin, Base):
    """A scheduled or open-ended opportunity to take an exam.

    Attributes:
        id: UUID primary key (from TimestampMixin).
        owner_id: Identifier of the owning professor, used for routing
            notifications.
        exam_id: Opaque reference to the exam content.
        mode: Scheduling mode.
        starts_at: Start instant, present only for timed windows.
        duration_minutes: Duration, present only for timed windows.
        capacity: Maximum number of concurrent active enrollments.
        status: Current lifecycle state.
        active: Owner-controlled visibility flag, orthogonal to status.
        closed_by_owner: Enrollment was closed by hand; freed seats do not
            reopen the window.
        notes: Free-text notes for participants.
        created_at: Row creation timestamp (from TimestampMixin).
        updated_at: Last modification timestamp (from TimestampMixin).
        enrollments: Relationship to Enrollment records.
    """

    __tablename__ = "exam_windows"
    __table_args__ = (Index("ix_exam_windows_status_starts_at", "status", "starts_at"),)

    owner_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    exam_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    mode: Mapped[SchedulingMode] = mapped_column(
        default=SchedulingMode.timed,
        nullable=False,
    )
    starts_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    duration_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    capacity: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[WindowStatus] = mapped_column(
        default=WindowStatus.scheduled,
        nullable=False,
    )
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    closed_by_owner: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    enrollments: Mapped[list[Enrollment]] = relationship(
        back_populates="window",
        lazy="raise",
    )

    @property
    def start_instant(self) -> datetime | None:
        """Start instant in UTC, or None for open-ended windows."""
        return ensure_utc(self.starts_at)

    @property
    def end_instant(self) -> datetime | None:
        """Start plus duration in UTC, or None for open-ended windows."""
        start = self.start_instant
        if start is None or self.duration_minutes is None:
            return None
        return start + timedelta(minutes=self.duration_minutes)

    def __repr__(self) -> str:
        return (
            f"<ExamWindow(id={self.id}, mode={self.mode.value}, "
            f"status={self.status.value}, capacity={self.capacity})>"
        )
