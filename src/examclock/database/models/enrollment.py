"""Enrollment model for Examclock.

An enrollment is a participant's registration for an exam window. A null
``cancelled_at`` marks the enrollment as active; cancelling keeps the row
so it can later be reactivated.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, DateTime, ForeignKey, UniqueConstraint, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from examclock.database.models.base import Base, TimestampMixin

if TYPE_CHECKING:
    from examclock.database.models.window import ExamWindow


class Enrollment(TimestampMixin, Base):
    """A participant's registration, active or cancelled, for a window.

    Attributes:
        id: UUID primary key (from TimestampMixin).
        window_id: Foreign key to the exam window.
        participant_id: Identifier of the enrolled participant.
        enrolled_at: When the enrollment was created or last reactivated.
        cancelled_at: When the enrollment was cancelled; None while active.
        attended: Attendance recorded by the owner; None until recorded.
        window: Relationship to the parent ExamWindow.
    """

    __tablename__ = "enrollments"
    __table_args__ = (
        UniqueConstraint(
            "window_id", "participant_id", name="uq_enrollments_window_participant"
        ),
    )

    window_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("exam_windows.id"),
        nullable=False,
        index=True,
    )
    participant_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    enrolled_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    cancelled_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    attended: Mapped[bool | None] = mapped_column(Boolean, nullable=True)

    window: Mapped[ExamWindow] = relationship(back_populates="enrollments", lazy="raise")

    @property
    def is_active(self) -> bool:
        """Whether the enrollment currently counts against capacity."""
        return self.cancelled_at is None
