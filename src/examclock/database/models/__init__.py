"""SQLAlchemy ORM models for Examclock.

This module defines the database schema for exam windows and enrollments.
All models use SQLAlchemy 2.0 declarative style with Mapped[] type annotations.
"""

from examclock.database.models.base import Base, TimestampMixin, ensure_utc
from examclock.database.models.enrollment import Enrollment
from examclock.database.models.window import ExamWindow, SchedulingMode, WindowStatus

__all__ = [
    "Base",
    "TimestampMixin",
    "ensure_utc",
    "ExamWindow",
    "SchedulingMode",
    "WindowStatus",
    "Enrollment",
]
