"""Database query functions for Examclock.

This module provides async query functions for:
- Exam window reads, filtered listing and compare-and-set state writes
- Active enrollment counting
- Enrollment create, reactivate, cancel and attendance
"""

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
    count_active_enrollments_by_window,
    create_window,
    get_window,
    list_windows,
    set_window_active,
    update_window_config,
    update_window_state,
    validate_window_config,
)

__all__ = [
    # Window queries
    "create_window",
    "get_window",
    "list_windows",
    "update_window_state",
    "set_window_active",
    "update_window_config",
    "validate_window_config",
    "count_active_enrollments",
    "count_active_enrollments_by_window",
    # Enrollment queries
    "create_enrollment",
    "cancel_enrollment",
    "get_enrollment",
    "find_enrollment",
    "list_enrollments",
    "record_attendance",
]
