"""FastAPI route definitions for the Examclock API.

This module contains route handlers for windows, enrollments, health
checks and SSE status events.
"""

from __future__ import annotations

from examclock.web.routes.enrollments import (
    AttendanceUpdate,
    EnrollmentCreate,
    EnrollmentResponse,
    create_enrollments_router,
)
from examclock.web.routes.events import create_events_router
from examclock.web.routes.health import (
    HealthResponse,
    ReadinessResponse,
    create_health_router,
)
from examclock.web.routes.windows import (
    StatusChangeResponse,
    StatusRefreshResponse,
    WindowActiveUpdate,
    WindowCreate,
    WindowResponse,
    create_windows_router,
)

__all__ = [
    # Enrollments
    "AttendanceUpdate",
    "EnrollmentCreate",
    "EnrollmentResponse",
    "create_enrollments_router",
    # Events / SSE
    "create_events_router",
    # Health
    "HealthResponse",
    "ReadinessResponse",
    "create_health_router",
    # Windows
    "StatusChangeResponse",
    "StatusRefreshResponse",
    "WindowActiveUpdate",
    "WindowCreate",
    "WindowResponse",
    "create_windows_router",
]
