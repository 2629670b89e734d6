"""Enrollment REST API endpoints for Examclock.

Every create, reactivate and cancel goes through the lifecycle service,
which applies the capacity-triggered transition before the response is
returned. A failure of that transition never fails the request.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from examclock.database.queries.enrollment import list_enrollments, record_attendance
from examclock.errors import (
    EnrollmentNotFoundError,
    EnrollmentRejectedError,
    WindowNotFoundError,
)
from examclock.lifecycle.service import WindowLifecycleService
from examclock.web.dependencies import get_lifecycle, get_session_factory

logger = structlog.get_logger(__name__)


# --- Pydantic Schemas ---


class EnrollmentCreate(BaseModel):
    """Request schema for enrolling a participant."""

    window_id: UUID
    participant_id: UUID


class AttendanceUpdate(BaseModel):
    """Request schema for recording attendance."""

    attended: bool


class EnrollmentResponse(BaseModel):
    """Response schema for enrollment data."""

    id: UUID
    window_id: UUID
    participant_id: UUID
    enrolled_at: datetime
    cancelled_at: datetime | None
    attended: bool | None
    is_active: bool

    model_config = {"from_attributes": True}


def _rejected(e: EnrollmentRejectedError) -> HTTPException:
    logger.info(
        "enrollment_rejected",
        window_id=str(e.window_id),
        reason=e.reason,
    )
    return HTTPException(status_code=400, detail={"reason": e.reason, "message": str(e)})


# --- Router ---


def create_enrollments_router() -> APIRouter:
    """Create the enrollments router.

    Routes:
        GET /enrollments/ - List a window's enrollments
        POST /enrollments/ - Enroll (or re-enroll) a participant
        DELETE /enrollments/{enrollment_id} - Cancel an enrollment
        PATCH /enrollments/{enrollment_id}/attendance - Record attendance
    """
    router = APIRouter(prefix="/enrollments", tags=["enrollments"])

    @router.get("/", response_model=list[EnrollmentResponse])
    async def list_enrollments_endpoint(
        window_id: UUID,
        include_cancelled: bool = False,
        session_factory: Callable[[], AsyncSession] = Depends(get_session_factory),  # noqa: B008
    ) -> list[EnrollmentResponse]:
        """List enrollments of a window, oldest first."""
        async with session_factory() as session:
            enrollments = await list_enrollments(
                session, window_id, include_cancelled=include_cancelled
            )
        return [EnrollmentResponse.model_validate(e) for e in enrollments]

    @router.post("/", response_model=EnrollmentResponse, status_code=201)
    async def create_enrollment_endpoint(
        enrollment_data: EnrollmentCreate,
        lifecycle: WindowLifecycleService = Depends(get_lifecycle),  # noqa: B008
    ) -> EnrollmentResponse:
        """Enroll a participant in a window.

        Raises:
            HTTPException: 404 if the window does not exist, 400 if an
                admission rule rejects the enrollment.
        """
        try:
            enrollment = await lifecycle.enroll(
                enrollment_data.window_id, enrollment_data.participant_id
            )
        except WindowNotFoundError:
            logger.warning("window_not_found", window_id=str(enrollment_data.window_id))
            raise HTTPException(status_code=404, detail="Window not found")
        except EnrollmentRejectedError as e:
            raise _rejected(e)

        return EnrollmentResponse.model_validate(enrollment)

    @router.delete("/{enrollment_id}", response_model=EnrollmentResponse)
    async def cancel_enrollment_endpoint(
        enrollment_id: UUID,
        participant_id: UUID | None = None,
        lifecycle: WindowLifecycleService = Depends(get_lifecycle),  # noqa: B008
    ) -> EnrollmentResponse:
        """Cancel an active enrollment.

        Raises:
            HTTPException: 404 if no matching active enrollment exists, 400
                if the window has already started.
        """
        try:
            enrollment = await lifecycle.cancel_enrollment(enrollment_id, participant_id)
        except (EnrollmentNotFoundError, WindowNotFoundError):
            logger.warning("enrollment_not_found", enrollment_id=str(enrollment_id))
            raise HTTPException(status_code=404, detail="Enrollment not found")
        except EnrollmentRejectedError as e:
            raise _rejected(e)

        return EnrollmentResponse.model_validate(enrollment)

    @router.patch("/{enrollment_id}/attendance", response_model=EnrollmentResponse)
    async def record_attendance_endpoint(
        enrollment_id: UUID,
        update: AttendanceUpdate,
        session_factory: Callable[[], AsyncSession] = Depends(get_session_factory),  # noqa: B008
    ) -> EnrollmentResponse:
        """Record whether the participant attended.

        Raises:
            HTTPException: 404 if the enrollment does not exist.
        """
        try:
            async with session_factory() as session:
                enrollment = await record_attendance(session, enrollment_id, update.attended)
        except EnrollmentNotFoundError:
            logger.warning("enrollment_not_found", enrollment_id=str(enrollment_id))
            raise HTTPException(status_code=404, detail="Enrollment not found")

        return EnrollmentResponse.model_validate(enrollment)

    return router
