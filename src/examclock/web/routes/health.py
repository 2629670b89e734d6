"""Health check endpoints for Examclock.

This module provides health and readiness endpoints for:
- Liveness check (/health/)
- Readiness check (/health/ready)

The readiness endpoint verifies database connectivity and reports whether
the scheduler and the reconciliation sweep are running.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from examclock.lifecycle.service import WindowLifecycleService
from examclock.logging import get_logger
from examclock.web.dependencies import get_lifecycle, get_session_factory

logger = get_logger(__name__)


class HealthResponse(BaseModel):
    """Health check response model.

    Attributes:
        status: Current health status ("ok")
    """

    status: str


class ReadinessResponse(BaseModel):
    """Readiness check response model.

    Attributes:
        status: Current readiness status ("ok", "degraded", "unhealthy")
        database: Database connectivity status ("connected", "disconnected")
        scheduler: Whether the precision scheduler is running
        sweep: Whether the reconciliation sweep is running
        pending_timers: Number of armed timers
    """

    status: str
    database: str
    scheduler: bool
    sweep: bool
    pending_timers: int


def create_health_router() -> APIRouter:
    """Create health check router with endpoints.

    Routes:
        GET /health/ - Basic liveness check
        GET /health/ready - Readiness check with database and lifecycle status
    """
    router = APIRouter(prefix="/health", tags=["health"])

    @router.get("/", response_model=HealthResponse)
    async def health() -> dict[str, Any]:
        """Basic liveness check."""
        return {"status": "ok"}

    @router.get("/ready", response_model=ReadinessResponse)
    async def readiness(
        session_factory: Callable[[], AsyncSession] = Depends(  # noqa: B008
            get_session_factory
        ),
        lifecycle: WindowLifecycleService = Depends(get_lifecycle),  # noqa: B008
    ) -> dict[str, Any]:
        """Readiness check.

        The service is ``degraded`` when the database answers but a
        background component that is enabled in configuration is not
        running; windows then only converge on demand.
        """
        scheduler_running = lifecycle.scheduler.is_running
        sweep_running = lifecycle.sweep.is_running

        try:
            async with session_factory() as session:
                await session.execute(text("SELECT 1"))
        except Exception as exc:
            logger.warning(
                "readiness_check_failed",
                database="disconnected",
                error=str(exc),
            )
            return {
                "status": "unhealthy",
                "database": "disconnected",
                "scheduler": scheduler_running,
                "sweep": sweep_running,
                "pending_timers": len(lifecycle.scheduler.pending()),
            }

        expected_scheduler = lifecycle.config.scheduler.enabled
        expected_sweep = lifecycle.config.sweep.enabled
        degraded = (expected_scheduler and not scheduler_running) or (
            expected_sweep and not sweep_running
        )

        logger.debug(
            "readiness_check_passed",
            database="connected",
            scheduler=scheduler_running,
            sweep=sweep_running,
        )
        return {
            "status": "degraded" if degraded else "ok",
            "database": "connected",
            "scheduler": scheduler_running,
            "sweep": sweep_running,
            "pending_timers": len(lifecycle.scheduler.pending()),
        }

    return router
