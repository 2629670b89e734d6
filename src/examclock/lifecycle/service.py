"""Window lifecycle service.

Composes the lifecycle core (locks, transition applier, scheduler, sweep,
capacity path) around one shared observer and exposes the operations the
API layer needs. One instance is created per process, typically in the
web application lifespan.

Example:
    >>> service = WindowLifecycleService(config, session_factory, broadcaster)
    >>> await service.start()
    >>> changes = await service.trigger_sweep(owner_id)
    >>> await service.stop()
"""

from __future__ import annotations

from collections.abc import Callable
from uuid import UUID

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from examclock.config import ExamclockConfig
from examclock.database.models.enrollment import Enrollment
from examclock.database.models.window import WindowStatus
from examclock.database.queries.window import get_window
from examclock.lifecycle.capacity import CapacityTransition
from examclock.lifecycle.locks import WindowLocks
from examclock.lifecycle.notifications import (
    NotificationBroadcaster,
    StatusChange,
    StatusObserver,
)
from examclock.lifecycle.precise_delay import Clock, SystemClock
from examclock.lifecycle.scheduler import TransitionScheduler
from examclock.lifecycle.state_machine import WindowSnapshot
from examclock.lifecycle.sweep import ReconciliationSweep
from examclock.lifecycle.transitions import TransitionApplier

logger = structlog.get_logger(__name__)

SessionFactory = Callable[[], AsyncSession]


class WindowLifecycleService:
    """Entry point to the window lifecycle core.

    Attributes:
        config: Application configuration.
        session_factory: Callable returning an ``AsyncSession``.
        observer: Receiver of every applied transition.
        locks: Per-window lock registry shared by all trigger paths.
        applier: Shared read-compute-write path.
        scheduler: Precision timer scheduler.
        sweep: Backup reconciliation sweep.
        capacity: Enrollment mutations and capacity-triggered transitions.
    """

    def __init__(
        self,
        config: ExamclockConfig,
        session_factory: SessionFactory,
        observer: StatusObserver | None = None,
        clock: Clock | None = None,
    ) -> None:
        self.config = config
        self.session_factory = session_factory
        self.clock = clock or SystemClock()
        self.observer: StatusObserver = observer or NotificationBroadcaster(
            queue_size=config.broadcast.subscriber_queue_size
        )
        self.locks = WindowLocks()
        self.applier = TransitionApplier(session_factory, self.locks, self.observer, self.clock)
        self.scheduler = TransitionScheduler(
            config.scheduler, session_factory, self.applier, self.clock
        )
        self.sweep = ReconciliationSweep(
            config.sweep, session_factory, self.applier, self.observer, self.clock
        )
        self.capacity = CapacityTransition(session_factory, self.applier, self.locks, self.clock)
        self._logger = logger.bind(component="WindowLifecycleService")

    @property
    def broadcaster(self) -> NotificationBroadcaster | None:
        """The in-process broadcaster, if that is the configured observer."""
        if isinstance(self.observer, NotificationBroadcaster):
            return self.observer
        return None

    async def start(self) -> None:
        """Start the enabled background components.

        The sweep starts first so windows that went stale while the
        process was down converge before timers are armed.
        """
        if self.config.sweep.enabled:
            await self.sweep.start()
        if self.config.scheduler.enabled:
            await self.scheduler.start()
        self._logger.info(
            "lifecycle_started",
            scheduler_enabled=self.config.scheduler.enabled,
            sweep_enabled=self.config.sweep.enabled,
        )

    async def stop(self) -> None:
        """Stop background components and end subscriber streams."""
        if self.scheduler.is_running:
            await self.scheduler.stop()
        if self.sweep.is_running:
            await self.sweep.stop()
        if self.broadcaster is not None:
            await self.broadcaster.close()
        self._logger.info("lifecycle_stopped")

    async def trigger_sweep(self, owner_id: UUID | None = None) -> list[StatusChange]:
        """Run an on-demand reconciliation pass.

        Args:
            owner_id: Restrict the pass to one owner's windows.

        Returns:
            The changes applied by the pass.
        """
        self._logger.info(
            "sweep_requested", owner_id=str(owner_id) if owner_id else None
        )
        return await self.sweep.sweep(owner_id)

    async def on_enrollment_changed(self, window_id: UUID) -> StatusChange | None:
        """Apply the capacity rule after an enrollment change. Never raises."""
        return await self.capacity.on_enrollment_changed(window_id)

    async def enroll(self, window_id: UUID, participant_id: UUID) -> Enrollment:
        """Enroll a participant; see ``CapacityTransition.enroll``."""
        return await self.capacity.enroll(window_id, participant_id)

    async def cancel_enrollment(
        self, enrollment_id: UUID, participant_id: UUID | None = None
    ) -> Enrollment:
        """Cancel an enrollment; see ``CapacityTransition.cancel``."""
        return await self.capacity.cancel(enrollment_id, participant_id)

    async def on_window_edited(self, window_id: UUID) -> StatusChange | None:
        """Re-arm timers and re-evaluate a window after its configuration changed.

        Timers armed for the old configuration are dropped; the window is
        reconciled immediately so an edit that makes a transition due (a
        start moved into the past, a capacity lowered to the enrolled
        count) is applied before the request returns. Never raises.

        Returns:
            The applied change, or None.
        """
        try:
            await self._rearm(window_id)
            return await self.applier.reconcile(window_id, include_capacity=True)
        except Exception as e:
            self._logger.warning(
                "window_reevaluation_deferred",
                window_id=str(window_id),
                error=str(e),
            )
            return None

    async def set_state(self, window_id: UUID, target: WindowStatus) -> StatusChange | None:
        """Move a window to an owner-chosen state and publish the change.

        This is how open-ended windows start and finish. Timed windows may
        also be moved by hand; their timers are re-armed for the new state.

        Raises:
            WindowNotFoundError: If the window does not exist.
            InvalidTransitionError: If the change is not allowed.
            TransientPersistenceError: If the state write fails.
        """
        change = await self.applier.apply_manual(window_id, target)
        if change is not None:
            await self._rearm(window_id)
        return change

    async def toggle_enrollment(self, window_id: UUID) -> StatusChange | None:
        """Open or close enrollment by hand; see ``TransitionApplier.toggle_enrollment``."""
        return await self.applier.toggle_enrollment(window_id)

    async def _rearm(self, window_id: UUID) -> None:
        if not self.scheduler.is_running:
            return
        self.scheduler.cancel(window_id)
        async with self.session_factory() as session:
            window = await get_window(session, window_id)
        if window is not None:
            self.scheduler.track(WindowSnapshot.from_model(window))

    async def plan(self) -> int:
        """Run one scheduler planning pass."""
        return await self.scheduler.plan()
