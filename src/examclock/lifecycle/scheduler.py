"""Precision timer scheduler for time-based window transitions.

The scheduler arms one-shot timers at the exact instants a window is due
to start or finish, so dashboards see the transition within milliseconds
instead of waiting for the next sweep. It is purely a latency
optimisation: its registry lives in memory, is lost on restart, and the
reconciliation sweep guarantees correctness without it.

Key concepts:

- **Schedule**: one timer per ``(window_id, kind)`` pair. Scheduling the
  same pair again replaces the previous timer, so re-planning is
  idempotent.
- **Horizon**: only instants within ``horizon_hours`` are armed. Windows
  further out enter the schedule on a later planning pass.
- **Planning pass**: every ``planning_interval_seconds`` the scheduler
  re-reads the windows in the horizon and re-issues ``schedule`` calls,
  which picks up new and edited windows and drops timers whose window
  no longer needs them.
- **Firing**: a timer never acts on values captured when it was armed. It
  asks the TransitionApplier to re-evaluate the window from its current
  persisted configuration, so a stale timer is a harmless no-op.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from uuid import UUID

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from examclock.config import SchedulerConfig
from examclock.database.models.window import WindowStatus
from examclock.database.queries.window import list_windows
from examclock.lifecycle.precise_delay import Clock, SystemClock, precise_sleep_until
from examclock.lifecycle.state_machine import TransitionKind, WindowSnapshot, due_instants
from examclock.lifecycle.transitions import TransitionApplier
from examclock.logging import bind_window_context

logger = structlog.get_logger(__name__)

SessionFactory = Callable[[], AsyncSession]

ScheduleKey = tuple[UUID, TransitionKind]


@dataclass
class ScheduledTransition:
    """A timer armed for one ``(window_id, kind)`` pair.

    Attributes:
        window_id: Window the timer belongs to.
        kind: Transition the timer is meant to trigger.
        target: Instant the timer fires at.
        armed_at: Instant the timer was armed.
        task: Background task running the timer.
    """

    window_id: UUID
    kind: TransitionKind
    target: datetime
    armed_at: datetime
    task: asyncio.Task[None] | None = field(default=None, repr=False)

    @property
    def key(self) -> ScheduleKey:
        return (self.window_id, self.kind)


class TransitionScheduler:
    """Arms drift-corrected timers for due window transitions.

    Attributes:
        config: Scheduler configuration.
        session_factory: Callable returning an ``AsyncSession``.
        applier: Applies transitions when a timer fires.
        clock: Source of the current instant and of sleeping.
    """

    def __init__(
        self,
        config: SchedulerConfig,
        session_factory: SessionFactory,
        applier: TransitionApplier,
        clock: Clock | None = None,
    ) -> None:
        self.config = config
        self.session_factory = session_factory
        self.applier = applier
        self.clock = clock or SystemClock()
        self._handles: dict[ScheduleKey, ScheduledTransition] = {}
        # Window id -> sequence number of the last track() or cancel() on it
        self._touched: dict[UUID, int] = {}
        self._sequence = 0
        self._passes_in_flight = 0
        self._running = False
        self._planning_task: asyncio.Task[None] | None = None
        self._fired_count = 0
        self._logger = logger.bind(component="TransitionScheduler")

    @property
    def horizon(self) -> timedelta:
        return timedelta(hours=self.config.horizon_hours)

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def fired_count(self) -> int:
        """Number of timers that fired since construction."""
        return self._fired_count

    # ------------------------------------------------------------------
    # Registry
    # ------------------------------------------------------------------

    def schedule(self, window_id: UUID, target: datetime, kind: TransitionKind) -> bool:
        """Arm a one-shot timer for ``target``, replacing any prior one.

        Must be called from within a running event loop.

        Args:
            window_id: Window to re-evaluate when the timer fires.
            target: Instant the transition becomes due (timezone-aware).
            kind: Which transition the timer is for.

        Returns:
            True if a timer is armed for ``target`` after the call, False
            if ``target`` is in the past or beyond the horizon.
        """
        key: ScheduleKey = (window_id, kind)
        now = self.clock.now()
        delay = target - now

        if delay <= timedelta(0) or delay > self.horizon:
            # A timer for an instant that no longer applies must not fire
            self.cancel(window_id, kind)
            return False

        existing = self._handles.get(key)
        if existing is not None and existing.target == target:
            return True

        if existing is not None:
            self._cancel_handle(existing)
            self._logger.debug(
                "timer_replaced",
                window_id=str(window_id),
                kind=kind.value,
                old_target=existing.target.isoformat(),
                new_target=target.isoformat(),
            )

        handle = ScheduledTransition(
            window_id=window_id,
            kind=kind,
            target=target,
            armed_at=now,
        )
        handle.task = asyncio.create_task(
            self._run(handle), name=f"timer-{kind.value}-{window_id}"
        )
        self._handles[key] = handle

        self._logger.debug(
            "timer_armed",
            window_id=str(window_id),
            kind=kind.value,
            target=target.isoformat(),
            delay_ms=round(delay.total_seconds() * 1000, 3),
        )
        return True

    def cancel(self, window_id: UUID, kind: TransitionKind | None = None) -> int:
        """Cancel the timer for one kind, or both kinds, of a window.

        Returns:
            Number of timers cancelled.
        """
        self._touch(window_id)
        kinds = [kind] if kind is not None else list(TransitionKind)
        cancelled = 0
        for k in kinds:
            handle = self._handles.pop((window_id, k), None)
            if handle is not None:
                self._cancel_handle(handle)
                cancelled += 1
        return cancelled

    def cancel_all(self) -> int:
        """Cancel every armed timer."""
        count = len(self._handles)
        for handle in list(self._handles.values()):
            self._cancel_handle(handle)
        self._handles.clear()
        return count

    def pending(self) -> list[ScheduledTransition]:
        """Armed timers, soonest first."""
        return sorted(self._handles.values(), key=lambda h: h.target)

    def get(self, window_id: UUID, kind: TransitionKind) -> ScheduledTransition | None:
        """The timer armed for ``(window_id, kind)``, if any."""
        return self._handles.get((window_id, kind))

    def _touch(self, window_id: UUID) -> None:
        self._sequence += 1
        self._touched[window_id] = self._sequence

    @staticmethod
    def _cancel_handle(handle: ScheduledTransition) -> None:
        if handle.task is not None and not handle.task.done():
            handle.task.cancel()

    # ------------------------------------------------------------------
    # Firing
    # ------------------------------------------------------------------

    async def _run(self, handle: ScheduledTransition) -> None:
        bind_window_context(str(handle.window_id))
        lateness = await precise_sleep_until(
            handle.target,
            self.clock,
            fine_threshold=self.config.fine_threshold_ms / 1000,
            poll_interval=self.config.poll_interval_ms / 1000,
        )

        # A replaced or cancelled handle must not fire
        if self._handles.get(handle.key) is not handle:
            return
        del self._handles[handle.key]
        self._fired_count += 1

        self._logger.info(
            "timer_fired",
            window_id=str(handle.window_id),
            kind=handle.kind.value,
            target=handle.target.isoformat(),
            lateness_ms=round(lateness * 1000, 3),
        )

        try:
            await self.applier.reconcile(handle.window_id)
        except Exception as e:
            self._logger.error(
                "timer_transition_failed",
                window_id=str(handle.window_id),
                kind=handle.kind.value,
                error=str(e),
                exc_info=True,
            )

    # ------------------------------------------------------------------
    # Planning
    # ------------------------------------------------------------------

    def track(self, snapshot: WindowSnapshot) -> list[ScheduleKey]:
        """Arm timers for the future due instants of one window.

        Used by the planning pass and right after a window is created or
        edited, so a new window does not wait for the next pass.

        Returns:
            Keys of the timers armed for this window.
        """
        self._touch(snapshot.id)
        now = self.clock.now()
        armed: list[ScheduleKey] = []
        for kind, instant in due_instants(snapshot):
            if instant <= now:
                continue
            if self.schedule(snapshot.id, instant, kind):
                armed.append((snapshot.id, kind))
        return armed

    async def plan(self) -> int:
        """Arm timers for every due instant within the horizon.

        Timers whose window no longer yields a due instant (finished,
        switched to open-ended, moved out of the horizon) are cancelled.
        Windows tracked or cancelled while the pass was reading the
        database are left alone: their timers come from newer data than
        the rows the pass read.

        Returns:
            Number of timers armed after the pass.
        """
        now = self.clock.now()
        horizon_end = now + self.horizon
        mark = self._sequence
        self._passes_in_flight += 1

        try:
            async with self.session_factory() as session:
                windows = await list_windows(
                    session,
                    exclude_statuses=[WindowStatus.finished],
                    starts_before=horizon_end,
                )
        finally:
            self._passes_in_flight -= 1

        fresh = {window_id for window_id, seq in self._touched.items() if seq > mark}

        wanted: set[ScheduleKey] = set()
        for window in windows:
            if window.id in fresh:
                continue
            wanted.update(self.track(WindowSnapshot.from_model(window)))

        stale = [
            key for key in self._handles if key not in wanted and key[0] not in fresh
        ]
        for window_id, kind in stale:
            self.cancel(window_id, kind)

        if self._passes_in_flight == 0:
            self._touched.clear()

        self._logger.info(
            "planning_pass_completed",
            windows_considered=len(windows),
            windows_skipped=len(fresh),
            timers_armed=len(self._handles),
            timers_dropped=len(stale),
            horizon_end=horizon_end.isoformat(),
        )
        return len(self._handles)

    async def start(self) -> None:
        """Start the periodic planning loop. No-op if already running."""
        if self._running:
            self._logger.warning("scheduler_already_running")
            return

        self._running = True
        self._planning_task = asyncio.create_task(self._planning_loop())
        self._logger.info(
            "scheduler_started",
            horizon_hours=self.config.horizon_hours,
            planning_interval=self.config.planning_interval_seconds,
        )

    async def stop(self) -> None:
        """Stop the planning loop and cancel every armed timer."""
        if not self._running:
            self._logger.warning("scheduler_not_running")
            return

        self._running = False

        if self._planning_task is not None:
            self._planning_task.cancel()
            try:
                await self._planning_task
            except asyncio.CancelledError:
                pass
            self._planning_task = None

        cancelled = self.cancel_all()
        self._logger.info("scheduler_stopped", timers_cancelled=cancelled)

    async def _planning_loop(self) -> None:
        while self._running:
            try:
                await self.plan()
                await asyncio.sleep(self.config.planning_interval_seconds)
            except asyncio.CancelledError:
                self._logger.info("planning_loop_cancelled")
                break
            except Exception as e:
                self._logger.error(
                    "planning_loop_error",
                    error=str(e),
                    exc_info=True,
                )
                await asyncio.sleep(self.config.planning_interval_seconds)
