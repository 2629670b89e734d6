"""Backup reconciliation sweep.

The sweep is the correctness backstop of the lifecycle core. On a short
fixed period it recomputes the state of every window (or of one owner's
windows on demand) and applies whatever the state machine says is due.
Whatever happened to timers, clocks or the process, every window converges
to its correct state within one sweep interval.

A pass first evaluates the state machine against the listed rows without
locking; only windows that look due are re-read and applied under their
lock, so quiet passes cost one list query and one count query.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import datetime
from uuid import UUID

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from examclock.config import SweepConfig
from examclock.database.queries.window import (
    count_active_enrollments_by_window,
    list_windows,
)
from examclock.lifecycle.notifications import StatusChange, StatusObserver
from examclock.lifecycle.precise_delay import Clock, SystemClock
from examclock.lifecycle.state_machine import WindowSnapshot, next_state
from examclock.lifecycle.transitions import TransitionApplier

logger = structlog.get_logger(__name__)

SessionFactory = Callable[[], AsyncSession]


def group_by_owner(changes: list[StatusChange]) -> dict[UUID, list[StatusChange]]:
    """Group changes by owner, preserving their order within each owner."""
    grouped: dict[UUID, list[StatusChange]] = {}
    for change in changes:
        grouped.setdefault(change.owner_id, []).append(change)
    return grouped


class ReconciliationSweep:
    """Periodically reconciles persisted window states.

    Attributes:
        config: Sweep configuration.
        session_factory: Callable returning an ``AsyncSession``.
        applier: Applies due transitions under the per-window lock.
        observer: Receives the changes of each pass, grouped by owner.
        clock: Source of the current instant.
    """

    def __init__(
        self,
        config: SweepConfig,
        session_factory: SessionFactory,
        applier: TransitionApplier,
        observer: StatusObserver,
        clock: Clock | None = None,
    ) -> None:
        self.config = config
        self.session_factory = session_factory
        self.applier = applier
        self.observer = observer
        self.clock = clock or SystemClock()
        self._running = False
        self._sweep_task: asyncio.Task[None] | None = None
        self.last_run_at: datetime | None = None
        self.last_change_count = 0
        self._logger = logger.bind(component="ReconciliationSweep")

    @property
    def is_running(self) -> bool:
        return self._running

    async def sweep(self, owner_id: UUID | None = None) -> list[StatusChange]:
        """Run one reconciliation pass.

        A failure on one window is logged and the pass moves on to the
        next window; that window is retried on the following pass.

        Args:
            owner_id: Restrict the pass to one owner's windows.

        Returns:
            Applied changes, in the order they were applied.
        """
        started = self.clock.now()
        include_capacity = self.config.repair_capacity

        async with self.session_factory() as session:
            windows = await list_windows(session, owner_id=owner_id)
            counts = (
                await count_active_enrollments_by_window(session, [w.id for w in windows])
                if include_capacity
                else {}
            )

        snapshots = [WindowSnapshot.from_model(w) for w in windows]

        changes: list[StatusChange] = []
        failures = 0
        for snapshot in snapshots:
            count = counts.get(snapshot.id, 0) if include_capacity else None
            if next_state(snapshot, self.clock.now(), count) is None:
                continue

            try:
                change = await self.applier.reconcile(
                    snapshot.id, include_capacity=include_capacity, publish=False
                )
            except Exception as e:
                failures += 1
                self._logger.warning(
                    "sweep_window_failed",
                    window_id=str(snapshot.id),
                    error=str(e),
                    exc_info=True,
                )
                continue

            if change is not None:
                changes.append(change)

        for change_owner, owner_changes in group_by_owner(changes).items():
            await self.observer.notify_status_change(change_owner, owner_changes)

        self.last_run_at = started
        self.last_change_count = len(changes)

        log = self._logger.info if changes or failures else self._logger.debug
        log(
            "sweep_completed",
            owner_id=str(owner_id) if owner_id else None,
            windows_checked=len(snapshots),
            changes=len(changes),
            failures=failures,
        )

        return changes

    async def start(self) -> None:
        """Start the periodic sweep loop. No-op if already running."""
        if self._running:
            self._logger.warning("sweep_already_running")
            return

        self._running = True
        self._sweep_task = asyncio.create_task(self._sweep_loop())
        self._logger.info("sweep_started", interval=self.config.interval_seconds)

    async def stop(self) -> None:
        """Stop the sweep loop and wait for it to exit."""
        if not self._running:
            self._logger.warning("sweep_not_running")
            return

        self._running = False

        if self._sweep_task is not None:
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
            self._sweep_task = None

        self._logger.info("sweep_stopped")

    async def _sweep_loop(self) -> None:
        while self._running:
            try:
                await self.sweep()
                await asyncio.sleep(self.config.interval_seconds)
            except asyncio.CancelledError:
                self._logger.info("sweep_loop_cancelled")
                break
            except Exception as e:
                self._logger.error(
                    "sweep_loop_error",
                    error=str(e),
                    exc_info=True,
                )
                # Keep sweeping; the next pass retries everything
                await asyncio.sleep(self.config.interval_seconds)
