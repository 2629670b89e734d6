"""Exam window lifecycle core.

State machine, precision scheduler, reconciliation sweep, capacity-driven
transitions and status notifications.
"""

from examclock.lifecycle.capacity import CapacityTransition
from examclock.lifecycle.locks import WindowLocks
from examclock.lifecycle.notifications import (
    NotificationBroadcaster,
    NullObserver,
    StatusChange,
    StatusEvent,
    StatusObserver,
)
from examclock.lifecycle.precise_delay import Clock, SystemClock, precise_sleep_until
from examclock.lifecycle.scheduler import ScheduledTransition, TransitionScheduler
from examclock.lifecycle.service import WindowLifecycleService
from examclock.lifecycle.state_machine import (
    TransitionKind,
    WindowSnapshot,
    capacity_state,
    due_instants,
    next_state,
    time_based_state,
    validate_transition,
)
from examclock.lifecycle.sweep import ReconciliationSweep
from examclock.lifecycle.transitions import TransitionApplier

__all__ = [
    "CapacityTransition",
    "Clock",
    "NotificationBroadcaster",
    "NullObserver",
    "ReconciliationSweep",
    "ScheduledTransition",
    "StatusChange",
    "StatusEvent",
    "StatusObserver",
    "SystemClock",
    "TransitionApplier",
    "TransitionKind",
    "TransitionScheduler",
    "WindowLifecycleService",
    "WindowLocks",
    "WindowSnapshot",
    "capacity_state",
    "due_instants",
    "next_state",
    "precise_sleep_until",
    "time_based_state",
    "validate_transition",
]
