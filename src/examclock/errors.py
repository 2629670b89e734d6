"""Exception hierarchy for Examclock.

Failures inside the lifecycle core never fail a user-facing action. The
classes here let callers tell apart the few failures that matter:

- ConfigurationError: a window definition is malformed (rejected at creation).
- TransientPersistenceError: a state write failed; the next sweep repairs it.
- TransportUnavailable: no notification channel exists; the event is dropped.
- EnrollmentRejectedError: an enrollment admission rule was violated.
- InvalidTransitionError: an owner asked for a forbidden state change.
- WindowNotFoundError / EnrollmentNotFoundError: unknown identifiers.
"""

from __future__ import annotations

from uuid import UUID


class ExamclockError(Exception):
    """Base class for all Examclock errors."""


class ConfigurationError(ExamclockError):
    """Raised when a window's scheduling configuration is malformed.

    Attributes:
        field: Name of the offending field, if a single one is at fault.
    """

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)


class TransientPersistenceError(ExamclockError):
    """Raised when persisting a derived state transition fails.

    Attributes:
        window_id: The window whose state could not be written.
    """

    def __init__(self, window_id: UUID, message: str):
        self.window_id = window_id
        super().__init__(f"Failed to persist state for window {window_id}: {message}")


class TransportUnavailable(ExamclockError):
    """Raised when no subscriber channel exists for an owner.

    Attributes:
        owner_id: The owner whose room has no subscribers.
    """

    def __init__(self, owner_id: UUID):
        self.owner_id = owner_id
        super().__init__(f"No notification channel for owner {owner_id}")


class WindowNotFoundError(ExamclockError):
    """Raised when a window id does not exist."""

    def __init__(self, window_id: UUID):
        self.window_id = window_id
        super().__init__(f"Exam window {window_id} not found")


class EnrollmentNotFoundError(ExamclockError):
    """Raised when an enrollment id does not exist or is not owned by the caller."""

    def __init__(self, enrollment_id: UUID):
        self.enrollment_id = enrollment_id
        super().__init__(f"Enrollment {enrollment_id} not found")


class EnrollmentRejectedError(ExamclockError):
    """Raised when an enrollment create, reactivate or cancel is not allowed.

    Attributes:
        window_id: The window the request targeted.
        reason: Machine-readable reason code (e.g. ``capacity_reached``).
    """

    def __init__(self, window_id: UUID, reason: str, message: str | None = None):
        self.window_id = window_id
        self.reason = reason
        super().__init__(message or f"Enrollment rejected for window {window_id}: {reason}")


class InvalidTransitionError(ExamclockError):
    """Raised when an owner requests a state change the lifecycle forbids.

    Attributes:
        window_id: The window the request targeted.
        current_state: State the window holds.
        target_state: State the owner asked for.
        reason: Machine-readable reason code (e.g. ``invalid_transition``).
    """

    def __init__(
        self,
        window_id: UUID,
        current_state: str,
        target_state: str,
        reason: str = "invalid_transition",
    ):
        self.window_id = window_id
        self.current_state = current_state
        self.target_state = target_state
        self.reason = reason
        super().__init__(
            f"Cannot move window {window_id} from {current_state} to {target_state}: {reason}"
        )
