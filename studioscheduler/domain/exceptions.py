"""
Domain-specific exception hierarchy for the scheduling engine.

Every error here is a caller-visible validation failure. Nothing is retried
transparently; the engine aborts the operation before any write.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, List

if TYPE_CHECKING:
    from .models import Conflict


class SchedulingError(Exception):
    """Base class for all application-level errors."""


class NotFound(SchedulingError):
    """Raised when a room, studio, coach, session, client or package does not exist for the tenant."""


class CoachNotFound(NotFound):
    """Raised when a preferred coach cannot be resolved during auto-assignment."""


class InactiveResource(SchedulingError):
    """Raised when a room or coach exists but is disabled."""


class InvalidSessionWindow(SchedulingError):
    """Raised when an update would leave a session ending at or before its start."""


class AvailabilityError(SchedulingError):
    """Base class for opening-hours, coach-rule and gender violations."""


class ClosedDay(AvailabilityError):
    """Raised when the studio is closed on the requested weekday."""


class OutsideHours(AvailabilityError):
    """Raised when the window falls outside the studio's opening hours."""


class CoachUnavailable(AvailabilityError):
    """Raised when the coach has no availability rule for the weekday or is marked unavailable."""


class OutsideCoachHours(AvailabilityError):
    """Raised when the window falls outside the coach's hours for the weekday."""


class GenderMismatch(AvailabilityError):
    """Raised when the coach's client gender preference cannot be honoured."""


class CreditError(SchedulingError):
    """Base class for package credit failures."""


class NoActivePackage(CreditError):
    """Raised when the client has no usable package."""


class NoAvailableCredit(CreditError):
    """Raised when the client's remaining credit is already spoken for."""


class SchedulingConflict(SchedulingError):
    """Raised when one or more resources are already booked for the window."""

    def __init__(self, conflicts: List["Conflict"], message: str = "Scheduling conflict detected"):
        super().__init__(message)
        self.message = message
        self.conflicts = list(conflicts)

    def to_dict(self) -> Dict[str, Any]:
        """Return the conflict payload in its wire shape."""
        return {
            "message": self.message,
            "hasConflicts": bool(self.conflicts),
            "conflicts": [conflict.model_dump(by_alias=True) for conflict in self.conflicts],
        }


class AssignmentError(SchedulingError):
    """Base class for auto-assignment failures."""


class NoRoomsAvailable(AssignmentError):
    """Raised when every active room of the studio is occupied."""


class NoCoachesAvailable(AssignmentError):
    """Raised when every active coach of the studio is occupied or on leave."""


class CoachAlreadyBooked(AssignmentError):
    """Raised when the preferred coach already has a session in the window."""


class CoachOnLeave(AssignmentError):
    """Raised when the preferred coach has approved time-off in the window."""


class InvalidRecurrence(SchedulingError):
    """Raised when a recurrence request lacks a pattern, an end date or its slots."""


class SeriesError(SchedulingError):
    """Raised when a series operation targets a session that is not part of a series."""


class ParticipantError(SchedulingError):
    """Base class for group-session membership failures."""


class NotGroupSession(ParticipantError):
    """Raised when participants are added to an individual session."""


class CapacityReached(ParticipantError):
    """Raised when a group session is full."""


class AlreadyParticipant(ParticipantError):
    """Raised when the client already joined the session."""


class NotificationError(Exception):
    """Raised by mail adapters when a message cannot be delivered."""


class AuthenticationError(NotificationError):
    """Raised when authentication or token handling fails."""
