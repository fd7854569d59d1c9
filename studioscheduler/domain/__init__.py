"""
Domain layer - Pure business logic without external dependencies.
"""

from .models import (
    AvailableSlot,
    Conflict,
    ConflictResult,
    Session,
    SessionStatus,
    TimeRange,
    Weekday,
)
from .slot_calculator import SlotCalculator

__all__ = [
    "AvailableSlot",
    "Conflict",
    "ConflictResult",
    "Session",
    "SessionStatus",
    "SlotCalculator",
    "TimeRange",
    "Weekday",
]
