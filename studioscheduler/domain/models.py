"""
Domain models for sessions, studio resources and credit packages.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, time
from enum import Enum, IntEnum
from typing import Dict, List, Optional

from pendulum import DateTime
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class Weekday(IntEnum):
    """Day of week, Sunday first (0=Sunday, 6=Saturday)."""

    SUNDAY = 0
    MONDAY = 1
    TUESDAY = 2
    WEDNESDAY = 3
    THURSDAY = 4
    FRIDAY = 5
    SATURDAY = 6

    @classmethod
    def of(cls, dt: date) -> "Weekday":
        """Return the weekday of a date or datetime."""
        return cls(dt.isoweekday() % 7)

    @classmethod
    def parse(cls, value: "int | str | Weekday") -> "Weekday":
        """
        Normalise a numeric (0-6) or named ("monday", "Mon") weekday.

        Raises:
            ValueError: If the value does not name a weekday
        """
        if isinstance(value, Weekday):
            return value
        if isinstance(value, int):
            return cls(value)

        text = str(value).strip().lower()
        if text.isdigit():
            return cls(int(text))
        for day in cls:
            if day.name.lower() == text or day.name.lower()[:3] == text:
                return day
        raise ValueError(f"Unknown weekday: {value!r}")

    @property
    def key(self) -> str:
        """Lowercase weekday name as used in opening-hours maps."""
        return self.name.lower()


class SessionStatus(str, Enum):
    scheduled = "scheduled"
    in_progress = "in_progress"
    completed = "completed"
    cancelled = "cancelled"
    no_show = "no_show"


class SessionType(str, Enum):
    individual = "individual"
    group = "group"


class RecurrencePattern(str, Enum):
    daily = "daily"
    weekly = "weekly"
    biweekly = "biweekly"
    monthly = "monthly"
    variable = "variable"


class PackageStatus(str, Enum):
    active = "active"
    expired = "expired"
    depleted = "depleted"


class TimeOffStatus(str, Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"


class ConflictType(str, Enum):
    room = "room"
    coach = "coach"
    client = "client"
    device = "device"


class SlotStatus(str, Enum):
    available = "available"
    full = "full"


ANY_GENDER = "any"
PREFER_NOT_TO_SAY = "prefer_not_to_say"


def parse_clock(value: "str | time") -> time:
    """Parse an "HH:MM" (or "HH:MM:SS") wall-clock string."""
    if isinstance(value, time):
        return value
    parts = str(value).strip().split(":")
    if len(parts) not in (2, 3):
        raise ValueError(f"Expected HH:MM, got {value!r}")
    hour, minute = int(parts[0]), int(parts[1])
    second = int(parts[2]) if len(parts) == 3 else 0
    return time(hour=hour, minute=minute, second=second)


def minutes_of_day(value: "time | DateTime") -> int:
    return value.hour * 60 + value.minute


@dataclass(frozen=True)
class TimeRange:
    """
    Represents an immutable time range with start and end datetime.

    Invariant: start must be before end.
    """
    start: DateTime
    end: DateTime

    def __post_init__(self):
        if self.start >= self.end:
            raise ValueError(f"Start time {self.start} must be before end time {self.end}")

    def duration_minutes(self) -> int:
        """Return the duration in minutes."""
        return int((self.end - self.start).total_seconds() / 60)

    def overlaps(self, other: "TimeRange") -> bool:
        """Half-open overlap: ranges that merely touch do not overlap."""
        return self.start < other.end and self.end > other.start

    def shifted_to(self, start: DateTime) -> "TimeRange":
        """Return a range of the same duration beginning at ``start``."""
        return TimeRange(start=start, end=start + (self.end - self.start))

    def __str__(self) -> str:
        return f"{self.start.format('YYYY-MM-DD HH:mm')} - {self.end.format('HH:mm')}"


@dataclass(frozen=True)
class DayHours:
    """Opening window for a single weekday."""
    open: time
    close: time


@dataclass
class Studio:
    id: str
    tenant_id: str
    name: str = ""
    timezone: str = "UTC"
    # Empty map: no hours configured. Missing key or None: closed that day.
    opening_hours: Dict[Weekday, Optional[DayHours]] = field(default_factory=dict)
    active: bool = True


@dataclass
class Room:
    id: str
    tenant_id: str
    studio_id: str
    name: str = ""
    active: bool = True


@dataclass(frozen=True)
class AvailabilityRule:
    """A coach's availability for one weekday, optionally limited to a time range."""
    day: Weekday
    available: bool = True
    start_time: Optional[time] = None
    end_time: Optional[time] = None

    @property
    def has_time_range(self) -> bool:
        return self.start_time is not None and self.end_time is not None


@dataclass
class Coach:
    id: str
    tenant_id: str
    studio_id: str
    name: str = ""
    email: Optional[str] = None
    active: bool = True
    preferred_client_gender: Optional[str] = None
    availability_rules: List[AvailabilityRule] = field(default_factory=list)


@dataclass
class CoachTimeOff:
    id: str
    tenant_id: str
    coach_id: str
    start: DateTime
    end: DateTime
    status: TimeOffStatus = TimeOffStatus.pending


@dataclass
class Client:
    id: str
    tenant_id: str
    email: str
    first_name: str = ""
    last_name: str = ""
    gender: Optional[str] = None


@dataclass
class ClientPackage:
    """
    Prepaid session credit owned by a client.

    The engine never edits the counters directly; see ``CreditLedger``.
    """
    id: str
    tenant_id: str
    client_id: str
    sessions_remaining: int
    expiry_date: DateTime
    sessions_used: int = 0
    status: PackageStatus = PackageStatus.active
    created_at: Optional[DateTime] = None


@dataclass
class TenantSettings:
    tenant_id: str
    cancellation_window_hours: Optional[int] = None


@dataclass
class Session:
    """
    The booking unit.

    ``charged_package_id`` records the package a credit was taken from while
    the session holds one; it is ``None`` when no credit is held.
    """
    id: str
    tenant_id: str
    studio_id: str
    room_id: str
    coach_id: str
    start_time: DateTime
    end_time: DateTime
    client_id: Optional[str] = None
    ems_device_id: Optional[str] = None
    status: SessionStatus = SessionStatus.scheduled
    session_type: SessionType = SessionType.individual
    capacity: int = 1
    notes: Optional[str] = None
    program_type: Optional[str] = None
    intensity_level: Optional[int] = None
    is_recurring_parent: bool = False
    recurrence_pattern: Optional[RecurrencePattern] = None
    recurrence_end_date: Optional[date] = None
    recurrence_days: Optional[List[int]] = None
    parent_session_id: Optional[str] = None
    cancelled_at: Optional[DateTime] = None
    cancelled_reason: Optional[str] = None
    charged_package_id: Optional[str] = None
    created_at: Optional[DateTime] = None

    def __post_init__(self):
        if self.start_time >= self.end_time:
            raise ValueError(
                f"Session start {self.start_time} must be before end {self.end_time}"
            )

    @property
    def window(self) -> TimeRange:
        return TimeRange(start=self.start_time, end=self.end_time)

    @property
    def series_id(self) -> Optional[str]:
        """Id of the recurring parent this session belongs to, if any."""
        if self.is_recurring_parent:
            return self.id
        return self.parent_session_id


@dataclass
class SessionParticipant:
    id: str
    tenant_id: str
    session_id: str
    client_id: str
    status: SessionStatus = SessionStatus.scheduled
    client_package_id: Optional[str] = None


class WireModel(BaseModel):
    """Base for shapes returned to callers; serialised with camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Conflict(WireModel):
    type: ConflictType
    session_id: str
    message: str


class ConflictResult(WireModel):
    has_conflicts: bool = False
    conflicts: List[Conflict] = Field(default_factory=list)

    @classmethod
    def from_conflicts(cls, conflicts: List[Conflict]) -> "ConflictResult":
        return cls(has_conflicts=bool(conflicts), conflicts=list(conflicts))

    def types(self) -> List[ConflictType]:
        return [conflict.type for conflict in self.conflicts]


class AvailableSlot(WireModel):
    time: str
    status: SlotStatus
