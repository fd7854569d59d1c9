"""
Input DTOs and operation results of the scheduling services.

Inputs are pydantic models accepting camelCase or snake_case keys; results
are plain dataclasses holding domain objects.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time
from typing import Any, Dict, List, Optional

import pendulum
from pendulum import DateTime
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from ..domain.models import (
    Conflict,
    RecurrencePattern,
    Session,
    SessionStatus,
    SessionType,
    TimeRange,
    Weekday,
)
from ..domain.recurrence import RecurrenceSlot

# Session fields an update may change but never null out
REQUIRED_SESSION_FIELDS = frozenset(
    {"studio_id", "room_id", "coach_id", "start_time", "end_time", "capacity"}
)


def to_pendulum(value: datetime) -> DateTime:
    """Convert a datetime to a UTC pendulum DateTime (naive values are UTC)."""
    return pendulum.instance(value).in_timezone("UTC")


class InputModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RecurrenceSlotIn(InputModel):
    day_of_week: Weekday
    start_time: time

    @field_validator("day_of_week", mode="before")
    @classmethod
    def parse_day(cls, value: Any) -> Weekday:
        return Weekday.parse(value)

    def to_domain(self) -> RecurrenceSlot:
        return RecurrenceSlot(day=self.day_of_week, start_time=self.start_time)


class SessionCreate(InputModel):
    """Booking request for one session, or the parent of a recurring series."""

    studio_id: str
    room_id: str
    coach_id: str
    client_id: Optional[str] = None
    ems_device_id: Optional[str] = None
    start_time: datetime
    end_time: datetime
    session_type: SessionType = Field(default=SessionType.individual, alias="type")
    capacity: int = Field(default=1, ge=1)
    notes: Optional[str] = None
    program_type: Optional[str] = None
    intensity_level: Optional[int] = Field(default=None, ge=1, le=10)
    recurrence_pattern: Optional[RecurrencePattern] = None
    recurrence_end_date: Optional[date] = None
    recurrence_days: Optional[List[int]] = None
    recurrence_slots: Optional[List[RecurrenceSlotIn]] = None

    @field_validator("recurrence_days", mode="before")
    @classmethod
    def parse_days(cls, value: Any) -> Optional[List[int]]:
        if value is None:
            return None
        return [int(Weekday.parse(day)) for day in value]

    @model_validator(mode="after")
    def validate_window(self) -> "SessionCreate":
        if to_pendulum(self.end_time) <= to_pendulum(self.start_time):
            raise ValueError("end_time must be after start_time")
        return self

    @property
    def window(self) -> TimeRange:
        return TimeRange(start=to_pendulum(self.start_time), end=to_pendulum(self.end_time))

    @property
    def is_recurring(self) -> bool:
        return self.recurrence_pattern is not None and self.recurrence_end_date is not None

    def slots(self) -> List[RecurrenceSlot]:
        return [slot.to_domain() for slot in self.recurrence_slots or []]


class SessionUpdate(InputModel):
    """Partial update; only fields explicitly set are applied."""

    studio_id: Optional[str] = None
    room_id: Optional[str] = None
    coach_id: Optional[str] = None
    client_id: Optional[str] = None
    ems_device_id: Optional[str] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    capacity: Optional[int] = Field(default=None, ge=1)
    notes: Optional[str] = None
    program_type: Optional[str] = None
    intensity_level: Optional[int] = Field(default=None, ge=1, le=10)

    @model_validator(mode="after")
    def reject_cleared_required_fields(self) -> "SessionUpdate":
        cleared = sorted(
            name for name in REQUIRED_SESSION_FIELDS
            if name in self.model_fields_set and getattr(self, name) is None
        )
        if cleared:
            raise ValueError(f"{', '.join(cleared)} cannot be cleared")
        return self

    def changes(self) -> Dict[str, Any]:
        """Return the explicitly set fields, datetimes converted to UTC pendulum."""
        values = self.model_dump(exclude_unset=True)
        for key in ("start_time", "end_time"):
            if values.get(key) is not None:
                values[key] = to_pendulum(values[key])
        return values


class SessionQuery(InputModel):
    studio_id: Optional[str] = None
    coach_id: Optional[str] = None
    client_id: Optional[str] = None
    start_from: Optional[datetime] = Field(default=None, alias="from")
    end_to: Optional[datetime] = Field(default=None, alias="to")
    status: Optional[SessionStatus] = None


@dataclass
class BookingResult:
    """The persisted parent plus any generated occurrences."""
    session: Session
    occurrences: List[Session] = field(default_factory=list)
    skipped: List["OccurrenceConflict"] = field(default_factory=list)

    @property
    def sessions(self) -> List[Session]:
        return [self.session, *self.occurrences]


@dataclass
class OccurrenceConflict:
    window: TimeRange
    conflicts: List[Conflict]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": self.window.start.to_iso8601_string(),
            "conflicts": [c.model_dump(by_alias=True, mode="json") for c in self.conflicts],
        }


@dataclass
class RecurrencePreview:
    valid_sessions: List[TimeRange] = field(default_factory=list)
    conflicts: List[OccurrenceConflict] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "validSessions": [
                {
                    "startTime": window.start.to_iso8601_string(),
                    "endTime": window.end.to_iso8601_string(),
                }
                for window in self.valid_sessions
            ],
            "conflicts": [conflict.to_dict() for conflict in self.conflicts],
        }


@dataclass
class BulkError:
    index: int
    error: str


@dataclass
class BulkCreateResult:
    sessions: List[Session] = field(default_factory=list)
    errors: List[BulkError] = field(default_factory=list)

    @property
    def created(self) -> int:
        return len(self.sessions)


@dataclass
class SeriesUpdateResult:
    updated: List[Session] = field(default_factory=list)
    skipped: Dict[str, List[Conflict]] = field(default_factory=dict)


@dataclass(frozen=True)
class ResourceAssignment:
    room_id: str
    coach_id: str
