"""
Loading and saving studio datasets from YAML or JSON files.

A dataset holds everything the in-memory adapters need: studios, rooms,
coaches, time-off, clients, packages, tenant settings, sessions and group
participants. Records use camelCase keys. Weekdays may be written as numbers
(0=Sunday) or names and are normalised here, once, into ``Weekday``.
"""

from __future__ import annotations

import json
from datetime import date, datetime, time
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator
from pydantic.alias_generators import to_camel

from ..domain.models import (
    AvailabilityRule,
    Client,
    ClientPackage,
    Coach,
    CoachTimeOff,
    DayHours,
    PackageStatus,
    RecurrencePattern,
    Room,
    Session,
    SessionParticipant,
    SessionStatus,
    SessionType,
    Studio,
    TenantSettings,
    TimeOffStatus,
    Weekday,
)
from ..services.schemas import to_pendulum
from .memory_ledger import InMemoryCreditLedger
from .memory_store import InMemoryStudioStore

DEFAULT_TENANT = "default"


def _clock(value: Optional[time]) -> Optional[str]:
    return value.strftime("%H:%M") if value is not None else None


def _opt(value: Optional[datetime]):
    return to_pendulum(value) if value is not None else None


class Record(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    tenant_id: Optional[str] = None

    def tenant(self, default: str) -> str:
        return self.tenant_id or default


class DayHoursRecord(BaseModel):
    open: time
    close: time

    @field_serializer("open", "close")
    def serialize_clock(self, value: time) -> str:
        return _clock(value)


class StudioRecord(Record):
    id: str
    name: str = ""
    timezone: str = "UTC"
    opening_hours: Dict[str, Optional[DayHoursRecord]] = Field(default_factory=dict)
    active: bool = True

    @field_validator("opening_hours", mode="before")
    @classmethod
    def normalise_days(cls, value: Any) -> Any:
        # YAML may key days by number, which a str key would reject
        if not isinstance(value, dict):
            return value
        return {Weekday.parse(day).key: hours for day, hours in value.items()}

    def to_domain(self, tenant_id: str) -> Studio:
        return Studio(
            id=self.id,
            tenant_id=self.tenant(tenant_id),
            name=self.name,
            timezone=self.timezone,
            opening_hours={
                Weekday.parse(day): DayHours(open=hours.open, close=hours.close) if hours else None
                for day, hours in self.opening_hours.items()
            },
            active=self.active,
        )

    @classmethod
    def from_domain(cls, studio: Studio) -> "StudioRecord":
        return cls(
            id=studio.id,
            tenant_id=studio.tenant_id,
            name=studio.name,
            timezone=studio.timezone,
            opening_hours={
                day.key: DayHoursRecord(open=hours.open, close=hours.close) if hours else None
                for day, hours in sorted(studio.opening_hours.items())
            },
            active=studio.active,
        )


class RoomRecord(Record):
    id: str
    studio_id: str
    name: str = ""
    active: bool = True

    def to_domain(self, tenant_id: str) -> Room:
        return Room(
            id=self.id,
            tenant_id=self.tenant(tenant_id),
            studio_id=self.studio_id,
            name=self.name,
            active=self.active,
        )

    @classmethod
    def from_domain(cls, room: Room) -> "RoomRecord":
        return cls(
            id=room.id,
            tenant_id=room.tenant_id,
            studio_id=room.studio_id,
            name=room.name,
            active=room.active,
        )


class AvailabilityRuleRecord(Record):
    day_of_week: Weekday
    available: bool = True
    start_time: Optional[time] = None
    end_time: Optional[time] = None

    @field_validator("day_of_week", mode="before")
    @classmethod
    def parse_day(cls, value: Any) -> Weekday:
        return Weekday.parse(value)

    @field_serializer("start_time", "end_time")
    def serialize_clock(self, value: Optional[time]) -> Optional[str]:
        return _clock(value)

    def to_domain(self) -> AvailabilityRule:
        return AvailabilityRule(
            day=self.day_of_week,
            available=self.available,
            start_time=self.start_time,
            end_time=self.end_time,
        )


class CoachRecord(Record):
    id: str
    studio_id: str
    name: str = ""
    email: Optional[str] = None
    active: bool = True
    preferred_client_gender: Optional[str] = None
    availability_rules: List[AvailabilityRuleRecord] = Field(default_factory=list)

    def to_domain(self, tenant_id: str) -> Coach:
        return Coach(
            id=self.id,
            tenant_id=self.tenant(tenant_id),
            studio_id=self.studio_id,
            name=self.name,
            email=self.email,
            active=self.active,
            preferred_client_gender=self.preferred_client_gender,
            availability_rules=[rule.to_domain() for rule in self.availability_rules],
        )

    @classmethod
    def from_domain(cls, coach: Coach) -> "CoachRecord":
        return cls(
            id=coach.id,
            tenant_id=coach.tenant_id,
            studio_id=coach.studio_id,
            name=coach.name,
            email=coach.email,
            active=coach.active,
            preferred_client_gender=coach.preferred_client_gender,
            availability_rules=[
                AvailabilityRuleRecord(
                    day_of_week=rule.day,
                    available=rule.available,
                    start_time=rule.start_time,
                    end_time=rule.end_time,
                )
                for rule in coach.availability_rules
            ],
        )


class TimeOffRecord(Record):
    id: str
    coach_id: str
    start: datetime
    end: datetime
    status: TimeOffStatus = TimeOffStatus.pending

    def to_domain(self, tenant_id: str) -> CoachTimeOff:
        return CoachTimeOff(
            id=self.id,
            tenant_id=self.tenant(tenant_id),
            coach_id=self.coach_id,
            start=to_pendulum(self.start),
            end=to_pendulum(self.end),
            status=self.status,
        )

    @classmethod
    def from_domain(cls, entry: CoachTimeOff) -> "TimeOffRecord":
        return cls(
            id=entry.id,
            tenant_id=entry.tenant_id,
            coach_id=entry.coach_id,
            start=entry.start,
            end=entry.end,
            status=entry.status,
        )


class ClientRecord(Record):
    id: str
    email: str
    first_name: str = ""
    last_name: str = ""
    gender: Optional[str] = None

    def to_domain(self, tenant_id: str) -> Client:
        return Client(
            id=self.id,
            tenant_id=self.tenant(tenant_id),
            email=self.email,
            first_name=self.first_name,
            last_name=self.last_name,
            gender=self.gender,
        )

    @classmethod
    def from_domain(cls, client: Client) -> "ClientRecord":
        return cls(
            id=client.id,
            tenant_id=client.tenant_id,
            email=client.email,
            first_name=client.first_name,
            last_name=client.last_name,
            gender=client.gender,
        )


class PackageRecord(Record):
    id: str
    client_id: str
    sessions_remaining: int
    expiry_date: datetime
    sessions_used: int = 0
    status: PackageStatus = PackageStatus.active

    def to_domain(self, tenant_id: str) -> ClientPackage:
        return ClientPackage(
            id=self.id,
            tenant_id=self.tenant(tenant_id),
            client_id=self.client_id,
            sessions_remaining=self.sessions_remaining,
            expiry_date=to_pendulum(self.expiry_date),
            sessions_used=self.sessions_used,
            status=self.status,
        )

    @classmethod
    def from_domain(cls, package: ClientPackage) -> "PackageRecord":
        return cls(
            id=package.id,
            tenant_id=package.tenant_id,
            client_id=package.client_id,
            sessions_remaining=package.sessions_remaining,
            expiry_date=package.expiry_date,
            sessions_used=package.sessions_used,
            status=package.status,
        )


class TenantRecord(Record):
    tenant_id: str
    cancellation_window_hours: Optional[int] = None


class SessionRecord(Record):
    id: str
    studio_id: str
    room_id: str
    coach_id: str
    start_time: datetime
    end_time: datetime
    client_id: Optional[str] = None
    ems_device_id: Optional[str] = None
    status: SessionStatus = SessionStatus.scheduled
    session_type: SessionType = Field(default=SessionType.individual, alias="type")
    capacity: int = 1
    notes: Optional[str] = None
    program_type: Optional[str] = None
    intensity_level: Optional[int] = None
    is_recurring_parent: bool = False
    recurrence_pattern: Optional[RecurrencePattern] = None
    recurrence_end_date: Optional[date] = None
    recurrence_days: Optional[List[int]] = None
    parent_session_id: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    cancelled_reason: Optional[str] = None
    charged_package_id: Optional[str] = None
    created_at: Optional[datetime] = None

    @field_validator("recurrence_days", mode="before")
    @classmethod
    def parse_days(cls, value: Any) -> Optional[List[int]]:
        if value is None:
            return None
        return [int(Weekday.parse(day)) for day in value]

    def to_domain(self, tenant_id: str) -> Session:
        return Session(
            id=self.id,
            tenant_id=self.tenant(tenant_id),
            studio_id=self.studio_id,
            room_id=self.room_id,
            coach_id=self.coach_id,
            start_time=to_pendulum(self.start_time),
            end_time=to_pendulum(self.end_time),
            client_id=self.client_id,
            ems_device_id=self.ems_device_id,
            status=self.status,
            session_type=self.session_type,
            capacity=self.capacity,
            notes=self.notes,
            program_type=self.program_type,
            intensity_level=self.intensity_level,
            is_recurring_parent=self.is_recurring_parent,
            recurrence_pattern=self.recurrence_pattern,
            recurrence_end_date=self.recurrence_end_date,
            recurrence_days=self.recurrence_days,
            parent_session_id=self.parent_session_id,
            cancelled_at=_opt(self.cancelled_at),
            cancelled_reason=self.cancelled_reason,
            charged_package_id=self.charged_package_id,
            created_at=_opt(self.created_at),
        )

    @classmethod
    def from_domain(cls, session: Session) -> "SessionRecord":
        return cls(
            id=session.id,
            tenant_id=session.tenant_id,
            studio_id=session.studio_id,
            room_id=session.room_id,
            coach_id=session.coach_id,
            start_time=session.start_time,
            end_time=session.end_time,
            client_id=session.client_id,
            ems_device_id=session.ems_device_id,
            status=session.status,
            session_type=session.session_type,
            capacity=session.capacity,
            notes=session.notes,
            program_type=session.program_type,
            intensity_level=session.intensity_level,
            is_recurring_parent=session.is_recurring_parent,
            recurrence_pattern=session.recurrence_pattern,
            recurrence_end_date=session.recurrence_end_date,
            recurrence_days=session.recurrence_days,
            parent_session_id=session.parent_session_id,
            cancelled_at=session.cancelled_at,
            cancelled_reason=session.cancelled_reason,
            charged_package_id=session.charged_package_id,
            created_at=session.created_at,
        )


class ParticipantRecord(Record):
    id: str
    session_id: str
    client_id: str
    status: SessionStatus = SessionStatus.scheduled
    client_package_id: Optional[str] = None

    def to_domain(self, tenant_id: str) -> SessionParticipant:
        return SessionParticipant(
            id=self.id,
            tenant_id=self.tenant(tenant_id),
            session_id=self.session_id,
            client_id=self.client_id,
            status=self.status,
            client_package_id=self.client_package_id,
        )

    @classmethod
    def from_domain(cls, participant: SessionParticipant) -> "ParticipantRecord":
        return cls(
            id=participant.id,
            tenant_id=participant.tenant_id,
            session_id=participant.session_id,
            client_id=participant.client_id,
            status=participant.status,
            client_package_id=participant.client_package_id,
        )


class StudioDataset(Record):
    """A whole studio dataset as stored on disk."""

    tenant_id: str = DEFAULT_TENANT
    tenants: List[TenantRecord] = Field(default_factory=list)
    studios: List[StudioRecord] = Field(default_factory=list)
    rooms: List[RoomRecord] = Field(default_factory=list)
    coaches: List[CoachRecord] = Field(default_factory=list)
    time_off: List[TimeOffRecord] = Field(default_factory=list)
    clients: List[ClientRecord] = Field(default_factory=list)
    packages: List[PackageRecord] = Field(default_factory=list)
    sessions: List[SessionRecord] = Field(default_factory=list)
    participants: List[ParticipantRecord] = Field(default_factory=list)

    def build(self) -> Tuple[InMemoryStudioStore, InMemoryCreditLedger]:
        """Create the in-memory adapters holding this dataset."""
        tenant = self.tenant_id
        store = InMemoryStudioStore(
            studios=[r.to_domain(tenant) for r in self.studios],
            rooms=[r.to_domain(tenant) for r in self.rooms],
            coaches=[r.to_domain(tenant) for r in self.coaches],
            time_off=[r.to_domain(tenant) for r in self.time_off],
            clients=[r.to_domain(tenant) for r in self.clients],
            tenants=[
                TenantSettings(
                    tenant_id=r.tenant_id,
                    cancellation_window_hours=r.cancellation_window_hours,
                )
                for r in self.tenants
            ],
            sessions=[r.to_domain(tenant) for r in self.sessions],
            participants=[r.to_domain(tenant) for r in self.participants],
        )
        ledger = InMemoryCreditLedger([r.to_domain(tenant) for r in self.packages])
        return store, ledger

    @classmethod
    def capture(
        cls,
        store: InMemoryStudioStore,
        ledger: InMemoryCreditLedger,
        tenant_id: str = DEFAULT_TENANT,
    ) -> "StudioDataset":
        """Snapshot the current state of the in-memory adapters."""
        return cls(
            tenant_id=tenant_id,
            tenants=[
                TenantRecord(
                    tenant_id=t.tenant_id,
                    cancellation_window_hours=t.cancellation_window_hours,
                )
                for t in store.tenants.values()
            ],
            studios=[StudioRecord.from_domain(s) for s in store.studios.values()],
            rooms=[RoomRecord.from_domain(r) for r in store.rooms.values()],
            coaches=[CoachRecord.from_domain(c) for c in store.coaches.values()],
            time_off=[TimeOffRecord.from_domain(t) for t in store.time_off],
            clients=[ClientRecord.from_domain(c) for c in store.clients.values()],
            packages=[PackageRecord.from_domain(p) for p in ledger.packages.values()],
            sessions=[
                SessionRecord.from_domain(s)
                for s in sorted(store.sessions.values(), key=lambda s: s.start_time)
            ],
            participants=[ParticipantRecord.from_domain(p) for p in store.participants.values()],
        )


def load_dataset(path: Path) -> StudioDataset:
    """
    Load a dataset from a ``.json`` or YAML file.

    Raises:
        FileNotFoundError: If the file doesn't exist
        ValueError: If the content is not a valid dataset
    """
    if not path.exists():
        raise FileNotFoundError(f"Data file not found: {path}")

    with open(path, "r", encoding="utf-8") as f:
        try:
            if path.suffix.lower() == ".json":
                data = json.load(f)
            else:
                data = yaml.safe_load(f) or {}
        except (json.JSONDecodeError, yaml.YAMLError) as exc:
            raise ValueError(f"Invalid data file {path}: {exc}") from exc

    if not isinstance(data, dict):
        raise ValueError(f"Data file {path} must contain a mapping")

    return StudioDataset.model_validate(data)


def save_dataset(dataset: StudioDataset, path: Path) -> None:
    """Write a dataset back, keeping the file's format."""
    data = dataset.model_dump(by_alias=True, mode="json")
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        if path.suffix.lower() == ".json":
            json.dump(data, f, indent=2)
        else:
            yaml.safe_dump(data, f, sort_keys=False, allow_unicode=True)
