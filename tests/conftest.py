"""
Shared fixtures: a small single-studio tenant backed by the in-memory adapters.
"""

from dataclasses import dataclass
from datetime import time
from typing import Dict, List, Optional

import pendulum
import pytest

from studioscheduler.adapters.memory_ledger import InMemoryCreditLedger
from studioscheduler.adapters.memory_store import InMemoryStudioStore
from studioscheduler.config import SchedulingDefaults
from studioscheduler.domain.exceptions import NotificationError
from studioscheduler.domain.models import (
    AvailabilityRule,
    Client,
    ClientPackage,
    Coach,
    DayHours,
    Room,
    Session,
    Studio,
    TenantSettings,
    Weekday,
)
from studioscheduler.services.notifications import BookingNotifier
from studioscheduler.services.participants import ParticipantService
from studioscheduler.services.scheduling import SchedulingEngine
from studioscheduler.services.schemas import SessionCreate

TENANT = "t1"
OTHER_TENANT = "t2"
NOW = pendulum.datetime(2026, 1, 12, 8, 0, tz="UTC")  # Monday

WEEKDAY_HOURS = DayHours(open=time(7, 0), close=time(21, 0))
OPENING_HOURS = {
    Weekday.MONDAY: WEEKDAY_HOURS,
    Weekday.TUESDAY: WEEKDAY_HOURS,
    Weekday.WEDNESDAY: WEEKDAY_HOURS,
    Weekday.THURSDAY: WEEKDAY_HOURS,
    Weekday.FRIDAY: WEEKDAY_HOURS,
    Weekday.SATURDAY: DayHours(open=time(9, 0), close=time(17, 0)),
    Weekday.SUNDAY: None,
}


def at(text: str):
    """Parse an ISO timestamp as UTC."""
    return pendulum.parse(text, tz="UTC")


class RecordingMailer:
    """Mailer stub that records messages and can fail a number of times first."""

    def __init__(self, failures: int = 0):
        self.failures = failures
        self.attempts = 0
        self.sent: List[Dict[str, str]] = []

    async def send_mail(self, to, subject, text, html):
        self.attempts += 1
        if self.attempts <= self.failures:
            raise NotificationError("SMTP relay unavailable")
        self.sent.append({"to": to, "subject": subject, "text": text, "html": html})


@dataclass
class World:
    store: InMemoryStudioStore
    ledger: InMemoryCreditLedger
    engine: SchedulingEngine
    participants: ParticipantService
    mailer: RecordingMailer

    def package(self, package_id: str) -> ClientPackage:
        return self.ledger.packages[package_id]

    def session(self, session_id: str) -> Session:
        return self.store.sessions[session_id]


def build_world(
    *,
    packages: Optional[List[ClientPackage]] = None,
    opening_hours=None,
    cancellation_window_hours: Optional[int] = None,
    mailer: Optional[RecordingMailer] = None,
    clock=None,
) -> World:
    store = InMemoryStudioStore(
        studios=[
            Studio(
                id="studio-1",
                tenant_id=TENANT,
                name="Downtown",
                timezone="UTC",
                opening_hours=OPENING_HOURS if opening_hours is None else opening_hours,
            ),
            Studio(id="studio-x", tenant_id=OTHER_TENANT, name="Elsewhere"),
        ],
        rooms=[
            Room(id="room-1", tenant_id=TENANT, studio_id="studio-1", name="Room A"),
            Room(id="room-2", tenant_id=TENANT, studio_id="studio-1", name="Room B"),
            Room(id="room-off", tenant_id=TENANT, studio_id="studio-1", active=False),
            Room(id="room-x", tenant_id=OTHER_TENANT, studio_id="studio-x"),
        ],
        coaches=[
            Coach(id="coach-1", tenant_id=TENANT, studio_id="studio-1", name="Anna"),
            Coach(
                id="coach-2",
                tenant_id=TENANT,
                studio_id="studio-1",
                name="Jonas",
                preferred_client_gender="female",
                availability_rules=[
                    AvailabilityRule(
                        day=Weekday.MONDAY, available=True,
                        start_time=time(9, 0), end_time=time(12, 0),
                    ),
                    AvailabilityRule(day=Weekday.TUESDAY, available=False),
                ],
            ),
            Coach(id="coach-off", tenant_id=TENANT, studio_id="studio-1", active=False),
        ],
        clients=[
            Client(id="client-1", tenant_id=TENANT, email="lena@example.com",
                   first_name="Lena", last_name="Fischer", gender="female"),
            Client(id="client-2", tenant_id=TENANT, email="max@example.com", first_name="Max"),
            Client(id="client-3", tenant_id=TENANT, email="sam@example.com",
                   gender="prefer_not_to_say"),
            Client(id="client-4", tenant_id=TENANT, email="tom@example.com", gender="male"),
        ],
        tenants=[
            TenantSettings(tenant_id=TENANT, cancellation_window_hours=cancellation_window_hours)
        ],
    )

    if packages is None:
        packages = [
            ClientPackage(id="pkg-1", tenant_id=TENANT, client_id="client-1",
                          sessions_remaining=10, expiry_date=at("2026-12-31T23:59:59Z")),
            ClientPackage(id="pkg-2", tenant_id=TENANT, client_id="client-2",
                          sessions_remaining=2, sessions_used=8,
                          expiry_date=at("2026-12-31T23:59:59Z")),
            ClientPackage(id="pkg-3", tenant_id=TENANT, client_id="client-3",
                          sessions_remaining=5, expiry_date=at("2026-12-31T23:59:59Z")),
            ClientPackage(id="pkg-4", tenant_id=TENANT, client_id="client-4",
                          sessions_remaining=5, expiry_date=at("2026-12-31T23:59:59Z")),
        ]

    clock = clock or (lambda: NOW)
    ledger = InMemoryCreditLedger(packages, clock=clock)
    mailer = mailer or RecordingMailer()
    engine = SchedulingEngine(
        sessions=store,
        resources=store,
        clients=store,
        ledger=ledger,
        tenants=store,
        notifier=BookingNotifier(mailer, retries=2, backoff_seconds=0),
        settings=SchedulingDefaults(),
        clock=clock,
    )
    participants = ParticipantService(store, store, store, ledger)
    return World(store=store, ledger=ledger, engine=engine, participants=participants, mailer=mailer)


def booking(start: str, minutes: int = 20, **overrides) -> SessionCreate:
    """Booking request for client-1 with coach-1 in room-1 unless overridden."""
    begin = at(start)
    values = dict(
        studio_id="studio-1",
        room_id="room-1",
        coach_id="coach-1",
        client_id="client-1",
        start_time=begin,
        end_time=begin.add(minutes=minutes),
    )
    values.update(overrides)
    return SessionCreate(**values)


@pytest.fixture
def world() -> World:
    return build_world()


@pytest.fixture
def make_world():
    return build_world


@pytest.fixture
def make_booking():
    return booking
