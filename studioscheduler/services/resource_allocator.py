"""
Room/coach auto-assignment and the bookable-slot grid of a studio day.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Callable, List, Optional

import pendulum
from pendulum import DateTime

from ..config import SchedulingDefaults
from ..domain.exceptions import (
    CoachAlreadyBooked,
    CoachNotFound,
    CoachOnLeave,
    NoCoachesAvailable,
    NoRoomsAvailable,
)
from ..domain.models import AvailableSlot, DayHours, Studio, TimeRange, Weekday
from ..domain.slot_calculator import SlotCalculator
from .availability import AvailabilityValidator
from .protocols import ResourceDirectory, SessionStore
from .schemas import ResourceAssignment

logger = logging.getLogger(__name__)


class ResourceAllocator:
    """Picks free rooms and coaches, and rates the slots of a day."""

    def __init__(
        self,
        sessions: SessionStore,
        resources: ResourceDirectory,
        validator: AvailabilityValidator,
        settings: SchedulingDefaults,
        clock: Callable[[], DateTime],
    ) -> None:
        self._sessions = sessions
        self._resources = resources
        self._validator = validator
        self._settings = settings
        self._clock = clock
        self._slot_calculator = SlotCalculator(slot_minutes=settings.slot_minutes)

    async def auto_assign_resources(
        self,
        tenant_id: str,
        studio_id: str,
        start: DateTime,
        end: DateTime,
        preferred_coach_id: Optional[str] = None,
    ) -> ResourceAssignment:
        """
        Pick the first free active room and a free coach for the window.

        Raises:
            NoRoomsAvailable: If every active room is occupied
            CoachNotFound: If the preferred coach is unknown or inactive
            CoachAlreadyBooked: If the preferred coach is occupied
            CoachOnLeave: If the preferred coach has approved time-off
            NoCoachesAvailable: If no active coach is free
        """
        busy = await self._sessions.find_overlapping(
            tenant_id, start, end, studio_id=studio_id
        )
        occupied_rooms = {session.room_id for session in busy}
        occupied_coaches = {session.coach_id for session in busy}
        on_leave = {
            entry.coach_id
            for entry in await self._resources.find_time_off(tenant_id, start, end)
        }

        rooms = await self._resources.list_active_rooms(studio_id, tenant_id)
        room = next((r for r in rooms if r.id not in occupied_rooms), None)
        if room is None:
            raise NoRoomsAvailable("No rooms available for this time slot")

        if preferred_coach_id:
            coach = await self._resources.get_coach(preferred_coach_id, tenant_id)
            if coach is None or not coach.active:
                raise CoachNotFound(f"Coach {preferred_coach_id} not found")
            if coach.id in occupied_coaches:
                raise CoachAlreadyBooked("Selected coach is already booked for this time slot")
            if coach.id in on_leave:
                raise CoachOnLeave("Selected coach has approved time-off for this time slot")
            return ResourceAssignment(room_id=room.id, coach_id=coach.id)

        coaches = await self._resources.list_active_coaches(studio_id, tenant_id)
        coach = next(
            (
                c for c in coaches
                if c.id not in occupied_coaches and c.id not in on_leave
            ),
            None,
        )
        if coach is None:
            raise NoCoachesAvailable("No coaches available for this time slot")

        return ResourceAssignment(room_id=room.id, coach_id=coach.id)

    def opening_window(self, studio: Studio, day: date) -> Optional[TimeRange]:
        """Studio-local opening window of ``day``, or None when closed."""
        timezone = self._validator.timezone_of(studio)
        if studio.opening_hours:
            hours = studio.opening_hours.get(Weekday.of(day))
            if hours is None:
                return None
        else:
            hours = DayHours(
                open=self._settings.default_open,
                close=self._settings.default_close,
            )

        midnight = pendulum.datetime(day.year, day.month, day.day, tz=timezone)
        opens = midnight.set(hour=hours.open.hour, minute=hours.open.minute)
        closes = midnight.set(hour=hours.close.hour, minute=hours.close.minute)
        if closes <= opens:
            return None
        return TimeRange(start=opens, end=closes)

    async def get_available_slots(
        self,
        tenant_id: str,
        studio_id: str,
        day: date,
        coach_id: Optional[str] = None,
    ) -> List[AvailableSlot]:
        """
        Rate every slot of the studio's opening hours on ``day``.

        Raises:
            NotFound: If the studio does not exist for the tenant
        """
        studio = await self._validator.get_studio(studio_id, tenant_id)
        timezone = self._validator.timezone_of(studio)

        opening = self.opening_window(studio, day)
        if opening is None:
            logger.debug("Studio %s is closed on %s", studio_id, day)
            return []

        rooms = await self._resources.list_active_rooms(studio_id, tenant_id)
        coaches = await self._resources.list_active_coaches(studio_id, tenant_id)
        if coach_id:
            coaches = [coach for coach in coaches if coach.id == coach_id]

        start_utc = opening.start.in_timezone("UTC")
        end_utc = opening.end.in_timezone("UTC")
        sessions = await self._sessions.find_overlapping(tenant_id, start_utc, end_utc)
        time_off = await self._resources.find_time_off(tenant_id, start_utc, end_utc)

        now = self._clock().in_timezone(timezone)
        not_before = now if now.date() == day else None

        return self._slot_calculator.rate_slots(
            opening=opening,
            rooms=rooms,
            coaches=coaches,
            sessions=sessions,
            time_off=time_off,
            timezone=timezone,
            not_before=not_before,
        )
