"""
Availability validation against stored studios, rooms, coaches and clients.

Loads the entities through the collaborator protocols and delegates the
actual rules to ``domain.availability``.
"""

from __future__ import annotations

from typing import Optional

from pendulum import DateTime

from ..domain import availability
from ..domain.exceptions import InactiveResource, NotFound
from ..domain.models import Coach, Room, Studio
from .protocols import ClientDirectory, ResourceDirectory


class AvailabilityValidator:
    """Resolves resources for a tenant and validates a window against them."""

    def __init__(
        self,
        resources: ResourceDirectory,
        clients: ClientDirectory,
        default_timezone: str = "UTC",
    ) -> None:
        self._resources = resources
        self._clients = clients
        self._default_timezone = default_timezone

    async def get_studio(self, studio_id: str, tenant_id: str) -> Studio:
        studio = await self._resources.get_studio(studio_id, tenant_id)
        if studio is None:
            raise NotFound(f"Studio {studio_id} not found")
        return studio

    def timezone_of(self, studio: Optional[Studio]) -> str:
        if studio is not None and studio.timezone:
            return studio.timezone
        return self._default_timezone

    async def validate_room(self, room_id: str, tenant_id: str) -> Room:
        """
        Raises:
            NotFound: If the room does not exist for the tenant
            InactiveResource: If the room is disabled
        """
        room = await self._resources.get_room(room_id, tenant_id)
        if room is None:
            raise NotFound(f"Room {room_id} not found")
        if not room.active:
            raise InactiveResource(f"Room {room.name or room.id} is not active")
        return room

    async def validate_studio_hours(
        self,
        studio_id: str,
        tenant_id: str,
        start: DateTime,
        end: DateTime,
    ) -> Studio:
        """Check the window against the studio's opening hours and return the studio."""
        studio = await self.get_studio(studio_id, tenant_id)
        availability.check_studio_hours(
            studio.opening_hours, start, end, self.timezone_of(studio)
        )
        return studio

    async def validate_coach_availability(
        self,
        coach_id: str,
        tenant_id: str,
        start: DateTime,
        end: DateTime,
        timezone: Optional[str] = None,
    ) -> Coach:
        """
        Raises:
            NotFound: If the coach does not exist for the tenant
            InactiveResource: If the coach is disabled
            CoachUnavailable: If no rule allows the weekday
            OutsideCoachHours: If the rule's time range excludes the window
        """
        coach = await self._resources.get_coach(coach_id, tenant_id)
        if coach is None:
            raise NotFound(f"Coach {coach_id} not found")
        if not coach.active:
            raise InactiveResource(f"Coach {coach.name or coach.id} is not active")

        availability.check_coach_availability(
            coach, start, end, timezone or self._default_timezone
        )
        return coach

    async def validate_coach_gender_preference(
        self,
        coach_id: str,
        client_id: str,
        tenant_id: str,
    ) -> None:
        coach = await self._resources.get_coach(coach_id, tenant_id)
        if coach is None:
            raise NotFound(f"Coach {coach_id} not found")
        client = await self._clients.find_one(client_id, tenant_id)
        availability.check_gender_preference(coach, client)
