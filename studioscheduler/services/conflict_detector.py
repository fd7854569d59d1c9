"""
Overlap detection across the four contended resources of a session.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import List, Optional

from ..domain.models import Conflict, ConflictResult, ConflictType, Session, TimeRange
from .protocols import ResourceDirectory, SessionStore

ROOM_MESSAGE = "Room is already booked for this time slot"
COACH_MESSAGE = "Coach is already booked for this time slot"
COACH_TIME_OFF_MESSAGE = "Coach has approved time-off during this time slot"
CLIENT_MESSAGE = "Client already has a session at this time"
DEVICE_MESSAGE = "EMS device is already in use for this time slot"


@dataclass(frozen=True)
class ResourceClaim:
    """The resources a candidate session would hold for its window."""
    room_id: str
    coach_id: str
    window: TimeRange
    client_id: Optional[str] = None
    ems_device_id: Optional[str] = None

    def moved_to(self, window: TimeRange) -> "ResourceClaim":
        return replace(self, window=window)

    @classmethod
    def from_session(cls, session: Session) -> "ResourceClaim":
        return cls(
            room_id=session.room_id,
            coach_id=session.coach_id,
            window=session.window,
            client_id=session.client_id,
            ems_device_id=session.ems_device_id,
        )


class ConflictDetector:
    """
    Reports every resource dimension on which a claim overlaps a booking.

    Dimensions are independent: room, coach (sessions, then approved
    time-off), client when given and device when given. All conflicts are
    collected; nothing short-circuits.
    """

    def __init__(self, sessions: SessionStore, resources: ResourceDirectory) -> None:
        self._sessions = sessions
        self._resources = resources

    async def check_conflicts(
        self,
        claim: ResourceClaim,
        tenant_id: str,
        exclude_session_id: Optional[str] = None,
    ) -> ConflictResult:
        conflicts: List[Conflict] = []
        start, end = claim.window.start, claim.window.end

        async def first_overlap(**resource) -> Optional[Session]:
            found = await self._sessions.find_overlapping(
                tenant_id,
                start,
                end,
                exclude_session_id=exclude_session_id,
                **resource,
            )
            return found[0] if found else None

        room_conflict = await first_overlap(room_id=claim.room_id)
        if room_conflict:
            conflicts.append(Conflict(
                type=ConflictType.room,
                session_id=room_conflict.id,
                message=ROOM_MESSAGE,
            ))

        coach_conflict = await first_overlap(coach_id=claim.coach_id)
        if coach_conflict:
            conflicts.append(Conflict(
                type=ConflictType.coach,
                session_id=coach_conflict.id,
                message=COACH_MESSAGE,
            ))
        else:
            time_off = await self._resources.find_time_off(
                tenant_id, start, end, coach_id=claim.coach_id
            )
            if time_off:
                conflicts.append(Conflict(
                    type=ConflictType.coach,
                    session_id=time_off[0].id,
                    message=COACH_TIME_OFF_MESSAGE,
                ))

        if claim.client_id:
            client_conflict = await first_overlap(client_id=claim.client_id)
            if client_conflict:
                conflicts.append(Conflict(
                    type=ConflictType.client,
                    session_id=client_conflict.id,
                    message=CLIENT_MESSAGE,
                ))

        if claim.ems_device_id:
            device_conflict = await first_overlap(ems_device_id=claim.ems_device_id)
            if device_conflict:
                conflicts.append(Conflict(
                    type=ConflictType.device,
                    session_id=device_conflict.id,
                    message=DEVICE_MESSAGE,
                ))

        return ConflictResult.from_conflicts(conflicts)
