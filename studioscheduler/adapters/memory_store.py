"""
In-memory implementation of the store and directory protocols.

Backs the CLI and the tests. Every read returns a deep copy, so callers can
mutate what they get without touching stored state until they ``save``.
"""

from __future__ import annotations

import copy
from typing import Dict, Iterable, List, Optional

from pendulum import DateTime

from ..domain.exceptions import NotFound
from ..domain.models import (
    Client,
    Coach,
    CoachTimeOff,
    Room,
    Session,
    SessionParticipant,
    SessionStatus,
    Studio,
    TenantSettings,
    TimeOffStatus,
)


class InMemoryStudioStore:
    """
    Sessions, studio resources, clients, tenant settings and participants.

    Implements ``SessionStore``, ``ResourceDirectory``, ``ClientDirectory``,
    ``TenantSettingsStore`` and ``ParticipantStore``.
    """

    def __init__(
        self,
        *,
        studios: Iterable[Studio] = (),
        rooms: Iterable[Room] = (),
        coaches: Iterable[Coach] = (),
        time_off: Iterable[CoachTimeOff] = (),
        clients: Iterable[Client] = (),
        tenants: Iterable[TenantSettings] = (),
        sessions: Iterable[Session] = (),
        participants: Iterable[SessionParticipant] = (),
    ) -> None:
        self.studios: Dict[str, Studio] = {s.id: s for s in studios}
        self.rooms: Dict[str, Room] = {r.id: r for r in rooms}
        self.coaches: Dict[str, Coach] = {c.id: c for c in coaches}
        self.time_off: List[CoachTimeOff] = list(time_off)
        self.clients: Dict[str, Client] = {c.id: c for c in clients}
        self.tenants: Dict[str, TenantSettings] = {t.tenant_id: t for t in tenants}
        self.sessions: Dict[str, Session] = {s.id: s for s in sessions}
        self.participants: Dict[str, SessionParticipant] = {p.id: p for p in participants}

    @staticmethod
    def _owned(entity, tenant_id: str):
        if entity is None or entity.tenant_id != tenant_id:
            return None
        return copy.deepcopy(entity)

    # SessionStore

    async def get(self, session_id: str, tenant_id: str) -> Optional[Session]:
        return self._owned(self.sessions.get(session_id), tenant_id)

    async def add(self, session: Session) -> Session:
        if session.id in self.sessions:
            raise ValueError(f"Session {session.id} already exists")
        self.sessions[session.id] = copy.deepcopy(session)
        return copy.deepcopy(session)

    async def add_many(self, sessions: List[Session]) -> List[Session]:
        return [await self.add(session) for session in sessions]

    async def save(self, session: Session) -> Session:
        stored = self.sessions.get(session.id)
        if stored is None or stored.tenant_id != session.tenant_id:
            raise NotFound(f"Session {session.id} not found")
        self.sessions[session.id] = copy.deepcopy(session)
        return copy.deepcopy(session)

    async def find_overlapping(
        self,
        tenant_id: str,
        start: DateTime,
        end: DateTime,
        *,
        room_id: Optional[str] = None,
        coach_id: Optional[str] = None,
        client_id: Optional[str] = None,
        ems_device_id: Optional[str] = None,
        studio_id: Optional[str] = None,
        exclude_session_id: Optional[str] = None,
    ) -> List[Session]:
        filters = {
            "room_id": room_id,
            "coach_id": coach_id,
            "client_id": client_id,
            "ems_device_id": ems_device_id,
            "studio_id": studio_id,
        }
        matches = [
            session for session in self.sessions.values()
            if session.tenant_id == tenant_id
            and session.status != SessionStatus.cancelled
            and session.id != exclude_session_id
            and session.start_time < end
            and session.end_time > start
            and all(
                getattr(session, name) == value
                for name, value in filters.items()
                if value is not None
            )
        ]
        return [copy.deepcopy(s) for s in sorted(matches, key=lambda s: s.start_time)]

    async def count_for_client(
        self, client_id: str, tenant_id: str, status: SessionStatus
    ) -> int:
        return sum(
            1 for session in self.sessions.values()
            if session.tenant_id == tenant_id
            and session.client_id == client_id
            and session.status == status
        )

    async def list_sessions(
        self,
        tenant_id: str,
        *,
        studio_id: Optional[str] = None,
        coach_id: Optional[str] = None,
        client_id: Optional[str] = None,
        start_from: Optional[DateTime] = None,
        end_to: Optional[DateTime] = None,
        status: Optional[SessionStatus] = None,
    ) -> List[Session]:
        matches = []
        for session in self.sessions.values():
            if session.tenant_id != tenant_id:
                continue
            if studio_id and session.studio_id != studio_id:
                continue
            if coach_id and session.coach_id != coach_id:
                continue
            if client_id and session.client_id != client_id:
                continue
            if start_from and session.start_time < start_from:
                continue
            if end_to and session.start_time > end_to:
                continue
            if status and session.status != status:
                continue
            matches.append(session)
        return [copy.deepcopy(s) for s in sorted(matches, key=lambda s: s.start_time)]

    async def list_series(self, series_id: str, tenant_id: str) -> List[Session]:
        members = [
            session for session in self.sessions.values()
            if session.tenant_id == tenant_id and session.series_id == series_id
        ]
        return [copy.deepcopy(s) for s in sorted(members, key=lambda s: s.start_time)]

    # ResourceDirectory

    async def get_studio(self, studio_id: str, tenant_id: str) -> Optional[Studio]:
        return self._owned(self.studios.get(studio_id), tenant_id)

    async def get_room(self, room_id: str, tenant_id: str) -> Optional[Room]:
        return self._owned(self.rooms.get(room_id), tenant_id)

    async def get_coach(self, coach_id: str, tenant_id: str) -> Optional[Coach]:
        return self._owned(self.coaches.get(coach_id), tenant_id)

    async def list_active_rooms(self, studio_id: str, tenant_id: str) -> List[Room]:
        return [
            copy.deepcopy(room) for room in self.rooms.values()
            if room.tenant_id == tenant_id and room.studio_id == studio_id and room.active
        ]

    async def list_active_coaches(self, studio_id: str, tenant_id: str) -> List[Coach]:
        return [
            copy.deepcopy(coach) for coach in self.coaches.values()
            if coach.tenant_id == tenant_id and coach.studio_id == studio_id and coach.active
        ]

    async def find_time_off(
        self,
        tenant_id: str,
        start: DateTime,
        end: DateTime,
        *,
        coach_id: Optional[str] = None,
    ) -> List[CoachTimeOff]:
        return [
            copy.deepcopy(entry) for entry in self.time_off
            if entry.tenant_id == tenant_id
            and entry.status == TimeOffStatus.approved
            and (coach_id is None or entry.coach_id == coach_id)
            and entry.start < end
            and entry.end > start
        ]

    # ClientDirectory

    async def find_one(self, client_id: str, tenant_id: str) -> Client:
        client = self._owned(self.clients.get(client_id), tenant_id)
        if client is None:
            raise NotFound(f"Client {client_id} not found")
        return client

    # TenantSettingsStore

    async def get_settings(self, tenant_id: str) -> TenantSettings:
        settings = self.tenants.get(tenant_id)
        if settings is None:
            return TenantSettings(tenant_id=tenant_id)
        return copy.deepcopy(settings)

    # ParticipantStore

    async def get_participant(
        self, session_id: str, client_id: str, tenant_id: str
    ) -> Optional[SessionParticipant]:
        for participant in self.participants.values():
            if (
                participant.tenant_id == tenant_id
                and participant.session_id == session_id
                and participant.client_id == client_id
            ):
                return copy.deepcopy(participant)
        return None

    async def list_participants(self, session_id: str, tenant_id: str) -> List[SessionParticipant]:
        return [
            copy.deepcopy(p) for p in self.participants.values()
            if p.tenant_id == tenant_id and p.session_id == session_id
        ]

    async def add_participant(self, participant: SessionParticipant) -> SessionParticipant:
        existing = await self.get_participant(
            participant.session_id, participant.client_id, participant.tenant_id
        )
        if existing is not None:
            raise ValueError(
                f"Client {participant.client_id} already joined session {participant.session_id}"
            )
        self.participants[participant.id] = copy.deepcopy(participant)
        return copy.deepcopy(participant)

    async def save_participant(self, participant: SessionParticipant) -> SessionParticipant:
        if participant.id not in self.participants:
            raise NotFound(f"Participant {participant.id} not found")
        self.participants[participant.id] = copy.deepcopy(participant)
        return copy.deepcopy(participant)

    async def remove_participant(self, participant_id: str, tenant_id: str) -> None:
        participant = self.participants.get(participant_id)
        if participant is None or participant.tenant_id != tenant_id:
            raise NotFound(f"Participant {participant_id} not found")
        del self.participants[participant_id]
