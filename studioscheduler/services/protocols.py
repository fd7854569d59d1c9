"""
Collaborator contracts consumed by the scheduling services.

Persistence, credit bookkeeping and mail delivery live outside the engine;
any object with these coroutine methods can be plugged in. The in-memory
adapters implement all of them for the CLI and the tests.
"""

from __future__ import annotations

from typing import List, Optional, Protocol

from pendulum import DateTime

from ..domain.models import (
    Client,
    ClientPackage,
    Coach,
    CoachTimeOff,
    Room,
    Session,
    SessionParticipant,
    SessionStatus,
    Studio,
    TenantSettings,
)


class SessionStore(Protocol):
    """Session persistence, always scoped by tenant."""

    async def get(self, session_id: str, tenant_id: str) -> Optional[Session]:
        """Return a detached copy of the session, or None."""

    async def add(self, session: Session) -> Session:
        """Persist a new session."""

    async def add_many(self, sessions: List[Session]) -> List[Session]:
        """Persist several new sessions at once."""

    async def save(self, session: Session) -> Session:
        """Persist changes to an existing session."""

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
        """
        Return non-cancelled sessions with ``start < end`` and ``end > start``.

        Every given resource id narrows the match; results are ordered by start.
        """

    async def count_for_client(
        self, client_id: str, tenant_id: str, status: SessionStatus
    ) -> int:
        """Count the client's sessions in ``status``."""

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
        """Return matching sessions ordered by start time."""

    async def list_series(self, series_id: str, tenant_id: str) -> List[Session]:
        """Return the parent and every generated occurrence, ordered by start."""


class ResourceDirectory(Protocol):
    """Read access to studios, rooms, coaches and coach time-off."""

    async def get_studio(self, studio_id: str, tenant_id: str) -> Optional[Studio]:
        ...

    async def get_room(self, room_id: str, tenant_id: str) -> Optional[Room]:
        ...

    async def get_coach(self, coach_id: str, tenant_id: str) -> Optional[Coach]:
        ...

    async def list_active_rooms(self, studio_id: str, tenant_id: str) -> List[Room]:
        ...

    async def list_active_coaches(self, studio_id: str, tenant_id: str) -> List[Coach]:
        ...

    async def find_time_off(
        self,
        tenant_id: str,
        start: DateTime,
        end: DateTime,
        *,
        coach_id: Optional[str] = None,
    ) -> List[CoachTimeOff]:
        """Return approved time-off overlapping the window."""


class ClientDirectory(Protocol):

    async def find_one(self, client_id: str, tenant_id: str) -> Client:
        """
        Return the client.

        Raises:
            NotFound: If the client does not exist for the tenant
        """


class TenantSettingsStore(Protocol):

    async def get_settings(self, tenant_id: str) -> TenantSettings:
        """Return the tenant's settings; unknown tenants get empty settings."""


class CreditLedger(Protocol):
    """
    Package credit bookkeeping.

    Mutations are atomic: ``use_session`` only decrements while credit remains.
    """

    async def get_client_packages(self, client_id: str, tenant_id: str) -> List[ClientPackage]:
        ...

    async def get_active_package_for_client(
        self, client_id: str, tenant_id: str
    ) -> Optional[ClientPackage]:
        ...

    async def find_best_package_for_session(
        self, client_id: str, tenant_id: str
    ) -> Optional[ClientPackage]:
        """Earliest-expiring active, unexpired package with credit left."""

    async def use_session(self, package_id: str, tenant_id: str) -> ClientPackage:
        ...

    async def return_session(self, package_id: str, tenant_id: str) -> ClientPackage:
        ...


class ParticipantStore(Protocol):
    """Group-session membership rows, one per (session, client)."""

    async def get_participant(
        self, session_id: str, client_id: str, tenant_id: str
    ) -> Optional[SessionParticipant]:
        ...

    async def list_participants(self, session_id: str, tenant_id: str) -> List[SessionParticipant]:
        ...

    async def add_participant(self, participant: SessionParticipant) -> SessionParticipant:
        ...

    async def save_participant(self, participant: SessionParticipant) -> SessionParticipant:
        ...

    async def remove_participant(self, participant_id: str, tenant_id: str) -> None:
        ...


class Mailer(Protocol):
    """Outbound mail delivery."""

    async def send_mail(self, to: str, subject: str, text: str, html: str) -> None:
        """
        Deliver one message.

        Raises:
            NotificationError: If delivery fails
        """
