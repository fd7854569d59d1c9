"""
Group-session membership and its per-participant credit flow.
"""

from __future__ import annotations

import logging
import uuid
from typing import List

from ..domain.exceptions import (
    AlreadyParticipant,
    CapacityReached,
    CreditError,
    NoActivePackage,
    NotFound,
    NotGroupSession,
)
from ..domain.models import SessionParticipant, SessionStatus, SessionType
from .protocols import ClientDirectory, CreditLedger, ParticipantStore, SessionStore

logger = logging.getLogger(__name__)


class ParticipantService:
    """
    Adds clients to group sessions and mirrors the cancel/refund symmetry.

    Each participant pays from its own package, recorded as
    ``client_package_id``; the session's own credit flow is untouched.
    """

    def __init__(
        self,
        sessions: SessionStore,
        participants: ParticipantStore,
        clients: ClientDirectory,
        ledger: CreditLedger,
    ) -> None:
        self._sessions = sessions
        self._participants = participants
        self._clients = clients
        self._ledger = ledger

    async def list_participants(self, session_id: str, tenant_id: str) -> List[SessionParticipant]:
        return await self._participants.list_participants(session_id, tenant_id)

    async def add_participant(
        self, session_id: str, client_id: str, tenant_id: str
    ) -> SessionParticipant:
        """
        Join a client to a group session, taking one credit.

        Raises:
            NotFound: If the session or client does not exist
            NotGroupSession: If the session is an individual one
            CapacityReached: If the session is full
            AlreadyParticipant: If the client already joined
            NoActivePackage: If the client has no package with credit left
        """
        session = await self._sessions.get(session_id, tenant_id)
        if session is None:
            raise NotFound(f"Session {session_id} not found")
        if session.session_type != SessionType.group:
            raise NotGroupSession("Participants can only be added to group sessions")

        await self._clients.find_one(client_id, tenant_id)

        members = await self._participants.list_participants(session_id, tenant_id)
        if any(member.client_id == client_id for member in members):
            raise AlreadyParticipant("Client is already a participant of this session")
        active = [m for m in members if m.status != SessionStatus.cancelled]
        if len(active) >= session.capacity:
            raise CapacityReached(f"Session is full ({session.capacity} participants)")

        package = await self._ledger.find_best_package_for_session(client_id, tenant_id)
        if package is None:
            raise NoActivePackage("Client has no active package with available sessions")
        await self._ledger.use_session(package.id, tenant_id)

        participant = SessionParticipant(
            id=str(uuid.uuid4()),
            tenant_id=tenant_id,
            session_id=session_id,
            client_id=client_id,
            status=SessionStatus.scheduled,
            client_package_id=package.id,
        )
        return await self._participants.add_participant(participant)

    async def remove_participant(
        self, session_id: str, client_id: str, tenant_id: str
    ) -> SessionParticipant:
        """
        Drop a client from a group session, returning any credit it holds.

        Raises:
            NotFound: If the client is not a participant of the session
        """
        participant = await self._participants.get_participant(session_id, client_id, tenant_id)
        if participant is None:
            raise NotFound(f"Participant {client_id} not found in session {session_id}")

        if participant.client_package_id:
            await self._ledger.return_session(participant.client_package_id, tenant_id)
            participant.client_package_id = None

        await self._participants.remove_participant(participant.id, tenant_id)
        logger.info("Removed participant %s from session %s", client_id, session_id)
        return participant

    async def update_status(
        self,
        session_id: str,
        client_id: str,
        tenant_id: str,
        new_status: SessionStatus,
    ) -> SessionParticipant:
        participant = await self._participants.get_participant(session_id, client_id, tenant_id)
        if participant is None:
            raise NotFound(f"Participant {client_id} not found in session {session_id}")

        old_status = participant.status
        if old_status == new_status:
            return participant

        if new_status == SessionStatus.cancelled:
            if participant.client_package_id:
                await self._ledger.return_session(participant.client_package_id, tenant_id)
                participant.client_package_id = None
            else:
                logger.warning(
                    "Participant %s of session %s holds no package; nothing to refund",
                    client_id,
                    session_id,
                )
        elif old_status == SessionStatus.cancelled:
            package = await self._ledger.find_best_package_for_session(client_id, tenant_id)
            if package is None:
                logger.warning(
                    "No package with credit for participant %s of session %s; restoring without charge",
                    client_id,
                    session_id,
                )
                participant.client_package_id = None
            else:
                try:
                    await self._ledger.use_session(package.id, tenant_id)
                    participant.client_package_id = package.id
                except CreditError as exc:
                    logger.warning(
                        "Could not charge participant %s of session %s: %s",
                        client_id,
                        session_id,
                        exc,
                    )
                    participant.client_package_id = None

        participant.status = new_status
        return await self._participants.save_participant(participant)
