"""
The scheduling engine: booking, rescheduling, status transitions and the
credit state machine, composed from the validator, the conflict detector,
the recurrence expander and the credit ledger.

Validations of one call run strictly in order and stop at the first failure;
nothing is written before every check has passed. The check-then-insert
sequence is not isolated against concurrent callers; stores that need that
guarantee must enforce it themselves.
"""

from __future__ import annotations

import dataclasses
import logging
import uuid
from datetime import date
from typing import Callable, List, Optional, Sequence, Tuple

import pendulum
from pendulum import DateTime

from ..config import SchedulingDefaults
from ..domain.credit_policy import CreditAction, is_late_cancellation, resolve_credit_action
from ..domain.exceptions import (
    CreditError,
    InvalidRecurrence,
    InvalidSessionWindow,
    NoActivePackage,
    NoAvailableCredit,
    NotFound,
    SchedulingConflict,
    SchedulingError,
    SeriesError,
)
from ..domain.models import (
    AvailableSlot,
    Client,
    ClientPackage,
    ConflictResult,
    PackageStatus,
    RecurrencePattern,
    Session,
    SessionStatus,
    Studio,
    TimeRange,
)
from .availability import AvailabilityValidator
from .conflict_detector import ConflictDetector, ResourceClaim
from .notifications import BookingNotifier, SessionBooked
from .protocols import (
    ClientDirectory,
    CreditLedger,
    ResourceDirectory,
    SessionStore,
    TenantSettingsStore,
)
from .recurrence import RecurrenceExpander
from .resource_allocator import ResourceAllocator
from .schemas import (
    BookingResult,
    BulkCreateResult,
    BulkError,
    OccurrenceConflict,
    RecurrencePreview,
    ResourceAssignment,
    SeriesUpdateResult,
    SessionCreate,
    SessionQuery,
    SessionUpdate,
    to_pendulum,
)

logger = logging.getLogger(__name__)

RESOURCE_FIELDS = frozenset({"room_id", "coach_id", "client_id", "ems_device_id"})
TIME_FIELDS = frozenset({"start_time", "end_time"})


def utc_now() -> DateTime:
    return pendulum.now("UTC")


def claim_for(dto: SessionCreate) -> ResourceClaim:
    return ResourceClaim(
        room_id=dto.room_id,
        coach_id=dto.coach_id,
        window=dto.window,
        client_id=dto.client_id,
        ems_device_id=dto.ems_device_id,
    )


class SchedulingEngine:
    """
    Orchestrates every session operation for a tenant.

    Collaborators are injected as protocol implementations; the engine never
    touches package counters except through the ``CreditLedger``.
    """

    def __init__(
        self,
        *,
        sessions: SessionStore,
        resources: ResourceDirectory,
        clients: ClientDirectory,
        ledger: CreditLedger,
        tenants: TenantSettingsStore,
        notifier: Optional[BookingNotifier] = None,
        settings: Optional[SchedulingDefaults] = None,
        clock: Optional[Callable[[], DateTime]] = None,
    ) -> None:
        self._sessions = sessions
        self._resources = resources
        self._clients = clients
        self._ledger = ledger
        self._tenants = tenants
        self._notifier = notifier
        self._settings = settings or SchedulingDefaults()
        self._clock = clock or utc_now

        self.validator = AvailabilityValidator(
            resources, clients, default_timezone=self._settings.timezone
        )
        self.conflict_detector = ConflictDetector(sessions, resources)
        self.expander = RecurrenceExpander(
            self.conflict_detector,
            monthly_limit=self._settings.monthly_occurrence_limit,
        )
        self.allocator = ResourceAllocator(
            sessions, resources, self.validator, self._settings, self._clock
        )

    async def find_one(self, session_id: str, tenant_id: str) -> Session:
        session = await self._sessions.get(session_id, tenant_id)
        if session is None:
            raise NotFound(f"Session {session_id} not found")
        return session

    async def list_sessions(
        self, tenant_id: str, query: Optional[SessionQuery] = None
    ) -> List[Session]:
        query = query or SessionQuery()
        return await self._sessions.list_sessions(
            tenant_id,
            studio_id=query.studio_id,
            coach_id=query.coach_id,
            client_id=query.client_id,
            start_from=to_pendulum(query.start_from) if query.start_from else None,
            end_to=to_pendulum(query.end_to) if query.end_to else None,
            status=query.status,
        )

    async def check_conflicts(
        self,
        dto: SessionCreate,
        tenant_id: str,
        exclude_session_id: Optional[str] = None,
    ) -> ConflictResult:
        """Dry-run conflict detection for a booking request."""
        return await self.conflict_detector.check_conflicts(
            claim_for(dto), tenant_id, exclude_session_id
        )

    async def create(self, dto: SessionCreate, tenant_id: str) -> BookingResult:
        """
        Book a session and, for recurring requests, its generated occurrences.

        Raises:
            NotFound, InactiveResource: For unknown or disabled resources
            AvailabilityError: For studio-hours, coach-rule or gender violations
            CreditError: If the client has no credit left to book with
            SchedulingConflict: If any resource is taken for the window
            InvalidRecurrence: If a variable cadence has no slots
        """
        self._check_cadence(dto)
        studio, client = await self._validate_booking(dto, tenant_id)

        conflicts = await self.check_conflicts(dto, tenant_id)
        if conflicts.has_conflicts:
            raise SchedulingConflict(conflicts.conflicts)

        parent = await self._sessions.add(self._new_session(dto, tenant_id))
        logger.info("Created session %s for tenant %s", parent.id, tenant_id)

        result = BookingResult(session=parent)
        if parent.is_recurring_parent:
            package = await self._active_package(dto.client_id, tenant_id)
            expansion = await self.expander.expand(
                claim=claim_for(dto),
                tenant_id=tenant_id,
                pattern=dto.recurrence_pattern,
                end_date=dto.recurrence_end_date,
                timezone=self.validator.timezone_of(studio),
                recurrence_days=dto.recurrence_days,
                slots=dto.slots(),
                package=package,
                series_id=parent.id,
            )
            siblings = [self._occurrence_of(parent, window) for window in expansion.accepted]
            if siblings:
                result.occurrences = await self._sessions.add_many(siblings)
            result.skipped = expansion.rejected
            logger.info(
                "Series %s for tenant %s: %d occurrences booked, %d skipped",
                parent.id,
                tenant_id,
                len(result.occurrences),
                len(result.skipped),
            )

        if client is not None:
            await self._notify(SessionBooked(
                session_id=parent.id,
                tenant_id=tenant_id,
                client_email=client.email,
                client_name=f"{client.first_name} {client.last_name}".strip(),
                start=parent.start_time,
                end=parent.end_time,
                timezone=self.validator.timezone_of(studio),
                occurrences=len(result.occurrences),
            ))

        return result

    async def validate_recurrence(self, dto: SessionCreate, tenant_id: str) -> RecurrencePreview:
        """
        Preview a recurring booking without writing anything.

        The parent window comes first, followed by every generated candidate,
        each listed either as valid or with its conflicts.

        Raises:
            InvalidRecurrence: If the pattern, end date or variable slots are missing
        """
        if not dto.is_recurring:
            raise InvalidRecurrence("Recurrence pattern and end date are required")
        self._check_cadence(dto)

        studio = await self.validator.get_studio(dto.studio_id, tenant_id)
        preview = RecurrencePreview()

        parent_check = await self.check_conflicts(dto, tenant_id)
        if parent_check.has_conflicts:
            preview.conflicts.append(
                OccurrenceConflict(window=dto.window, conflicts=parent_check.conflicts)
            )
        else:
            preview.valid_sessions.append(dto.window)

        package = await self._active_package(dto.client_id, tenant_id)
        expansion = await self.expander.expand(
            claim=claim_for(dto),
            tenant_id=tenant_id,
            pattern=dto.recurrence_pattern,
            end_date=dto.recurrence_end_date,
            timezone=self.validator.timezone_of(studio),
            recurrence_days=dto.recurrence_days,
            slots=dto.slots(),
            package=package,
        )
        preview.valid_sessions.extend(expansion.accepted)
        preview.conflicts.extend(expansion.rejected)
        return preview

    async def create_bulk(
        self, dtos: Sequence[SessionCreate], tenant_id: str
    ) -> BulkCreateResult:
        """Book each request independently, collecting per-item failures."""
        result = BulkCreateResult()
        for index, dto in enumerate(dtos):
            try:
                booking = await self.create(dto, tenant_id)
            except SchedulingError as exc:
                result.errors.append(BulkError(index=index, error=str(exc)))
                continue
            result.sessions.extend(booking.sessions)
        return result

    async def update(self, session_id: str, tenant_id: str, patch: SessionUpdate) -> Session:
        """
        Apply a partial update after re-running the checks its changes affect.

        Raises:
            NotFound, InactiveResource: For unknown or disabled resources
            InvalidSessionWindow: If the merged window is empty or inverted
            AvailabilityError: For studio-hours, coach-rule or gender violations
            SchedulingConflict: If the merged session overlaps another booking
        """
        existing = await self.find_one(session_id, tenant_id)
        changes = patch.changes()
        changed = {key for key, value in changes.items() if getattr(existing, key) != value}
        if not changed:
            return existing

        try:
            merged = dataclasses.replace(existing, **changes)
        except ValueError as exc:
            raise InvalidSessionWindow(str(exc)) from exc

        if "room_id" in changed:
            await self.validator.validate_room(merged.room_id, tenant_id)

        if changed & (TIME_FIELDS | {"studio_id", "coach_id"}):
            studio = await self.validator.validate_studio_hours(
                merged.studio_id, tenant_id, merged.start_time, merged.end_time
            )
            await self.validator.validate_coach_availability(
                merged.coach_id,
                tenant_id,
                merged.start_time,
                merged.end_time,
                self.validator.timezone_of(studio),
            )

        if changed & {"coach_id", "client_id"} and merged.client_id:
            await self.validator.validate_coach_gender_preference(
                merged.coach_id, merged.client_id, tenant_id
            )

        if changed & (TIME_FIELDS | RESOURCE_FIELDS):
            conflicts = await self.conflict_detector.check_conflicts(
                ResourceClaim.from_session(merged), tenant_id, exclude_session_id=merged.id
            )
            if conflicts.has_conflicts:
                raise SchedulingConflict(conflicts.conflicts)

        saved = await self._sessions.save(merged)
        logger.info(
            "Updated session %s for tenant %s: %s", saved.id, tenant_id, ", ".join(sorted(changed))
        )
        return saved

    async def update_status(
        self,
        session_id: str,
        tenant_id: str,
        new_status: SessionStatus,
        deduct_session: Optional[bool] = None,
        reason: Optional[str] = None,
    ) -> Session:
        """
        Move a session to ``new_status`` and settle its credit.

        ``deduct_session`` overrides the cancellation-window policy when
        cancelling. Missing packages and ledger credit errors are logged and
        never block the status write.
        """
        session = await self.find_one(session_id, tenant_id)
        old_status = session.status
        if old_status == new_status:
            return session

        now = self._clock()
        late = False
        if new_status == SessionStatus.cancelled and deduct_session is None:
            window_hours = await self._cancellation_window(tenant_id)
            late = is_late_cancellation(session.start_time, now, window_hours)

        action = resolve_credit_action(
            new_status,
            charged=session.charged_package_id is not None,
            deduct_override=deduct_session,
            late_cancellation=late,
        )
        if action == CreditAction.deduct:
            await self._deduct(session, tenant_id)
        elif action == CreditAction.refund:
            await self._refund(session, tenant_id)

        session.status = new_status
        if new_status == SessionStatus.cancelled:
            session.cancelled_at = now
            session.cancelled_reason = reason
        else:
            session.cancelled_at = None
            session.cancelled_reason = None

        saved = await self._sessions.save(session)
        logger.info(
            "Session %s of tenant %s moved %s -> %s (credit: %s)",
            saved.id,
            tenant_id,
            old_status.value,
            new_status.value,
            action.value,
        )
        return saved

    async def update_series(
        self, session_id: str, tenant_id: str, patch: SessionUpdate
    ) -> SeriesUpdateResult:
        """
        Apply a non-temporal patch to this and every later scheduled member.

        Members whose new resources conflict are skipped and reported.

        Raises:
            SeriesError: If the session is not part of a series or the patch moves times
        """
        if TIME_FIELDS.intersection(patch.changes()):
            raise SeriesError("Times cannot be changed for a whole series")

        members = await self._upcoming_members(session_id, tenant_id)
        result = SeriesUpdateResult()
        for member in members:
            try:
                result.updated.append(await self.update(member.id, tenant_id, patch))
            except SchedulingConflict as exc:
                logger.info("Series member %s skipped: resources taken", member.id)
                result.skipped[member.id] = exc.conflicts
        return result

    async def cancel_series(
        self, session_id: str, tenant_id: str, reason: Optional[str] = None
    ) -> List[Session]:
        """Cancel this and every later scheduled member without charging credit."""
        members = await self._upcoming_members(session_id, tenant_id)
        return [
            await self.update_status(
                member.id, tenant_id, SessionStatus.cancelled, deduct_session=False, reason=reason
            )
            for member in members
        ]

    async def auto_assign_resources(
        self,
        tenant_id: str,
        studio_id: str,
        start: DateTime,
        end: DateTime,
        preferred_coach_id: Optional[str] = None,
    ) -> ResourceAssignment:
        return await self.allocator.auto_assign_resources(
            tenant_id, studio_id, start, end, preferred_coach_id
        )

    async def get_available_slots(
        self,
        tenant_id: str,
        studio_id: str,
        day: date,
        coach_id: Optional[str] = None,
    ) -> List[AvailableSlot]:
        return await self.allocator.get_available_slots(tenant_id, studio_id, day, coach_id)

    @staticmethod
    def _check_cadence(dto: SessionCreate) -> None:
        if dto.recurrence_pattern == RecurrencePattern.variable and not dto.recurrence_slots:
            raise InvalidRecurrence("Variable recurrence requires at least one slot")

    async def _validate_booking(
        self, dto: SessionCreate, tenant_id: str
    ) -> Tuple[Studio, Optional[Client]]:
        start, end = dto.window.start, dto.window.end

        await self.validator.validate_room(dto.room_id, tenant_id)
        studio = await self.validator.validate_studio_hours(dto.studio_id, tenant_id, start, end)
        await self.validator.validate_coach_availability(
            dto.coach_id, tenant_id, start, end, self.validator.timezone_of(studio)
        )

        client = None
        if dto.client_id:
            await self.validator.validate_coach_gender_preference(
                dto.coach_id, dto.client_id, tenant_id
            )
            client = await self._clients.find_one(dto.client_id, tenant_id)
            await self._check_available_credit(dto.client_id, tenant_id)

        return studio, client

    async def _check_available_credit(self, client_id: str, tenant_id: str) -> None:
        now = self._clock()
        usable = [
            package
            for package in await self._ledger.get_client_packages(client_id, tenant_id)
            if package.status == PackageStatus.active
            and package.sessions_remaining > 0
            and package.expiry_date > now
        ]
        if not usable:
            raise NoActivePackage("Client has no active package with available sessions")

        remaining = sum(package.sessions_remaining for package in usable)
        scheduled = await self._sessions.count_for_client(
            client_id, tenant_id, SessionStatus.scheduled
        )
        if remaining - scheduled < 1:
            raise NoAvailableCredit(
                f"No available sessions: {remaining} remaining, "
                f"{scheduled} already scheduled"
            )

    async def _active_package(
        self, client_id: Optional[str], tenant_id: str
    ) -> Optional[ClientPackage]:
        if not client_id:
            return None
        return await self._ledger.get_active_package_for_client(client_id, tenant_id)

    async def _cancellation_window(self, tenant_id: str) -> int:
        tenant = await self._tenants.get_settings(tenant_id)
        if tenant.cancellation_window_hours is not None:
            return tenant.cancellation_window_hours
        return self._settings.cancellation_window_hours

    async def _deduct(self, session: Session, tenant_id: str) -> None:
        if not session.client_id:
            logger.debug("Session %s has no client; no credit to deduct", session.id)
            return

        package = await self._ledger.get_active_package_for_client(session.client_id, tenant_id)
        if package is None:
            logger.warning(
                "No active package for client %s; session %s changes status without deduction",
                session.client_id,
                session.id,
            )
            return

        try:
            await self._ledger.use_session(package.id, tenant_id)
        except (CreditError, NotFound) as exc:
            logger.warning(
                "Could not deduct credit from package %s for session %s: %s",
                package.id,
                session.id,
                exc,
            )
            return
        session.charged_package_id = package.id

    async def _refund(self, session: Session, tenant_id: str) -> None:
        package_id = session.charged_package_id
        session.charged_package_id = None
        try:
            await self._ledger.return_session(package_id, tenant_id)
        except NotFound as exc:
            logger.warning(
                "Could not refund credit to package %s for session %s: %s",
                package_id,
                session.id,
                exc,
            )

    async def _upcoming_members(self, session_id: str, tenant_id: str) -> List[Session]:
        session = await self.find_one(session_id, tenant_id)
        series_id = session.series_id
        if series_id is None:
            raise SeriesError(f"Session {session_id} is not part of a recurring series")

        members = await self._sessions.list_series(series_id, tenant_id)
        return [
            member for member in members
            if member.start_time >= session.start_time
            and member.status == SessionStatus.scheduled
        ]

    async def _notify(self, event: SessionBooked) -> None:
        if self._notifier is None:
            return
        try:
            await self._notifier.publish(event)
        except Exception:
            logger.exception("Notification for session %s failed", event.session_id)

    def _new_session(self, dto: SessionCreate, tenant_id: str) -> Session:
        recurring = dto.is_recurring
        return Session(
            id=str(uuid.uuid4()),
            tenant_id=tenant_id,
            studio_id=dto.studio_id,
            room_id=dto.room_id,
            coach_id=dto.coach_id,
            client_id=dto.client_id,
            ems_device_id=dto.ems_device_id,
            start_time=dto.window.start,
            end_time=dto.window.end,
            session_type=dto.session_type,
            capacity=dto.capacity,
            notes=dto.notes,
            program_type=dto.program_type,
            intensity_level=dto.intensity_level,
            is_recurring_parent=recurring,
            recurrence_pattern=dto.recurrence_pattern if recurring else None,
            recurrence_end_date=dto.recurrence_end_date if recurring else None,
            recurrence_days=dto.recurrence_days if recurring else None,
            created_at=self._clock(),
        )

    def _occurrence_of(self, parent: Session, window: TimeRange) -> Session:
        return Session(
            id=str(uuid.uuid4()),
            tenant_id=parent.tenant_id,
            studio_id=parent.studio_id,
            room_id=parent.room_id,
            coach_id=parent.coach_id,
            client_id=parent.client_id,
            ems_device_id=parent.ems_device_id,
            start_time=window.start,
            end_time=window.end,
            session_type=parent.session_type,
            capacity=parent.capacity,
            notes=parent.notes,
            program_type=parent.program_type,
            intensity_level=parent.intensity_level,
            parent_session_id=parent.id,
            created_at=parent.created_at,
        )
