"""
Tests for the scheduling engine.
"""

import asyncio
import logging
from datetime import date

import pytest
from pydantic import ValidationError

from studioscheduler.domain.exceptions import (
    ClosedDay,
    CoachAlreadyBooked,
    CoachNotFound,
    CoachOnLeave,
    CoachUnavailable,
    GenderMismatch,
    InactiveResource,
    InvalidRecurrence,
    InvalidSessionWindow,
    NoActivePackage,
    NoAvailableCredit,
    NoCoachesAvailable,
    NoRoomsAvailable,
    NotFound,
    OutsideCoachHours,
    OutsideHours,
    SchedulingConflict,
    SeriesError,
)
from studioscheduler.domain.models import (
    ClientPackage,
    CoachTimeOff,
    ConflictType,
    PackageStatus,
    SessionStatus,
    SlotStatus,
    TimeOffStatus,
)
from studioscheduler.services.schemas import SessionQuery, SessionUpdate

from conftest import NOW, TENANT, RecordingMailer, at


def _create(world, dto):
    return asyncio.run(world.engine.create(dto, TENANT))


def _book(world, make_booking, start, **overrides):
    return _create(world, make_booking(start, **overrides)).session


def _status(world, session_id, status, **kwargs):
    return asyncio.run(world.engine.update_status(session_id, TENANT, status, **kwargs))


def _update(world, session_id, **fields):
    return asyncio.run(world.engine.update(session_id, TENANT, SessionUpdate(**fields)))


def _leave(coach_id, start, end, status=TimeOffStatus.approved):
    return CoachTimeOff(
        id=f"leave-{coach_id}",
        tenant_id=TENANT,
        coach_id=coach_id,
        start=at(start),
        end=at(end),
        status=status,
    )


class TestCreateSession:
    """Tests for booking a single session."""

    def test_books_session_without_touching_credit(self, world, make_booking):
        result = _create(world, make_booking("2026-01-19T10:00:00Z", notes="first visit"))

        session = world.session(result.session.id)
        assert session.status == SessionStatus.scheduled
        assert session.client_id == "client-1"
        assert session.notes == "first visit"
        assert session.charged_package_id is None
        assert session.created_at == NOW
        assert result.occurrences == []
        assert world.package("pkg-1").sessions_remaining == 10

    def test_sends_confirmation(self, world, make_booking):
        _create(world, make_booking("2026-01-19T10:00:00Z"))

        assert len(world.mailer.sent) == 1
        message = world.mailer.sent[0]
        assert message["to"] == "lena@example.com"
        assert message["subject"] == "Session confirmed: 2026-01-19 10:00"
        assert "Lena Fischer" in message["text"]

    def test_session_without_client_skips_client_checks(self, world, make_booking):
        result = _create(world, make_booking("2026-01-19T10:00:00Z", client_id=None))

        assert result.session.client_id is None
        assert world.mailer.sent == []

    def test_room_conflict(self, world, make_booking):
        existing = _book(world, make_booking, "2026-01-19T10:00:00Z")

        with pytest.raises(SchedulingConflict) as excinfo:
            _create(world, make_booking(
                "2026-01-19T10:10:00Z", coach_id="coach-2", client_id="client-2"
            ))

        assert [c.type for c in excinfo.value.conflicts] == [ConflictType.room]
        assert excinfo.value.conflicts[0].session_id == existing.id
        assert excinfo.value.to_dict()["hasConflicts"] is True
        assert len(world.store.sessions) == 1

    def test_back_to_back_sessions_do_not_conflict(self, world, make_booking):
        _book(world, make_booking, "2026-01-19T10:00:00Z")
        _book(world, make_booking, "2026-01-19T10:20:00Z")

        assert len(world.store.sessions) == 2

    def test_closed_day(self, world, make_booking):
        with pytest.raises(ClosedDay):
            _create(world, make_booking("2026-01-25T10:00:00Z"))

    def test_outside_studio_hours(self, world, make_booking):
        with pytest.raises(OutsideHours):
            _create(world, make_booking("2026-01-19T06:00:00Z"))

    def test_empty_opening_hours_allow_any_time(self, make_world, make_booking):
        world = make_world(opening_hours={})

        session = _book(world, make_booking, "2026-01-25T05:00:00Z")

        assert session.start_time == at("2026-01-25T05:00:00Z")

    def test_coach_rules(self, world, make_booking):
        with pytest.raises(CoachUnavailable):
            _create(world, make_booking("2026-01-20T10:00:00Z", coach_id="coach-2"))
        with pytest.raises(OutsideCoachHours):
            _create(world, make_booking("2026-01-19T13:00:00Z", coach_id="coach-2"))

    @pytest.mark.parametrize("client_id", ["client-3", "client-4"])
    def test_gender_preference(self, world, make_booking, client_id):
        with pytest.raises(GenderMismatch):
            _create(world, make_booking(
                "2026-01-19T10:00:00Z", coach_id="coach-2", client_id=client_id
            ))

    def test_gender_preference_ignores_missing_gender(self, world, make_booking):
        session = _book(
            world, make_booking, "2026-01-19T10:00:00Z", coach_id="coach-2", client_id="client-2"
        )

        assert session.coach_id == "coach-2"

    def test_unknown_and_inactive_resources(self, world, make_booking):
        with pytest.raises(NotFound):
            _create(world, make_booking("2026-01-19T10:00:00Z", room_id="room-404"))
        with pytest.raises(InactiveResource):
            _create(world, make_booking("2026-01-19T10:00:00Z", room_id="room-off"))
        with pytest.raises(InactiveResource):
            _create(world, make_booking("2026-01-19T10:00:00Z", coach_id="coach-off"))
        with pytest.raises(NotFound):
            _create(world, make_booking("2026-01-19T10:00:00Z", studio_id="studio-x"))
        with pytest.raises(NotFound):
            _create(world, make_booking("2026-01-19T10:00:00Z", client_id="client-404"))

    def test_credit_exhaustion(self, world, make_booking):
        """client-2 holds two credits; a third scheduled session is refused."""
        _book(world, make_booking, "2026-01-19T10:00:00Z", client_id="client-2")
        _book(world, make_booking, "2026-01-20T10:00:00Z", client_id="client-2")

        with pytest.raises(NoAvailableCredit):
            _create(world, make_booking("2026-01-21T10:00:00Z", client_id="client-2"))

    def test_cancelled_sessions_do_not_hold_credit(self, world, make_booking):
        first = _book(world, make_booking, "2026-01-19T10:00:00Z", client_id="client-2")
        _book(world, make_booking, "2026-01-20T10:00:00Z", client_id="client-2")
        _status(world, first.id, SessionStatus.cancelled)

        session = _book(world, make_booking, "2026-01-21T10:00:00Z", client_id="client-2")

        assert session.client_id == "client-2"

    def test_credit_is_summed_across_packages(self, make_world, make_booking):
        """One credit in the first package, five in the second."""
        world = make_world(packages=[
            ClientPackage(id="pkg-a", tenant_id=TENANT, client_id="client-1",
                          sessions_remaining=1, expiry_date=at("2026-06-30T23:59:59Z")),
            ClientPackage(id="pkg-b", tenant_id=TENANT, client_id="client-1",
                          sessions_remaining=5, expiry_date=at("2026-12-31T23:59:59Z")),
        ])
        _book(world, make_booking, "2026-01-19T10:00:00Z")

        session = _book(world, make_booking, "2026-01-20T10:00:00Z")

        assert session.client_id == "client-1"
        assert world.package("pkg-a").sessions_remaining == 1
        assert world.package("pkg-b").sessions_remaining == 5

    def test_expired_and_inactive_packages_do_not_count(self, make_world, make_booking):
        world = make_world(packages=[
            ClientPackage(id="pkg-a", tenant_id=TENANT, client_id="client-1",
                          sessions_remaining=1, expiry_date=at("2026-12-31T23:59:59Z")),
            ClientPackage(id="pkg-old", tenant_id=TENANT, client_id="client-1",
                          sessions_remaining=5, expiry_date=at("2026-01-01T00:00:00Z")),
            ClientPackage(id="pkg-frozen", tenant_id=TENANT, client_id="client-1",
                          sessions_remaining=5, expiry_date=at("2026-12-31T23:59:59Z"),
                          status=PackageStatus.expired),
        ])
        _book(world, make_booking, "2026-01-19T10:00:00Z")

        with pytest.raises(NoAvailableCredit, match="1 remaining, 1 already scheduled"):
            _create(world, make_booking("2026-01-20T10:00:00Z"))

    def test_client_without_package(self, make_world, make_booking):
        world = make_world(packages=[])

        with pytest.raises(NoActivePackage):
            _create(world, make_booking("2026-01-19T10:00:00Z"))

    def test_notification_failure_does_not_roll_back(self, make_world, make_booking, caplog):
        world = make_world(mailer=RecordingMailer(failures=10))

        with caplog.at_level(logging.WARNING):
            result = _create(world, make_booking("2026-01-19T10:00:00Z"))

        assert result.session.id in world.store.sessions
        assert world.mailer.attempts == 3
        assert world.mailer.sent == []
        assert "Giving up on confirmation" in caplog.text

    def test_check_conflicts_is_a_dry_run(self, world, make_booking):
        _book(world, make_booking, "2026-01-19T10:00:00Z")

        result = asyncio.run(world.engine.check_conflicts(
            make_booking("2026-01-19T10:00:00Z"), TENANT
        ))

        assert result.types() == [ConflictType.room, ConflictType.coach, ConflictType.client]
        assert len(world.store.sessions) == 1

    def test_list_sessions_filters(self, world, make_booking):
        _book(world, make_booking, "2026-01-19T10:00:00Z")
        _book(world, make_booking, "2026-01-20T10:00:00Z", client_id="client-2")
        _book(world, make_booking, "2026-01-21T10:00:00Z")

        by_client = asyncio.run(world.engine.list_sessions(TENANT, SessionQuery(client_id="client-2")))
        in_range = asyncio.run(world.engine.list_sessions(TENANT, SessionQuery.model_validate({
            "from": "2026-01-20T00:00:00Z",
            "to": "2026-01-21T00:00:00Z",
        })))

        assert [s.client_id for s in by_client] == ["client-2"]
        assert [s.start_time for s in in_range] == [at("2026-01-20T10:00:00Z")]
        assert asyncio.run(world.engine.list_sessions("t2")) == []


class TestRecurringBookings:
    """Tests for recurring series creation and previews."""

    def test_weekly_series(self, world, make_booking):
        result = _create(world, make_booking(
            "2026-01-19T10:00:00Z",
            recurrence_pattern="weekly",
            recurrence_days=[1, 3],
            recurrence_end_date=date(2026, 2, 1),
        ))

        parent = result.session
        assert parent.is_recurring_parent
        assert parent.recurrence_days == [1, 3]
        assert [s.start_time.format("MM-DD") for s in result.occurrences] == [
            "01-21", "01-26", "01-28",
        ]
        assert all(s.parent_session_id == parent.id for s in result.occurrences)
        assert all(not s.is_recurring_parent for s in result.occurrences)
        assert len(world.store.sessions) == 4
        assert "3 further sessions" in world.mailer.sent[0]["text"]

    def test_daily_series_checks_siblings_for_conflicts_only(self, world, make_booking):
        result = _create(world, make_booking(
            "2026-01-01T10:00:00Z",
            recurrence_pattern="daily",
            recurrence_end_date=date(2026, 1, 5),
        ))

        assert [s.start_time.day for s in result.occurrences] == [2, 3, 4, 5]

    def test_series_is_capped_by_package_credit(self, world, make_booking):
        result = _create(world, make_booking(
            "2026-01-19T10:00:00Z",
            client_id="client-2",
            recurrence_pattern="daily",
            recurrence_end_date=date(2026, 1, 31),
        ))

        assert len(result.occurrences) == 1

    def test_conflicting_occurrences_are_skipped(self, world, make_booking):
        blocker = _book(
            world, make_booking, "2026-01-26T10:00:00Z", coach_id="coach-2", client_id="client-2"
        )

        result = _create(world, make_booking(
            "2026-01-19T10:00:00Z",
            recurrence_pattern="weekly",
            recurrence_end_date=date(2026, 2, 9),
        ))

        assert [s.start_time.format("MM-DD") for s in result.occurrences] == ["02-02", "02-09"]
        assert len(result.skipped) == 1
        assert result.skipped[0].conflicts[0].session_id == blocker.id
        assert result.skipped[0].to_dict()["date"].startswith("2026-01-26T10:00:00")

    def test_without_end_date_books_single_session(self, world, make_booking):
        result = _create(world, make_booking("2026-01-19T10:00:00Z", recurrence_pattern="weekly"))

        assert not result.session.is_recurring_parent
        assert result.session.recurrence_pattern is None
        assert result.occurrences == []

    def test_variable_pattern_requires_slots(self, world, make_booking):
        with pytest.raises(InvalidRecurrence):
            _create(world, make_booking(
                "2026-01-19T10:00:00Z",
                recurrence_pattern="variable",
                recurrence_end_date=date(2026, 2, 1),
            ))

    def test_variable_pattern(self, world, make_booking):
        result = _create(world, make_booking(
            "2026-01-19T10:00:00Z",
            recurrence_pattern="variable",
            recurrence_end_date=date(2026, 1, 25),
            recurrence_slots=[
                {"dayOfWeek": "tuesday", "startTime": "07:00"},
                {"dayOfWeek": 4, "startTime": "18:00"},
            ],
        ))

        assert [s.start_time.format("MM-DD HH:mm") for s in result.occurrences] == [
            "01-20 07:00", "01-22 18:00",
        ]

    def test_preview_writes_nothing(self, world, make_booking):
        _book(world, make_booking, "2026-01-26T10:00:00Z", coach_id="coach-2", client_id="client-2")

        preview = asyncio.run(world.engine.validate_recurrence(make_booking(
            "2026-01-19T10:00:00Z",
            recurrence_pattern="weekly",
            recurrence_end_date=date(2026, 2, 2),
        ), TENANT))

        assert [w.start.format("MM-DD") for w in preview.valid_sessions] == ["01-19", "02-02"]
        assert len(preview.conflicts) == 1
        payload = preview.to_dict()
        assert payload["validSessions"][0]["startTime"].startswith("2026-01-19T10:00:00")
        assert payload["conflicts"][0]["conflicts"][0]["type"] == "room"
        assert len(world.store.sessions) == 1

    def test_preview_reports_parent_conflict(self, world, make_booking):
        _book(world, make_booking, "2026-01-19T10:00:00Z", coach_id="coach-2", client_id="client-2")

        preview = asyncio.run(world.engine.validate_recurrence(make_booking(
            "2026-01-19T10:00:00Z",
            recurrence_pattern="weekly",
            recurrence_end_date=date(2026, 1, 26),
        ), TENANT))

        assert preview.conflicts[0].window.start == at("2026-01-19T10:00:00Z")
        assert [w.start.format("MM-DD") for w in preview.valid_sessions] == ["01-26"]

    def test_preview_requires_recurrence(self, world, make_booking):
        with pytest.raises(InvalidRecurrence):
            asyncio.run(world.engine.validate_recurrence(
                make_booking("2026-01-19T10:00:00Z"), TENANT
            ))


class TestBulkCreate:
    """Tests for create_bulk."""

    def test_failures_are_collected_per_item(self, world, make_booking):
        result = asyncio.run(world.engine.create_bulk([
            make_booking("2026-01-19T10:00:00Z"),
            make_booking("2026-01-19T10:00:00Z"),
            make_booking("2026-01-25T10:00:00Z"),
            make_booking("2026-01-20T10:00:00Z"),
        ], TENANT))

        assert result.created == 2
        assert [e.index for e in result.errors] == [1, 2]
        assert "conflict" in result.errors[0].error.lower()


class TestUpdateSession:
    """Tests for partial updates."""

    def test_notes_only(self, world, make_booking):
        session = _book(world, make_booking, "2026-01-19T10:00:00Z")

        updated = _update(world, session.id, notes="bring water", intensity_level=7)

        assert updated.notes == "bring water"
        assert world.session(session.id).intensity_level == 7

    def test_move_overlapping_own_window(self, world, make_booking):
        session = _book(world, make_booking, "2026-01-19T10:00:00Z")

        updated = _update(
            world, session.id,
            start_time=at("2026-01-19T10:10:00Z"),
            end_time=at("2026-01-19T10:30:00Z"),
        )

        assert updated.start_time == at("2026-01-19T10:10:00Z")

    def test_move_into_other_booking(self, world, make_booking):
        _book(world, make_booking, "2026-01-19T10:00:00Z", client_id="client-2")
        session = _book(world, make_booking, "2026-01-19T11:00:00Z")

        with pytest.raises(SchedulingConflict):
            _update(
                world, session.id,
                start_time=at("2026-01-19T10:10:00Z"),
                end_time=at("2026-01-19T10:30:00Z"),
            )
        assert world.session(session.id).start_time == at("2026-01-19T11:00:00Z")

    def test_inverted_window(self, world, make_booking):
        session = _book(world, make_booking, "2026-01-19T10:00:00Z")

        with pytest.raises(InvalidSessionWindow):
            _update(world, session.id, start_time=at("2026-01-19T11:00:00Z"))

    def test_move_outside_hours(self, world, make_booking):
        session = _book(world, make_booking, "2026-01-19T10:00:00Z")

        with pytest.raises(ClosedDay):
            _update(
                world, session.id,
                start_time=at("2026-01-25T10:00:00Z"),
                end_time=at("2026-01-25T10:20:00Z"),
            )

    def test_change_room_and_coach_revalidates(self, world, make_booking):
        session = _book(world, make_booking, "2026-01-19T10:00:00Z", client_id="client-4")

        with pytest.raises(InactiveResource):
            _update(world, session.id, room_id="room-off")
        with pytest.raises(GenderMismatch):
            _update(world, session.id, coach_id="coach-2")

        updated = _update(world, session.id, room_id="room-2")
        assert updated.room_id == "room-2"

    @pytest.mark.parametrize("field", ["start_time", "end_time", "room_id", "coach_id", "studio_id"])
    def test_required_fields_cannot_be_cleared(self, world, make_booking, field):
        session = _book(world, make_booking, "2026-01-19T10:00:00Z")

        with pytest.raises(ValidationError, match="cannot be cleared"):
            _update(world, session.id, **{field: None})
        assert world.session(session.id).end_time == at("2026-01-19T10:20:00Z")

    def test_optional_fields_can_be_cleared(self, world, make_booking):
        session = _book(world, make_booking, "2026-01-19T10:00:00Z", notes="first visit")

        updated = _update(world, session.id, notes=None)

        assert updated.notes is None

    def test_unknown_session(self, world):
        with pytest.raises(NotFound):
            _update(world, "missing", notes="x")


class TestStatusTransitions:
    """Tests for the credit state machine behind update_status."""

    def test_completed_deducts_once(self, world, make_booking):
        session = _book(world, make_booking, "2026-01-19T10:00:00Z")

        completed = _status(world, session.id, SessionStatus.completed)
        again = _status(world, session.id, SessionStatus.completed)

        assert completed.charged_package_id == "pkg-1"
        assert again.charged_package_id == "pkg-1"
        assert world.package("pkg-1").sessions_remaining == 9
        assert world.package("pkg-1").sessions_used == 1

    def test_no_show_deducts(self, world, make_booking):
        session = _book(world, make_booking, "2026-01-19T10:00:00Z")

        _status(world, session.id, SessionStatus.no_show)

        assert world.package("pkg-1").sessions_remaining == 9

    def test_reopening_refunds(self, world, make_booking):
        session = _book(world, make_booking, "2026-01-19T10:00:00Z")
        _status(world, session.id, SessionStatus.completed)

        reopened = _status(world, session.id, SessionStatus.scheduled)

        assert reopened.charged_package_id is None
        assert world.package("pkg-1").sessions_remaining == 10
        assert world.package("pkg-1").sessions_used == 0

    def test_early_cancellation_is_free(self, world, make_booking):
        session = _book(world, make_booking, "2026-01-19T10:00:00Z")

        cancelled = _status(world, session.id, SessionStatus.cancelled, reason="sick")

        assert cancelled.status == SessionStatus.cancelled
        assert cancelled.cancelled_at == NOW
        assert cancelled.cancelled_reason == "sick"
        assert cancelled.charged_package_id is None
        assert world.package("pkg-1").sessions_remaining == 10

    def test_late_cancellation_is_charged(self, world, make_booking):
        session = _book(world, make_booking, "2026-01-13T10:00:00Z")

        cancelled = _status(world, session.id, SessionStatus.cancelled)

        assert cancelled.charged_package_id == "pkg-1"
        assert world.package("pkg-1").sessions_remaining == 9

    def test_tenant_window_overrides_default(self, make_world, make_booking):
        world = make_world(cancellation_window_hours=24)
        session = _book(world, make_booking, "2026-01-13T10:00:00Z")

        _status(world, session.id, SessionStatus.cancelled)

        assert world.package("pkg-1").sessions_remaining == 10

    def test_explicit_override(self, world, make_booking):
        early = _book(world, make_booking, "2026-01-19T10:00:00Z")
        late = _book(world, make_booking, "2026-01-13T10:00:00Z")

        _status(world, early.id, SessionStatus.cancelled, deduct_session=True)
        _status(world, late.id, SessionStatus.cancelled, deduct_session=False)

        assert world.session(early.id).charged_package_id == "pkg-1"
        assert world.session(late.id).charged_package_id is None
        assert world.package("pkg-1").sessions_remaining == 9

    def test_uncancelling_refunds_and_clears_cancellation(self, world, make_booking):
        session = _book(world, make_booking, "2026-01-13T10:00:00Z")
        _status(world, session.id, SessionStatus.cancelled, reason="late")

        restored = _status(world, session.id, SessionStatus.scheduled)

        assert restored.cancelled_at is None
        assert restored.cancelled_reason is None
        assert world.package("pkg-1").sessions_remaining == 10

    def test_completing_a_charged_cancellation_keeps_one_charge(self, world, make_booking):
        session = _book(world, make_booking, "2026-01-13T10:00:00Z")
        _status(world, session.id, SessionStatus.cancelled)

        _status(world, session.id, SessionStatus.completed)

        assert world.package("pkg-1").sessions_remaining == 9

    def test_missing_package_does_not_block_status(self, world, make_booking, caplog):
        session = _book(world, make_booking, "2026-01-19T10:00:00Z")
        world.package("pkg-1").status = PackageStatus.expired

        with caplog.at_level(logging.WARNING, logger="studioscheduler.services.scheduling"):
            completed = _status(world, session.id, SessionStatus.completed)

        assert completed.status == SessionStatus.completed
        assert completed.charged_package_id is None
        assert "No active package" in caplog.text

    def test_empty_package_does_not_block_status(self, world, make_booking, caplog):
        session = _book(world, make_booking, "2026-01-19T10:00:00Z")
        world.package("pkg-1").sessions_remaining = 0

        with caplog.at_level(logging.WARNING, logger="studioscheduler.services.scheduling"):
            completed = _status(world, session.id, SessionStatus.completed)

        assert completed.status == SessionStatus.completed
        assert completed.charged_package_id is None
        assert "Could not deduct" in caplog.text

    def test_session_without_client(self, world, make_booking):
        session = _book(world, make_booking, "2026-01-19T10:00:00Z", client_id=None)

        completed = _status(world, session.id, SessionStatus.completed)

        assert completed.charged_package_id is None
        assert world.package("pkg-1").sessions_remaining == 10

    def test_unknown_session(self, world):
        with pytest.raises(NotFound):
            _status(world, "missing", SessionStatus.completed)


class TestSeriesOperations:
    """Tests for update_series and cancel_series."""

    def _series(self, world, make_booking):
        result = _create(world, make_booking(
            "2026-01-19T10:00:00Z",
            recurrence_pattern="weekly",
            recurrence_end_date=date(2026, 2, 2),
        ))
        return result.sessions

    def test_update_series_from_member(self, world, make_booking):
        parent, second, third = self._series(world, make_booking)

        result = asyncio.run(world.engine.update_series(
            second.id, TENANT, SessionUpdate(notes="new program")
        ))

        assert {s.id for s in result.updated} == {second.id, third.id}
        assert world.session(parent.id).notes is None
        assert world.session(third.id).notes == "new program"

    def test_update_series_skips_conflicting_members(self, world, make_booking):
        parent, second, third = self._series(world, make_booking)
        blocker = _book(
            world, make_booking, "2026-02-02T10:00:00Z",
            room_id="room-2", coach_id="coach-2", client_id="client-2",
        )

        result = asyncio.run(world.engine.update_series(
            parent.id, TENANT, SessionUpdate(room_id="room-2")
        ))

        assert {s.id for s in result.updated} == {parent.id, second.id}
        assert result.skipped[third.id][0].session_id == blocker.id
        assert world.session(third.id).room_id == "room-1"

    def test_update_series_rejects_time_changes(self, world, make_booking):
        parent, _, _ = self._series(world, make_booking)

        with pytest.raises(SeriesError):
            asyncio.run(world.engine.update_series(
                parent.id, TENANT, SessionUpdate(start_time=at("2026-01-19T11:00:00Z"))
            ))

    def test_series_operations_need_a_series(self, world, make_booking):
        single = _book(world, make_booking, "2026-01-19T10:00:00Z")

        with pytest.raises(SeriesError):
            asyncio.run(world.engine.cancel_series(single.id, TENANT))

    def test_cancel_series_from_member(self, world, make_booking):
        parent, second, third = self._series(world, make_booking)

        cancelled = asyncio.run(world.engine.cancel_series(second.id, TENANT, reason="moving"))

        assert {s.id for s in cancelled} == {second.id, third.id}
        assert world.session(parent.id).status == SessionStatus.scheduled
        assert world.session(third.id).cancelled_reason == "moving"
        assert world.package("pkg-1").sessions_remaining == 10


class TestAutoAssign:
    """Tests for auto_assign_resources."""

    def _assign(self, world, start="2026-01-19T10:00:00Z", coach=None):
        begin = at(start)
        return asyncio.run(world.engine.auto_assign_resources(
            TENANT, "studio-1", begin, begin.add(minutes=20), preferred_coach_id=coach
        ))

    def test_first_free_room_and_coach(self, world):
        assignment = self._assign(world)

        assert (assignment.room_id, assignment.coach_id) == ("room-1", "coach-1")

    def test_skips_occupied_resources(self, world, make_booking):
        _book(world, make_booking, "2026-01-19T10:00:00Z")

        assignment = self._assign(world)

        assert (assignment.room_id, assignment.coach_id) == ("room-2", "coach-2")

    def test_no_rooms(self, world, make_booking):
        _book(world, make_booking, "2026-01-19T10:00:00Z")
        _book(world, make_booking, "2026-01-19T10:00:00Z",
              room_id="room-2", coach_id="coach-2", client_id="client-2")

        with pytest.raises(NoRoomsAvailable):
            self._assign(world)

    def test_no_coaches(self, world, make_booking):
        _book(world, make_booking, "2026-01-19T10:00:00Z")
        world.store.time_off.append(_leave("coach-2", "2026-01-19T00:00:00Z", "2026-01-20T00:00:00Z"))

        with pytest.raises(NoCoachesAvailable):
            self._assign(world)

    def test_preferred_coach(self, world, make_booking):
        assert self._assign(world, coach="coach-2").coach_id == "coach-2"

        with pytest.raises(CoachNotFound):
            self._assign(world, coach="coach-off")
        with pytest.raises(CoachNotFound):
            self._assign(world, coach="coach-404")

        _book(world, make_booking, "2026-01-19T10:00:00Z")
        with pytest.raises(CoachAlreadyBooked):
            self._assign(world, coach="coach-1")

    def test_preferred_coach_on_leave(self, world):
        world.store.time_off.append(_leave("coach-2", "2026-01-19T00:00:00Z", "2026-01-20T00:00:00Z"))

        with pytest.raises(CoachOnLeave):
            self._assign(world, coach="coach-2")


class TestAvailableSlots:
    """Tests for get_available_slots."""

    def _slots(self, world, day, coach=None):
        return asyncio.run(world.engine.get_available_slots(TENANT, "studio-1", day, coach))

    def test_full_day_grid(self, world):
        slots = self._slots(world, date(2026, 1, 19))

        assert len(slots) == 42
        assert slots[0].time == "07:00"
        assert slots[-1].time == "20:40"
        assert all(s.status == SlotStatus.available for s in slots)

    def test_closed_day_has_no_slots(self, world):
        assert self._slots(world, date(2026, 1, 25)) == []

    def test_booked_slot_with_spare_resources_stays_available(self, world, make_booking):
        _book(world, make_booking, "2026-01-19T10:00:00Z")

        slots = {s.time: s.status for s in self._slots(world, date(2026, 1, 19))}

        assert slots["10:00"] == SlotStatus.available

    def test_coach_filter(self, world, make_booking):
        _book(world, make_booking, "2026-01-19T10:00:00Z")

        coach_1 = {s.time: s.status for s in self._slots(world, date(2026, 1, 19), "coach-1")}
        coach_2 = {s.time: s.status for s in self._slots(world, date(2026, 1, 19), "coach-2")}

        assert coach_1["10:00"] == SlotStatus.full
        assert coach_1["10:20"] == SlotStatus.available
        assert coach_2["08:40"] == SlotStatus.full
        assert coach_2["09:00"] == SlotStatus.available
        assert coach_2["12:00"] == SlotStatus.full

    def test_today_starts_at_now(self, world):
        slots = self._slots(world, NOW.date())

        assert slots[0].time == "08:00"
        assert len(slots) == 39

    def test_default_window_without_opening_hours(self, make_world):
        world = make_world(opening_hours={})

        slots = self._slots(world, date(2026, 1, 25))

        assert slots[0].time == "07:00"
        assert len(slots) == 42

    def test_unknown_studio(self, world):
        with pytest.raises(NotFound):
            asyncio.run(world.engine.get_available_slots(TENANT, "studio-x", date(2026, 1, 19)))
