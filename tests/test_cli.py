"""
Tests for the command line interface.
"""

import pytest
import yaml
from typer.testing import CliRunner

from studioscheduler.cli.app import app

runner = CliRunner()

WEEKDAY = {"open": "07:00", "close": "21:00"}
DATASET = {
    "tenantId": "demo",
    "studios": [
        {
            "id": "studio-1",
            "name": "Downtown",
            "timezone": "Europe/Berlin",
            "openingHours": {
                "monday": WEEKDAY,
                "tuesday": WEEKDAY,
                "wednesday": WEEKDAY,
                "thursday": WEEKDAY,
                "friday": WEEKDAY,
                "saturday": {"open": "09:00", "close": "17:00"},
                "sunday": None,
            },
        }
    ],
    "rooms": [
        {"id": "room-1", "studioId": "studio-1", "name": "Room A"},
        {"id": "room-2", "studioId": "studio-1", "name": "Room B"},
    ],
    "coaches": [{"id": "coach-1", "studioId": "studio-1", "name": "Anna"}],
    "clients": [{"id": "client-1", "email": "lena@example.com", "firstName": "Lena"}],
    "packages": [
        {
            "id": "package-1",
            "clientId": "client-1",
            "sessionsRemaining": 5,
            "expiryDate": "2099-12-31T23:59:59Z",
        }
    ],
}

# Monday, far enough ahead that cancellations are never late
MONDAY = "2030-02-04"


@pytest.fixture
def files(tmp_path):
    data_path = tmp_path / "studio.yaml"
    data_path.write_text(yaml.safe_dump(DATASET), encoding="utf-8")
    config_path = tmp_path / "config.yaml"
    config_path.write_text(yaml.safe_dump({"log_level": "WARNING"}), encoding="utf-8")
    return data_path, config_path


def _invoke(files, *args):
    data_path, config_path = files
    return runner.invoke(app, [*args, "--data", str(data_path), "--config", str(config_path)])


def _saved(files):
    return yaml.safe_load(files[0].read_text(encoding="utf-8"))


def _book(files, *extra, start=f"{MONDAY}T10:00"):
    return _invoke(
        files,
        "book",
        "--studio", "studio-1",
        "--room", "room-1",
        "--coach", "coach-1",
        "--client", "client-1",
        "--start", start,
        *extra,
    )


class TestBook:
    """Tests for the book command."""

    def test_books_and_saves(self, files):
        result = _book(files)

        assert result.exit_code == 0, result.output
        assert "Booked 1 session(s)" in result.output
        sessions = _saved(files)["sessions"]
        assert len(sessions) == 1
        # 10:00 in Berlin is 09:00 UTC in winter
        assert sessions[0]["startTime"].startswith("2030-02-04T09:00:00")
        assert sessions[0]["endTime"].startswith("2030-02-04T09:20:00")

    def test_conflict_exits_with_error(self, files):
        _book(files)

        result = _book(files, start=f"{MONDAY}T10:10")

        assert result.exit_code == 1
        assert "Scheduling conflict detected" in result.output
        assert len(_saved(files)["sessions"]) == 1

    def test_closed_day(self, files):
        result = _book(files, start="2030-02-10T10:00")

        assert result.exit_code == 1
        assert "closed" in result.output

    def test_recurring_series_is_capped_by_credit(self, files):
        result = _book(files, "--repeat", "weekly", "--until", "2030-02-24", "--days", "mon,thu")

        assert result.exit_code == 0, result.output
        sessions = _saved(files)["sessions"]
        assert len(sessions) == 5
        assert sum(1 for s in sessions if s["isRecurringParent"]) == 1

    def test_invalid_start(self, files):
        result = _book(files, start="next monday")

        assert result.exit_code == 2


class TestQueries:
    """Tests for the read-only commands."""

    def test_conflicts_prints_json(self, files):
        _book(files)

        result = _invoke(
            files,
            "conflicts",
            "--studio", "studio-1",
            "--room", "room-1",
            "--coach", "coach-1",
            "--start", f"{MONDAY}T10:00",
        )

        assert result.exit_code == 0, result.output
        assert '"hasConflicts": true' in result.output
        assert '"type": "room"' in result.output

    def test_preview_json(self, files):
        result = _invoke(
            files,
            "preview",
            "--studio", "studio-1",
            "--room", "room-1",
            "--coach", "coach-1",
            "--client", "client-1",
            "--start", f"{MONDAY}T10:00",
            "--repeat", "weekly",
            "--until", "2030-02-18",
            "--json",
        )

        assert result.exit_code == 0, result.output
        assert result.output.count('"startTime"') == 3
        assert _saved(files).get("sessions") in (None, [])

    def test_slots(self, files):
        result = _invoke(files, "slots", "--studio", "studio-1", "--date", MONDAY)

        assert result.exit_code == 0, result.output
        assert "42 of 42" in result.output

    def test_slots_on_closed_day(self, files):
        result = _invoke(files, "slots", "--studio", "studio-1", "--date", "2030-02-10")

        assert result.exit_code == 0
        assert "no open slots" in result.output

    def test_assign(self, files):
        _book(files)

        result = _invoke(files, "assign", "--studio", "studio-1", "--start", f"{MONDAY}T10:00")

        assert result.exit_code == 1
        assert "No coaches available" in result.output

    def test_assign_free_window(self, files):
        result = _invoke(files, "assign", "--studio", "studio-1", "--start", f"{MONDAY}T11:00")

        assert result.exit_code == 0, result.output
        assert "room-1" in result.output
        assert "coach-1" in result.output

    def test_sessions_empty(self, files):
        result = _invoke(files, "sessions")

        assert result.exit_code == 0
        assert "No sessions found" in result.output


class TestStatus:
    """Tests for the status command."""

    def test_cancel_then_complete(self, files):
        _book(files)
        session_id = _saved(files)["sessions"][0]["id"]

        cancelled = _invoke(files, "status", session_id, "cancelled", "--reason", "sick")
        saved = _saved(files)

        assert cancelled.exit_code == 0, cancelled.output
        assert saved["sessions"][0]["status"] == "cancelled"
        assert saved["sessions"][0]["cancelledReason"] == "sick"
        assert saved["packages"][0]["sessionsRemaining"] == 5

        completed = _invoke(files, "status", session_id, "completed")
        saved = _saved(files)

        assert completed.exit_code == 0, completed.output
        assert saved["sessions"][0]["status"] == "completed"
        assert saved["sessions"][0]["cancelledReason"] is None
        assert saved["sessions"][0]["chargedPackageId"] == "package-1"
        assert saved["packages"][0]["sessionsRemaining"] == 4

    def test_forced_charge_on_cancel(self, files):
        _book(files)
        session_id = _saved(files)["sessions"][0]["id"]

        result = _invoke(files, "status", session_id, "cancelled", "--deduct")

        assert result.exit_code == 0, result.output
        assert _saved(files)["packages"][0]["sessionsRemaining"] == 4

    def test_unknown_session(self, files):
        result = _invoke(files, "status", "missing", "completed")

        assert result.exit_code == 1
        assert "not found" in result.output


def test_missing_data_file(tmp_path):
    result = runner.invoke(app, ["sessions", "--data", str(tmp_path / "nope.yaml")])

    assert result.exit_code == 1
    assert "Data file not found" in result.output


def test_version():
    result = runner.invoke(app, ["version"])

    assert result.exit_code == 0
    assert "0.1.0" in result.output
