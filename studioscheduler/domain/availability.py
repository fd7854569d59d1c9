"""
Pure availability checks for a candidate session window.

No I/O here: callers load the studio, coach and client and pass them in.
All checks compare local wall-clock minutes of the start and the end on the
start's weekday, so sessions spanning midnight are not supported.
"""

from __future__ import annotations

from datetime import time
from typing import Dict, Optional

from pendulum import DateTime

from .exceptions import (
    AvailabilityError,
    ClosedDay,
    CoachUnavailable,
    GenderMismatch,
    OutsideCoachHours,
    OutsideHours,
)
from .models import (
    ANY_GENDER,
    PREFER_NOT_TO_SAY,
    AvailabilityRule,
    Client,
    Coach,
    DayHours,
    Weekday,
    minutes_of_day,
)


def _within(start: DateTime, end: DateTime, opens: time, closes: time) -> bool:
    open_minutes = minutes_of_day(opens)
    close_minutes = minutes_of_day(closes)
    start_minutes = minutes_of_day(start)
    end_minutes = minutes_of_day(end)
    return (
        open_minutes <= start_minutes <= close_minutes
        and open_minutes <= end_minutes <= close_minutes
    )


def check_studio_hours(
    opening_hours: Dict[Weekday, Optional[DayHours]],
    start: DateTime,
    end: DateTime,
    timezone: str,
) -> None:
    """
    Validate a window against studio opening hours.

    An empty map means no hours are configured and every time is allowed.

    Raises:
        ClosedDay: If the weekday is missing from the map or mapped to None
        OutsideHours: If start or end falls outside the day's window
    """
    if not opening_hours:
        return

    local_start = start.in_timezone(timezone)
    local_end = end.in_timezone(timezone)
    day = Weekday.of(local_start)

    hours = opening_hours.get(day)
    if hours is None:
        raise ClosedDay(f"Studio is closed on {day.key.capitalize()}")

    if not _within(local_start, local_end, hours.open, hours.close):
        raise OutsideHours(
            f"Session must be within studio hours "
            f"{hours.open.strftime('%H:%M')}-{hours.close.strftime('%H:%M')}"
        )


def find_rule(coach: Coach, day: Weekday) -> Optional[AvailabilityRule]:
    for rule in coach.availability_rules:
        if rule.day == day:
            return rule
    return None


def check_coach_availability(
    coach: Coach,
    start: DateTime,
    end: DateTime,
    timezone: str,
) -> None:
    """
    Validate a window against the coach's availability rules.

    A coach without rules is unrestricted.

    Raises:
        CoachUnavailable: If no rule matches the weekday or the rule says unavailable
        OutsideCoachHours: If the matched rule's time range excludes the window
    """
    if not coach.availability_rules:
        return

    local_start = start.in_timezone(timezone)
    local_end = end.in_timezone(timezone)
    day = Weekday.of(local_start)

    rule = find_rule(coach, day)
    if rule is None or not rule.available:
        raise CoachUnavailable(f"Coach is not available on {day.key.capitalize()}")

    if rule.has_time_range and not _within(local_start, local_end, rule.start_time, rule.end_time):
        raise OutsideCoachHours(
            f"Session must be within coach hours "
            f"{rule.start_time.strftime('%H:%M')}-{rule.end_time.strftime('%H:%M')}"
        )


def is_coach_available(coach: Coach, start: DateTime, end: DateTime, timezone: str) -> bool:
    try:
        check_coach_availability(coach, start, end, timezone)
    except AvailabilityError:
        return False
    return True


def check_gender_preference(coach: Coach, client: Client) -> None:
    """
    Validate the coach's preferred client gender against the client.

    A missing client gender is no constraint, while "prefer_not_to_say" cannot
    satisfy a specific preference.

    Raises:
        GenderMismatch: If the preference cannot be honoured
    """
    preference = coach.preferred_client_gender
    if not preference or preference == ANY_GENDER:
        return

    gender = client.gender
    if not gender:
        return

    if gender == PREFER_NOT_TO_SAY or gender != preference:
        raise GenderMismatch(
            f"Coach only accepts {preference} clients"
        )
