"""
Candidate generation for recurring bookings.

Pure date arithmetic: generators yield occurrence windows in chronological
order and know nothing about conflicts or credit. ``parent`` must already be
expressed in the studio's timezone so hour/minute are kept as wall-clock time
across DST changes.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import time
from typing import Iterator, List, Optional, Sequence

from pendulum import DateTime

from .models import RecurrencePattern, TimeRange, Weekday

DEFAULT_MONTHLY_LIMIT = 12

ALL_DAYS = list(Weekday)


@dataclass(frozen=True)
class RecurrenceSlot:
    """A weekday/start-time pair for the variable cadence."""
    day: Weekday
    start_time: time


def week_start_of(dt: DateTime) -> DateTime:
    """Midnight of the Sunday on or before ``dt``."""
    return dt.subtract(days=int(Weekday.of(dt))).start_of("day")


def _at(day_start: DateTime, offset_days: int, clock: time) -> DateTime:
    return day_start.add(days=offset_days).set(
        hour=clock.hour,
        minute=clock.minute,
        second=clock.second,
        microsecond=0,
    )


def generate_weekly(
    parent: TimeRange,
    ceiling: DateTime,
    days: Sequence[int],
    step_weeks: int = 1,
) -> Iterator[TimeRange]:
    """
    Yield occurrences on ``days`` every ``step_weeks`` weeks.

    Iteration starts at the parent's own week; candidates at or before the
    parent start are dropped, which removes the parent itself. The parent's
    week is therefore not skipped as a whole: later ``days`` in that week
    are yielded, so a Monday parent with Monday and Thursday repeats that
    Thursday, and a daily series fills out the rest of the parent's week.
    A single-weekday series still begins the following week.
    """
    weekdays = sorted({Weekday.parse(day) for day in days})
    clock = parent.start.time()
    week_start = week_start_of(parent.start)

    while week_start <= ceiling:
        for day in weekdays:
            start = _at(week_start, int(day), clock)
            if start <= parent.start:
                continue
            if start > ceiling:
                return
            yield parent.shifted_to(start)
        week_start = week_start.add(weeks=step_weeks)


def generate_monthly(
    parent: TimeRange,
    ceiling: DateTime,
    limit: int = DEFAULT_MONTHLY_LIMIT,
) -> Iterator[TimeRange]:
    """Yield the parent advanced by 1..limit months, stopping past the ceiling."""
    for months in range(1, limit + 1):
        start = parent.start.add(months=months)
        if start > ceiling:
            return
        yield parent.shifted_to(start)


def generate_variable(
    parent: TimeRange,
    ceiling: DateTime,
    slots: Sequence[RecurrenceSlot],
) -> Iterator[TimeRange]:
    """Yield one occurrence per slot per week, strictly after the parent start."""
    ordered = sorted(slots, key=lambda slot: (int(slot.day), slot.start_time))
    week_start = week_start_of(parent.start)

    while week_start <= ceiling:
        for slot in ordered:
            start = _at(week_start, int(slot.day), slot.start_time)
            if start <= parent.start:
                continue
            if start > ceiling:
                return
            yield parent.shifted_to(start)
        week_start = week_start.add(weeks=1)


def generate_occurrences(
    parent: TimeRange,
    pattern: RecurrencePattern,
    ceiling: DateTime,
    *,
    recurrence_days: Optional[Sequence[int]] = None,
    slots: Optional[List[RecurrenceSlot]] = None,
    monthly_limit: int = DEFAULT_MONTHLY_LIMIT,
) -> Iterator[TimeRange]:
    """
    Dispatch to the cadence generator for ``pattern``.

    ``daily`` is generated as weekly with all seven days selected.

    Raises:
        ValueError: If a variable pattern has no slots
    """
    if pattern == RecurrencePattern.monthly:
        return generate_monthly(parent, ceiling, limit=monthly_limit)

    if pattern == RecurrencePattern.variable:
        if not slots:
            raise ValueError("Variable recurrence requires at least one slot")
        return generate_variable(parent, ceiling, slots)

    if pattern == RecurrencePattern.daily:
        days: Sequence[int] = ALL_DAYS
    else:
        days = recurrence_days or [Weekday.of(parent.start)]

    step = 2 if pattern == RecurrencePattern.biweekly else 1
    return generate_weekly(parent, ceiling, days, step_weeks=step)
