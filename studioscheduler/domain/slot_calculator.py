"""
Core business logic for calculating bookable time slots of a studio day.

Pure domain logic without any external dependencies (no store, no I/O): the
caller loads the day's sessions, rooms, coaches and time-off and passes them in.
"""

from typing import Iterable, List, Optional

from pendulum import DateTime

from .availability import is_coach_available
from .models import (
    AvailableSlot,
    Coach,
    CoachTimeOff,
    Room,
    Session,
    SessionStatus,
    SlotStatus,
    TimeRange,
    TimeOffStatus,
)


class SlotCalculator:
    """
    Splits an opening window into fixed-width slots and rates each one.

    Algorithm:
    1. Cut the opening window into back-to-back slots of ``slot_minutes``
    2. Drop slots that already began (only when ``not_before`` is given)
    3. For each slot, subtract rooms and coaches held by overlapping sessions
    4. Drop coaches on approved leave or outside their own availability rules
    5. The slot is available when at least one room and one coach remain
    """

    def __init__(self, slot_minutes: int = 20):
        if slot_minutes <= 0:
            raise ValueError(f"slot_minutes must be positive, got {slot_minutes}")
        self.slot_minutes = slot_minutes

    def build_grid(self, opening: TimeRange) -> List[TimeRange]:
        """Return the back-to-back slots that fit entirely inside ``opening``."""
        slots: List[TimeRange] = []
        current = opening.start

        while True:
            slot_end = current.add(minutes=self.slot_minutes)
            if slot_end > opening.end:
                break
            slots.append(TimeRange(start=current, end=slot_end))
            current = slot_end

        return slots

    def rate_slots(
        self,
        *,
        opening: TimeRange,
        rooms: List[Room],
        coaches: List[Coach],
        sessions: Iterable[Session],
        time_off: Iterable[CoachTimeOff] = (),
        timezone: str = "UTC",
        not_before: Optional[DateTime] = None,
    ) -> List[AvailableSlot]:
        """
        Rate every slot of the opening window as available or full.

        Args:
            opening: The studio's opening window for the day (studio-local)
            rooms: Active rooms of the studio
            coaches: Candidate coaches (already filtered to one when requested)
            sessions: Sessions overlapping the day; cancelled ones are ignored
            time_off: Coach time-off overlapping the day
            timezone: Studio timezone used for coach rules and labels
            not_before: Slots starting before this instant are skipped

        Returns:
            Slots in chronological order
        """
        busy = [
            session for session in sessions
            if session.status != SessionStatus.cancelled
        ]
        leave = [
            entry for entry in time_off
            if entry.status == TimeOffStatus.approved
        ]

        result: List[AvailableSlot] = []

        for slot in self.build_grid(opening):
            if not_before is not None and slot.start < not_before:
                continue

            overlapping = [s for s in busy if s.window.overlaps(slot)]
            taken_rooms = {s.room_id for s in overlapping}
            taken_coaches = {s.coach_id for s in overlapping}
            coaches_on_leave = {
                entry.coach_id for entry in leave
                if entry.start < slot.end and entry.end > slot.start
            }

            room_free = any(room.id not in taken_rooms for room in rooms)
            coach_free = any(
                coach.id not in taken_coaches
                and coach.id not in coaches_on_leave
                and is_coach_available(coach, slot.start, slot.end, timezone)
                for coach in coaches
            )

            status = SlotStatus.available if room_free and coach_free else SlotStatus.full
            label = slot.start.in_timezone(timezone).format("HH:mm")
            result.append(AvailableSlot(time=label, status=status))

        return result
