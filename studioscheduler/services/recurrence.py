"""
Recurrence expansion: cadence candidates filtered through conflict detection.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import List, Optional, Sequence

import pendulum
from pendulum import DateTime

from ..domain.models import (
    ClientPackage,
    Conflict,
    ConflictType,
    RecurrencePattern,
    TimeRange,
)
from ..domain.recurrence import DEFAULT_MONTHLY_LIMIT, RecurrenceSlot, generate_occurrences
from .conflict_detector import ConflictDetector, ResourceClaim
from .schemas import OccurrenceConflict

logger = logging.getLogger(__name__)

SIBLING_MESSAGE = "Overlaps another occurrence of the same series"


@dataclass
class RecurrenceExpansion:
    """Accepted occurrence windows (UTC) and the candidates dropped for conflicts."""
    accepted: List[TimeRange] = field(default_factory=list)
    rejected: List[OccurrenceConflict] = field(default_factory=list)


def recurrence_ceiling(
    end_date: date,
    timezone: str,
    package: Optional[ClientPackage] = None,
) -> DateTime:
    """
    Latest instant an occurrence may start at.

    The end date counts as a whole day in the studio timezone; an active
    package expiring earlier pulls the ceiling in.
    """
    ceiling = pendulum.datetime(
        end_date.year, end_date.month, end_date.day, tz=timezone
    ).end_of("day")
    if package is not None and package.expiry_date < ceiling:
        ceiling = package.expiry_date.in_timezone(timezone)
    return ceiling


def credit_cap(package: Optional[ClientPackage]) -> Optional[int]:
    """Siblings the package can pay for, one unit being reserved for the parent."""
    if package is None:
        return None
    return max(package.sessions_remaining - 1, 0)


class RecurrenceExpander:
    """
    Turns a parent window plus a cadence into bookable occurrence windows.

    Every candidate is checked through the ``ConflictDetector``; rejected
    candidates are logged and reported, never raised.
    """

    def __init__(
        self,
        conflict_detector: ConflictDetector,
        monthly_limit: int = DEFAULT_MONTHLY_LIMIT,
    ) -> None:
        self._conflict_detector = conflict_detector
        self._monthly_limit = monthly_limit

    async def expand(
        self,
        *,
        claim: ResourceClaim,
        tenant_id: str,
        pattern: RecurrencePattern,
        end_date: date,
        timezone: str,
        recurrence_days: Optional[Sequence[int]] = None,
        slots: Optional[List[RecurrenceSlot]] = None,
        package: Optional[ClientPackage] = None,
        series_id: Optional[str] = None,
    ) -> RecurrenceExpansion:
        """
        Generate, check and accept occurrences after the parent in ``claim``.

        Args:
            claim: Resources and window of the parent session
            tenant_id: Tenant scope for conflict queries
            pattern: Cadence of the series
            end_date: Last day an occurrence may fall on
            timezone: Studio timezone holding the wall-clock time
            recurrence_days: Weekdays for weekly/biweekly cadences
            slots: Weekday/start-time pairs for the variable cadence
            package: The client's active package, bounding date and count
            series_id: Parent session id, used to label sibling overlaps

        Returns:
            Accepted windows in chronological order, plus rejections
        """
        parent = claim.window
        local_parent = TimeRange(
            start=parent.start.in_timezone(timezone),
            end=parent.end.in_timezone(timezone),
        )
        ceiling = recurrence_ceiling(end_date, timezone, package)
        cap = credit_cap(package)

        candidates = generate_occurrences(
            local_parent,
            pattern,
            ceiling,
            recurrence_days=recurrence_days,
            slots=slots,
            monthly_limit=self._monthly_limit,
        )

        expansion = RecurrenceExpansion()
        taken: List[TimeRange] = [parent]

        for local_window in candidates:
            if cap is not None and len(expansion.accepted) >= cap:
                logger.info(
                    "Recurrence for tenant %s stopped at %d occurrences: package credit exhausted",
                    tenant_id,
                    cap,
                )
                break

            window = TimeRange(
                start=local_window.start.in_timezone("UTC"),
                end=local_window.end.in_timezone("UTC"),
            )

            conflicts: List[Conflict] = []
            if any(window.overlaps(other) for other in taken):
                conflicts.append(Conflict(
                    type=ConflictType.room,
                    session_id=series_id or "",
                    message=SIBLING_MESSAGE,
                ))
            else:
                result = await self._conflict_detector.check_conflicts(
                    claim.moved_to(window), tenant_id
                )
                conflicts = result.conflicts

            if conflicts:
                logger.info(
                    "Skipping occurrence %s for tenant %s: %s",
                    window,
                    tenant_id,
                    ", ".join(conflict.type.value for conflict in conflicts),
                )
                expansion.rejected.append(OccurrenceConflict(window=window, conflicts=conflicts))
                continue

            expansion.accepted.append(window)
            taken.append(window)

        return expansion
