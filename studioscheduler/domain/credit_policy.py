"""
Credit movement rules for session status transitions.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pendulum import DateTime

from .models import SessionStatus

CONSUMING_STATUSES = frozenset({SessionStatus.completed, SessionStatus.no_show})


class CreditAction(str, Enum):
    none = "none"
    deduct = "deduct"
    refund = "refund"


def hours_until(start: DateTime, now: DateTime) -> float:
    return (start - now).total_seconds() / 3600


def is_late_cancellation(start: DateTime, now: DateTime, window_hours: int) -> bool:
    """A cancellation is late when fewer than ``window_hours`` remain before start."""
    return hours_until(start, now) < window_hours


def resolve_credit_action(
    new_status: SessionStatus,
    *,
    charged: bool,
    deduct_override: Optional[bool] = None,
    late_cancellation: bool = False,
) -> CreditAction:
    """
    Decide what a transition into ``new_status`` does to the client's credit.

    ``charged`` tells whether the session currently holds a credit. An
    explicit ``deduct_override`` decides a cancellation outright; otherwise
    the cancellation window decides.
    """
    if new_status in CONSUMING_STATUSES:
        return CreditAction.none if charged else CreditAction.deduct

    if new_status == SessionStatus.cancelled:
        should_charge = late_cancellation if deduct_override is None else deduct_override
        if should_charge and not charged:
            return CreditAction.deduct
        if not should_charge and charged:
            return CreditAction.refund
        return CreditAction.none

    # scheduled / in_progress hold no credit
    return CreditAction.refund if charged else CreditAction.none
