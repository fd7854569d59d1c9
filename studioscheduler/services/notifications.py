"""
Booking confirmations as outbound events.

The engine publishes a ``SessionBooked`` event once a booking is persisted;
``BookingNotifier`` renders it and hands it to a ``Mailer`` with a bounded
retry policy. Delivery failures are logged and dropped.
"""

from __future__ import annotations

import asyncio
import html
import logging
from dataclasses import dataclass
from typing import Optional

from pendulum import DateTime

from ..domain.exceptions import NotificationError
from .protocols import Mailer

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionBooked:
    session_id: str
    tenant_id: str
    client_email: str
    client_name: str
    start: DateTime
    end: DateTime
    timezone: str = "UTC"
    occurrences: int = 0


@dataclass(frozen=True)
class RenderedMessage:
    subject: str
    text: str
    html: str


def render_confirmation(event: SessionBooked) -> RenderedMessage:
    start = event.start.in_timezone(event.timezone)
    end = event.end.in_timezone(event.timezone)
    when = f"{start.format('dddd, MMMM D, YYYY')} {start.format('HH:mm')}-{end.format('HH:mm')}"
    name = event.client_name or event.client_email

    lines = [
        f"Hello {name},",
        "",
        f"your session on {when} ({event.timezone}) is confirmed.",
    ]
    if event.occurrences:
        lines.append(f"{event.occurrences} further sessions of this series were booked as well.")

    body = "".join(f"<p>{html.escape(line)}</p>" for line in lines if line)
    return RenderedMessage(
        subject=f"Session confirmed: {start.format('YYYY-MM-DD HH:mm')}",
        text="\n".join(lines),
        html=f"<html><body>{body}</body></html>",
    )


class BookingNotifier:
    """
    Delivers booking confirmations with retries and linear backoff.

    ``publish`` never raises: the booking it reports on is already committed.
    """

    def __init__(
        self,
        mailer: Mailer,
        retries: int = 2,
        backoff_seconds: float = 0.5,
    ) -> None:
        self._mailer = mailer
        self._retries = retries
        self._backoff_seconds = backoff_seconds

    async def publish(self, event: SessionBooked) -> bool:
        """Send the confirmation; return whether it was delivered."""
        message = render_confirmation(event)
        attempts = self._retries + 1
        last_error: Optional[NotificationError] = None

        for attempt in range(1, attempts + 1):
            try:
                await self._mailer.send_mail(
                    event.client_email, message.subject, message.text, message.html
                )
                logger.info(
                    "Confirmation for session %s sent to %s", event.session_id, event.client_email
                )
                return True
            except NotificationError as exc:
                last_error = exc
                logger.warning(
                    "Confirmation for session %s failed (attempt %d/%d): %s",
                    event.session_id,
                    attempt,
                    attempts,
                    exc,
                )
                if attempt < attempts and self._backoff_seconds:
                    await asyncio.sleep(self._backoff_seconds * attempt)

        logger.error(
            "Giving up on confirmation for session %s of tenant %s: %s",
            event.session_id,
            event.tenant_id,
            last_error,
        )
        return False
