"""
Microsoft Graph mail sender for booking confirmations.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict

import requests

from ..domain.exceptions import NotificationError
from .graph_authenticator import GraphAuthenticator

logger = logging.getLogger(__name__)


class GraphMailer:
    """
    Sends mail via the Graph ``/users/{sender}/sendMail`` endpoint.

    ``requests`` is blocking, so each call runs in a worker thread.
    """

    GRAPH_API_ENDPOINT = "https://graph.microsoft.com/v1.0"

    def __init__(self, authenticator: GraphAuthenticator, sender: str, timeout: int = 30):
        self.authenticator = authenticator
        self.sender = sender
        self.timeout = timeout

    def build_payload(self, to: str, subject: str, text: str, html: str) -> Dict[str, Any]:
        # Graph takes one body; plain text is only used when there is no html
        if html:
            body = {"contentType": "HTML", "content": html}
        else:
            body = {"contentType": "Text", "content": text}
        return {
            "message": {
                "subject": subject,
                "body": body,
                "toRecipients": [{"emailAddress": {"address": to}}],
            },
            "saveToSentItems": False,
        }

    def _post(self, payload: Dict[str, Any]) -> None:
        token = self.authenticator.get_access_token()
        url = f"{self.GRAPH_API_ENDPOINT}/users/{self.sender}/sendMail"
        headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        }

        try:
            response = requests.post(url, headers=headers, json=payload, timeout=self.timeout)
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            raise NotificationError(f"Failed to send mail via Microsoft Graph: {e}") from e

    async def send_mail(self, to: str, subject: str, text: str, html: str) -> None:
        """
        Send one message.

        Raises:
            NotificationError: If authentication or delivery fails
        """
        payload = self.build_payload(to, subject, text, html)
        await asyncio.to_thread(self._post, payload)
        logger.debug("Mail '%s' sent to %s", subject, to)
