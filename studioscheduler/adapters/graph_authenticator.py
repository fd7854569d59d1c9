"""
Microsoft Graph API authentication using MSAL (client credentials flow).
"""

from __future__ import annotations

import logging
from typing import Optional

import msal

from ..config import MailConfig
from ..domain.exceptions import AuthenticationError

logger = logging.getLogger(__name__)


class GraphAuthenticator:
    """
    Acquires application tokens for sending mail through Microsoft Graph.

    Booking confirmations go out without a signed-in user, so the app
    authenticates with its own secret. MSAL keeps the token in its in-memory
    cache and refreshes it when it expires.
    """

    SCOPES = ["https://graph.microsoft.com/.default"]

    def __init__(
        self,
        client_id: str,
        tenant_id: str,
        client_secret: str,
        authority_url: Optional[str] = None,
        app: Optional[msal.ConfidentialClientApplication] = None,
    ):
        """
        Initialize the authenticator.

        Args:
            client_id: Azure AD application (client) ID
            tenant_id: Azure AD tenant ID
            client_secret: Application secret
            authority_url: Optional custom authority URL
            app: Optional pre-built MSAL application
        """
        self.client_id = client_id
        self.tenant_id = tenant_id
        self.authority = authority_url or f"https://login.microsoftonline.com/{tenant_id}"

        self.app = app or msal.ConfidentialClientApplication(
            client_id=self.client_id,
            client_credential=client_secret,
            authority=self.authority,
        )

    @classmethod
    def from_config(cls, config: MailConfig) -> "GraphAuthenticator":
        return cls(
            client_id=config.client_id,
            tenant_id=config.tenant_id,
            client_secret=config.client_secret.get_secret_value(),
            authority_url=config.get_authority_url(),
        )

    def get_access_token(self) -> str:
        """
        Get a valid access token.

        Raises:
            AuthenticationError: If the token request fails
        """
        try:
            result = self.app.acquire_token_for_client(scopes=self.SCOPES)
        except ValueError as exc:
            raise AuthenticationError(f"Failed to request token: {exc}") from exc

        if not result or "access_token" not in result:
            error = (result or {}).get("error_description", "Unknown error")
            logger.warning("Graph token request for client %s failed: %s", self.client_id, error)
            raise AuthenticationError(f"Authentication failed: {error}")

        return result["access_token"]
