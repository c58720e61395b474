"""Google OAuth 2.0 web flow for owner sign-in.

Each owner grants offline Calendar access once; the refresh token obtained
here is stored encrypted and later used by GoogleMeetProvisioner to create
meetings on the owner's behalf.

Token and profile calls go through httpx with a tenacity retry on transport
errors. HTTP error statuses are not retried: an invalid or reused
authorization code will not become valid on a second attempt.
"""

from __future__ import annotations

from typing import Any
from urllib.parse import urlencode

import httpx
import structlog
from google.oauth2.credentials import Credentials
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

logger = structlog.get_logger(__name__)

AUTHORIZATION_URL = "https://accounts.google.com/o/oauth2/v2/auth"
TOKEN_URL = "https://oauth2.googleapis.com/token"
USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"

# Calendar event creation plus the profile fields used for the slug
OAUTH_SCOPES = [
    "https://www.googleapis.com/auth/calendar.events",
    "openid",
    "email",
    "profile",
]


class GoogleOAuthManager:
    """Builds consent URLs and exchanges authorization codes.

    Args:
        client_id: OAuth client ID.
        client_secret: OAuth client secret.
        redirect_uri: Callback URL registered with the OAuth client.
        timeout: Per-request timeout in seconds.
        transport: Optional httpx transport (tests use httpx.MockTransport).
    """

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client_id = client_id
        self._client_secret = client_secret
        self._redirect_uri = redirect_uri
        self._timeout = timeout
        self._transport = transport

    @property
    def client_id(self) -> str:
        return self._client_id

    @property
    def client_secret(self) -> str:
        return self._client_secret

    def authorization_url(self, state: str | None = None) -> str:
        """Google consent screen URL requesting offline access.

        ``prompt=consent`` forces Google to issue a refresh token even when
        the user granted access before.
        """
        params = {
            "client_id": self._client_id,
            "redirect_uri": self._redirect_uri,
            "response_type": "code",
            "scope": " ".join(OAUTH_SCOPES),
            "access_type": "offline",
            "prompt": "consent",
            "include_granted_scopes": "true",
        }
        if state:
            params["state"] = state
        return f"{AUTHORIZATION_URL}?{urlencode(params)}"

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self._timeout, transport=self._transport)

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
        retry=retry_if_exception_type(httpx.TransportError),
        reraise=True,
    )
    async def exchange_code(self, code: str) -> dict[str, Any]:
        """Exchange an authorization code for tokens.

        Args:
            code: The ``code`` query parameter from the callback.

        Returns:
            Token response dict (``access_token``, ``refresh_token`` when
            offline access was granted, ``expires_in``, ...).

        Raises:
            httpx.HTTPStatusError: If Google rejects the code.
        """
        async with self._client() as client:
            response = await client.post(
                TOKEN_URL,
                data={
                    "code": code,
                    "client_id": self._client_id,
                    "client_secret": self._client_secret,
                    "redirect_uri": self._redirect_uri,
                    "grant_type": "authorization_code",
                },
            )
            response.raise_for_status()
            tokens = response.json()

        logger.info(
            "oauth_code_exchanged",
            has_access_token=bool(tokens.get("access_token")),
            has_refresh_token=bool(tokens.get("refresh_token")),
        )
        return tokens

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
        retry=retry_if_exception_type(httpx.TransportError),
        reraise=True,
    )
    async def fetch_profile(self, access_token: str) -> dict[str, Any]:
        """Fetch the signed-in user's profile.

        Returns:
            Dict with ``id``, ``email``, ``given_name``, ``family_name``, ...
        """
        async with self._client() as client:
            response = await client.get(
                USERINFO_URL,
                headers={"Authorization": f"Bearer {access_token}"},
            )
            response.raise_for_status()
            return response.json()

    def build_credentials(self, refresh_token: str) -> Credentials:
        """Google credentials that mint access tokens from ``refresh_token``."""
        return Credentials(
            token=None,
            refresh_token=refresh_token,
            token_uri=TOKEN_URL,
            client_id=self._client_id,
            client_secret=self._client_secret,
            scopes=OAUTH_SCOPES,
        )
