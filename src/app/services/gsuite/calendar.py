"""Google Calendar meeting provisioner.

Creates a short calendar event with a Google Meet conference attached on
the owner's primary calendar and returns the Meet join URL. The Calendar
client is synchronous, so every call runs in a worker thread via
asyncio.to_thread() to keep the event loop free.
"""

from __future__ import annotations

import asyncio
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any

import structlog
from googleapiclient.discovery import build

from src.app.core.security import decrypt_secret
from src.app.meetings.errors import ProvisioningFailed
from src.app.services.gsuite.auth import GoogleOAuthManager

logger = structlog.get_logger(__name__)

EVENT_SUMMARY = "Ad-hoc Meeting"
EVENT_DURATION = timedelta(hours=1)


class GoogleCalendarService:
    """Calendar API v3 helpers shared by the provisioner."""

    @staticmethod
    def build_event_body(start: datetime, request_id: str | None = None) -> dict:
        """Event resource requesting a new Google Meet conference.

        Args:
            start: Event start (timezone-aware).
            request_id: Idempotency key for the conference create request.

        Returns:
            Request body for ``events().insert``.
        """
        end = start + EVENT_DURATION
        return {
            "summary": EVENT_SUMMARY,
            "start": {"dateTime": start.isoformat()},
            "end": {"dateTime": end.isoformat()},
            "conferenceData": {
                "createRequest": {
                    "requestId": request_id or uuid.uuid4().hex,
                    "conferenceSolutionKey": {"type": "hangoutsMeet"},
                },
            },
        }

    @staticmethod
    def get_meet_url(event: dict) -> str | None:
        """Extract the Google Meet URL from an event.

        Prefers the ``video`` entry point of the conference data and falls
        back to the legacy ``hangoutLink`` field.

        Args:
            event: Google Calendar event dict.

        Returns:
            Google Meet URL string, or None if not found.
        """
        conference = event.get("conferenceData", {})
        entry_points = conference.get("entryPoints", [])
        for ep in entry_points:
            if ep.get("entryPointType") == "video" and ep.get("uri"):
                return ep["uri"]
        return event.get("hangoutLink") or None


class GoogleMeetProvisioner:
    """Provisions Google Meet rooms from an owner's stored refresh token.

    Args:
        oauth_manager: Builds Google credentials from a refresh token.
    """

    def __init__(self, oauth_manager: GoogleOAuthManager) -> None:
        self._oauth = oauth_manager

    def _insert_event(self, refresh_token: str, body: dict) -> dict[str, Any]:
        credentials = self._oauth.build_credentials(refresh_token)
        service = build("calendar", "v3", credentials=credentials, cache_discovery=False)
        return (
            service.events()
            .insert(calendarId="primary", conferenceDataVersion=1, body=body)
            .execute()
        )

    async def provision(self, refresh_token_enc: str) -> str:
        """Create a meeting and return its join URL.

        Args:
            refresh_token_enc: Encrypted refresh token as stored on the owner.

        Returns:
            Google Meet join URL.

        Raises:
            ProvisioningFailed: On decryption, auth, API or response-shape
                failures.
        """
        try:
            refresh_token = decrypt_secret(refresh_token_enc)
        except ValueError as e:
            raise ProvisioningFailed("stored credential cannot be decrypted") from e

        body = GoogleCalendarService.build_event_body(datetime.now(timezone.utc))
        try:
            event = await asyncio.to_thread(self._insert_event, refresh_token, body)
        except Exception as e:
            logger.warning("calendar_event_insert_failed", error=str(e))
            raise ProvisioningFailed(f"calendar API error: {e}") from e

        join_url = GoogleCalendarService.get_meet_url(event)
        if not join_url:
            logger.warning("calendar_event_missing_meet_url", event_id=event.get("id"))
            raise ProvisioningFailed("calendar event has no Meet URL")

        logger.info("calendar_meeting_created", event_id=event.get("id"))
        return join_url
