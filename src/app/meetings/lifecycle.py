"""Meeting lifecycle -- decides what happens when someone opens a personal link.

The manager owns the rules tying owners, meetings and the provisioner
together:

- a meeting is active while ``expires_at`` lies strictly in the future;
- an owner visiting their own link provisions a new meeting when none is
  active (the caller then wakes the slug's waiters);
- anyone else lands in the waiting room until a meeting exists.

The manager never talks to the NotificationBus itself. It reports
``Redirect(provisioned=True)`` and lets the routing layer broadcast, so
provisioning stays testable without open connections.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Protocol

import structlog

from src.app.core.monitoring import meetings_provisioned_total
from src.app.meetings.errors import (
    InvalidSlug,
    NotFound,
    OwnershipRequired,
    ProvisioningFailed,
)
from src.app.meetings.repository import MeetingRepository, OwnerRepository
from src.app.meetings.schemas import CheckResult, EnterWaitingRoom, Meeting, Redirect
from src.app.meetings.slugs import is_valid_slug

logger = structlog.get_logger(__name__)

DEFAULT_MEETING_WINDOW = timedelta(minutes=5)


class MeetingProvisioner(Protocol):
    """Creates a join URL on behalf of an owner's stored credential."""

    async def provision(self, refresh_token_enc: str) -> str:
        """Return a fresh join URL. Raises ProvisioningFailed on any failure."""
        ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LifecycleManager:
    """Room lifecycle rules over the owner/meeting repositories.

    Args:
        owners: Owner lookups.
        meetings: Meeting persistence.
        provisioner: Creates meeting URLs through the external calendar API.
        meeting_window: How long a provisioned meeting stays active.
        clock: Returns the current time; injectable for tests.
    """

    def __init__(
        self,
        owners: OwnerRepository,
        meetings: MeetingRepository,
        provisioner: MeetingProvisioner,
        meeting_window: timedelta = DEFAULT_MEETING_WINDOW,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._owners = owners
        self._meetings = meetings
        self._provisioner = provisioner
        self._window = meeting_window
        self._clock = clock

    @property
    def meeting_window(self) -> timedelta:
        return self._window

    async def get_active_meeting(self, owner_id: int) -> Meeting | None:
        """Return the most recent meeting of ``owner_id`` that has not expired."""
        return await self._meetings.find_active_meeting(owner_id, self._clock())

    async def ensure_meeting(self, owner_id: int, is_owner: bool) -> str:
        """Provision and persist a new meeting for ``owner_id``.

        Does not check for an existing active meeting; callers do that
        first. Two concurrent owner visits may both provision, in which
        case the most recently created row wins.

        Args:
            owner_id: Owner the meeting belongs to.
            is_owner: Whether the requester is that owner.

        Returns:
            Join URL of the newly persisted meeting.

        Raises:
            OwnershipRequired: If ``is_owner`` is False.
            ProvisioningFailed: If the owner or their credential is missing,
                or the provisioner fails.
        """
        if not is_owner:
            raise OwnershipRequired("Only the owner can start a meeting")

        owner = await self._owners.get_by_id(owner_id)
        if owner is None:
            raise ProvisioningFailed(f"owner {owner_id} not found")
        if not owner.refresh_token_enc:
            raise ProvisioningFailed(f"owner {owner_id} has no stored credential")

        try:
            join_url = await self._provisioner.provision(owner.refresh_token_enc)
        except ProvisioningFailed as e:
            meetings_provisioned_total.labels(outcome="failed").inc()
            logger.warning(
                "meeting_provisioning_failed",
                owner_id=owner_id,
                slug=owner.slug,
                reason=e.reason,
            )
            raise
        except Exception as e:
            meetings_provisioned_total.labels(outcome="failed").inc()
            logger.exception("meeting_provisioner_error", owner_id=owner_id, slug=owner.slug)
            raise ProvisioningFailed(str(e)) from e

        now = self._clock()
        meeting = await self._meetings.insert_meeting(
            owner_id=owner_id,
            join_url=join_url,
            expires_at=now + self._window,
            created_at=now,
        )
        meetings_provisioned_total.labels(outcome="created").inc()
        logger.info(
            "meeting_provisioned",
            owner_id=owner_id,
            slug=owner.slug,
            meeting_id=meeting.id,
            expires_at=meeting.expires_at.isoformat(),
        )
        return meeting.join_url

    async def check_or_wait(self, slug: str, requester_id: int | None = None) -> CheckResult:
        """Resolve a visit to ``slug`` into a redirect or a waiting-room entry.

        Args:
            slug: Path segment of the personal link.
            requester_id: Owner id of the signed-in requester, None when
                anonymous. The requester owns ``slug`` only if this equals
                the id of the owner the slug resolves to.

        Returns:
            Redirect to the active (or freshly provisioned) meeting, or
            EnterWaitingRoom for a visitor when no meeting is active.

        Raises:
            InvalidSlug: Malformed slug.
            NotFound: No owner under ``slug``.
            ProvisioningFailed: Owner visit and the provisioner failed.
        """
        if not is_valid_slug(slug):
            raise InvalidSlug(slug)

        owner = await self._owners.get_by_slug(slug)
        if owner is None:
            raise NotFound(slug)

        active = await self.get_active_meeting(owner.id)
        if active is not None:
            logger.debug("visit_redirect_active", slug=slug, meeting_id=active.id)
            return Redirect(url=active.join_url)

        if requester_id is not None and requester_id == owner.id:
            join_url = await self.ensure_meeting(owner.id, is_owner=True)
            return Redirect(url=join_url, provisioned=True)

        logger.debug("visit_enter_waiting_room", slug=slug, owner_id=owner.id)
        return EnterWaitingRoom(slug=slug, owner_id=owner.id)
