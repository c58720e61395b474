"""Error taxonomy for the meeting room lifecycle.

Request-level errors (InvalidSlug, NotFound, ProvisioningFailed) propagate
to the routing layer, which renders them as HTTP failures. DeliveryFailure
never leaves the NotificationBus.
"""

from __future__ import annotations


class MeetLinkError(Exception):
    """Base class for meeting room errors."""


class InvalidSlug(MeetLinkError):
    """The requested identifier does not have the shape of a slug."""

    def __init__(self, slug: str) -> None:
        super().__init__(f"Invalid slug: {slug!r}")
        self.slug = slug


class NotFound(MeetLinkError):
    """The slug is well-formed but no owner is registered under it."""

    def __init__(self, slug: str) -> None:
        super().__init__(f"No owner for slug: {slug!r}")
        self.slug = slug


class ProvisioningFailed(MeetLinkError):
    """The meeting provisioner did not yield a usable join URL.

    Retryable from the user's point of view: reloading the page starts a
    new provisioning episode.
    """

    def __init__(self, reason: str) -> None:
        super().__init__(f"Meeting provisioning failed: {reason}")
        self.reason = reason


class OwnershipRequired(MeetLinkError):
    """ensure_meeting was called on behalf of someone who is not the owner."""


class DeliveryFailure(MeetLinkError):
    """Pushing an event to a single waiter failed (connection gone)."""
