"""Pydantic v2 schemas for the meeting room domain.

Defines the data contracts for owners, meetings, waiting-room sessions and
the outcome of a room visit. The lifecycle manager, repositories and API
layer all import from this module.
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal, Union

from pydantic import BaseModel, Field


# ── Owner ────────────────────────────────────────────────────────────────────


class Owner(BaseModel):
    """An account holding a personal link and a stored Google credential."""

    id: int
    google_id: str
    email: str
    first_name: str
    last_name: str | None = None
    slug: str
    refresh_token_enc: str = Field(repr=False)
    created_at: datetime
    updated_at: datetime


class OwnerCreate(BaseModel):
    """Data required to register a new owner after sign-in."""

    google_id: str
    email: str
    first_name: str
    last_name: str | None = None
    slug: str
    refresh_token_enc: str = Field(repr=False)


# ── Meeting ──────────────────────────────────────────────────────────────────


class Meeting(BaseModel):
    """One provisioned, time-bounded meeting instance.

    A meeting is active while ``expires_at`` is strictly in the future.
    Rows are append-only: each provisioning episode creates a new one.
    """

    id: int
    owner_id: int
    join_url: str
    created_at: datetime
    expires_at: datetime

    def is_active(self, now: datetime) -> bool:
        return self.expires_at > now


class WaitingSession(BaseModel):
    """Audit record of a visitor entering a waiting room."""

    id: int
    slug: str
    ip: str | None = None
    user_agent: str | None = None
    created_at: datetime
    last_seen_at: datetime


# ── Visit outcome ────────────────────────────────────────────────────────────


class Redirect(BaseModel):
    """Send the requester to the meeting.

    ``provisioned`` is True when this visit created the meeting; the caller
    then broadcasts the ``active`` event to the slug's waiters.
    """

    kind: Literal["redirect"] = "redirect"
    url: str
    provisioned: bool = False


class EnterWaitingRoom(BaseModel):
    """Hold the requester until the owner starts a meeting."""

    kind: Literal["waiting"] = "waiting"
    slug: str
    owner_id: int


CheckResult = Union[Redirect, EnterWaitingRoom]


# ── Session ──────────────────────────────────────────────────────────────────


class SessionUser(BaseModel):
    """Identity carried by the session cookie."""

    id: int
    slug: str
    email: str
    first_name: str = ""
