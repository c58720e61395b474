"""Tests for OwnerRepository and MeetingRepository against SQLite."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from src.app.meetings.repository import MeetingRepository, OwnerRepository
from src.app.meetings.schemas import OwnerCreate

NOW = datetime(2026, 3, 1, 9, 30, tzinfo=timezone.utc)


def _owner_data(slug: str = "alice", **overrides) -> OwnerCreate:
    data = {
        "google_id": f"g-{slug}",
        "email": f"{slug}@example.com",
        "first_name": slug.title(),
        "slug": slug,
        "refresh_token_enc": "enc-token",
    }
    data.update(overrides)
    return OwnerCreate(**data)


# ── Owners ───────────────────────────────────────────────────────────────────


class TestOwnerRepository:
    @pytest.mark.asyncio
    async def test_create_and_lookup(self, session_factory):
        repo = OwnerRepository(session_factory)

        created = await repo.create_owner(_owner_data())

        assert created.id is not None
        assert created.created_at.tzinfo is not None
        assert (await repo.get_by_id(created.id)).slug == "alice"
        assert (await repo.get_by_slug("alice")).id == created.id
        assert (await repo.get_by_google_id("g-alice")).id == created.id
        assert (await repo.get_by_email("alice@example.com")).id == created.id

    @pytest.mark.asyncio
    async def test_missing_lookups_return_none(self, session_factory):
        repo = OwnerRepository(session_factory)

        assert await repo.get_by_id(42) is None
        assert await repo.get_by_slug("nobody") is None
        assert await repo.slug_exists("nobody") is False

    @pytest.mark.asyncio
    async def test_slug_exists_and_count(self, session_factory):
        repo = OwnerRepository(session_factory)
        await repo.create_owner(_owner_data("alice"))
        await repo.create_owner(_owner_data("bob"))

        assert await repo.slug_exists("alice") is True
        assert await repo.count() == 2

    @pytest.mark.asyncio
    async def test_update_refresh_token(self, session_factory):
        repo = OwnerRepository(session_factory)
        owner = await repo.create_owner(_owner_data())

        await repo.update_refresh_token(owner.id, "new-enc-token")

        assert (await repo.get_by_id(owner.id)).refresh_token_enc == "new-enc-token"

    @pytest.mark.asyncio
    async def test_credential_hidden_from_repr(self, session_factory):
        repo = OwnerRepository(session_factory)
        owner = await repo.create_owner(_owner_data(refresh_token_enc="super-secret"))

        assert "super-secret" not in repr(owner)


# ── Meetings ─────────────────────────────────────────────────────────────────


class TestMeetingRepository:
    @pytest.mark.asyncio
    async def test_insert_round_trips_aware_timestamps(self, session_factory):
        repo = MeetingRepository(session_factory)

        meeting = await repo.insert_meeting(1, "https://meet.google.com/a", NOW + timedelta(minutes=5), created_at=NOW)

        assert meeting.id is not None
        assert meeting.created_at == NOW
        assert meeting.expires_at == NOW + timedelta(minutes=5)

    @pytest.mark.asyncio
    async def test_find_active_meeting_strict_expiry(self, session_factory):
        repo = MeetingRepository(session_factory)
        await repo.insert_meeting(1, "https://meet.google.com/a", NOW + timedelta(minutes=5), created_at=NOW)

        assert await repo.find_active_meeting(1, NOW) is not None
        assert await repo.find_active_meeting(1, NOW + timedelta(minutes=5)) is None
        assert await repo.find_active_meeting(2, NOW) is None

    @pytest.mark.asyncio
    async def test_most_recent_active_meeting_wins(self, session_factory):
        repo = MeetingRepository(session_factory)
        await repo.insert_meeting(1, "https://meet.google.com/old", NOW + timedelta(minutes=5), created_at=NOW)
        await repo.insert_meeting(
            1,
            "https://meet.google.com/new",
            NOW + timedelta(minutes=6),
            created_at=NOW + timedelta(minutes=1),
        )

        active = await repo.find_active_meeting(1, NOW + timedelta(minutes=2))

        assert active.join_url == "https://meet.google.com/new"

    @pytest.mark.asyncio
    async def test_expired_rows_are_kept(self, session_factory):
        repo = MeetingRepository(session_factory)
        await repo.insert_meeting(1, "https://meet.google.com/a", NOW, created_at=NOW - timedelta(minutes=5))
        await repo.insert_meeting(1, "https://meet.google.com/b", NOW + timedelta(minutes=5), created_at=NOW)

        active = await repo.find_active_meeting(1, NOW)

        assert active.join_url == "https://meet.google.com/b"
        assert active.id == 2

    @pytest.mark.asyncio
    async def test_record_waiting_session_truncates_user_agent(self, session_factory):
        repo = MeetingRepository(session_factory)

        session = await repo.record_waiting_session("alice", ip="10.0.0.1", user_agent="x" * 900)

        assert session.slug == "alice"
        assert session.ip == "10.0.0.1"
        assert len(session.user_agent) == 500

    @pytest.mark.asyncio
    async def test_record_waiting_session_without_client_info(self, session_factory):
        repo = MeetingRepository(session_factory)

        session = await repo.record_waiting_session("alice")

        assert session.ip is None
        assert session.user_agent is None
