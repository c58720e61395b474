"""Owner and meeting repositories -- async persistence for the room lifecycle.

Both repositories use the session_factory callable pattern: the factory is
an async generator yielding AsyncSession instances (``get_session`` in
production, an in-memory SQLite factory in tests).

Timestamps are stored as UTC. SQLite drops tzinfo on the way back, so every
datetime read from a row goes through ``_as_utc`` before it reaches a schema.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Callable
from datetime import datetime, timezone

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from src.app.meetings.models import MeetingModel, OwnerModel, WaitingSessionModel
from src.app.meetings.schemas import Meeting, Owner, OwnerCreate, WaitingSession

logger = structlog.get_logger(__name__)

SessionFactory = Callable[..., AsyncGenerator[AsyncSession, None]]


# ── Serialization Helpers ───────────────────────────────────────────────────


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _model_to_owner(model: OwnerModel) -> Owner:
    """Convert OwnerModel to Owner schema."""
    return Owner(
        id=model.id,
        google_id=model.google_id,
        email=model.email,
        first_name=model.first_name,
        last_name=model.last_name,
        slug=model.slug,
        refresh_token_enc=model.refresh_token_enc,
        created_at=_as_utc(model.created_at),
        updated_at=_as_utc(model.updated_at),
    )


def _model_to_meeting(model: MeetingModel) -> Meeting:
    """Convert MeetingModel to Meeting schema."""
    return Meeting(
        id=model.id,
        owner_id=model.owner_id,
        join_url=model.join_url,
        created_at=_as_utc(model.created_at),
        expires_at=_as_utc(model.expires_at),
    )


def _model_to_waiting_session(model: WaitingSessionModel) -> WaitingSession:
    return WaitingSession(
        id=model.id,
        slug=model.slug,
        ip=model.ip,
        user_agent=model.user_agent,
        created_at=_as_utc(model.created_at),
        last_seen_at=_as_utc(model.last_seen_at),
    )


# ── Owners ──────────────────────────────────────────────────────────────────


class OwnerRepository:
    """Async lookups and writes for owner accounts.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
    """

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    async def _get_one(self, *criteria) -> Owner | None:
        async for session in self._session_factory():
            result = await session.execute(select(OwnerModel).where(*criteria))
            model = result.scalar_one_or_none()
            if model is None:
                return None
            return _model_to_owner(model)

    async def get_by_id(self, owner_id: int) -> Owner | None:
        return await self._get_one(OwnerModel.id == owner_id)

    async def get_by_slug(self, slug: str) -> Owner | None:
        return await self._get_one(OwnerModel.slug == slug)

    async def get_by_google_id(self, google_id: str) -> Owner | None:
        return await self._get_one(OwnerModel.google_id == google_id)

    async def get_by_email(self, email: str) -> Owner | None:
        return await self._get_one(OwnerModel.email == email)

    async def slug_exists(self, slug: str) -> bool:
        return await self.get_by_slug(slug) is not None

    async def count(self) -> int:
        async for session in self._session_factory():
            result = await session.execute(select(func.count()).select_from(OwnerModel))
            return int(result.scalar_one())

    async def create_owner(self, data: OwnerCreate) -> Owner:
        """Insert a new owner row.

        Args:
            data: OwnerCreate with profile, slug and encrypted credential.

        Returns:
            Owner with all persisted fields.
        """
        now = _utcnow()
        async for session in self._session_factory():
            model = OwnerModel(
                google_id=data.google_id,
                email=data.email,
                first_name=data.first_name,
                last_name=data.last_name,
                slug=data.slug,
                refresh_token_enc=data.refresh_token_enc,
                created_at=now,
                updated_at=now,
            )
            session.add(model)
            await session.commit()
            await session.refresh(model)
            logger.info("owner_created", owner_id=model.id, slug=model.slug)
            return _model_to_owner(model)

    async def update_refresh_token(self, owner_id: int, refresh_token_enc: str) -> None:
        async for session in self._session_factory():
            await session.execute(
                update(OwnerModel)
                .where(OwnerModel.id == owner_id)
                .values(refresh_token_enc=refresh_token_enc, updated_at=_utcnow())
            )
            await session.commit()
            logger.info("owner_credential_updated", owner_id=owner_id)


# ── Meetings ────────────────────────────────────────────────────────────────


class MeetingRepository:
    """Append-only meeting rows plus waiting-room audit records.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
    """

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    async def find_active_meeting(self, owner_id: int, now: datetime) -> Meeting | None:
        """Most recently created meeting of ``owner_id`` with expires_at > now.

        Args:
            owner_id: Owner primary key.
            now: Evaluation time (timezone-aware).

        Returns:
            Meeting if one is active, None otherwise.
        """
        async for session in self._session_factory():
            stmt = (
                select(MeetingModel)
                .where(
                    MeetingModel.owner_id == owner_id,
                    MeetingModel.expires_at > _as_utc(now),
                )
                .order_by(MeetingModel.created_at.desc(), MeetingModel.id.desc())
                .limit(1)
            )
            result = await session.execute(stmt)
            model = result.scalar_one_or_none()
            if model is None:
                return None
            return _model_to_meeting(model)

    async def insert_meeting(
        self,
        owner_id: int,
        join_url: str,
        expires_at: datetime,
        created_at: datetime | None = None,
    ) -> Meeting:
        """Persist a freshly provisioned meeting.

        Args:
            owner_id: Owner primary key.
            join_url: URL returned by the provisioner.
            expires_at: End of the meeting window (timezone-aware).
            created_at: Creation time; defaults to now.

        Returns:
            Meeting with all persisted fields.
        """
        async for session in self._session_factory():
            model = MeetingModel(
                owner_id=owner_id,
                join_url=join_url,
                expires_at=_as_utc(expires_at),
                created_at=_as_utc(created_at or _utcnow()),
            )
            session.add(model)
            await session.commit()
            await session.refresh(model)
            logger.info(
                "meeting_inserted",
                meeting_id=model.id,
                owner_id=owner_id,
                expires_at=model.expires_at.isoformat(),
            )
            return _model_to_meeting(model)

    async def record_waiting_session(
        self,
        slug: str,
        ip: str | None = None,
        user_agent: str | None = None,
    ) -> WaitingSession:
        """Record that a visitor entered the waiting room of ``slug``."""
        now = _utcnow()
        async for session in self._session_factory():
            model = WaitingSessionModel(
                slug=slug,
                ip=ip,
                user_agent=user_agent[:500] if user_agent else None,
                created_at=now,
                last_seen_at=now,
            )
            session.add(model)
            await session.commit()
            await session.refresh(model)
            logger.debug("waiting_session_recorded", slug=slug, ip=ip)
            return _model_to_waiting_session(model)
