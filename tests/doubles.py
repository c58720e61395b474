"""In-memory test doubles shared by the test modules.

Provides:
- InMemoryOwnerRepository / InMemoryMeetingRepository: repository doubles
- FakeProvisioner: scripted meeting provisioner
- FakeDelivery: NotificationBus delivery handle that records frames
- FakeClock: settable clock for deterministic expiry checks
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from src.app.core.security import encrypt_secret
from src.app.meetings.errors import DeliveryFailure
from src.app.meetings.schemas import Meeting, Owner, OwnerCreate, WaitingSession

T0 = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


# ── Clock ────────────────────────────────────────────────────────────────────


class FakeClock:
    """Callable clock returning a settable timestamp."""

    def __init__(self, now: datetime = T0) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


# ── In-Memory Test Doubles ───────────────────────────────────────────────────


class InMemoryOwnerRepository:
    """In-memory OwnerRepository for testing without database."""

    def __init__(self) -> None:
        self._owners: dict[int, Owner] = {}
        self._next_id = 1
        self.calls = 0

    def add(
        self,
        slug: str,
        email: str | None = None,
        google_id: str | None = None,
        refresh_token: str | None = "refresh-token",
        first_name: str = "Test",
    ) -> Owner:
        data = OwnerCreate(
            google_id=google_id or f"g-{slug}",
            email=email or f"{slug}@example.com",
            first_name=first_name,
            slug=slug,
            refresh_token_enc=encrypt_secret(refresh_token) if refresh_token else "",
        )
        return self._insert(data)

    def _insert(self, data: OwnerCreate) -> Owner:
        now = datetime.now(timezone.utc)
        owner = Owner(id=self._next_id, created_at=now, updated_at=now, **data.model_dump())
        self._owners[owner.id] = owner
        self._next_id += 1
        return owner

    async def get_by_id(self, owner_id: int) -> Owner | None:
        self.calls += 1
        return self._owners.get(owner_id)

    async def get_by_slug(self, slug: str) -> Owner | None:
        self.calls += 1
        return next((o for o in self._owners.values() if o.slug == slug), None)

    async def get_by_google_id(self, google_id: str) -> Owner | None:
        self.calls += 1
        return next((o for o in self._owners.values() if o.google_id == google_id), None)

    async def get_by_email(self, email: str) -> Owner | None:
        self.calls += 1
        return next((o for o in self._owners.values() if o.email == email), None)

    async def slug_exists(self, slug: str) -> bool:
        return await self.get_by_slug(slug) is not None

    async def count(self) -> int:
        return len(self._owners)

    async def create_owner(self, data: OwnerCreate) -> Owner:
        return self._insert(data)

    async def update_refresh_token(self, owner_id: int, refresh_token_enc: str) -> None:
        owner = self._owners[owner_id]
        self._owners[owner_id] = owner.model_copy(update={"refresh_token_enc": refresh_token_enc})

    @property
    def owners(self) -> list[Owner]:
        return list(self._owners.values())


class InMemoryMeetingRepository:
    """In-memory MeetingRepository for testing without database."""

    def __init__(self) -> None:
        self.meetings: list[Meeting] = []
        self.waiting_sessions: list[WaitingSession] = []
        self.fail_waiting_sessions = False

    async def find_active_meeting(self, owner_id: int, now: datetime) -> Meeting | None:
        active = [m for m in self.meetings if m.owner_id == owner_id and m.expires_at > now]
        if not active:
            return None
        return max(active, key=lambda m: (m.created_at, m.id))

    async def insert_meeting(
        self,
        owner_id: int,
        join_url: str,
        expires_at: datetime,
        created_at: datetime | None = None,
    ) -> Meeting:
        meeting = Meeting(
            id=len(self.meetings) + 1,
            owner_id=owner_id,
            join_url=join_url,
            created_at=created_at or datetime.now(timezone.utc),
            expires_at=expires_at,
        )
        self.meetings.append(meeting)
        return meeting

    async def record_waiting_session(
        self,
        slug: str,
        ip: str | None = None,
        user_agent: str | None = None,
    ) -> WaitingSession:
        if self.fail_waiting_sessions:
            raise RuntimeError("database unavailable")
        now = datetime.now(timezone.utc)
        session = WaitingSession(
            id=len(self.waiting_sessions) + 1,
            slug=slug,
            ip=ip,
            user_agent=user_agent,
            created_at=now,
            last_seen_at=now,
        )
        self.waiting_sessions.append(session)
        return session


class FakeProvisioner:
    """Returns scripted join URLs, or raises ``error`` when set."""

    def __init__(self, url: str = "https://meet.google.com/abc-defg-hij") -> None:
        self.url = url
        self.error: Exception | None = None
        self.calls: list[str] = []

    async def provision(self, refresh_token_enc: str) -> str:
        self.calls.append(refresh_token_enc)
        if self.error is not None:
            raise self.error
        return self.url


class FakeDelivery:
    """Delivery handle recording frames; ``fail`` makes every send raise."""

    def __init__(self, fail: bool = False) -> None:
        self.frames: list[str] = []
        self.closed = False
        self.close_calls = 0
        self.fail = fail

    def send(self, frame: str) -> None:
        if self.fail or self.closed:
            raise DeliveryFailure("connection gone")
        self.frames.append(frame)

    def close(self) -> None:
        self.close_calls += 1
        self.closed = True
