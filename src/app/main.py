"""FastAPI application factory.

Creates the app with logging middleware, metrics middleware, CORS, Sentry,
lifespan events for database initialization and service wiring, and the
v1 API router.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.app.api.middleware.logging import LoggingMiddleware, configure_structlog
from src.app.api.v1.router import router as v1_router
from src.app.config import get_settings, validate_settings
from src.app.core.database import close_db, get_session, init_db
from src.app.core.monitoring import MetricsMiddleware, init_sentry
from src.app.meetings.lifecycle import LifecycleManager
from src.app.meetings.notifications import NotificationBus
from src.app.meetings.repository import MeetingRepository, OwnerRepository
from src.app.services.gsuite import GoogleMeetProvisioner, GoogleOAuthManager


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: init DB, Sentry and services on startup, close on shutdown."""
    log = structlog.get_logger(__name__)
    settings = get_settings()
    configure_structlog()

    for problem in validate_settings(settings):
        log.warning("config_problem", problem=problem)

    await init_db()

    # Initialize Sentry if DSN is configured
    if settings.SENTRY_DSN:
        init_sentry(dsn=settings.SENTRY_DSN, environment=settings.ENVIRONMENT.value)

    # ── Persistence ──────────────────────────────────────────────────────
    owner_repo = OwnerRepository(session_factory=get_session)
    meeting_repo = MeetingRepository(session_factory=get_session)
    app.state.session_factory = get_session
    app.state.owner_repository = owner_repo
    app.state.meeting_repository = meeting_repo

    # ── Google ───────────────────────────────────────────────────────────
    oauth_manager = GoogleOAuthManager(
        client_id=settings.GOOGLE_CLIENT_ID,
        client_secret=settings.GOOGLE_CLIENT_SECRET,
        redirect_uri=settings.get_callback_url(),
    )
    app.state.oauth_manager = oauth_manager

    # ── Meeting lifecycle and waiting room ───────────────────────────────
    bus = NotificationBus(keepalive_interval=settings.KEEPALIVE_INTERVAL_SECONDS)
    app.state.notification_bus = bus
    app.state.lifecycle = LifecycleManager(
        owners=owner_repo,
        meetings=meeting_repo,
        provisioner=GoogleMeetProvisioner(oauth_manager),
        meeting_window=settings.meeting_window,
    )

    log.info(
        "app_started",
        environment=settings.ENVIRONMENT.value,
        meeting_window_seconds=settings.meeting_window.total_seconds(),
    )

    yield

    # ── Shutdown ──────────────────────────────────────────────────────────
    bus.close_all()
    await close_db()
    log.info("app_stopped")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Meet Link",
        version="0.1.0",
        description="Stable personal meeting links with on-demand Google Meet rooms",
        lifespan=lifespan,
    )

    # Middleware is added in reverse order (last added = outermost)

    # CORS middleware
    if settings.CORS_ALLOWED_ORIGINS == "*":
        origins = ["*"]
    else:
        origins = [o.strip() for o in settings.CORS_ALLOWED_ORIGINS.split(",")]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Logging middleware (logs every request with timing)
    app.add_middleware(LoggingMiddleware)

    # Metrics middleware (outermost -- records Prometheus metrics for all requests)
    app.add_middleware(MetricsMiddleware)

    # Health, metrics, auth, then the personal-link catch-all
    app.include_router(v1_router)

    return app


# Module-level app for uvicorn
app = create_app()
