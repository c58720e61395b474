"""Health check and metrics endpoints.

Provides liveness (/healthz), readiness (/health/ready) and the Prometheus
exposition (/metrics). These are registered before the personal-link
catch-all so they are never shadowed by a slug.
"""

from __future__ import annotations

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse, Response
from sqlalchemy import text

from src.app.config import get_settings
from src.app.core.database import get_session
from src.app.core.monitoring import get_metrics_response

router = APIRouter(tags=["health"])


@router.get("/healthz")
async def health_check():
    """Basic liveness check.

    No external dependencies are checked -- just that the server is running.
    """
    settings = get_settings()
    return {"ok": True, "environment": settings.ENVIRONMENT.value}


async def _check_dependencies(request: Request) -> dict:
    """Check database connectivity and report waiting-room state."""
    checks: dict = {"database": "ok"}

    session_factory = getattr(request.app.state, "session_factory", None) or get_session
    try:
        async for session in session_factory():
            await session.execute(text("SELECT 1"))
    except Exception as e:
        checks["database"] = "error"
        checks["database_error"] = str(e)

    bus = getattr(request.app.state, "notification_bus", None)
    if bus is not None:
        checks["waiting_room"] = {
            "channels": bus.channel_count,
            "waiters": bus.waiter_count(),
        }
    else:
        checks["waiting_room"] = "unavailable"

    return checks


@router.get("/health/ready")
async def readiness_check(request: Request):
    """Readiness check: verifies the database and the notification bus.

    Returns 200 if both are available, 503 otherwise.
    """
    checks = await _check_dependencies(request)
    all_healthy = checks.get("database") == "ok" and checks.get("waiting_room") != "unavailable"

    return JSONResponse(
        status_code=status.HTTP_200_OK if all_healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "status": "ready" if all_healthy else "degraded",
            "checks": checks,
        },
    )


@router.get("/metrics", include_in_schema=False)
async def metrics() -> Response:
    """Prometheus metrics endpoint."""
    return get_metrics_response()
