"""Structured request logging.

Every request gets a ``request_id`` (echoed as X-Request-ID) and, when a
valid session cookie is present, the signed-in owner's id. Both are bound
into structlog's context variables for the duration of the request, so log
lines emitted by the lifecycle manager or the notification bus while
serving it carry them too.

Event streams stay open long after their headers are sent; those are
logged once as ``stream_opened`` when the response starts rather than as a
completed request.
"""

from __future__ import annotations

import logging
import time
import uuid

import structlog
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from src.app.config import Environment, get_settings
from src.app.core.security import SESSION_COOKIE_NAME, verify_session_token

logger = structlog.get_logger(__name__)


def configure_structlog() -> None:
    """Route structlog through stdlib logging; JSON in production, console otherwise."""
    settings = get_settings()

    logging.basicConfig(format="%(message)s", level=settings.LOG_LEVEL.upper())

    processors: list = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    if settings.ENVIRONMENT == Environment.production:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def _session_user_id(request: Request) -> int | None:
    token = request.cookies.get(SESSION_COOKIE_NAME)
    if not token:
        return None
    session_user = verify_session_token(token)
    return session_user.id if session_user is not None else None


class LoggingMiddleware(BaseHTTPMiddleware):
    """Binds request context and logs one line per request."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = uuid.uuid4().hex
        user_id = _session_user_id(request)
        start_time = time.monotonic()

        with structlog.contextvars.bound_contextvars(request_id=request_id, user_id=user_id):
            try:
                response = await call_next(request)
            except Exception:
                logger.exception(
                    "request_error",
                    method=request.method,
                    path=request.url.path,
                    duration_ms=round((time.monotonic() - start_time) * 1000, 2),
                )
                raise

            response.headers["X-Request-ID"] = request_id
            duration_ms = round((time.monotonic() - start_time) * 1000, 2)

            if response.headers.get("content-type", "").startswith("text/event-stream"):
                logger.info(
                    "stream_opened",
                    path=request.url.path,
                    client=request.client.host if request.client else None,
                )
                return response

            if response.status_code >= 500:
                log_method = logger.error
            elif response.status_code >= 400:
                log_method = logger.warning
            else:
                log_method = logger.info
            log_method(
                "request_completed",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration_ms=duration_ms,
            )
        return response
