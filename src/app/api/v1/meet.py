"""Personal link and waiting-room endpoints.

``GET /{slug}`` is the stable personal link: the owner is sent into a
(possibly freshly provisioned) meeting, visitors are redirected when a
meeting is active and otherwise shown a waiting page. The page listens on
``GET /api/wait/{slug}/stream`` (text/event-stream) and follows the
``active`` event to the meeting.

This router must be included last: ``/{slug}`` matches any single path
segment.
"""

from __future__ import annotations

import asyncio
import html
import json
from collections.abc import AsyncIterator
from string import Template
from typing import Any

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import HTMLResponse, RedirectResponse, Response, StreamingResponse

from src.app.api.deps import (
    get_lifecycle,
    get_meeting_repository,
    get_notification_bus,
    get_session_user,
)
from src.app.meetings.errors import InvalidSlug, NotFound, ProvisioningFailed
from src.app.meetings.notifications import (
    ACTIVE_EVENT,
    ERROR_EVENT,
    QueueDelivery,
    format_event,
)
from src.app.meetings.schemas import Redirect, SessionUser

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["meet"])

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}

WAITING_PAGE = Template("""<!doctype html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <meta name="viewport" content="width=device-width, initial-scale=1">
  <title>Waiting for $slug</title>
</head>
<body>
  <main>
    <h1>Waiting for $slug to start the meeting</h1>
    <p id="status">You will be redirected automatically.</p>
  </main>
  <script>
    const source = new EventSource($stream_url);
    source.addEventListener("active", (e) => {
      source.close();
      window.location.href = JSON.parse(e.data).meetUrl;
    });
    source.addEventListener("error", (e) => {
      if (e.data) {
        source.close();
        document.getElementById("status").textContent = "This link is not available.";
      }
    });
  </script>
</body>
</html>
""")


# ── Helpers ──────────────────────────────────────────────────────────────────


def _single_event(event: str, payload: Any) -> Response:
    """A complete event stream carrying exactly one event."""
    return Response(
        content=format_event(event, payload),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


async def _record_waiting_session(request: Request, slug: str) -> None:
    """Audit the waiting-room visit; failures never affect the visitor."""
    meetings = get_meeting_repository(request)
    try:
        await meetings.record_waiting_session(
            slug,
            ip=request.client.host if request.client else None,
            user_agent=request.headers.get("user-agent"),
        )
    except Exception as e:
        logger.warning("waiting_session_record_failed", slug=slug, error=str(e))


async def _stream(delivery: QueueDelivery, disconnected: asyncio.Event) -> AsyncIterator[str]:
    try:
        async for frame in delivery.frames():
            yield frame
    finally:
        # Client went away or the stream ended; either way the waiter is done
        disconnected.set()


# ── Waiting-room stream ──────────────────────────────────────────────────────


@router.get("/api/wait/{slug}/stream")
async def wait_stream(slug: str, request: Request):
    """Event stream for a visitor waiting on ``slug``.

    Emits a single ``error`` event for invalid or unknown slugs, a single
    ``active`` event when a meeting is already running, and otherwise
    holds the connection until the owner starts a meeting.
    """
    lifecycle = get_lifecycle(request)
    bus = get_notification_bus(request)

    try:
        result = await lifecycle.check_or_wait(slug)
    except InvalidSlug:
        return _single_event(ERROR_EVENT, {"message": "invalid-slug"})
    except NotFound:
        return _single_event(ERROR_EVENT, {"message": "not-found"})

    if isinstance(result, Redirect):
        return _single_event(ACTIVE_EVENT, {"meetUrl": result.url})

    await _record_waiting_session(request, slug)

    delivery = QueueDelivery()
    disconnected = asyncio.Event()
    waiter = bus.subscribe(slug, delivery, disconnected)

    # A meeting may have started between the check above and subscribe()
    try:
        active = await lifecycle.get_active_meeting(result.owner_id)
    except BaseException:
        # No stream will ever drain this waiter
        bus.unsubscribe(waiter)
        raise
    if active is not None and not delivery.closed:
        delivery.send(format_event(ACTIVE_EVENT, {"meetUrl": active.join_url}))
        bus.unsubscribe(waiter)

    return StreamingResponse(
        _stream(delivery, disconnected),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


# ── Personal link ────────────────────────────────────────────────────────────


@router.get("/{slug}")
async def personal_link(
    slug: str,
    request: Request,
    user: SessionUser | None = Depends(get_session_user),
):
    """Owner: join (or start) the meeting. Visitor: join it or wait.

    Raises:
        HTTPException(400): Malformed slug.
        HTTPException(404): No owner under ``slug``.
        HTTPException(502): The owner's meeting could not be provisioned.
    """
    lifecycle = get_lifecycle(request)
    requester_id = user.id if user is not None else None

    try:
        result = await lifecycle.check_or_wait(slug, requester_id=requester_id)
    except InvalidSlug as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid slug") from e
    except NotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found") from e
    except ProvisioningFailed as e:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Failed to create Google Meet",
        ) from e

    if isinstance(result, Redirect):
        if result.provisioned:
            bus = get_notification_bus(request)
            delivered = bus.broadcast(slug, ACTIVE_EVENT, {"meetUrl": result.url})
            logger.info("owner_started_meeting", slug=slug, waiters_notified=delivered)
        return RedirectResponse(result.url, status_code=status.HTTP_302_FOUND)

    await _record_waiting_session(request, slug)
    page = WAITING_PAGE.substitute(
        slug=html.escape(slug),
        stream_url=json.dumps(f"/api/wait/{slug}/stream"),
    )
    return HTMLResponse(page)
