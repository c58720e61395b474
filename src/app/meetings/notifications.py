"""Waiting-room notification bus -- one-shot fan-out to long-lived SSE connections.

Maintains, per channel key (the owner's slug), the set of waiters currently
holding an event-stream connection open. Each waiter owns two tasks:

- a keep-alive task pushing an SSE comment line every interval so proxies
  do not close an idle connection;
- a disconnect watcher that removes the waiter once its disconnect signal
  fires.

Both are cancelled together whenever the waiter leaves the registry, so no
timer outlives its waiter. A channel with no waiters is never kept.

Everything here runs on the event loop without suspension points in the
mutating paths: ``broadcast`` walks a snapshot of the waiter set in one
uninterrupted pass, so no other broadcast can interleave on the same key.

Wire format (text/event-stream)::

    event: <name>
    data: <json>

    : ping <epoch-ms>

Comment lines carry no data and must be ignored by consumers.
"""

from __future__ import annotations

import asyncio
import json
import time
import uuid
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any, Protocol

import structlog

from src.app.core.monitoring import waiting_room_events_total, waiting_room_waiters
from src.app.meetings.errors import DeliveryFailure

logger = structlog.get_logger(__name__)

KEEPALIVE_INTERVAL_SECONDS = 25.0

ACTIVE_EVENT = "active"
ERROR_EVENT = "error"
TERMINAL_EVENTS = frozenset({ACTIVE_EVENT, ERROR_EVENT})


# ── Wire Codec ──────────────────────────────────────────────────────────────


def format_event(name: str, data: Any) -> str:
    """Encode a named SSE event with a JSON payload."""
    return f"event: {name}\ndata: {json.dumps(data, separators=(',', ':'))}\n\n"


def format_comment(text: str) -> str:
    """Encode an SSE comment line (keep-alive)."""
    return f": {text}\n\n"


# ── Delivery Handles ────────────────────────────────────────────────────────


class DeliveryHandle(Protocol):
    """How the bus pushes frames to one specific caller."""

    def send(self, frame: str) -> None:
        """Push one encoded frame. Raises on a dead connection."""
        ...

    def close(self) -> None:
        """End the stream. Must be idempotent."""
        ...


class QueueDelivery:
    """Delivery handle backed by an asyncio.Queue drained by a streaming response.

    ``close()`` enqueues an end-of-stream sentinel; ``frames()`` yields
    everything queued before it and then stops.
    """

    _END = None

    def __init__(self) -> None:
        self._queue: asyncio.Queue[str | None] = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def send(self, frame: str) -> None:
        if self._closed:
            raise DeliveryFailure("stream already closed")
        self._queue.put_nowait(frame)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(self._END)

    async def frames(self) -> AsyncIterator[str]:
        while True:
            frame = await self._queue.get()
            if frame is self._END:
                return
            yield frame


# ── Waiter ──────────────────────────────────────────────────────────────────


@dataclass(eq=False)
class Waiter:
    """One pending connection registered under a channel key."""

    channel_key: str
    delivery: DeliveryHandle
    disconnected: asyncio.Event
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    keepalive_task: asyncio.Task | None = None
    disconnect_task: asyncio.Task | None = None

    def cancel_tasks(self) -> None:
        current = asyncio.current_task()
        for task in (self.keepalive_task, self.disconnect_task):
            if task is not None and task is not current and not task.done():
                task.cancel()


# ── Bus ─────────────────────────────────────────────────────────────────────


class NotificationBus:
    """Channel registry and fan-out for waiting-room connections.

    One instance is owned by the application (``app.state.notification_bus``);
    tests create isolated instances. Nothing else reads or mutates the
    channel map.

    Args:
        keepalive_interval: Seconds between keep-alive comment lines.
    """

    def __init__(self, keepalive_interval: float = KEEPALIVE_INTERVAL_SECONDS) -> None:
        self._keepalive_interval = keepalive_interval
        self._channels: dict[str, set[Waiter]] = {}

    # ── Introspection ────────────────────────────────────────────────────

    @property
    def channel_count(self) -> int:
        return len(self._channels)

    def has_channel(self, channel_key: str) -> bool:
        return channel_key in self._channels

    def waiter_count(self, channel_key: str | None = None) -> int:
        if channel_key is not None:
            return len(self._channels.get(channel_key, ()))
        return sum(len(waiters) for waiters in self._channels.values())

    # ── Subscribe ────────────────────────────────────────────────────────

    def subscribe(
        self,
        channel_key: str,
        delivery: DeliveryHandle,
        disconnected: asyncio.Event,
    ) -> Waiter:
        """Register a waiter under ``channel_key`` and arm its keep-alive.

        Must be called from within the running event loop. Callers check
        for an active meeting immediately before subscribing: an event
        broadcast before this call is not replayed.

        Args:
            channel_key: Channel to join (the owner's slug).
            delivery: Handle used to push frames to this caller.
            disconnected: Set by the caller when the connection goes away.

        Returns:
            The registered Waiter.
        """
        waiter = Waiter(channel_key=channel_key, delivery=delivery, disconnected=disconnected)
        self._channels.setdefault(channel_key, set()).add(waiter)

        loop = asyncio.get_running_loop()
        waiter.keepalive_task = loop.create_task(
            self._keepalive(waiter), name=f"keepalive:{channel_key}:{waiter.id}"
        )
        waiter.disconnect_task = loop.create_task(
            self._watch_disconnect(waiter), name=f"disconnect:{channel_key}:{waiter.id}"
        )
        waiting_room_waiters.inc()

        logger.info(
            "waiter_subscribed",
            channel=channel_key,
            waiter_id=waiter.id,
            channel_waiters=len(self._channels[channel_key]),
        )
        return waiter

    def unsubscribe(self, waiter: Waiter) -> None:
        """Remove ``waiter`` and close its stream. Idempotent."""
        self._discard(waiter)

    # ── Broadcast ────────────────────────────────────────────────────────

    def broadcast(self, channel_key: str, event: str, payload: Any) -> int:
        """Deliver ``(event, payload)`` to every waiter of ``channel_key``.

        Best-effort: a waiter whose delivery fails is closed and dropped,
        the others still receive the event. For a terminal event every
        delivered-to waiter is closed and the channel is retired, even if
        it had no waiters left. Unknown channel keys are a no-op.

        Args:
            channel_key: Channel to deliver on.
            event: SSE event name.
            payload: JSON-serializable event data.

        Returns:
            Number of waiters the event was delivered to.
        """
        waiters = self._channels.get(channel_key)
        if waiters is None:
            logger.debug("broadcast_no_channel", channel=channel_key, event_name=event)
            return 0

        terminal = event in TERMINAL_EVENTS
        frame = format_event(event, payload)
        delivered = 0
        failed = 0

        for waiter in list(waiters):
            try:
                waiter.delivery.send(frame)
            except Exception as e:
                failed += 1
                logger.warning(
                    "waiter_delivery_failed",
                    channel=channel_key,
                    waiter_id=waiter.id,
                    event_name=event,
                    error=str(e),
                )
                self._discard(waiter)
                continue

            delivered += 1
            if terminal:
                self._discard(waiter)

        if terminal:
            self._channels.pop(channel_key, None)

        waiting_room_events_total.labels(event=event).inc(delivered)
        logger.info(
            "broadcast_completed",
            channel=channel_key,
            event_name=event,
            delivered=delivered,
            failed=failed,
            channel_retired=terminal,
        )
        return delivered

    # ── Shutdown ─────────────────────────────────────────────────────────

    def close_all(self) -> None:
        """Close every open waiter (application shutdown)."""
        count = self.waiter_count()
        for waiters in list(self._channels.values()):
            for waiter in list(waiters):
                self._discard(waiter)
        self._channels.clear()
        if count:
            logger.info("notification_bus_closed", waiters_closed=count)

    # ── Internals ────────────────────────────────────────────────────────

    async def _keepalive(self, waiter: Waiter) -> None:
        while True:
            await asyncio.sleep(self._keepalive_interval)
            try:
                waiter.delivery.send(format_comment(f"ping {int(time.time() * 1000)}"))
            except Exception as e:
                logger.info(
                    "keepalive_failed",
                    channel=waiter.channel_key,
                    waiter_id=waiter.id,
                    error=str(e),
                )
                self._discard(waiter)
                return

    async def _watch_disconnect(self, waiter: Waiter) -> None:
        await waiter.disconnected.wait()
        logger.info("waiter_disconnected", channel=waiter.channel_key, waiter_id=waiter.id)
        self._discard(waiter)

    def _discard(self, waiter: Waiter) -> None:
        """Cancel the waiter's tasks, close its stream and drop it from the registry."""
        waiter.cancel_tasks()
        try:
            waiter.delivery.close()
        except Exception:
            logger.debug("waiter_close_failed", waiter_id=waiter.id, exc_info=True)

        waiters = self._channels.get(waiter.channel_key)
        if waiters is None or waiter not in waiters:
            return
        waiters.discard(waiter)
        waiting_room_waiters.dec()
        if not waiters:
            del self._channels[waiter.channel_key]
