"""Fan-out of forum events to connected WebSocket subscribers."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional, Protocol, Set

from packages.common.metrics import events_broadcast, ws_clients, ws_dropped

log = logging.getLogger(__name__)

NEW_POST = "newPost"
NEW_REPLY = "newReply"
POST_UPVOTED = "postUpvoted"
POST_ANSWERED = "postAnswered"

# queued to a subscriber to tell its pump to stop
CLOSED = None


class Broadcaster(Protocol):
    async def broadcast(self, event: str, payload: Any) -> None: ...


class BroadcastHub:
    """Process-wide set of subscriber queues.

    Delivery is fire-and-forget: no acknowledgment, retry or replay. A
    subscriber whose queue is full is dropped rather than slowing the others.
    """

    def __init__(self, queue_size: int = 1000) -> None:
        self._clients: Set[asyncio.Queue] = set()
        self._lock = asyncio.Lock()
        self._queue_size = queue_size

    @property
    def client_count(self) -> int:
        return len(self._clients)

    async def register(self) -> asyncio.Queue:
        q: asyncio.Queue = asyncio.Queue(maxsize=self._queue_size)
        async with self._lock:
            self._clients.add(q)
            ws_clients.set(len(self._clients))
        return q

    async def unregister(self, q: asyncio.Queue) -> None:
        async with self._lock:
            self._clients.discard(q)
            ws_clients.set(len(self._clients))

    async def broadcast(self, event: str, payload: Any) -> None:
        """Enqueue `{"event", "data"}` for every subscriber. Never raises."""
        envelope: Dict[str, Any] = {"event": event, "data": payload}
        try:
            async with self._lock:
                dead = []
                for q in self._clients:
                    try:
                        q.put_nowait(envelope)
                    except asyncio.QueueFull:
                        dead.append(q)
                for q in dead:
                    self._clients.discard(q)
                    _offer(q, CLOSED)
                    ws_dropped.inc()
                    log.warning("dropping slow subscriber (queue full)")
                ws_clients.set(len(self._clients))
                delivered = len(self._clients)
            events_broadcast.labels(event=event).inc()
            log.debug("broadcast %s to %d subscriber(s)", event, delivered)
        except Exception:
            log.exception("broadcast of %s failed", event)

    async def close(self) -> None:
        """Tell every subscriber to stop and forget them."""
        async with self._lock:
            for q in self._clients:
                _offer(q, CLOSED)
            self._clients.clear()
            ws_clients.set(0)


def _offer(q: asyncio.Queue, item: Optional[Any]) -> None:
    try:
        q.put_nowait(item)
    except asyncio.QueueFull:
        # make room so the stop signal always lands
        q.get_nowait()
        q.put_nowait(item)
