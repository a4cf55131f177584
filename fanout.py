"""Realtime fan-out to connected clients.

Transport-independent: each client gets a Subscription with its own
bounded queue, and the transport (WebSocket handler) drains it. Publishing
never blocks the inbound pipeline on a slow client.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from dataclasses import dataclass

from inbox import Inbox

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class Envelope:
    event: str
    data: object = None

    def to_dict(self) -> dict:
        return {"event": self.event, "data": self.data}


class Subscription:
    def __init__(self, sub_id: int, maxsize: int):
        self.id = sub_id
        self.queue: asyncio.Queue[Envelope] = asyncio.Queue(maxsize=maxsize)
        self.dropped = 0

    def push(self, event: str, data: object = None) -> bool:
        """Enqueue one event for this client. False if the queue is full."""
        try:
            self.queue.put_nowait(Envelope(event, data))
            return True
        except asyncio.QueueFull:
            self.dropped += 1
            log.warning("Client %d queue full, dropping %s event", self.id, event)
            return False

    async def next(self) -> Envelope:
        return await self.queue.get()


class Fanout:
    def __init__(self, inbox: Inbox, queue_size: int = 1000):
        self.inbox = inbox
        self.queue_size = queue_size
        self._subs: dict[int, Subscription] = {}
        self._ids = itertools.count(1)

    @property
    def client_count(self) -> int:
        return len(self._subs)

    def subscribe(self) -> Subscription:
        """Register a client; its first event is the current history.

        Snapshot and registration happen without yielding to the loop, so
        every message lands either in the history or as a later event.
        """
        history = [m.to_dict() for m in self.inbox.snapshot()]
        sub = Subscription(next(self._ids), maxsize=max(self.queue_size, 1) + 1)
        sub.queue.put_nowait(Envelope("history", history))
        self._subs[sub.id] = sub
        log.info("Client %d connected (%d messages replayed)", sub.id, len(history))
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        if self._subs.pop(sub.id, None) is not None:
            log.info("Client %d disconnected", sub.id)

    def publish(self, event: str, data: object = None) -> int:
        """Broadcast to every current client. Returns how many got it."""
        delivered = 0
        for sub in list(self._subs.values()):
            if sub.push(event, data):
                delivered += 1
        return delivered
