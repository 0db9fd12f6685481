"""Fan-out of change events to connected push-stream clients.

Each subscriber owns a bounded channel read on the event loop that
created it. :meth:`Hub.broadcast` may be called from any thread and never
blocks: when a subscriber already holds its capacity of undelivered
messages, the new message is dropped for that subscriber only.
"""

from __future__ import annotations

import asyncio
import itertools
import json
import logging
import threading
from typing import Any, Optional, Set

logger = logging.getLogger(__name__)

CHANNEL_CAPACITY = 8

_ids = itertools.count(1)
_CLOSED = object()


class SubscriptionClosed(Exception):
    """Raised by :meth:`Subscription.receive` once the channel is closed."""


class Subscription:
    def __init__(self, loop: asyncio.AbstractEventLoop, capacity: int = CHANNEL_CAPACITY) -> None:
        self.id = next(_ids)
        self._loop = loop
        self._capacity = capacity
        # capacity is enforced by _pending so producers never touch the queue directly
        self._queue: asyncio.Queue = asyncio.Queue()
        self._pending = 0
        self._closed = False
        self._lock = threading.Lock()

    @property
    def closed(self) -> bool:
        return self._closed

    def offer(self, message: str) -> bool:
        """Enqueue without waiting. Returns False when full or closed."""
        with self._lock:
            if self._closed or self._pending >= self._capacity:
                return False
            self._pending += 1
        try:
            self._loop.call_soon_threadsafe(self._queue.put_nowait, message)
        except RuntimeError:
            # the reader's loop is gone
            with self._lock:
                self._pending -= 1
            return False
        return True

    async def receive(self, timeout: Optional[float] = None) -> Optional[str]:
        """Wait for the next message; None on timeout."""
        if self._closed:
            raise SubscriptionClosed()
        try:
            message = await asyncio.wait_for(self._queue.get(), timeout)
        except asyncio.TimeoutError:
            return None
        if message is _CLOSED:
            raise SubscriptionClosed()
        with self._lock:
            self._pending -= 1
        return message

    def pending(self) -> int:
        with self._lock:
            return self._pending

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
        try:
            self._loop.call_soon_threadsafe(self._queue.put_nowait, _CLOSED)
        except RuntimeError:
            # loop already closed, nobody left waiting
            pass


class Hub:
    def __init__(self, capacity: int = CHANNEL_CAPACITY) -> None:
        self._capacity = capacity
        self._lock = threading.Lock()
        self._subscribers: Set[Subscription] = set()

    def subscribe(self) -> Subscription:
        """Register a channel read from the running event loop."""
        sub = Subscription(asyncio.get_running_loop(), self._capacity)
        with self._lock:
            self._subscribers.add(sub)
            count = len(self._subscribers)
        logger.info("subscriber %s connected (%d active)", sub.id, count)
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        with self._lock:
            self._subscribers.discard(sub)
            count = len(self._subscribers)
        sub.close()
        logger.info("subscriber %s disconnected (%d active)", sub.id, count)

    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def broadcast(self, event: Any) -> int:
        """Serialize *event* once and offer it to every subscriber.

        Returns the number of subscribers that accepted the message.
        """
        message = json.dumps(event, separators=(",", ":"))
        delivered = 0
        with self._lock:
            for sub in self._subscribers:
                if sub.offer(message):
                    delivered += 1
                else:
                    logger.debug("subscriber %s is full, dropping event", sub.id)
        return delivered
