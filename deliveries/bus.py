"""
Notification bus: best-effort broadcast of order change events to every
connected subscriber in this process.

Each subscriber owns a bounded queue. Publishing never waits on a subscriber:
if a queue is full the event is dropped for that subscriber, which is expected
to resynchronize on its next full read. Closing a subscription wakes its
reader immediately.
"""
import asyncio
import logging
import threading
import uuid
from typing import Callable

from deliveries.metrics import notification_subscribers, notifications_dropped_total
from deliveries.models import OrderEvent

logger = logging.getLogger(__name__)

# Queued behind the last event when a subscription closes
_CLOSED = object()


class Subscription:
    """Handle for one connected client. Receives events published after subscribing."""

    def __init__(self, bus: "NotificationBus", buffer_size: int):
        self.id = uuid.uuid4().hex
        self._bus = bus
        self._buffer_size = buffer_size
        # One slot past buffer_size is reserved for the close sentinel.
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=buffer_size + 1)
        self.closed = False

    def offer(self, event: OrderEvent) -> bool:
        """Queue an event without waiting. False if closed or the buffer is full."""
        if self.closed or self._queue.qsize() >= self._buffer_size:
            return False
        self._queue.put_nowait(event)
        return True

    async def get(self, timeout: float | None = None) -> OrderEvent | None:
        """Next event, or None if `timeout` elapses or the subscription is closed."""
        if self.closed and self._queue.empty():
            return None
        try:
            item = await asyncio.wait_for(self._queue.get(), timeout)
        except asyncio.TimeoutError:
            return None
        if item is _CLOSED:
            return None
        return item

    def drain(self) -> list[OrderEvent]:
        """Events already queued, without waiting."""
        events = []
        while not self._queue.empty():
            item = self._queue.get_nowait()
            if item is not _CLOSED:
                events.append(item)
        return events

    def close(self) -> None:
        self._bus.unsubscribe(self)

    def _shut(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._queue.put_nowait(_CLOSED)

    def __aiter__(self):
        return self

    async def __anext__(self) -> OrderEvent:
        event = await self.get()
        if event is None:
            raise StopAsyncIteration
        return event


class NotificationBus:
    def __init__(self, buffer_size: int = 100):
        self._buffer_size = buffer_size
        self._subscribers: dict[str, Subscription] = {}
        self._lock = threading.Lock()
        self._forwarders: list[Callable[[OrderEvent], None]] = []

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def subscribe(self) -> Subscription:
        sub = Subscription(self, self._buffer_size)
        with self._lock:
            self._subscribers[sub.id] = sub
            count = len(self._subscribers)
        notification_subscribers.set(count)
        logger.debug("Subscriber %s connected (%d total)", sub.id, count)
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        """Remove a handle. Unknown or already-removed handles are ignored."""
        with self._lock:
            removed = self._subscribers.pop(sub.id, None)
            count = len(self._subscribers)
        sub._shut()
        if removed is not None:
            notification_subscribers.set(count)
            logger.debug("Subscriber %s disconnected (%d total)", sub.id, count)

    def add_forwarder(self, forward: Callable[[OrderEvent], None]) -> None:
        """Register a callable that receives every locally published event."""
        self._forwarders.append(forward)

    def deliver(self, event: OrderEvent) -> int:
        """Fan out to local subscribers only. Returns the number that accepted it."""
        with self._lock:
            subscribers = list(self._subscribers.values())
        delivered = 0
        for sub in subscribers:
            if sub.closed:
                # unsubscribed after the snapshot
                continue
            if sub.offer(event):
                delivered += 1
            else:
                notifications_dropped_total.inc()
                logger.warning("Dropped %s event for order %s (subscriber %s full)", event.kind, event.order_id, sub.id)
        return delivered

    def publish(self, event: OrderEvent) -> int:
        delivered = self.deliver(event)
        for forward in self._forwarders:
            try:
                forward(event)
            except Exception:
                notifications_dropped_total.inc()
                logger.exception("Forwarding %s event for order %s failed", event.kind, event.order_id)
        return delivered

    def close(self) -> None:
        with self._lock:
            subscribers = list(self._subscribers.values())
            self._subscribers.clear()
        for sub in subscribers:
            sub._shut()
        notification_subscribers.set(0)
