"""
In-process event publisher for access request lifecycle transitions.

Fan-out to every connected subscriber, at most once, no durability: a
subscriber only sees events published while it is connected and must
re-fetch state from the store after reconnecting. Each subscriber owns a
bounded queue; when it is full the oldest queued event is dropped so a
slow consumer never stalls the publisher or the other subscribers.
"""

import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from shared.logging import get_logger
from shared.errors import AccessLayerException
from shared.metrics import MetricsCollector
from ..requests.models import AccessRequest, utcnow

ACCESS_REQUEST_CREATED = "access_request.created"
ACCESS_REQUEST_UPDATED = "access_request.updated"

_CLOSED = object()


@dataclass(frozen=True)
class AccessEvent:
    """One published lifecycle event."""
    type: str
    payload: Dict[str, Any]
    at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "payload": self.payload, "at": self.at.isoformat()}


class SubscriberLimitError(AccessLayerException):
    status_code = 503

    def __init__(self, limit: int):
        super().__init__("SUBSCRIBER_LIMIT_EXCEEDED", f"Maximum event subscribers ({limit}) exceeded")


@dataclass
class Subscription:
    """A live feed of events; iterate it, and close it when done."""
    subscription_id: str
    queue: asyncio.Queue
    publisher: "EventPublisher"
    created_at: datetime = field(default_factory=utcnow)
    dropped: int = 0
    closed: bool = False

    def __aiter__(self):
        return self

    async def __anext__(self) -> AccessEvent:
        if self.closed and self.queue.empty():
            raise StopAsyncIteration
        item = await self.queue.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        return item

    async def next_event(self, timeout: Optional[float] = None) -> Optional[AccessEvent]:
        """Wait for the next event; ``None`` if ``timeout`` elapses first."""
        try:
            return await asyncio.wait_for(self.__anext__(), timeout=timeout)
        except asyncio.TimeoutError:
            return None

    def close(self):
        """Unsubscribe. Idempotent."""
        self.publisher.unsubscribe(self.subscription_id)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.close()


class EventPublisher:
    """Broadcasts access request events to connected subscribers."""

    def __init__(
        self,
        buffer_size: int = 100,
        max_subscribers: int = 1000,
        metrics: Optional[MetricsCollector] = None
    ):
        self.buffer_size = buffer_size
        self.max_subscribers = max_subscribers
        self.metrics = metrics
        self.logger = get_logger("access.events.publisher")
        self.subscriptions: Dict[str, Subscription] = {}

    def subscribe(self) -> Subscription:
        """Register a new subscriber."""
        if len(self.subscriptions) >= self.max_subscribers:
            raise SubscriberLimitError(self.max_subscribers)

        subscription = Subscription(
            subscription_id=str(uuid.uuid4()),
            queue=asyncio.Queue(maxsize=self.buffer_size),
            publisher=self
        )
        self.subscriptions[subscription.subscription_id] = subscription
        self._update_subscriber_gauge()

        self.logger.info(
            "Event subscriber connected",
            subscription_id=subscription.subscription_id,
            total_subscribers=len(self.subscriptions)
        )
        return subscription

    def unsubscribe(self, subscription_id: str):
        subscription = self.subscriptions.pop(subscription_id, None)
        if subscription is None:
            return

        subscription.closed = True
        self._offer(subscription, _CLOSED)
        self._update_subscriber_gauge()

        self.logger.info(
            "Event subscriber disconnected",
            subscription_id=subscription_id,
            dropped=subscription.dropped,
            total_subscribers=len(self.subscriptions)
        )

    def publish(self, event_type: str, request: AccessRequest) -> int:
        """Broadcast a snapshot of ``request``. Never blocks and never raises.

        Returns the number of subscribers the event was queued for.
        """
        try:
            event = AccessEvent(type=event_type, payload=request.to_dict(), at=utcnow())
        except Exception as e:
            self.logger.error("Failed to build access event", event_type=event_type, error=str(e))
            return 0

        delivered = 0
        for subscription in list(self.subscriptions.values()):
            if self._offer(subscription, event):
                delivered += 1

        self.logger.debug(
            "Access event published",
            event_type=event_type,
            request_id=request.id,
            delivered=delivered
        )
        return delivered

    def _offer(self, subscription: Subscription, item: Any) -> bool:
        """Queue ``item``, dropping the oldest queued entry when full."""
        queue = subscription.queue
        if queue.full():
            try:
                queue.get_nowait()
            except asyncio.QueueEmpty:
                pass
            else:
                subscription.dropped += 1
                if self.metrics:
                    self.metrics.increment_counter("access_events_dropped_total")
                self.logger.warning(
                    "Subscriber buffer full, dropped oldest event",
                    subscription_id=subscription.subscription_id,
                    dropped=subscription.dropped
                )
        try:
            queue.put_nowait(item)
            return True
        except asyncio.QueueFull:
            return False

    def _update_subscriber_gauge(self):
        if self.metrics:
            self.metrics.set_gauge("access_event_subscribers", len(self.subscriptions))

    def get_stats(self) -> Dict[str, Any]:
        return {
            "subscribers": len(self.subscriptions),
            "max_subscribers": self.max_subscribers,
            "buffer_size": self.buffer_size,
        }
