"""
Unit tests for the access event publisher and SSE framing.
"""

import asyncio
import json
import pytest
from unittest.mock import MagicMock

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from shared.metrics import MetricsCollector
from service_access.app.conditions.parser import parse_condition
from service_access.app.events.publisher import (
    ACCESS_REQUEST_CREATED, ACCESS_REQUEST_UPDATED, EventPublisher, SubscriberLimitError
)
from service_access.app.events.sse import format_sse, sse_event_stream
from service_access.app.requests.models import AccessRequest, AccessRequestStatus


def make_request(request_id="req-1", status=AccessRequestStatus.REQUESTED):
    return AccessRequest(
        id=request_id,
        subject_wallet="0xsubject",
        relying_party_wallet="0xverifier",
        claim="age",
        condition=parse_condition({"claim": "age", "op": ">=", "value": 21}),
        status=status,
        version=1
    )


def parse_frame(frame):
    lines = frame.strip().split("\n")
    event = lines[0][len("event: "):]
    data = json.loads(lines[1][len("data: "):])
    return event, data


class TestEventPublisher:
    """Test cases for EventPublisher."""

    @pytest.fixture
    def metrics(self):
        """Create metrics collector."""
        return MetricsCollector("access")

    @pytest.fixture
    def publisher(self, metrics):
        """Create publisher instance."""
        return EventPublisher(buffer_size=3, max_subscribers=2, metrics=metrics)

    @pytest.mark.asyncio
    async def test_fan_out(self, publisher):
        """Test every subscriber receives each event."""
        first = publisher.subscribe()
        second = publisher.subscribe()

        delivered = publisher.publish(ACCESS_REQUEST_CREATED, make_request())

        assert delivered == 2
        for subscription in (first, second):
            event = await subscription.next_event(timeout=1)
            assert event.type == ACCESS_REQUEST_CREATED
            assert event.payload["id"] == "req-1"
            assert event.payload["status"] == "requested"

    @pytest.mark.asyncio
    async def test_publish_without_subscribers(self, publisher):
        """Test publishing with nobody listening is a no-op."""
        assert publisher.publish(ACCESS_REQUEST_CREATED, make_request()) == 0

    @pytest.mark.asyncio
    async def test_payload_is_snapshot(self, publisher):
        """Test later mutations of the entity do not leak into queued events."""
        subscription = publisher.subscribe()
        request = make_request()

        publisher.publish(ACCESS_REQUEST_CREATED, request)
        request.status = AccessRequestStatus.GRANTED

        event = await subscription.next_event(timeout=1)
        assert event.payload["status"] == "requested"

    @pytest.mark.asyncio
    async def test_order_preserved(self, publisher):
        """Test a subscriber sees events in publish order."""
        subscription = publisher.subscribe()

        publisher.publish(ACCESS_REQUEST_CREATED, make_request())
        publisher.publish(ACCESS_REQUEST_UPDATED, make_request(status=AccessRequestStatus.CHALLENGE_SENT))

        first = await subscription.next_event(timeout=1)
        second = await subscription.next_event(timeout=1)
        assert (first.type, second.type) == (ACCESS_REQUEST_CREATED, ACCESS_REQUEST_UPDATED)

    @pytest.mark.asyncio
    async def test_drop_oldest_when_full(self, publisher, metrics):
        """Test a full buffer drops the oldest event and keeps the newest."""
        subscription = publisher.subscribe()

        for index in range(5):
            publisher.publish(ACCESS_REQUEST_UPDATED, make_request(f"req-{index}"))

        received = []
        while not subscription.queue.empty():
            received.append((await subscription.next_event(timeout=1)).payload["id"])

        assert received == ["req-2", "req-3", "req-4"]
        assert subscription.dropped == 2
        assert metrics.registry.get_sample_value("access_events_dropped_total") == 2

    @pytest.mark.asyncio
    async def test_slow_subscriber_does_not_affect_others(self, publisher):
        """Test overflow on one subscriber leaves the other intact."""
        slow = publisher.subscribe()
        fast = publisher.subscribe()

        for index in range(4):
            publisher.publish(ACCESS_REQUEST_UPDATED, make_request(f"req-{index}"))
            await fast.next_event(timeout=1)

        assert slow.dropped == 1
        assert fast.dropped == 0

    @pytest.mark.asyncio
    async def test_subscriber_limit(self, publisher):
        """Test subscribing beyond the limit is rejected."""
        publisher.subscribe()
        publisher.subscribe()

        with pytest.raises(SubscriberLimitError) as exc_info:
            publisher.subscribe()

        assert exc_info.value.status_code == 503

    @pytest.mark.asyncio
    async def test_close_ends_iteration(self, publisher, metrics):
        """Test closing a subscription ends iteration and frees its slot."""
        subscription = publisher.subscribe()
        assert metrics.registry.get_sample_value("access_event_subscribers") == 1

        subscription.close()
        subscription.close()

        received = [event async for event in subscription]
        assert received == []
        assert publisher.get_stats()["subscribers"] == 0
        assert metrics.registry.get_sample_value("access_event_subscribers") == 0
        assert publisher.publish(ACCESS_REQUEST_CREATED, make_request()) == 0

    @pytest.mark.asyncio
    async def test_context_manager(self, publisher):
        """Test the async context manager unsubscribes on exit."""
        async with publisher.subscribe() as subscription:
            assert subscription.subscription_id in publisher.subscriptions

        assert publisher.subscriptions == {}

    @pytest.mark.asyncio
    async def test_next_event_timeout(self, publisher):
        """Test an idle subscription times out with None."""
        subscription = publisher.subscribe()

        assert await subscription.next_event(timeout=0.01) is None

    @pytest.mark.asyncio
    async def test_publish_never_raises(self, publisher):
        """Test a broken entity snapshot does not raise."""
        publisher.subscribe()
        request = MagicMock()
        request.to_dict.side_effect = RuntimeError("boom")

        assert publisher.publish(ACCESS_REQUEST_UPDATED, request) == 0


class TestSSE:
    """Test cases for SSE framing."""

    def test_format_sse(self):
        """Test frame layout."""
        assert format_sse("ping", {}) == "event: ping\ndata: {}\n\n"

    @pytest.mark.asyncio
    async def test_stream_frames(self):
        """Test ready, event and ping frames."""
        publisher = EventPublisher(buffer_size=10)
        subscription = publisher.subscribe()
        stream = sse_event_stream(subscription, heartbeat_seconds=0.01)

        assert parse_frame(await stream.__anext__()) == ("ready", {})

        publisher.publish(ACCESS_REQUEST_CREATED, make_request())
        event, data = parse_frame(await stream.__anext__())
        assert event == ACCESS_REQUEST_CREATED
        assert data["payload"]["id"] == "req-1"
        assert "at" in data

        assert parse_frame(await stream.__anext__()) == ("ping", {})

        await stream.aclose()
        assert publisher.subscriptions == {}

    @pytest.mark.asyncio
    async def test_stream_ends_when_closed(self):
        """Test the stream finishes once the subscription closes."""
        publisher = EventPublisher(buffer_size=10)
        subscription = publisher.subscribe()
        stream = sse_event_stream(subscription, heartbeat_seconds=1)

        await stream.__anext__()
        subscription.close()

        frames = [frame async for frame in stream]
        assert frames == []
