"""
Server-Sent Events framing for access event subscriptions.
"""

import json
from typing import AsyncGenerator, Any, Dict

from shared.logging import get_logger
from .publisher import Subscription

logger = get_logger("access.events.sse")


def format_sse(event: str, data: Dict[str, Any]) -> str:
    return f"event: {event}\ndata: {json.dumps(data)}\n\n"


async def sse_event_stream(
    subscription: Subscription,
    heartbeat_seconds: float = 25.0
) -> AsyncGenerator[str, None]:
    """Yield SSE frames for ``subscription`` until it closes.

    Starts with a ``ready`` frame and emits ``ping`` when idle for
    ``heartbeat_seconds``. The subscription is released on exit,
    including when the client disconnects and the generator is closed.
    """
    try:
        yield format_sse("ready", {})
        while True:
            try:
                event = await subscription.next_event(timeout=heartbeat_seconds)
            except StopAsyncIteration:
                break

            if event is None:
                yield format_sse("ping", {})
                continue

            yield format_sse(event.type, {"payload": event.payload, "at": event.at.isoformat()})
    finally:
        subscription.close()
        logger.debug("SSE stream closed", subscription_id=subscription.subscription_id)
