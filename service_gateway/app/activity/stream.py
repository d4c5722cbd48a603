"""
Server-Sent Events rendering of the live activity feed.
"""

import asyncio
import json
from typing import AsyncGenerator

from fastapi import Request

from shared.logging import get_logger
from .bus import ActivityEventBus
from .models import ActivityLogEntry

CONNECTED_FRAME = ": connected\n\n"
KEEPALIVE_FRAME = ": keep-alive\n\n"

logger = get_logger("gateway.activity_stream")


def format_entry(entry: ActivityLogEntry) -> str:
    return f"data: {json.dumps(entry.to_dict())}\n\n"


async def activity_event_stream(
    request: Request,
    bus: ActivityEventBus,
    keepalive_seconds: float = 30.0,
) -> AsyncGenerator[str, None]:
    """Yield SSE frames for a new bus subscription until the client goes away.

    The subscription only exists while the generator runs. It is released
    whether the client disconnects, the response is cancelled or writing
    fails.
    """
    subscription = bus.subscribe()
    try:
        yield CONNECTED_FRAME

        while not await request.is_disconnected():
            try:
                entry = await asyncio.wait_for(subscription.get(), timeout=keepalive_seconds)
            except asyncio.TimeoutError:
                yield KEEPALIVE_FRAME
                continue

            yield format_entry(entry)
    finally:
        subscription.close()
        logger.debug("Activity stream closed", subscription_id=subscription.id)
