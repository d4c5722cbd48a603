"""
Activity event bus: bounded history plus live fan-out to stream subscribers.
"""

from __future__ import annotations

import asyncio
import uuid
from collections import deque
from datetime import datetime, timezone
from typing import Any, Deque, Dict, List, Optional, Set, TYPE_CHECKING

from shared.logging import get_logger
from .classifier import classify
from .models import ActivityLogEntry

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


class ActivitySubscription:
    """Live feed of activity entries for one stream consumer.

    Each subscription buffers independently; when its queue is full the oldest
    pending entry is dropped so the publisher never waits.
    """

    def __init__(self, bus: "ActivityEventBus", max_pending: int):
        self.id = str(uuid.uuid4())
        self._bus = bus
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max_pending)
        self.dropped = 0
        self.closed = False

    def offer(self, entry: ActivityLogEntry) -> None:
        if self.closed:
            return
        if self._queue.full():
            self._queue.get_nowait()
            self.dropped += 1
        self._queue.put_nowait(entry)

    async def get(self) -> ActivityLogEntry:
        return await self._queue.get()

    def pending(self) -> int:
        return self._queue.qsize()

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._bus.unsubscribe(self)

    def __aiter__(self):
        return self

    async def __anext__(self) -> ActivityLogEntry:
        if self.closed:
            raise StopAsyncIteration
        return await self.get()


class ActivityEventBus:
    """Ring buffer of the most recent activity entries with pub/sub.

    Capacity is fixed; recording past it evicts the oldest entry.
    """

    def __init__(self, capacity: int = 1000, subscriber_queue_size: int = 100,
                 metrics: Optional["MetricsCollector"] = None):
        self.capacity = capacity
        self.subscriber_queue_size = subscriber_queue_size
        self.metrics = metrics
        self.logger = get_logger("gateway.activity_bus")
        self._entries: Deque[ActivityLogEntry] = deque(maxlen=capacity)
        self._subscribers: Set[ActivitySubscription] = set()

    def record(
        self,
        *,
        method: str,
        path: str,
        status_code: int,
        duration_ms: int,
        user_id: Optional[str] = None,
        username: Optional[str] = None,
    ) -> ActivityLogEntry:
        """Classify a completed request, store it and push it to subscribers."""
        message, category, severity = classify(method, path, status_code, username)
        entry = ActivityLogEntry(
            id=str(uuid.uuid4()),
            timestamp=datetime.now(timezone.utc),
            user_id=user_id,
            username=username,
            status_code=status_code,
            duration_ms=duration_ms,
            message=message,
            category=category,
            severity=severity,
            method=method,
            path=path,
        )
        self.append(entry)
        return entry

    def append(self, entry: ActivityLogEntry) -> None:
        self._entries.append(entry)

        for subscription in list(self._subscribers):
            subscription.offer(entry)

        if self.metrics:
            self.metrics.increment_counter(
                "activity_events_total",
                category=entry.category.value,
                severity=entry.severity.value,
            )

    def query(self, limit: int = 50, offset: int = 0) -> Dict[str, Any]:
        """Newest-first page of the retained entries."""
        limit = max(0, limit)
        offset = max(0, offset)
        newest_first: List[ActivityLogEntry] = list(reversed(self._entries))
        return {
            "total": len(newest_first),
            "entries": newest_first[offset:offset + limit],
        }

    def subscribe(self) -> ActivitySubscription:
        subscription = ActivitySubscription(self, self.subscriber_queue_size)
        self._subscribers.add(subscription)
        self.logger.info(
            "Activity stream subscribed",
            subscription_id=subscription.id,
            subscribers=len(self._subscribers),
        )
        self._publish_subscriber_count()
        return subscription

    def unsubscribe(self, subscription: ActivitySubscription) -> None:
        if subscription in self._subscribers:
            self._subscribers.discard(subscription)
            self.logger.info(
                "Activity stream unsubscribed",
                subscription_id=subscription.id,
                dropped=subscription.dropped,
                subscribers=len(self._subscribers),
            )
            self._publish_subscriber_count()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def __len__(self) -> int:
        return len(self._entries)

    def _publish_subscriber_count(self) -> None:
        if self.metrics:
            self.metrics.set_gauge("activity_subscribers", len(self._subscribers))
