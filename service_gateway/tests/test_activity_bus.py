"""
Unit tests for the activity event bus and SSE stream.
"""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from service_gateway.app.activity import ActivityCategory, ActivityEventBus, Severity, activity_event_stream
from shared.metrics import MetricsCollector


def _record(bus, index=0, status_code=200, username="alice"):
    return bus.record(
        method="GET",
        path=f"/orion/entities/item-{index}",
        status_code=status_code,
        duration_ms=5,
        user_id=f"{username}-id" if username else None,
        username=username,
    )


class TestActivityEventBus:
    """Test cases for ActivityEventBus."""

    @pytest.fixture
    def bus(self):
        return ActivityEventBus(capacity=1000, subscriber_queue_size=10)

    def test_record_classifies_entry(self, bus):
        entry = bus.record(
            method="POST", path="/auth/login", status_code=200, duration_ms=12,
            user_id="alice-id", username="alice",
        )

        assert entry.message == "alice signed in"
        assert entry.category is ActivityCategory.AUTHENTICATION
        assert entry.severity is Severity.INFO
        assert entry.timestamp.tzinfo is not None
        assert len(entry.id) == 36

    def test_entry_serialization(self, bus):
        payload = _record(bus, status_code=404).to_dict()

        assert payload["userId"] == "alice-id"
        assert payload["statusCode"] == 404
        assert payload["durationMs"] == 5
        assert payload["severity"] == "error"
        assert payload["category"] == "Orion"
        assert payload["timestamp"].endswith("Z")

    def test_ring_buffer_evicts_oldest(self, bus):
        """The 1001st entry pushes out the first one."""
        first = _record(bus, 0)
        for index in range(1, 1001):
            _record(bus, index)

        page = bus.query(limit=2000)
        ids = {entry.id for entry in page["entries"]}
        assert page["total"] == 1000
        assert len(bus) == 1000
        assert first.id not in ids
        assert page["entries"][-1].path == "/orion/entities/item-1"

    def test_query_is_newest_first_with_paging(self, bus):
        for index in range(5):
            _record(bus, index)

        page = bus.query(limit=2, offset=1)

        assert page["total"] == 5
        assert [entry.path for entry in page["entries"]] == [
            "/orion/entities/item-3",
            "/orion/entities/item-2",
        ]

    def test_query_beyond_end(self, bus):
        _record(bus)
        assert bus.query(limit=10, offset=5) == {"total": 1, "entries": []}

    @pytest.mark.asyncio
    async def test_subscriber_receives_new_entries(self, bus):
        subscription = bus.subscribe()
        entry = _record(bus)

        received = await asyncio.wait_for(subscription.get(), timeout=1)

        assert received is entry
        subscription.close()

    @pytest.mark.asyncio
    async def test_slow_subscriber_never_blocks_recording(self, bus):
        """A subscriber that never reads only loses its own oldest entries."""
        slow = bus.subscribe()
        fast = bus.subscribe()

        for index in range(25):
            _record(bus, index)
            assert (await asyncio.wait_for(fast.get(), timeout=1)).path == f"/orion/entities/item-{index}"

        assert len(bus) == 25
        assert slow.pending() == 10
        assert slow.dropped == 15
        assert (await slow.get()).path == "/orion/entities/item-15"

    @pytest.mark.asyncio
    async def test_close_releases_subscription(self):
        metrics = MetricsCollector("gateway")
        bus = ActivityEventBus(metrics=metrics)

        subscription = bus.subscribe()
        assert bus.subscriber_count == 1
        assert metrics.registry.get_sample_value("activity_subscribers") == 1.0

        subscription.close()
        subscription.close()
        _record(bus)

        assert bus.subscriber_count == 0
        assert subscription.pending() == 0
        assert metrics.registry.get_sample_value("activity_subscribers") == 0.0

    def test_activity_events_counted(self):
        metrics = MetricsCollector("gateway")
        bus = ActivityEventBus(metrics=metrics)

        _record(bus, status_code=500)

        assert metrics.registry.get_sample_value(
            "activity_events_total", {"category": "Orion", "severity": "error"}
        ) == 1.0


class TestActivityEventStream:
    """Test cases for the SSE stream writer."""

    @pytest.fixture
    def bus(self):
        return ActivityEventBus()

    def _request(self, disconnect_after):
        request = MagicMock()
        request.is_disconnected = AsyncMock(side_effect=[False] * disconnect_after + [True] * 10)
        return request

    @pytest.mark.asyncio
    async def test_frames(self, bus):
        stream = activity_event_stream(self._request(disconnect_after=2), bus, keepalive_seconds=0.01)

        assert await stream.__anext__() == ": connected\n\n"
        assert bus.subscriber_count == 1

        entry = _record(bus)
        frame = await stream.__anext__()
        assert frame.startswith("data: ")
        assert frame.endswith("\n\n")
        assert json.loads(frame[len("data: "):]) == entry.to_dict()

        assert await stream.__anext__() == ": keep-alive\n\n"

        with pytest.raises(StopAsyncIteration):
            await stream.__anext__()
        assert bus.subscriber_count == 0

    @pytest.mark.asyncio
    async def test_cancelled_stream_releases_subscription(self, bus):
        stream = activity_event_stream(self._request(disconnect_after=100), bus, keepalive_seconds=10)

        await stream.__anext__()
        await stream.aclose()

        assert bus.subscriber_count == 0

    @pytest.mark.asyncio
    async def test_unstarted_stream_holds_no_subscription(self, bus):
        """A response that never starts streaming leaves nothing registered."""
        stream = activity_event_stream(self._request(disconnect_after=100), bus)

        assert bus.subscriber_count == 0
        await stream.aclose()
        assert bus.subscriber_count == 0
