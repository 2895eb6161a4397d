import asyncio

import pytest

from app.schemas.bid import BidResponse
from app.services.notifications import (
    ChangeNotifier,
    Deleted,
    Inserted,
    Updated,
    class_channel,
    event_payload,
)

pytestmark = pytest.mark.asyncio


class TestChangeNotifier:
    """Tests for the in-process publish/subscribe hub."""

    async def test_publish_to_subscribers(self):
        hub = ChangeNotifier()
        received = []
        hub.subscribe("class:1", received.append)

        delivered = await hub.publish(["class:1"], Deleted("bids", "b1"))

        assert delivered == 1
        assert received == [Deleted("bids", "b1")]

    async def test_only_matching_channel(self):
        hub = ChangeNotifier()
        received = []
        hub.subscribe("class:1", received.append)

        await hub.publish(["class:2"], Deleted("bids", "b1"))

        assert received == []

    async def test_async_subscriber(self):
        hub = ChangeNotifier()
        received = []

        async def on_event(event):
            received.append(event.table)

        hub.subscribe("opportunity:1", on_event)
        await hub.publish(["opportunity:1"], Updated("students", {"id": "s1"}))

        assert received == ["students"]

    async def test_unsubscribe(self):
        hub = ChangeNotifier()
        received = []
        unsubscribe = hub.subscribe("class:1", received.append)
        unsubscribe()
        unsubscribe()

        await hub.publish(["class:1"], Deleted("bids", "b1"))

        assert received == []
        assert hub.subscriber_count("class:1") == 0

    async def test_failing_subscriber_does_not_block_others(self):
        """Delivery is best-effort; a broken listener is skipped."""
        hub = ChangeNotifier()
        received = []

        def broken(event):
            raise RuntimeError("listener crashed")

        hub.subscribe("class:1", broken)
        hub.subscribe("class:1", received.append)

        delivered = await hub.publish(["class:1"], Deleted("bids", "b1"))

        assert delivered == 1
        assert len(received) == 1


class TestListen:
    """Tests for iterating a channel's events."""

    async def test_listen_yields_published_events(self):
        hub = ChangeNotifier()
        channel = class_channel("c1")
        stream = hub.listen(channel)
        first = asyncio.ensure_future(stream.__anext__())
        await asyncio.sleep(0)

        await hub.publish([channel], Deleted("selections", "o1"))

        assert await asyncio.wait_for(first, timeout=1) == Deleted("selections", "o1")
        await stream.aclose()
        assert hub.subscriber_count(channel) == 0

    async def test_slow_listener_drops_overflow(self):
        hub = ChangeNotifier()
        stream = hub.listen("class:c1", max_pending=1)
        first = asyncio.ensure_future(stream.__anext__())
        await asyncio.sleep(0)

        await hub.publish(["class:c1"], Deleted("bids", "1"))
        assert (await first).record_id == "1"

        # One pending slot: "2" is queued, "3" is dropped
        await hub.publish(["class:c1"], Deleted("bids", "2"))
        await hub.publish(["class:c1"], Deleted("bids", "3"))
        assert (await stream.__anext__()).record_id == "2"

        late = asyncio.ensure_future(stream.__anext__())
        await hub.publish(["class:c1"], Deleted("bids", "4"))
        assert (await late).record_id == "4"
        await stream.aclose()


class TestEventPayload:
    """Tests for the JSON form of events."""

    def test_deleted_payload(self):
        assert event_payload(Deleted("bids", "b1")) == {
            "type": "deleted",
            "table": "bids",
            "record_id": "b1",
        }

    def test_model_record_is_serialised(self):
        from datetime import datetime, timezone

        record = BidResponse(
            id="b1",
            student_id="s1",
            opportunity_id="o1",
            created_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
        )
        payload = event_payload(Inserted("bids", record))

        assert payload["type"] == "inserted"
        assert payload["record"]["student_id"] == "s1"
        assert payload["record"]["created_at"].startswith("2026-01-01T00:00:00")
