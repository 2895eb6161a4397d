import asyncio
import json

import pytest
from httpx import AsyncClient

from api.v1.events import event_stream
from app.services.notifications import Deleted, notifier

pytestmark = pytest.mark.asyncio


class TestChangeFeed:
    """Tests for the server-sent change feed."""

    @pytest.mark.parametrize(
        "path",
        [
            "/api/v1/classes/missing/events",
            "/api/v1/opportunities/missing/events",
            "/api/v1/students/missing/events",
        ],
    )
    async def test_unknown_target(self, client: AsyncClient, path: str):
        response = await client.get(path)
        assert response.status_code == 404

    async def test_events_are_framed(self):
        response = event_stream("class:feed-test")
        assert response.media_type == "text/event-stream"

        body = response.body_iterator
        pending = asyncio.ensure_future(body.__anext__())
        await asyncio.sleep(0)

        await notifier.publish(["class:feed-test"], Deleted("selections", "o1"))
        chunk = await asyncio.wait_for(pending, timeout=1)

        event_line, data_line, *_ = chunk.split("\n")
        assert event_line == "event: deleted"
        assert json.loads(data_line.removeprefix("data: ")) == {
            "type": "deleted",
            "table": "selections",
            "record_id": "o1",
        }

        await body.aclose()
        assert notifier.subscriber_count("class:feed-test") == 0
