from __future__ import annotations

import asyncio
import base64
import json
from pathlib import Path
import sys

import httpx
import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from avatar_studio.domain import ImageDeleted
from avatar_studio.infrastructure import AblyTransport, EventBusClient

API_KEY = "app.key:secret"


def test_rejects_malformed_api_key():
    with pytest.raises(ValueError):
        AblyTransport("no-secret-here")


def test_publish_posts_message_with_basic_auth():
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["url"] = str(request.url)
        captured["auth"] = request.headers["authorization"]
        captured["body"] = json.loads(request.content)
        return httpx.Response(201, json={"channel": "images"})

    async def scenario():
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        transport = AblyTransport(API_KEY, rest_host="https://rest.test", http_client=client)
        bus = EventBusClient(transport)
        accepted = await bus.publish_event(ImageDeleted(id="1", timestamp=5))
        await client.aclose()
        return accepted

    assert asyncio.run(scenario()) is True
    assert captured["url"] == "https://rest.test/channels/images/messages"
    expected = base64.b64encode(API_KEY.encode()).decode()
    assert captured["auth"] == f"Basic {expected}"
    assert captured["body"] == {
        "name": "image_deleted",
        "data": {"id": "1", "timestamp": 5, "folder_id": None, "character_id": None},
    }


def test_rejected_publish_is_reported_by_bus():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, json={"error": "unavailable"})

    async def scenario():
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        bus = EventBusClient(AblyTransport(API_KEY, http_client=client))
        accepted = await bus.publish("images", "image_deleted", {"id": "1"})
        await client.aclose()
        return accepted

    assert asyncio.run(scenario()) is False


def test_subscription_streams_events_to_typed_handlers():
    messages = [
        {"name": "image_deleted", "data": json.dumps({"id": "1", "timestamp": 10})},
        {"name": "image_created", "data": {"id": "2"}},
    ]
    lines = [f"data: {json.dumps(message)}" for message in messages]
    lines.insert(1, "data: not-json")
    body = ("\n\n".join([":ok", *lines]) + "\n\n").encode()
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, content=body, headers={"content-type": "text/event-stream"})

    async def scenario():
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        transport = AblyTransport(
            API_KEY,
            realtime_host="https://realtime.test",
            reconnect_delay=30.0,
            http_client=client,
        )
        bus = EventBusClient(transport)
        received = []
        done = asyncio.Event()

        def on_event(event):
            received.append(event)
            if len(received) == 2:
                done.set()

        bus.subscribe("images", "image_deleted", on_event)
        bus.subscribe("images", "image_created", on_event)
        await bus.connect()
        await asyncio.wait_for(done.wait(), timeout=5)
        await bus.close()
        await client.aclose()
        return received

    received = asyncio.run(scenario())

    assert [(event.name, event.id) for event in received] == [("image_deleted", "1"), ("image_created", "2")]
    assert received[0].timestamp == 10
    assert len(requests) == 1
    params = requests[0].url.params
    assert requests[0].url.path == "/event-stream"
    assert params["channels"] == "images"
    assert params["enveloped"] == "true"
