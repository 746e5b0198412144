from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from wabridge.bus.dispatcher import WebhookDispatcher
from wabridge.bus.events import WebhookDelivery


def _recording_client(status_code: int = 200):
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(status_code, json={"ok": True})

    return httpx.AsyncClient(transport=httpx.MockTransport(handler)), seen


@pytest.mark.anyio
async def test_delivers_json_with_headers():
    client, seen = _recording_client()
    dispatcher = WebhookDispatcher(client=client)
    await dispatcher.start()

    dispatcher.submit(
        WebhookDelivery(
            url="http://sink.local/hooks/agent",
            payload={"message": "hi"},
            headers={"Authorization": "Bearer secret"},
            label="hook",
        )
    )
    await dispatcher.join()
    await dispatcher.stop()
    await client.aclose()

    (request,) = seen
    assert request.method == "POST"
    assert str(request.url) == "http://sink.local/hooks/agent"
    assert request.headers["Authorization"] == "Bearer secret"
    assert json.loads(request.content) == {"message": "hi"}


@pytest.mark.anyio
async def test_errors_and_rejections_are_swallowed():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "down.local":
            raise httpx.ConnectError("refused", request=request)
        return httpx.Response(500)

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    dispatcher = WebhookDispatcher(client=client)
    await dispatcher.start()

    dispatcher.submit(WebhookDelivery(url="http://down.local/", payload={}))
    dispatcher.submit(WebhookDelivery(url="http://broken.local/", payload={}))
    await asyncio.wait_for(dispatcher.join(), timeout=5)
    await dispatcher.stop()
    await client.aclose()

    assert dispatcher.pending == 0


@pytest.mark.anyio
async def test_overflow_drops_oldest():
    client, seen = _recording_client()
    dispatcher = WebhookDispatcher(max_pending=2, client=client)

    for i in range(4):
        dispatcher.submit(WebhookDelivery(url="http://sink.local/", payload={"n": i}))

    assert dispatcher.pending == 2
    assert dispatcher.dropped == 2

    await dispatcher.start()
    await dispatcher.join()
    await dispatcher.stop()
    await client.aclose()

    assert sorted(json.loads(r.content)["n"] for r in seen) == [2, 3]


@pytest.mark.anyio
async def test_per_destination_cap():
    in_flight = 0
    peak = 0

    async def handler(request: httpx.Request) -> httpx.Response:
        nonlocal in_flight, peak
        in_flight += 1
        peak = max(peak, in_flight)
        await asyncio.sleep(0.02)
        in_flight -= 1
        return httpx.Response(204)

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    dispatcher = WebhookDispatcher(workers=4, per_destination=2, client=client)
    await dispatcher.start()

    for i in range(8):
        dispatcher.submit(WebhookDelivery(url="http://one.local/", payload={"n": i}))
    await dispatcher.join()
    await dispatcher.stop()
    await client.aclose()

    assert peak == 2
