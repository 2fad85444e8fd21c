from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from image_governance.services.notifications import AlertDispatchError, HttpNotificationSink


def test_http_sink_posts_notification_payload() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(201, json={"id": "n1"})

    async def run() -> None:
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            sink = HttpNotificationSink("https://notify.example.com/", "notify-key", client=client)
            await sink.notify(
                recipient_role="admin",
                title="Image URL governance anomaly",
                message="60 invalid image URLs",
                severity="high",
                metadata={"recipient_id": "admin-1", "priority": "urgent"},
            )

    asyncio.run(run())

    assert len(seen) == 1
    request = seen[0]
    assert str(request.url) == "https://notify.example.com/notifications"
    assert request.headers["X-API-Key"] == "notify-key"
    body = json.loads(request.content)
    assert body["recipient_role"] == "admin"
    assert body["severity"] == "high"
    assert body["metadata"] == {"recipient_id": "admin-1", "priority": "urgent"}


def test_http_sink_wraps_error_status() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(502, json={"detail": "upstream down"})

    async def run() -> None:
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            sink = HttpNotificationSink("https://notify.example.com", client=client)
            await sink.notify(recipient_role="admin", title="t", message="m", severity="low", metadata={})

    with pytest.raises(AlertDispatchError):
        asyncio.run(run())


def test_http_sink_wraps_transport_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    async def run() -> None:
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            sink = HttpNotificationSink("https://notify.example.com", client=client)
            await sink.notify(recipient_role="admin", title="t", message="m", severity="low", metadata={})

    with pytest.raises(AlertDispatchError):
        asyncio.run(run())
