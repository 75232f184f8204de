from __future__ import annotations

import json

import httpx
import pytest

from app.services.webhook_service import USER_AGENT, WebhookDeliveryError, deliver_webhook

HOOK_URL = "https://hooks.example.com/boardflow"


@pytest.mark.asyncio
async def test_delivers_json_once():
    seen: list[httpx.Request] = []

    def _handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(204)

    summary = await deliver_webhook(
        HOOK_URL, {"card": {"title": "Ship"}}, timeout=1.0, transport=httpx.MockTransport(_handler)
    )

    assert summary["status_code"] == 204
    assert len(seen) == 1
    assert seen[0].headers["user-agent"] == USER_AGENT
    assert json.loads(seen[0].content) == {"card": {"title": "Ship"}}


@pytest.mark.asyncio
async def test_error_status_is_not_retried():
    calls = 0

    def _handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return httpx.Response(500)

    with pytest.raises(WebhookDeliveryError) as excinfo:
        await deliver_webhook(HOOK_URL, {}, timeout=1.0, transport=httpx.MockTransport(_handler))

    assert excinfo.value.message == "webhook_status:500"
    assert excinfo.value.status_code == 500
    assert calls == 1


@pytest.mark.parametrize(
    ("exc", "message"),
    [
        (httpx.ReadTimeout("slow"), "webhook_timeout"),
        (httpx.ConnectError("refused"), "webhook_error:ConnectError"),
    ],
)
@pytest.mark.asyncio
async def test_transport_failures_are_reported(exc, message):
    def _handler(request: httpx.Request) -> httpx.Response:
        raise exc

    with pytest.raises(WebhookDeliveryError) as excinfo:
        await deliver_webhook(HOOK_URL, {}, timeout=1.0, transport=httpx.MockTransport(_handler))

    assert excinfo.value.message == message
