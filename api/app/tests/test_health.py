from __future__ import annotations

import uuid

import pytest

from app.main import app
from app.services.dispatcher import TriggerDispatcher
from app.services.loop_guard import LoopGuard


@pytest.mark.asyncio
async def test_health_reports_ok_without_runtime(client, monkeypatch):
    monkeypatch.setattr(app.state, "dispatcher", None, raising=False)

    response = await client.get("/api/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


@pytest.mark.asyncio
async def test_health_includes_automation_telemetry(client, dispatcher, monkeypatch):
    monkeypatch.setattr(app.state, "dispatcher", dispatcher, raising=False)

    response = await client.get("/health")
    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "ok"
    telemetry = payload["automations"]
    assert telemetry["pending_events"] == 0
    assert telemetry["issues"] == []


@pytest.mark.asyncio
async def test_health_degrades_while_a_board_is_throttled(client, session_factory, monkeypatch):
    guard = LoopGuard(max_depth=5, max_firings=1, window_seconds=60)
    board_id = uuid.uuid4()
    guard.record_firing(board_id)
    assert not guard.admit(board_id, uuid.uuid4(), depth=0).admitted
    throttled = TriggerDispatcher(session_factory, loop_guard=guard)
    monkeypatch.setattr(app.state, "dispatcher", throttled, raising=False)

    try:
        response = await client.get("/api/health")
    finally:
        await throttled.close()

    payload = response.json()
    assert payload["status"] == "degraded"
    assert payload["automations"]["rate_rejections"] == 1
    assert payload["automations"]["issues"] == [{"board_id": str(board_id), "reason": "rate_limited"}]
