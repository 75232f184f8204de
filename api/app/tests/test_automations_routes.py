"""API tests for automation rule lifecycle."""

from __future__ import annotations

import uuid

import pytest

from app.models.automation import EventType
from app.services.rule_store import rule_store
from app.tests.utils import seed_board


def _rule_payload(board, **overrides):
    payload = {
        "name": "Flag urgent work",
        "trigger": {"type": "card_moved", "to_column_id": str(board.column("Doing").id)},
        "conditions": [{"field": "priority", "operator": "equals", "value": "urgent"}],
        "actions": [
            {"type": "add_label", "label": "hot"},
            {"type": "post_comment", "template": "Now in {{column}}"},
        ],
    }
    payload.update(overrides)
    return payload


@pytest.mark.asyncio
async def test_automation_rule_lifecycle(client, session):
    board = await seed_board(session)

    create_res = await client.post(f"/api/boards/{board.id}/automations", json=_rule_payload(board))
    assert create_res.status_code == 201
    rule = create_res.json()
    assert rule["version"] == 1
    assert rule["is_enabled"] is True
    assert rule["trigger"]["type"] == "card_moved"
    assert [action["type"] for action in rule["actions"]] == ["add_label", "post_comment"]

    list_res = await client.get(f"/api/boards/{board.id}/automations")
    assert list_res.status_code == 200
    assert [item["id"] for item in list_res.json()] == [rule["id"]]

    update_res = await client.patch(
        f"/api/automations/{rule['id']}",
        json={"name": "Flag hot work", "expected_version": 1, "conditions": []},
    )
    assert update_res.status_code == 200
    updated = update_res.json()
    assert updated["version"] == 2
    assert updated["name"] == "Flag hot work"
    assert updated["conditions"] == []

    toggle_res = await client.post(f"/api/automations/{rule['id']}/toggle")
    assert toggle_res.status_code == 200
    assert toggle_res.json()["is_enabled"] is False
    assert toggle_res.json()["version"] == 3

    get_res = await client.get(f"/api/automations/{rule['id']}")
    assert get_res.status_code == 200
    assert get_res.json()["is_enabled"] is False

    logs_res = await client.get(f"/api/automations/{rule['id']}/logs")
    assert logs_res.status_code == 200
    assert logs_res.json() == []

    delete_res = await client.delete(f"/api/automations/{rule['id']}")
    assert delete_res.status_code == 204
    missing_res = await client.get(f"/api/automations/{rule['id']}")
    assert missing_res.status_code == 404


@pytest.mark.asyncio
async def test_stale_expected_version_conflicts(client, session):
    board = await seed_board(session)
    rule = (await client.post(f"/api/boards/{board.id}/automations", json=_rule_payload(board))).json()
    await client.patch(f"/api/automations/{rule['id']}", json={"name": "First edit"})

    res = await client.patch(f"/api/automations/{rule['id']}", json={"name": "Lost edit", "expected_version": 1})

    assert res.status_code == 409
    assert (await client.get(f"/api/automations/{rule['id']}")).json()["name"] == "First edit"


@pytest.mark.parametrize(
    "overrides",
    [
        {"actions": []},
        {"actions": [{"type": "launch_rocket"}]},
        {"actions": [{"type": "add_label", "label": "x", "color": "red"}]},
        {"actions": [{"type": "set_due_date", "due_date": "2024-01-01T00:00:00Z", "offset_days": 1}]},
        {"actions": [{"type": "trigger_webhook", "url": "not-a-url"}]},
        {"trigger": {"type": "card_teleported"}},
        {"conditions": [{"field": "priority", "operator": "roughly", "value": "high"}]},
        {"conditions": [{"field": "mood", "operator": "equals", "value": "happy"}]},
    ],
)
@pytest.mark.asyncio
async def test_malformed_definitions_are_rejected(client, session, overrides):
    board = await seed_board(session)

    res = await client.post(f"/api/boards/{board.id}/automations", json=_rule_payload(board, **overrides))

    assert res.status_code == 422
    assert (await client.get(f"/api/boards/{board.id}/automations")).json() == []


@pytest.mark.asyncio
async def test_unknown_board_and_rule_are_404(client):
    board_id = uuid.uuid4()
    res = await client.post(
        f"/api/boards/{board_id}/automations",
        json={"name": "x", "trigger": {"type": "card_created"}, "actions": [{"type": "add_label", "label": "x"}]},
    )
    assert res.status_code == 404
    assert (await client.post(f"/api/automations/{uuid.uuid4()}/toggle")).status_code == 404
    assert (await client.get(f"/api/automations/{uuid.uuid4()}/logs")).status_code == 404


@pytest.mark.asyncio
async def test_writes_invalidate_the_rule_cache_before_responding(client, session):
    board = await seed_board(session)
    assert await rule_store.rules_for(session, board.id, EventType.CARD_CREATED) == []

    res = await client.post(
        f"/api/boards/{board.id}/automations",
        json={"name": "x", "trigger": {"type": "card_created"}, "actions": [{"type": "add_label", "label": "x"}]},
    )
    assert res.status_code == 201
    assert len(await rule_store.rules_for(session, board.id, EventType.CARD_CREATED)) == 1

    await client.post(f"/api/automations/{res.json()['id']}/toggle")
    assert await rule_store.rules_for(session, board.id, EventType.CARD_CREATED) == []
