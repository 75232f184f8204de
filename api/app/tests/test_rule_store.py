from __future__ import annotations

import uuid
from datetime import timedelta

import pytest

from app.models.automation import AutomationRule, EventType
from app.services.rule_store import RuleStore
from app.tests.utils import create_rule, seed_board
from app.utils.datetime import utcnow

LABEL_ACTION = [{"type": "add_label", "label": "seen"}]


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


@pytest.mark.asyncio
async def test_rules_for_returns_enabled_rules_in_creation_order(session):
    board = await seed_board(session)
    base = utcnow()
    rules = []
    for offset, name in [(2, "third"), (0, "first"), (1, "second")]:
        rule = await create_rule(session, board, trigger={"type": "card_created"}, actions=LABEL_ACTION, name=name)
        rule.created_at = base + timedelta(seconds=offset)
        rules.append(rule)
    disabled = await create_rule(session, board, trigger={"type": "card_created"}, actions=LABEL_ACTION)
    disabled.is_enabled = False
    await create_rule(session, board, trigger={"type": "label_added"}, actions=LABEL_ACTION)
    await session.commit()

    store = RuleStore(ttl_seconds=60)
    found = await store.rules_for(session, board.id, EventType.CARD_CREATED)

    assert [rule.name for rule in found] == ["first", "second", "third"]


@pytest.mark.asyncio
async def test_unknown_board_yields_empty_list(session):
    store = RuleStore(ttl_seconds=60)

    assert await store.rules_for(session, uuid.uuid4(), EventType.CARD_MOVED) == []


@pytest.mark.asyncio
async def test_cached_rules_are_served_until_invalidated(session):
    board = await seed_board(session)
    clock = FakeClock()
    store = RuleStore(ttl_seconds=60, clock=clock)
    rule = await create_rule(session, board, trigger={"type": "card_created"}, actions=LABEL_ACTION)

    assert len(await store.rules_for(session, board.id, EventType.CARD_CREATED)) == 1
    row = await session.get(AutomationRule, rule.id)
    row.is_enabled = False
    await session.commit()

    assert len(await store.rules_for(session, board.id, EventType.CARD_CREATED)) == 1
    store.invalidate(board.id)
    assert await store.rules_for(session, board.id, EventType.CARD_CREATED) == []


@pytest.mark.asyncio
async def test_cache_entries_expire_after_ttl(session):
    board = await seed_board(session)
    clock = FakeClock()
    store = RuleStore(ttl_seconds=30, clock=clock)
    assert await store.rules_for(session, board.id, EventType.CARD_CREATED) == []

    await create_rule(session, board, trigger={"type": "card_created"}, actions=LABEL_ACTION)
    assert await store.rules_for(session, board.id, EventType.CARD_CREATED) == []

    clock.now += 31
    assert len(await store.rules_for(session, board.id, EventType.CARD_CREATED)) == 1


@pytest.mark.asyncio
async def test_load_racing_an_invalidation_is_not_cached(session, monkeypatch):
    board = await seed_board(session)
    store = RuleStore(ttl_seconds=60)
    original_load = store._load

    async def _load_then_invalidate(session, board_id):
        rules = await original_load(session, board_id)
        store.invalidate(board_id)
        return rules

    monkeypatch.setattr(store, "_load", _load_then_invalidate)
    await store.rules_for(session, board.id, EventType.CARD_CREATED)

    assert board.id not in store._entries


@pytest.mark.asyncio
async def test_unparseable_rows_are_skipped(session):
    board = await seed_board(session)
    await create_rule(session, board, trigger={"type": "card_created"}, actions=LABEL_ACTION, name="ok")
    session.add(
        AutomationRule(
            board_id=board.id,
            name="broken",
            trigger={"type": "teleported"},
            trigger_type="teleported",
            conditions=[],
            actions=LABEL_ACTION,
        )
    )
    await session.commit()

    store = RuleStore(ttl_seconds=0)
    rules = await store.board_rules(session, board.id)

    assert [rule.name for rule in rules] == ["ok"]
