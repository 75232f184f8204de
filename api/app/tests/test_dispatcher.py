from __future__ import annotations

import asyncio
import uuid

import pytest
from sqlalchemy import select

from app.models.automation import EventType, ExecutionStatus
from app.models.board import CardComment, Priority
from app.services import automation_service
from app.services.board_events import BoardEvent
from app.services.board_gateway import BoardGateway
from app.services.dispatcher import TriggerDispatcher
from app.services.loop_guard import LoopGuard
from app.services.rule_store import rule_store
from app.tests.utils import create_rule, execution_logs, reload_card, seed_board, seed_card


def _moved(board, card, *, to_column) -> BoardEvent:
    return BoardEvent.external(
        board_id=board.id,
        card_id=card.id,
        type=EventType.CARD_MOVED,
        payload={"from_column_id": str(card.column_id), "to_column_id": str(to_column.id)},
    )


async def _ping_pong_rules(session, board):
    """Two rules that keep re-triggering each other through label changes."""
    ping = await create_rule(
        session,
        board,
        name="ping",
        trigger={"type": "label_added", "label": "ping"},
        actions=[{"type": "remove_label", "label": "ping"}],
    )
    pong = await create_rule(
        session,
        board,
        name="pong",
        trigger={"type": "label_removed", "label": "ping"},
        actions=[{"type": "add_label", "label": "ping"}],
    )
    return ping, pong


@pytest.mark.asyncio
async def test_high_priority_card_moved_into_column_fires_once(session, session_factory, dispatcher):
    board = await seed_board(session)
    done = board.column("Done")
    rule = await create_rule(
        session,
        board,
        trigger={"type": "card_moved", "to_column_id": str(done.id)},
        conditions=[{"field": "priority", "operator": "equals", "value": "high"}],
        actions=[{"type": "add_label", "label": "shipped"}],
    )
    high = await seed_card(session, board, title="High", priority=Priority.HIGH)
    low = await seed_card(session, board, title="Low", priority=Priority.LOW)

    dispatcher.submit(_moved(board, high, to_column=done))
    dispatcher.submit(_moved(board, low, to_column=done))
    dispatcher.submit(_moved(board, high, to_column=board.column("Doing")))
    await dispatcher.join()

    logs = await execution_logs(session_factory, rule_id=rule.id)
    assert [(log.card_id, log.action_type, log.status) for log in logs] == [
        (high.id, "add_label", ExecutionStatus.SUCCEEDED)
    ]
    assert (await reload_card(session_factory, low.id)).label_ids == []


@pytest.mark.asyncio
async def test_mutual_trigger_loop_halts_at_depth_bound(session, session_factory, dispatcher):
    board = await seed_board(session)
    card = await seed_card(session, board, label_ids=["ping"])
    ping, pong = await _ping_pong_rules(session, board)

    dispatcher.submit(
        BoardEvent.external(board_id=board.id, card_id=card.id, type=EventType.LABEL_ADDED, payload={"label": "ping"})
    )
    await dispatcher.join()

    assert dispatcher.is_idle()
    logs = await execution_logs(session_factory)
    depths = sorted(log.detail["depth"] for log in logs)
    assert depths == list(range(dispatcher.loop_guard.max_depth))
    assert {log.rule_id for log in logs} == {ping.id, pong.id}
    assert dispatcher.loop_guard.depth_rejections == 1


@pytest.mark.asyncio
async def test_rate_limiter_stops_a_storm_and_records_one_audit_row(session, session_factory):
    board = await seed_board(session)
    card = await seed_card(session, board, label_ids=["ping"])
    await _ping_pong_rules(session, board)
    limited = TriggerDispatcher(
        session_factory,
        rule_store=rule_store,
        loop_guard=LoopGuard(max_depth=1000, max_firings=4, window_seconds=60),
    )
    try:
        limited.submit(
            BoardEvent.external(
                board_id=board.id, card_id=card.id, type=EventType.LABEL_ADDED, payload={"label": "ping"}
            )
        )
        await limited.join()
    finally:
        await limited.close()

    logs = await execution_logs(session_factory)
    statuses = [log.status for log in logs]
    assert statuses.count(ExecutionStatus.SUCCEEDED) == 4
    throttled = [log for log in logs if log.status is ExecutionStatus.THROTTLED]
    assert len(throttled) == 1
    assert throttled[0].detail["reason"] == "rate_limited"
    assert limited.loop_guard.rate_rejections == 1


@pytest.mark.asyncio
async def test_events_of_a_board_are_handled_in_arrival_order(session, session_factory, dispatcher):
    board = await seed_board(session)
    card = await seed_card(session, board)
    await create_rule(
        session,
        board,
        trigger={"type": "comment_added"},
        actions=[{"type": "post_comment", "template": "echo {{event.payload.n}}"}],
    )

    for n in range(6):
        dispatcher.submit(
            BoardEvent.external(board_id=board.id, card_id=card.id, type=EventType.COMMENT_ADDED, payload={"n": n})
        )
    assert dispatcher.pending(board.id) >= 5
    await dispatcher.join()

    async with session_factory() as check:
        comments = (
            await check.execute(
                select(CardComment).where(CardComment.card_id == card.id).order_by(CardComment.created_at)
            )
        ).scalars().all()
    assert [comment.content for comment in comments] == [f"echo {n}" for n in range(6)]


@pytest.mark.asyncio
async def test_produced_events_chain_into_other_rules(session, session_factory, dispatcher):
    board = await seed_board(session)
    card = await seed_card(session, board)
    done = board.column("Done")
    await create_rule(
        session,
        board,
        trigger={"type": "card_created"},
        actions=[{"type": "move_card", "column_id": str(done.id)}],
    )
    await create_rule(
        session,
        board,
        trigger={"type": "card_moved", "to_column_id": str(done.id)},
        actions=[{"type": "set_priority", "priority": "low"}],
    )

    dispatcher.submit(BoardEvent.external(board_id=board.id, card_id=card.id, type=EventType.CARD_CREATED))
    await dispatcher.join()

    refreshed = await reload_card(session_factory, card.id)
    assert refreshed.column_id == done.id
    assert refreshed.priority == Priority.LOW


@pytest.mark.asyncio
async def test_toggled_rule_is_not_seen_by_the_next_dispatch(session, session_factory, dispatcher):
    board = await seed_board(session)
    other_board = await seed_board(session, name="Other")
    card = await seed_card(session, board)
    rule = await create_rule(
        session,
        board,
        trigger={"type": "card_created"},
        actions=[{"type": "post_comment", "template": "hello"}],
    )

    dispatcher.submit(BoardEvent.external(board_id=board.id, card_id=card.id, type=EventType.CARD_CREATED))
    await dispatcher.join()
    assert len(await execution_logs(session_factory, rule_id=rule.id)) == 1

    await automation_service.toggle_rule(session, rule=rule)
    dispatcher.submit(BoardEvent.external(board_id=board.id, card_id=card.id, type=EventType.CARD_CREATED))
    await dispatcher.join()

    assert len(await execution_logs(session_factory, rule_id=rule.id)) == 1
    assert await rule_store.rules_for(session, other_board.id, EventType.CARD_CREATED) == []


@pytest.mark.asyncio
async def test_disabling_a_rule_mid_run_keeps_the_admitted_run(session, session_factory, dispatcher, monkeypatch):
    board = await seed_board(session)
    card = await seed_card(session, board)
    rule = await create_rule(
        session,
        board,
        trigger={"type": "card_created"},
        actions=[{"type": "add_label", "label": "seen"}, {"type": "post_comment", "template": "hello"}],
    )
    entered = asyncio.Event()
    release = asyncio.Event()
    original_add_label = BoardGateway.add_label

    async def _held_add_label(self, card, label):
        entered.set()
        await release.wait()
        return await original_add_label(self, card, label)

    monkeypatch.setattr(BoardGateway, "add_label", _held_add_label)
    dispatcher.submit(BoardEvent.external(board_id=board.id, card_id=card.id, type=EventType.CARD_CREATED))
    await asyncio.wait_for(entered.wait(), timeout=5)

    assert dispatcher.submit(BoardEvent.external(board_id=board.id, card_id=card.id, type=EventType.CARD_CREATED)) == 1
    await automation_service.toggle_rule(session, rule=rule)
    release.set()
    await dispatcher.join()

    logs = await execution_logs(session_factory, rule_id=rule.id)
    assert sorted((log.action_type, log.status) for log in logs) == [
        ("add_label", ExecutionStatus.SUCCEEDED),
        ("post_comment", ExecutionStatus.SUCCEEDED),
    ]
    assert (await reload_card(session_factory, card.id)).label_ids == ["seen"]


@pytest.mark.asyncio
async def test_boards_get_independent_queues(session, dispatcher):
    first = await seed_board(session)
    second = await seed_board(session, name="Second")

    dispatcher.submit(BoardEvent.external(board_id=first.id, card_id=uuid.uuid4(), type=EventType.CARD_CREATED))
    dispatcher.submit(BoardEvent.external(board_id=first.id, card_id=uuid.uuid4(), type=EventType.CARD_CREATED))
    dispatcher.submit(BoardEvent.external(board_id=second.id, card_id=uuid.uuid4(), type=EventType.CARD_CREATED))

    assert dispatcher.pending(first.id) == 2
    assert dispatcher.pending(second.id) == 1
    await dispatcher.join()
    assert dispatcher.is_idle()
    assert dispatcher.processed == 3


@pytest.mark.asyncio
async def test_event_for_vanished_card_is_dropped_quietly(session, session_factory, dispatcher):
    board = await seed_board(session)
    rule = await create_rule(
        session,
        board,
        trigger={"type": "card_created"},
        actions=[{"type": "add_label", "label": "x"}],
    )

    dispatcher.submit(BoardEvent.external(board_id=board.id, card_id=uuid.uuid4(), type=EventType.CARD_CREATED))
    await dispatcher.join()

    assert await execution_logs(session_factory, rule_id=rule.id) == []
    assert dispatcher.is_idle()
