"""Per-board trigger dispatch for automation rules.

Invariants:
- Each board owns one FIFO queue drained by at most one task, so events of a
  board are handled (and their actions committed) in admission order.
- Boards are independent; up to ``max_workers`` boards drain concurrently.
- Events produced by actions are appended behind everything already queued
  for their board.
- For every event, each matching rule passes the loop guard, then its
  conditions, then runs its actions; rule lookup happens per event, so a rule
  change is seen by the next event dispatched after the write.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.config import settings
from app.models.automation import AutomationExecutionLog, ExecutionStatus
from app.services import automation_engine
from app.services.board_events import BoardEvent
from app.services.board_gateway import BoardGateway, card_snapshot
from app.services.condition_evaluator import evaluate
from app.services.loop_guard import LoopGuard
from app.services.rule_store import RuleStore, rule_store as default_rule_store

logger = logging.getLogger("app.services.dispatcher")


@dataclass(slots=True)
class EventReport:
    """What happened while one event was dispatched."""
    event: BoardEvent
    matched: list[uuid.UUID] = field(default_factory=list)
    fired: list[automation_engine.RuleRun] = field(default_factory=list)
    rejected: list[tuple[uuid.UUID, str]] = field(default_factory=list)

    @property
    def produced_events(self) -> list[BoardEvent]:
        return [event for run in self.fired for event in run.produced_events]


class TriggerDispatcher:
    """Routes board events to rules through per-board FIFO queues."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        rule_store: RuleStore | None = None,
        loop_guard: LoopGuard | None = None,
        max_workers: int | None = None,
    ) -> None:
        self._session_factory = session_factory
        self.rule_store = rule_store or default_rule_store
        self.loop_guard = loop_guard or LoopGuard()
        self.max_workers = max(1, max_workers or settings.automation_dispatch_workers)
        self._slots = asyncio.Semaphore(self.max_workers)
        self._queues: dict[uuid.UUID, Deque[BoardEvent]] = {}
        self._drainers: dict[uuid.UUID, asyncio.Task[None]] = {}
        self.processed = 0
        self._closed = False

    def submit(self, event: BoardEvent) -> int:
        """Queue an event on its board and return the board's queue length."""
        queue = self._queues.setdefault(event.board_id, deque())
        queue.append(event)
        self._ensure_drainer(event.board_id)
        return len(queue)

    def pending(self, board_id: uuid.UUID | None = None) -> int:
        if board_id is not None:
            return len(self._queues.get(board_id, ()))
        return sum(len(queue) for queue in self._queues.values())

    def is_idle(self, board_id: uuid.UUID | None = None) -> bool:
        if board_id is not None:
            return board_id not in self._drainers and not self._queues.get(board_id)
        return not self._drainers and self.pending() == 0

    def _ensure_drainer(self, board_id: uuid.UUID) -> None:
        if self._closed:
            return
        task = self._drainers.get(board_id)
        if task and not task.done():
            return
        self._drainers[board_id] = asyncio.create_task(
            self._drain(board_id), name=f"automation-board-{board_id}"
        )

    async def _drain(self, board_id: uuid.UUID) -> None:
        queue = self._queues[board_id]
        try:
            async with self._slots:
                while queue:
                    event = queue.popleft()
                    try:
                        report = await self.process_event(event)
                    except Exception:
                        logger.exception("Dispatch failed for event %s on board %s", event.event_id, board_id)
                        continue
                    for produced in report.produced_events:
                        if produced.board_id == board_id:
                            queue.append(produced)
                        else:
                            self.submit(produced)
        finally:
            self._drainers.pop(board_id, None)
            if queue:
                self._ensure_drainer(board_id)
            else:
                self._queues.pop(board_id, None)

    async def join(self) -> None:
        """Wait until every board queue is drained and the dispatcher is idle."""
        while self._drainers:
            await asyncio.gather(*list(self._drainers.values()), return_exceptions=True)

    async def close(self) -> None:
        self._closed = True
        for queue in self._queues.values():
            queue.clear()
        for task in list(self._drainers.values()):
            task.cancel()
        if self._drainers:
            await asyncio.gather(*list(self._drainers.values()), return_exceptions=True)
        self._drainers.clear()
        self._queues.clear()

    async def _record_throttle(self, session: AsyncSession, event: BoardEvent, rule_id: uuid.UUID) -> None:
        session.add(
            AutomationExecutionLog(
                rule_id=rule_id,
                board_id=event.board_id,
                card_id=event.card_id,
                event_id=event.event_id,
                status=ExecutionStatus.THROTTLED,
                detail={
                    "reason": "rate_limited",
                    "max_firings": self.loop_guard.max_firings,
                    "window_seconds": self.loop_guard.window_seconds,
                    "depth": event.depth,
                },
            )
        )
        await session.commit()

    async def process_event(self, event: BoardEvent) -> EventReport:
        """Evaluate and fire every matching rule for a single event."""
        report = EventReport(event=event)
        async with self._session_factory() as session:
            rules = await self.rule_store.rules_for(session, event.board_id, event.type)
            if not rules:
                self.processed += 1
                return report
            gateway = BoardGateway(session)
            for rule in rules:
                if not rule.trigger.matches(event.payload):
                    continue
                report.matched.append(rule.id)
                decision = self.loop_guard.admit(event.board_id, rule.id, event.depth)
                if not decision.admitted:
                    report.rejected.append((rule.id, decision.reason or "rejected"))
                    if decision.tripped:
                        await self._record_throttle(session, event, rule.id)
                    continue
                card = await gateway.get_card(event.card_id)
                if card is None:
                    logger.debug("Card %s vanished before event %s dispatched", event.card_id, event.event_id)
                    break
                if not evaluate(rule.conditions, card_snapshot(card)):
                    continue
                self.loop_guard.record_firing(event.board_id)
                ctx = automation_engine.ActionContext(session=session, gateway=gateway, rule=rule, event=event)
                run = await automation_engine.execute_rule(ctx)
                report.fired.append(run)
                if run.disabled:
                    self.rule_store.invalidate(rule.board_id)
                logger.info(
                    "Rule %s fired for %s on card %s (depth %s, failed=%s)",
                    rule.id,
                    event.type.value,
                    event.card_id,
                    event.depth,
                    run.failed,
                )
        self.processed += 1
        return report

    def snapshot(self) -> dict[str, Any]:
        return {
            "max_workers": self.max_workers,
            "active_boards": len(self._drainers),
            "pending_events": self.pending(),
            "processed_events": self.processed,
            "loop_guard": self.loop_guard.snapshot(),
        }
