"""Periodic materialisation of recurring cards.

Invariants:
- A scheduled fire produces at most one clone across any number of
  concurrent ticks; the claim (compare-and-set on ``claim_version``) is the
  only mutual exclusion and is taken before the clone is written.
- A won claim is consumed even when cloning fails: ``next_run_at`` advances
  and the failure is logged with the config id.
- Each due config is handled on its own session; one failure never blocks
  the rest of the tick.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.config import settings
from app.models.automation import EventType
from app.services import due_date_scanner, recurring_service
from app.services.board_events import BoardEvent
from app.services.board_gateway import BoardGateway
from app.services.dispatcher import TriggerDispatcher
from app.services.rule_store import DueRecurring, RuleStore, rule_store as default_rule_store
from app.utils.cron import CronExpressionError
from app.utils.datetime import ensure_utc, utcnow

logger = logging.getLogger("app.services.recurrence_scheduler")


class TemplateUnavailableError(RuntimeError):
    """The template card is missing or archived."""


@dataclass(slots=True)
class TickReport:
    ran_at: datetime
    due: int = 0
    created_card_ids: list[uuid.UUID] = field(default_factory=list)
    lost_claims: list[uuid.UUID] = field(default_factory=list)
    failed_config_ids: list[uuid.UUID] = field(default_factory=list)
    due_date_events: int = 0

    def as_dict(self) -> dict[str, Any]:
        return {
            "ran_at": self.ran_at,
            "due": self.due,
            "created_card_ids": list(self.created_card_ids),
            "lost_claims": list(self.lost_claims),
            "failed_config_ids": list(self.failed_config_ids),
            "due_date_events": self.due_date_events,
        }


class RecurrenceScheduler:
    """Fixed-interval tick loop that clones due template cards."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        dispatcher: TriggerDispatcher,
        *,
        rule_store: RuleStore | None = None,
        interval: float | None = None,
        scan_due_dates: bool = True,
    ) -> None:
        self._session_factory = session_factory
        self.dispatcher = dispatcher
        self.rule_store = rule_store or default_rule_store
        self.interval = float(interval or settings.recurrence_tick_seconds)
        self.scan_due_dates = scan_due_dates
        self._stopping = asyncio.Event()
        self._task: asyncio.Task[None] | None = None

    async def tick(self, now: datetime | None = None) -> TickReport:
        """Run one scheduling pass over every due config."""
        moment = ensure_utc(now) if now else utcnow()
        report = TickReport(ran_at=moment)
        async with self._session_factory() as session:
            due = await self.rule_store.due_recurring(session, moment)
        report.due = len(due)
        for config in due:
            try:
                await self._fire(config, moment, report)
            except Exception:
                logger.exception("Recurring config %s failed during tick", config.id)
                report.failed_config_ids.append(config.id)
        if self.scan_due_dates:
            report.due_date_events = await due_date_scanner.scan(self._session_factory, self.dispatcher, moment)
        if report.due:
            logger.info(
                "Recurrence tick: %d due, %d created, %d lost, %d failed",
                report.due,
                len(report.created_card_ids),
                len(report.lost_claims),
                len(report.failed_config_ids),
            )
        return report

    async def _fire(self, config: DueRecurring, now: datetime, report: TickReport) -> None:
        async with self._session_factory() as session:
            try:
                next_run_at = await recurring_service.claim_fire(session, config, now)
            except CronExpressionError as exc:
                await session.rollback()
                await recurring_service.disable_config(session, config.id, reason=str(exc))
                report.failed_config_ids.append(config.id)
                return
            if next_run_at is None:
                logger.debug("Lost claim on recurring config %s", config.id)
                report.lost_claims.append(config.id)
                return

            gateway = BoardGateway(session)
            try:
                template = await gateway.get_card(config.template_card_id)
                if template is None or template.archived_at:
                    raise TemplateUnavailableError("template_unavailable")
                clone = await gateway.clone_card(template, start_at=ensure_utc(config.next_run_at))
                await session.commit()
            except TemplateUnavailableError:
                await session.rollback()
                logger.warning(
                    "Recurring config %s skipped: template card %s is missing or archived",
                    config.id,
                    config.template_card_id,
                )
                report.failed_config_ids.append(config.id)
                return
            except Exception:
                await session.rollback()
                logger.exception("Recurring config %s clone failed; next run %s", config.id, next_run_at)
                report.failed_config_ids.append(config.id)
                return

        report.created_card_ids.append(clone.id)
        logger.info("Recurring config %s created card %s, next run %s", config.id, clone.id, next_run_at)
        self.dispatcher.submit(
            BoardEvent.external(
                board_id=clone.board_id,
                card_id=clone.id,
                type=EventType.CARD_CREATED,
                payload={
                    "recurring_config_id": str(config.id),
                    "template_card_id": str(config.template_card_id),
                },
            )
        )

    async def run_forever(self) -> None:
        logger.info("Recurrence scheduler running every %ss", self.interval)
        while not self._stopping.is_set():
            try:
                await self.tick()
            except Exception:
                logger.exception("Recurrence tick failed")
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                continue

    def start(self) -> None:
        if self._task and not self._task.done():
            return
        self._stopping.clear()
        self._task = asyncio.create_task(self.run_forever(), name="recurrence-scheduler")

    async def stop(self) -> None:
        self._stopping.set()
        if self._task:
            await self._task
            self._task = None
