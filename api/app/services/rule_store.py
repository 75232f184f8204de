"""Cached, board-keyed lookups of automation rules and due recurring configs.

Invariants:
- rules_for returns enabled rules in creation order (oldest first).
- invalidate(board_id) is synchronous; a load that started before an
  invalidation never repopulates the cache with the pre-invalidation rows.
- Unknown boards yield an empty list, never an error.
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable

from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.models.automation import AutomationRule, EventType
from app.models.recurring import RecurringConfig
from app.schema.automation import ACTIONS_ADAPTER, CONDITIONS_ADAPTER, TRIGGER_ADAPTER
from app.schema.condition import Condition

logger = logging.getLogger("app.services.rule_store")


@dataclass(frozen=True, slots=True)
class RuleSnapshot:
    """Session-independent, parsed view of an automation rule."""
    id: uuid.UUID
    board_id: uuid.UUID
    name: str
    trigger: Any
    conditions: tuple[Condition, ...]
    actions: tuple[Any, ...]
    is_enabled: bool
    version: int
    created_at: datetime

    @property
    def event_type(self) -> EventType:
        return EventType(self.trigger.type)

    @classmethod
    def from_row(cls, rule: AutomationRule) -> "RuleSnapshot":
        return cls(
            id=rule.id,
            board_id=rule.board_id,
            name=rule.name,
            trigger=TRIGGER_ADAPTER.validate_python(rule.trigger),
            conditions=tuple(CONDITIONS_ADAPTER.validate_python(rule.conditions or [])),
            actions=tuple(ACTIONS_ADAPTER.validate_python(rule.actions)),
            is_enabled=rule.is_enabled,
            version=rule.version,
            created_at=rule.created_at,
        )


@dataclass(slots=True)
class _CacheEntry:
    rules: list[RuleSnapshot]
    loaded_at: float


@dataclass(frozen=True, slots=True)
class DueRecurring:
    """Snapshot of a due config; ``claim_version`` is the CAS token read."""
    id: uuid.UUID
    template_card_id: uuid.UUID
    cron_expression: str
    next_run_at: datetime
    claim_version: int


class RuleStore:
    """Process-local rule cache keyed by board id."""

    def __init__(
        self,
        *,
        ttl_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = settings.automation_rule_cache_ttl_seconds if ttl_seconds is None else ttl_seconds
        self._clock = clock
        self._entries: dict[uuid.UUID, _CacheEntry] = {}
        self._generations: dict[uuid.UUID, int] = {}

    def invalidate(self, board_id: uuid.UUID) -> None:
        """Drop cached rules for a board; must run before a rule write is acknowledged."""
        self._generations[board_id] = self._generations.get(board_id, 0) + 1
        self._entries.pop(board_id, None)
        logger.debug("Rule cache invalidated for board %s", board_id)

    def clear(self) -> None:
        for board_id in list(self._entries):
            self.invalidate(board_id)

    def _fresh(self, entry: _CacheEntry) -> bool:
        if self._ttl <= 0:
            return False
        return self._clock() - entry.loaded_at < self._ttl

    async def _load(self, session: AsyncSession, board_id: uuid.UUID) -> list[RuleSnapshot]:
        result = await session.execute(
            select(AutomationRule)
            .where(AutomationRule.board_id == board_id)
            .order_by(AutomationRule.created_at, AutomationRule.id)
        )
        snapshots: list[RuleSnapshot] = []
        for rule in result.scalars().all():
            try:
                snapshots.append(RuleSnapshot.from_row(rule))
            except ValidationError as exc:
                logger.warning("Skipping unparseable rule %s on board %s: %s", rule.id, board_id, exc)
        return snapshots

    async def board_rules(self, session: AsyncSession, board_id: uuid.UUID) -> list[RuleSnapshot]:
        """Return every rule (enabled or not) for a board, in creation order."""
        entry = self._entries.get(board_id)
        if entry and self._fresh(entry):
            return entry.rules
        generation = self._generations.get(board_id, 0)
        rules = await self._load(session, board_id)
        if self._generations.get(board_id, 0) == generation:
            self._entries[board_id] = _CacheEntry(rules=rules, loaded_at=self._clock())
        return rules

    async def rules_for(
        self, session: AsyncSession, board_id: uuid.UUID, trigger_type: EventType
    ) -> list[RuleSnapshot]:
        """Enabled rules for a board whose trigger listens to ``trigger_type``."""
        rules = await self.board_rules(session, board_id)
        return [rule for rule in rules if rule.is_enabled and rule.event_type == trigger_type]

    async def due_recurring(self, session: AsyncSession, now: datetime) -> list[DueRecurring]:
        """Enabled recurring configs whose next fire is at or before ``now``."""
        result = await session.execute(
            select(RecurringConfig)
            .where(RecurringConfig.enabled.is_(True), RecurringConfig.next_run_at <= now)
            .order_by(RecurringConfig.next_run_at, RecurringConfig.id)
        )
        return [
            DueRecurring(
                id=config.id,
                template_card_id=config.template_card_id,
                cron_expression=config.cron_expression,
                next_run_at=config.next_run_at,
                claim_version=config.claim_version,
            )
            for config in result.scalars().all()
        ]


rule_store = RuleStore()
