"""Automation rule storage helpers.

Every write invalidates the board's cached rule set before returning, so the
next dispatched event sees the change.
"""

from __future__ import annotations

import logging
import uuid

from fastapi import HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.models.automation import AutomationExecutionLog, AutomationRule
from app.models.board import Board
from app.schema.automation import (
    ACTIONS_ADAPTER,
    CONDITIONS_ADAPTER,
    TRIGGER_ADAPTER,
    AutomationRuleCreate,
    AutomationRuleUpdate,
    trigger_event_type,
)
from app.services.rule_store import rule_store

logger = logging.getLogger("app.services.automation")


def _dump_definition(rule: AutomationRule, *, trigger=None, conditions=None, actions=None) -> None:
    if trigger is not None:
        rule.trigger = TRIGGER_ADAPTER.dump_python(trigger, mode="json")
        rule.trigger_type = trigger_event_type(trigger).value
    if conditions is not None:
        rule.conditions = CONDITIONS_ADAPTER.dump_python(list(conditions), mode="json")
    if actions is not None:
        rule.actions = ACTIONS_ADAPTER.dump_python(list(actions), mode="json")


async def list_rules(session: AsyncSession, *, board_id: uuid.UUID) -> list[AutomationRule]:
    """List automation rules for a board in evaluation order."""
    result = await session.execute(
        select(AutomationRule)
        .where(AutomationRule.board_id == board_id)
        .order_by(AutomationRule.created_at, AutomationRule.id)
    )
    return list(result.scalars().all())


async def get_rule(session: AsyncSession, *, rule_id: uuid.UUID) -> AutomationRule:
    """Fetch a single automation rule by ID."""
    rule = await session.get(AutomationRule, rule_id)
    if not rule:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Automation rule not found")
    return rule


async def create_rule(
    session: AsyncSession, *, board_id: uuid.UUID, payload: AutomationRuleCreate
) -> AutomationRule:
    """Create a new automation rule at version 1."""
    board = await session.get(Board, board_id)
    if not board:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Board not found")
    rule = AutomationRule(
        board_id=board_id,
        name=payload.name,
        is_enabled=payload.is_enabled,
        version=1,
        created_by_id=payload.created_by_id,
    )
    _dump_definition(rule, trigger=payload.trigger, conditions=payload.conditions, actions=payload.actions)
    session.add(rule)
    await session.commit()
    await session.refresh(rule)
    rule_store.invalidate(board_id)
    logger.info("Automation rule %s created on board %s (%s)", rule.id, board_id, rule.trigger_type)
    return rule


def _check_version(rule: AutomationRule, expected_version: int | None) -> None:
    if expected_version is not None and expected_version != rule.version:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Automation rule changed (version {rule.version}, expected {expected_version})",
        )


async def update_rule(
    session: AsyncSession, *, rule: AutomationRule, payload: AutomationRuleUpdate
) -> AutomationRule:
    """Apply a partial patch and bump the rule version."""
    _check_version(rule, payload.expected_version)
    fields = payload.model_fields_set
    if "name" in fields and payload.name is not None:
        rule.name = payload.name
    _dump_definition(
        rule,
        trigger=payload.trigger if "trigger" in fields else None,
        conditions=payload.conditions if "conditions" in fields else None,
        actions=payload.actions if "actions" in fields else None,
    )
    if "is_enabled" in fields and payload.is_enabled is not None:
        _set_enabled(rule, payload.is_enabled)
    rule.version += 1
    await session.commit()
    await session.refresh(rule)
    rule_store.invalidate(rule.board_id)
    return rule


def _set_enabled(rule: AutomationRule, enabled: bool) -> None:
    if enabled and not rule.is_enabled:
        # A manual re-enable starts a fresh failure streak.
        rule.consecutive_failures = 0
        rule.last_error = None
    rule.is_enabled = enabled


async def toggle_rule(session: AsyncSession, *, rule: AutomationRule) -> AutomationRule:
    """Flip ``is_enabled``."""
    _set_enabled(rule, not rule.is_enabled)
    rule.version += 1
    await session.commit()
    await session.refresh(rule)
    rule_store.invalidate(rule.board_id)
    logger.info("Automation rule %s %s", rule.id, "enabled" if rule.is_enabled else "disabled")
    return rule


async def delete_rule(session: AsyncSession, *, rule: AutomationRule) -> None:
    """Delete an automation rule."""
    board_id = rule.board_id
    await session.delete(rule)
    await session.commit()
    rule_store.invalidate(board_id)


async def list_execution_logs(
    session: AsyncSession, *, rule_id: uuid.UUID, limit: int | None = None
) -> list[AutomationExecutionLog]:
    """Newest-first execution log rows for a rule."""
    result = await session.execute(
        select(AutomationExecutionLog)
        .where(AutomationExecutionLog.rule_id == rule_id)
        .order_by(AutomationExecutionLog.created_at.desc())
        .limit(limit or settings.automation_execution_log_limit)
    )
    return list(result.scalars().all())
