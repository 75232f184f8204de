"""Automation rule endpoints."""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_db
from app.schema.automation import (
    AutomationExecutionLogRead,
    AutomationRuleCreate,
    AutomationRuleRead,
    AutomationRuleUpdate,
)
from app.services import automation_service

router = APIRouter()


@router.get("/boards/{board_id}/automations", response_model=list[AutomationRuleRead])
async def list_automation_rules(
    board_id: uuid.UUID,
    session: AsyncSession = Depends(get_db),
) -> list[AutomationRuleRead]:
    """List automation rules for a board in evaluation order."""
    rules = await automation_service.list_rules(session, board_id=board_id)
    return [AutomationRuleRead.model_validate(rule) for rule in rules]


@router.post(
    "/boards/{board_id}/automations",
    response_model=AutomationRuleRead,
    status_code=status.HTTP_201_CREATED,
)
async def create_automation_rule(
    board_id: uuid.UUID,
    payload: AutomationRuleCreate,
    session: AsyncSession = Depends(get_db),
) -> AutomationRuleRead:
    """Create a new automation rule."""
    rule = await automation_service.create_rule(session, board_id=board_id, payload=payload)
    return AutomationRuleRead.model_validate(rule)


@router.get("/automations/{rule_id}", response_model=AutomationRuleRead)
async def get_automation_rule(
    rule_id: uuid.UUID,
    session: AsyncSession = Depends(get_db),
) -> AutomationRuleRead:
    rule = await automation_service.get_rule(session, rule_id=rule_id)
    return AutomationRuleRead.model_validate(rule)


@router.patch("/automations/{rule_id}", response_model=AutomationRuleRead)
async def update_automation_rule(
    rule_id: uuid.UUID,
    payload: AutomationRuleUpdate,
    session: AsyncSession = Depends(get_db),
) -> AutomationRuleRead:
    """Update an automation rule."""
    rule = await automation_service.get_rule(session, rule_id=rule_id)
    rule = await automation_service.update_rule(session, rule=rule, payload=payload)
    return AutomationRuleRead.model_validate(rule)


@router.post("/automations/{rule_id}/toggle", response_model=AutomationRuleRead)
async def toggle_automation_rule(
    rule_id: uuid.UUID,
    session: AsyncSession = Depends(get_db),
) -> AutomationRuleRead:
    rule = await automation_service.get_rule(session, rule_id=rule_id)
    rule = await automation_service.toggle_rule(session, rule=rule)
    return AutomationRuleRead.model_validate(rule)


@router.delete(
    "/automations/{rule_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    response_class=Response,
    response_model=None,
)
async def delete_automation_rule(
    rule_id: uuid.UUID,
    session: AsyncSession = Depends(get_db),
) -> None:
    """Delete an automation rule."""
    rule = await automation_service.get_rule(session, rule_id=rule_id)
    await automation_service.delete_rule(session, rule=rule)


@router.get("/automations/{rule_id}/logs", response_model=list[AutomationExecutionLogRead])
async def list_automation_logs(
    rule_id: uuid.UUID,
    limit: int | None = Query(default=None, ge=1, le=500),
    session: AsyncSession = Depends(get_db),
) -> list[AutomationExecutionLogRead]:
    """Newest-first execution history for a rule."""
    await automation_service.get_rule(session, rule_id=rule_id)
    logs = await automation_service.list_execution_logs(session, rule_id=rule_id, limit=limit)
    return [AutomationExecutionLogRead.model_validate(entry) for entry in logs]
