"""Shared helpers for engine and API tests."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.automation import AutomationExecutionLog, AutomationRule
from app.models.board import Board, BoardColumn, Card, Priority
from app.schema.automation import AutomationRuleCreate
from app.services import automation_service


@dataclass(slots=True)
class BoardContext:
    """Seeded board with named columns."""

    board: Board
    columns: dict[str, BoardColumn] = field(default_factory=dict)

    @property
    def id(self) -> uuid.UUID:
        return self.board.id

    @property
    def owner_id(self) -> uuid.UUID:
        return self.board.owner_id

    def column(self, name: str) -> BoardColumn:
        return self.columns[name]


async def seed_board(
    session: AsyncSession,
    *,
    name: str = "Delivery",
    columns: tuple[str, ...] = ("Backlog", "Doing", "Done"),
) -> BoardContext:
    """Create a board with ordered columns."""
    board = Board(name=name, owner_id=uuid.uuid4())
    session.add(board)
    await session.flush()
    context = BoardContext(board=board)
    for position, column_name in enumerate(columns):
        column = BoardColumn(board_id=board.id, name=column_name, position=position)
        session.add(column)
        context.columns[column_name] = column
    await session.commit()
    return context


async def seed_card(
    session: AsyncSession,
    board: BoardContext,
    *,
    column: str = "Backlog",
    title: str = "Ship release notes",
    priority: Priority = Priority.MEDIUM,
    **fields: Any,
) -> Card:
    card = Card(
        board_id=board.id,
        column_id=board.column(column).id,
        title=title,
        priority=priority,
        **fields,
    )
    session.add(card)
    await session.commit()
    return card


async def create_rule(
    session: AsyncSession,
    board: BoardContext,
    *,
    trigger: dict[str, Any],
    actions: list[dict[str, Any]],
    conditions: list[dict[str, Any]] | None = None,
    name: str | None = None,
) -> AutomationRule:
    """Create a rule through the service so the rule cache is invalidated."""
    payload = AutomationRuleCreate.model_validate(
        {
            "name": name or f"rule-{uuid.uuid4().hex[:6]}",
            "trigger": trigger,
            "conditions": conditions or [],
            "actions": actions,
        }
    )
    return await automation_service.create_rule(session, board_id=board.id, payload=payload)


async def execution_logs(session_factory, *, rule_id: uuid.UUID | None = None) -> list[AutomationExecutionLog]:
    async with session_factory() as session:
        stmt = select(AutomationExecutionLog).order_by(AutomationExecutionLog.created_at)
        if rule_id is not None:
            stmt = stmt.where(AutomationExecutionLog.rule_id == rule_id)
        result = await session.execute(stmt)
        return list(result.scalars().all())


async def count_rows(session_factory, model, *criteria) -> int:
    async with session_factory() as session:
        result = await session.execute(select(func.count()).select_from(model).where(*criteria))
        return int(result.scalar_one())


async def reload_card(session_factory, card_id: uuid.UUID) -> Card:
    async with session_factory() as session:
        return await session.get(Card, card_id)
