"""Card data-access capability used by automation actions and the scheduler.

Invariants:
- Every mutation is set-style ("put the card in column X"), never relative, so a
  retried action cannot double-apply.
- Mutations return True only when card state actually changed.
- Callers own the transaction; the gateway flushes but never commits.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.board import Board, BoardColumn, Card, CardComment, Priority


def card_snapshot(card: Card) -> dict[str, Any]:
    """Plain attribute view of a card for conditions and templates."""
    return {
        "id": card.id,
        "board_id": card.board_id,
        "column_id": card.column_id,
        "swimlane_id": card.swimlane_id,
        "title": card.title,
        "description": card.description,
        "priority": card.priority.value if isinstance(card.priority, Priority) else card.priority,
        "label_ids": list(card.label_ids or []),
        "assignee_ids": list(card.assignee_ids or []),
        "custom_fields": dict(card.custom_fields or {}),
        "start_date": card.start_date,
        "due_date": card.due_date,
        "archived_at": card.archived_at,
    }


class BoardGateway:
    """SQLAlchemy-backed access to boards, columns, cards, and comments."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_board(self, board_id: uuid.UUID) -> Board | None:
        return await self.session.get(Board, board_id)

    async def get_column(self, column_id: uuid.UUID) -> BoardColumn | None:
        return await self.session.get(BoardColumn, column_id)

    async def get_card(self, card_id: uuid.UUID) -> Card | None:
        # Reload so state committed by earlier actions (or other sessions) is visible.
        return await self.session.get(Card, card_id, populate_existing=True)

    async def move_card(self, card: Card, column_id: uuid.UUID) -> bool:
        if card.column_id == column_id:
            return False
        card.column_id = column_id
        await self.session.flush()
        return True

    async def add_label(self, card: Card, label: str) -> bool:
        labels = list(card.label_ids or [])
        if label in labels:
            return False
        card.label_ids = labels + [label]
        await self.session.flush()
        return True

    async def remove_label(self, card: Card, label: str) -> bool:
        labels = list(card.label_ids or [])
        if label not in labels:
            return False
        card.label_ids = [item for item in labels if item != label]
        await self.session.flush()
        return True

    async def assign_user(self, card: Card, user_id: uuid.UUID) -> bool:
        assignees = list(card.assignee_ids or [])
        if str(user_id) in assignees:
            return False
        card.assignee_ids = assignees + [str(user_id)]
        await self.session.flush()
        return True

    async def set_due_date(self, card: Card, due_date: datetime) -> bool:
        if card.due_date == due_date:
            return False
        card.due_date = due_date
        card.due_reached_at = None
        await self.session.flush()
        return True

    async def set_priority(self, card: Card, priority: Priority) -> bool:
        if card.priority == priority:
            return False
        card.priority = priority
        await self.session.flush()
        return True

    async def archive_card(self, card: Card, now: datetime) -> bool:
        if card.archived_at is not None:
            return False
        card.archived_at = now
        await self.session.flush()
        return True

    async def add_checklist(self, card: Card, title: str, items: list[dict[str, Any]]) -> bool:
        checklists = list(card.checklists or [])
        if any(checklist.get("title") == title for checklist in checklists):
            return False
        card.checklists = checklists + [{"title": title, "items": items}]
        await self.session.flush()
        return True

    async def add_comment(self, card: Card, content: str, *, author_id: uuid.UUID | None = None) -> CardComment:
        comment = CardComment(card_id=card.id, author_id=author_id, content=content)
        self.session.add(comment)
        await self.session.flush()
        return comment

    async def clone_card(self, template: Card, *, start_at: datetime) -> Card:
        """Create a fresh card from a template, keeping the due-date offset."""
        due_date: datetime | None = None
        if template.start_date and template.due_date:
            due_date = start_at + (template.due_date - template.start_date)
        checklists = [
            {
                "title": checklist.get("title"),
                "items": [
                    {"title": item.get("title"), "is_checked": False}
                    for item in checklist.get("items") or []
                ],
            }
            for checklist in template.checklists or []
        ]
        clone = Card(
            board_id=template.board_id,
            column_id=template.column_id,
            swimlane_id=template.swimlane_id,
            title=template.title,
            description=template.description,
            priority=template.priority,
            label_ids=list(template.label_ids or []),
            assignee_ids=[],
            custom_fields=dict(template.custom_fields or {}),
            checklists=checklists,
            start_date=start_at,
            due_date=due_date,
        )
        self.session.add(clone)
        await self.session.flush()
        return clone

    async def due_card_ids(self, now: datetime) -> list[tuple[uuid.UUID, uuid.UUID]]:
        """Return (card_id, board_id) pairs whose due date passed and is unannounced."""
        result = await self.session.execute(
            select(Card.id, Card.board_id)
            .where(
                Card.due_date.is_not(None),
                Card.due_date <= now,
                Card.due_reached_at.is_(None),
                Card.archived_at.is_(None),
            )
            .order_by(Card.due_date)
        )
        return [(row.id, row.board_id) for row in result]

    async def mark_due_reached(self, card_id: uuid.UUID, now: datetime) -> bool:
        """Claim the due-date announcement for a card; False if already claimed."""
        result = await self.session.execute(
            update(Card)
            .where(Card.id == card_id, Card.due_reached_at.is_(None))
            .values(due_reached_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1
