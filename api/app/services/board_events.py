"""Transient board events flowing through the trigger dispatcher."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from app.models.automation import EventType
from app.utils.datetime import utcnow


@dataclass(frozen=True, slots=True)
class BoardEvent:
    """Immutable fact about a card on a board, with causal lineage.

    ``depth`` is 0 for externally originated events and grows by one for every
    action-produced hop; ``causation_id`` points at the event that caused it.
    """
    board_id: uuid.UUID
    card_id: uuid.UUID
    type: EventType
    payload: dict[str, Any] = field(default_factory=dict)
    event_id: uuid.UUID = field(default_factory=uuid.uuid4)
    causation_id: uuid.UUID | None = None
    depth: int = 0
    occurred_at: datetime = field(default_factory=utcnow)

    @classmethod
    def external(
        cls,
        *,
        board_id: uuid.UUID,
        card_id: uuid.UUID,
        type: EventType,
        payload: dict[str, Any] | None = None,
    ) -> "BoardEvent":
        return cls(board_id=board_id, card_id=card_id, type=type, payload=dict(payload or {}))

    def derive(
        self,
        *,
        type: EventType,
        payload: dict[str, Any] | None = None,
        board_id: uuid.UUID | None = None,
        card_id: uuid.UUID | None = None,
    ) -> "BoardEvent":
        """Build the event produced by an action reacting to this one."""
        return BoardEvent(
            board_id=board_id or self.board_id,
            card_id=card_id or self.card_id,
            type=type,
            payload=dict(payload or {}),
            causation_id=self.event_id,
            depth=self.depth + 1,
        )
