"""Schemas for externally submitted board events."""

from __future__ import annotations

from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field

from app.models.automation import EventType


class BoardEventCreate(BaseModel):
    """Event reported by an upstream mutation handler (always depth 0)."""
    card_id: UUID
    type: EventType
    payload: dict[str, Any] = Field(default_factory=dict)


class BoardEventAccepted(BaseModel):
    event_id: UUID
    board_id: UUID
    queued: int
