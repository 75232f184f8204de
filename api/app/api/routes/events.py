"""Intake for board events reported by upstream mutation handlers."""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_db, get_dispatcher
from app.models.board import Card
from app.schema.event import BoardEventAccepted, BoardEventCreate
from app.services.board_events import BoardEvent
from app.services.dispatcher import TriggerDispatcher

router = APIRouter()


@router.post(
    "/{board_id}/events",
    response_model=BoardEventAccepted,
    status_code=status.HTTP_202_ACCEPTED,
)
async def submit_board_event(
    board_id: uuid.UUID,
    payload: BoardEventCreate,
    session: AsyncSession = Depends(get_db),
    dispatcher: TriggerDispatcher = Depends(get_dispatcher),
) -> BoardEventAccepted:
    """Queue an externally originated event (depth 0) for the board's automations."""
    card = await session.get(Card, payload.card_id)
    if not card or card.board_id != board_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Card not found on this board")
    event = BoardEvent.external(board_id=board_id, card_id=card.id, type=payload.type, payload=payload.payload)
    queued = dispatcher.submit(event)
    return BoardEventAccepted(event_id=event.event_id, board_id=board_id, queued=queued)
