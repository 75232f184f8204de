"""Recurring card schedule endpoints."""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_db
from app.schema.recurring import RecurringConfigCreate, RecurringConfigRead, RecurringConfigUpdate
from app.services import recurring_service

router = APIRouter()


@router.get("/{card_id}/recurring", response_model=RecurringConfigRead)
async def get_recurring_config(
    card_id: uuid.UUID,
    session: AsyncSession = Depends(get_db),
) -> RecurringConfigRead:
    config = await recurring_service.get_config(session, card_id=card_id)
    return RecurringConfigRead.model_validate(config)


@router.post("/{card_id}/recurring", response_model=RecurringConfigRead, status_code=status.HTTP_201_CREATED)
async def create_recurring_config(
    card_id: uuid.UUID,
    payload: RecurringConfigCreate,
    session: AsyncSession = Depends(get_db),
) -> RecurringConfigRead:
    """Make a card a recurring template."""
    config = await recurring_service.create_config(session, card_id=card_id, payload=payload)
    return RecurringConfigRead.model_validate(config)


@router.patch("/{card_id}/recurring", response_model=RecurringConfigRead)
async def update_recurring_config(
    card_id: uuid.UUID,
    payload: RecurringConfigUpdate,
    session: AsyncSession = Depends(get_db),
) -> RecurringConfigRead:
    config = await recurring_service.update_config(session, card_id=card_id, payload=payload)
    return RecurringConfigRead.model_validate(config)


@router.post("/{card_id}/recurring/toggle", response_model=RecurringConfigRead)
async def toggle_recurring_config(
    card_id: uuid.UUID,
    session: AsyncSession = Depends(get_db),
) -> RecurringConfigRead:
    config = await recurring_service.toggle_config(session, card_id=card_id)
    return RecurringConfigRead.model_validate(config)


@router.delete(
    "/{card_id}/recurring",
    status_code=status.HTTP_204_NO_CONTENT,
    response_class=Response,
    response_model=None,
)
async def delete_recurring_config(
    card_id: uuid.UUID,
    session: AsyncSession = Depends(get_db),
) -> None:
    await recurring_service.delete_config(session, card_id=card_id)
