"""Recurring card schedule storage and the scheduler's claim primitive."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime

from fastapi import HTTPException, status
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.board import Card
from app.models.recurring import RecurringConfig
from app.schema.recurring import RecurringConfigCreate, RecurringConfigUpdate
from app.services.rule_store import DueRecurring
from app.utils.cron import next_fire_after
from app.utils.datetime import ensure_utc, utcnow

logger = logging.getLogger("app.services.recurring")


async def find_config(session: AsyncSession, card_id: uuid.UUID) -> RecurringConfig | None:
    result = await session.execute(select(RecurringConfig).where(RecurringConfig.template_card_id == card_id))
    return result.scalar_one_or_none()


async def get_config(session: AsyncSession, *, card_id: uuid.UUID) -> RecurringConfig:
    """Fetch the schedule attached to a template card."""
    config = await find_config(session, card_id)
    if not config:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Recurring config not found for this card")
    return config


async def create_config(
    session: AsyncSession, *, card_id: uuid.UUID, payload: RecurringConfigCreate
) -> RecurringConfig:
    """Schedule a card as a recurring template.

    Without an explicit ``next_run_at`` the first fire is the cron's next
    occurrence after now.
    """
    card = await session.get(Card, card_id)
    if not card:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Card not found")
    if await find_config(session, card_id):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Card already has a recurring config")
    next_run_at = (
        ensure_utc(payload.next_run_at)
        if payload.next_run_at
        else next_fire_after(payload.cron_expression, utcnow())
    )
    config = RecurringConfig(
        template_card_id=card_id,
        cron_expression=payload.cron_expression,
        next_run_at=next_run_at,
        enabled=payload.enabled,
    )
    session.add(config)
    await session.commit()
    await session.refresh(config)
    logger.info("Recurring config %s created for card %s (%s)", config.id, card_id, config.cron_expression)
    return config


async def update_config(
    session: AsyncSession, *, card_id: uuid.UUID, payload: RecurringConfigUpdate
) -> RecurringConfig:
    config = await get_config(session, card_id=card_id)
    fields = payload.model_fields_set
    if "cron_expression" in fields and payload.cron_expression is not None:
        config.cron_expression = payload.cron_expression
        if not payload.next_run_at:
            config.next_run_at = next_fire_after(payload.cron_expression, utcnow())
    if "next_run_at" in fields and payload.next_run_at is not None:
        config.next_run_at = ensure_utc(payload.next_run_at)
    if "enabled" in fields and payload.enabled is not None:
        _set_enabled(config, payload.enabled)
    await session.commit()
    await session.refresh(config)
    return config


def _set_enabled(config: RecurringConfig, enabled: bool) -> None:
    # Re-enabling a stale schedule resumes at the next occurrence instead of firing a backlog.
    if enabled and not config.enabled and ensure_utc(config.next_run_at) <= utcnow():
        config.next_run_at = next_fire_after(config.cron_expression, utcnow())
    config.enabled = enabled


async def toggle_config(session: AsyncSession, *, card_id: uuid.UUID) -> RecurringConfig:
    config = await get_config(session, card_id=card_id)
    _set_enabled(config, not config.enabled)
    await session.commit()
    await session.refresh(config)
    return config


async def delete_config(session: AsyncSession, *, card_id: uuid.UUID) -> None:
    config = await get_config(session, card_id=card_id)
    await session.delete(config)
    await session.commit()


async def claim_fire(session: AsyncSession, due: DueRecurring, now: datetime) -> datetime | None:
    """Compare-and-set claim of one scheduled fire.

    Advances ``next_run_at`` and bumps ``claim_version`` in a single conditional
    update keyed on the version that was read. Returns the new ``next_run_at``
    when this caller won the claim, ``None`` when another instance did.
    Raises ``CronExpressionError`` when the stored expression is unusable.
    """
    next_run_at = next_fire_after(due.cron_expression, now)
    result = await session.execute(
        update(RecurringConfig)
        .where(
            RecurringConfig.id == due.id,
            RecurringConfig.claim_version == due.claim_version,
            RecurringConfig.enabled.is_(True),
            RecurringConfig.next_run_at <= now,
        )
        .values(
            next_run_at=next_run_at,
            last_run_at=now,
            claim_version=RecurringConfig.claim_version + 1,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    await session.commit()
    if result.rowcount != 1:
        return None
    return next_run_at


async def disable_config(session: AsyncSession, config_id: uuid.UUID, *, reason: str) -> None:
    """Switch off a schedule the scheduler cannot evaluate."""
    await session.execute(
        update(RecurringConfig)
        .where(RecurringConfig.id == config_id)
        .values(enabled=False, claim_version=RecurringConfig.claim_version + 1)
        .execution_options(synchronize_session=False)
    )
    await session.commit()
    logger.warning("Recurring config %s disabled: %s", config_id, reason)
