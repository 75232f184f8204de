"""Announce cards whose due date has passed as DUE_DATE_REACHED events."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.models.automation import EventType
from app.services.board_events import BoardEvent
from app.services.board_gateway import BoardGateway
from app.utils.datetime import ensure_utc, utcnow

if TYPE_CHECKING:
    from app.services.dispatcher import TriggerDispatcher

logger = logging.getLogger("app.services.due_date_scanner")


async def scan(
    session_factory: async_sessionmaker[AsyncSession],
    dispatcher: "TriggerDispatcher",
    now: datetime | None = None,
) -> int:
    """Emit one event per newly overdue card and return how many were emitted.

    Each card is claimed by stamping ``due_reached_at`` before its event is
    queued, so concurrent scanners announce a given due date once.
    """
    moment = ensure_utc(now) if now else utcnow()
    emitted = 0
    async with session_factory() as session:
        gateway = BoardGateway(session)
        candidates = await gateway.due_card_ids(moment)
        for card_id, board_id in candidates:
            claimed = await gateway.mark_due_reached(card_id, moment)
            await session.commit()
            if not claimed:
                continue
            dispatcher.submit(
                BoardEvent.external(
                    board_id=board_id,
                    card_id=card_id,
                    type=EventType.DUE_DATE_REACHED,
                    payload={"due_reached_at": moment.isoformat()},
                )
            )
            emitted += 1
    if emitted:
        logger.info("Announced %d due cards", emitted)
    return emitted
