"""Notification delivery for automation actions and rule health alerts."""

from __future__ import annotations

import logging
import uuid
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from app.models.notification import Notification

logger = logging.getLogger("app.services.notifications")


async def notify(session: AsyncSession, user_id: uuid.UUID, payload: dict[str, Any]) -> Notification:
    """Queue a notification for a user; the caller commits."""
    notification = Notification(
        user_id=user_id,
        kind=str(payload.get("kind") or "automation"),
        title=str(payload.get("title") or "Automation")[:200],
        message=str(payload.get("message") or "")[:2000],
        link=payload.get("link"),
        payload=payload.get("data"),
    )
    session.add(notification)
    await session.flush()
    logger.debug("Notification %s queued for %s (%s)", notification.id, user_id, notification.kind)
    return notification

