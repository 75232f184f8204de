"""Worker job entrypoint for recurrence scheduler ticks."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from app.db.session import async_session
from app.services.dispatcher import TriggerDispatcher
from app.services.recurrence_scheduler import RecurrenceScheduler

logger = logging.getLogger("app.jobs.recurrence")


async def run_recurrence_tick(dispatcher: TriggerDispatcher | None = None) -> dict[str, Any]:
    """Run one tick and drain the automations it triggers.

    Without a caller-owned dispatcher a private one is created and closed once
    every event produced by the tick has been dispatched.
    """
    owned = dispatcher is None
    active = dispatcher or TriggerDispatcher(async_session)
    try:
        report = await RecurrenceScheduler(async_session, active).tick()
        if owned:
            await active.join()
    finally:
        if owned:
            await active.close()
    return report.as_dict()


def run_recurrence_tick_job(*, requested_by: str | None = None) -> dict[str, Any]:
    """Execute a recurrence tick within a worker context."""
    result = asyncio.run(run_recurrence_tick())
    logger.info(
        "Recurrence tick complete (requested by %s): %d created, %d failed",
        requested_by or "scheduler",
        len(result["created_card_ids"]),
        len(result["failed_config_ids"]),
    )
    return {
        **result,
        "ran_at": result["ran_at"].isoformat(),
        "created_card_ids": [str(card_id) for card_id in result["created_card_ids"]],
        "lost_claims": [str(config_id) for config_id in result["lost_claims"]],
        "failed_config_ids": [str(config_id) for config_id in result["failed_config_ids"]],
    }
