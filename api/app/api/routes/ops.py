from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.api.deps import get_dispatcher, get_session_factory
from app.schema.recurring import RecurrenceTickRead
from app.services.dispatcher import TriggerDispatcher
from app.services.recurrence_scheduler import RecurrenceScheduler
from app.services.task_queue import task_queue

router = APIRouter()


@router.get("/queues", tags=["ops"])
async def queue_health() -> dict:
    """Minimal operations dashboard for Redis/RQ health."""
    return task_queue.snapshot()


@router.get("/automations", tags=["ops"])
async def automation_health(dispatcher: TriggerDispatcher = Depends(get_dispatcher)) -> dict[str, Any]:
    """Dispatcher queue depth and loop guard counters."""
    return dispatcher.snapshot()


@router.post("/recurrence/tick", response_model=RecurrenceTickRead, tags=["ops"])
async def run_recurrence_tick(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    dispatcher: TriggerDispatcher = Depends(get_dispatcher),
) -> RecurrenceTickRead:
    """Run one recurrence tick through the worker queue, inline when Redis is unavailable."""

    async def _fallback() -> dict[str, Any]:
        report = await RecurrenceScheduler(session_factory, dispatcher).tick()
        return report.as_dict()

    result = await task_queue.enqueue_recurrence_tick(fallback=_fallback, requested_by="ops")
    return RecurrenceTickRead.model_validate(result)
