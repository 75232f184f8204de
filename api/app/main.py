"""FastAPI application entrypoint and health reporting utilities.

Invariants:
- One TriggerDispatcher per process, created on startup and drained on shutdown.
- The in-process recurrence loop runs only when explicitly enabled; otherwise
  ticks come from rq-scheduler.
"""

import logging
from typing import Any

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.router import api_router
from app.core.config import settings
from app.db.session import async_session
from app.jobs.schedule_registry import ensure_schedules
from app.services.dispatcher import TriggerDispatcher
from app.services.recurrence_scheduler import RecurrenceScheduler

logger = logging.getLogger("app.main")

app = FastAPI(title=settings.app_name)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(api_router, prefix=settings.api_prefix)


@app.on_event("startup")
async def _start_automation_runtime() -> None:
    """Create the dispatcher, optional scheduler loop, and scheduled jobs."""
    dispatcher = TriggerDispatcher(async_session)
    app.state.dispatcher = dispatcher
    app.state.recurrence_scheduler = None
    if settings.recurrence_scheduler_enabled and settings.environment.lower() != "test":
        scheduler = RecurrenceScheduler(async_session, dispatcher)
        scheduler.start()
        app.state.recurrence_scheduler = scheduler
    ensure_schedules()


@app.on_event("shutdown")
async def _stop_automation_runtime() -> None:
    scheduler = getattr(app.state, "recurrence_scheduler", None)
    if scheduler:
        await scheduler.stop()
    dispatcher = getattr(app.state, "dispatcher", None)
    if dispatcher:
        pending = dispatcher.pending()
        if pending:
            logger.warning("Dropping %d queued automation events on shutdown", pending)
        await dispatcher.close()


def _summarize_automations(snapshot: dict[str, Any]) -> dict[str, Any]:
    """Condense dispatcher state into health-friendly telemetry.

    Implementation notes:
    - Boards held by the rate limiter are degraded signals.
    - Depth rejections alone are expected safety trips and stay informational.
    """
    guard = snapshot.get("loop_guard", {})
    issues: list[dict[str, Any]] = []
    for board_id in guard.get("throttled_boards", []):
        issues.append({"board_id": board_id, "reason": "rate_limited"})
    return {
        "active_boards": snapshot.get("active_boards", 0),
        "pending_events": snapshot.get("pending_events", 0),
        "processed_events": snapshot.get("processed_events", 0),
        "depth_rejections": guard.get("depth_rejections", 0),
        "rate_rejections": guard.get("rate_rejections", 0),
        "issues": issues,
    }


@app.get("/health", tags=["internal"])
@app.get(f"{settings.api_prefix}/health", tags=["internal"])
async def health() -> dict[str, Any]:
    """Return health status with automation dispatcher telemetry."""
    dispatcher = getattr(app.state, "dispatcher", None)
    if dispatcher is None:
        return {"status": "ok"}
    telemetry = _summarize_automations(dispatcher.snapshot())
    status = "ok" if not telemetry["issues"] else "degraded"
    return {"status": status, "automations": telemetry}
