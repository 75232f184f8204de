"""Registration of the periodic recurrence tick with rq-scheduler."""

from __future__ import annotations

import logging
from datetime import timedelta

from rq_scheduler import Scheduler

from app.core.config import settings
from app.jobs.recurrence import run_recurrence_tick_job
from app.services.task_queue import RECURRENCE_TICK_JOB_ID, task_queue
from app.utils.datetime import utcnow

logger = logging.getLogger("app.jobs.schedule_registry")

TICK_RESULT_TTL = timedelta(hours=1)


def ensure_schedules() -> bool:
    """Idempotently register the recurrence tick; return whether it is scheduled."""
    if settings.environment.lower() == "test":
        return False
    if settings.recurrence_scheduler_enabled:
        logger.info("Skipping rq-scheduler bootstrap; the in-process recurrence scheduler is enabled")
        return False
    if not task_queue.connection:
        logger.info("Skipping scheduler bootstrap; queue connection is unavailable")
        return False
    scheduler = Scheduler(connection=task_queue.connection, queue_name=task_queue.tick_queue_name)
    if RECURRENCE_TICK_JOB_ID in scheduler:
        return True
    interval = max(1, settings.recurrence_tick_seconds)
    scheduler.schedule(
        scheduled_time=utcnow(),
        func=run_recurrence_tick_job,
        kwargs={"requested_by": "rq-scheduler"},
        interval=interval,
        repeat=None,
        id=RECURRENCE_TICK_JOB_ID,
        queue_name=task_queue.tick_queue_name,
        result_ttl=int(TICK_RESULT_TTL.total_seconds()),
    )
    logger.info("Scheduled %s every %ss on queue %s", RECURRENCE_TICK_JOB_ID, interval, task_queue.tick_queue_name)
    return True
