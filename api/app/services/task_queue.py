"""RQ task queue wrapper for scheduler ticks, with inline fallback for local/test runs."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

from redis import Redis
from redis.exceptions import RedisError
from rq import Queue, Retry
from rq.registry import FailedJobRegistry, ScheduledJobRegistry, StartedJobRegistry
from rq.worker import Worker
from rq_scheduler import Scheduler

from app.core.config import settings
from app.utils.datetime import utcnow

logger = logging.getLogger("app.services.task_queue")

RECURRENCE_TICK_JOB_ID = "recurrence:tick"
TICK_QUEUE_PREFERENCE = "maintenance"
# Ticks are idempotent (claims are compare-and-set), so a short retry is safe.
TICK_RETRY = Retry(max=2, interval=[5, 15])

Fallback = Callable[[], Awaitable[Any]]


class TaskQueue:
    """Routes recurrence ticks through RQ when Redis answers, inline otherwise."""

    def __init__(self) -> None:
        self.queue_names: list[str] = settings.worker_queue_names or ["default"]
        self._connection: Redis | None = None
        self._connect()

    @property
    def connection(self) -> Redis | None:
        return self._connection

    @property
    def tick_queue_name(self) -> str:
        if TICK_QUEUE_PREFERENCE in self.queue_names:
            return TICK_QUEUE_PREFERENCE
        return self.queue_names[0]

    def _connect(self) -> None:
        if settings.environment.lower() == "test":
            logger.info("Task queue disabled in test environment; ticks run inline")
            return
        try:
            connection = Redis.from_url(settings.redis_url)
            connection.ping()
        except (RedisError, OSError) as exc:  # pragma: no cover - network/redis specific
            logger.warning("Redis unavailable at %s; recurrence ticks run inline: %s", settings.redis_url, exc)
            return
        self._connection = connection
        logger.info("Task queue ready (queues: %s, ticks on %s)", ", ".join(self.queue_names), self.tick_queue_name)

    async def enqueue_recurrence_tick(self, *, fallback: Fallback, requested_by: str | None = None) -> Any:
        """Run one recurrence tick on a worker and wait for its report.

        ``fallback`` runs the tick in this process when Redis is unavailable or
        the job does not finish successfully within the tick timeout.
        """
        if not self._connection:
            return await fallback()

        from app.jobs.recurrence import run_recurrence_tick_job

        timeout_seconds = max(30, settings.recurrence_tick_seconds)

        def _enqueue_and_wait() -> Any:
            queue = Queue(self.tick_queue_name, connection=self._connection)
            job = queue.enqueue(
                run_recurrence_tick_job,
                kwargs={"requested_by": requested_by},
                job_timeout=timeout_seconds,
                retry=TICK_RETRY,
                description=f"{RECURRENCE_TICK_JOB_ID} ({requested_by or 'manual'})",
            )
            result = job.latest_result(timeout=timeout_seconds)
            if result is None or result.type != result.Type.SUCCESSFUL:
                raise RuntimeError(f"recurrence tick job {job.id} did not complete successfully")
            return result.return_value

        try:
            return await asyncio.to_thread(_enqueue_and_wait)
        except (RedisError, RuntimeError) as exc:  # pragma: no cover - network/redis specific
            logger.warning("Running recurrence tick inline after queue failure: %s", exc)
            return await fallback()

    def _tick_schedule(self) -> dict[str, Any]:
        try:
            scheduler = Scheduler(connection=self._connection, queue_name=self.tick_queue_name)
            registered = RECURRENCE_TICK_JOB_ID in scheduler
        except RedisError:  # pragma: no cover - redis specific
            return {"reachable": False, "tick_registered": False}
        return {"reachable": True, "tick_registered": registered}

    def snapshot(self) -> dict[str, Any]:
        """Queue depth, workers, and whether the periodic tick is registered."""
        if not self._connection:
            return {
                "status": "offline",
                "queues": [],
                "workers": [],
                "tick_queue": self.tick_queue_name,
                "redis_url": settings.redis_url,
            }

        queues: list[dict[str, Any]] = []
        workers: list[dict[str, Any]] = []
        try:
            for name in self.queue_names:
                queue = Queue(name, connection=self._connection)
                queues.append(
                    {
                        "name": name,
                        "size": queue.count,
                        "scheduled": len(ScheduledJobRegistry(queue=queue)),
                        "started": len(StartedJobRegistry(queue=queue)),
                        "failed": len(FailedJobRegistry(queue=queue)),
                    }
                )
            for worker in Worker.all(connection=self._connection):
                workers.append({"name": worker.name, "queues": list(worker.queue_names())})
        except RedisError as exc:  # pragma: no cover - network/redis specific
            logger.warning("Unable to inspect queues: %s", exc)

        scheduler = self._tick_schedule()
        warnings: list[str] = []
        if not workers:
            warnings.append("no_workers")
        if not scheduler["reachable"]:
            warnings.append("scheduler_unreachable")
        elif not scheduler["tick_registered"] and not settings.recurrence_scheduler_enabled:
            warnings.append("recurrence_tick_unscheduled")
        return {
            "status": "online" if not warnings else "degraded",
            "queues": queues,
            "workers": workers,
            "tick_queue": self.tick_queue_name,
            "scheduler": scheduler,
            "warnings": warnings,
            "checked_at": utcnow().isoformat(),
        }


task_queue = TaskQueue()
