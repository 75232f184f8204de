"""RQ worker entrypoint for recurrence ticks (``python -m app.worker``)."""

from __future__ import annotations

import logging
import signal

from redis import Redis
from rq import Queue, Worker

from app.core.config import settings
from app.services.task_queue import task_queue

WORKER_LOG_FORMAT = "%(asctime)s %(name)s [%(levelname)s] %(message)s"

logger = logging.getLogger("app.worker")


def main() -> None:
    logging.basicConfig(level=settings.log_level, format=WORKER_LOG_FORMAT, force=True)
    connection = Redis.from_url(settings.redis_url)
    queue_names = list(settings.worker_queue_names)
    if task_queue.tick_queue_name not in queue_names:
        logger.warning("Worker does not listen on %s; recurrence ticks will pile up", task_queue.tick_queue_name)
    queues = [Queue(name, connection=connection) for name in queue_names]
    logger.info("Starting boardflow worker for queues: %s", ", ".join(queue_names))
    worker = Worker(queues, connection=connection, name="boardflow-worker")
    try:
        worker.work(with_scheduler=True)
    except KeyboardInterrupt:
        worker.request_stop(signal.SIGINT, None)
        logger.info("Worker shutdown requested")


if __name__ == "__main__":
    main()
