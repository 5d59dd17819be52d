"""
Celery Job Queue

Adapts the Celery app to the sync orchestrator's job queue interface.
"""

import asyncio
import logging

from celery import Celery

logger = logging.getLogger(__name__)


class CeleryJobQueue:
    """Enqueues named jobs as Celery tasks under ``task_module``."""

    def __init__(
        self,
        app: Celery,
        task_module: str = "workers.tasks.sync_tasks",
        queue: str = "sync_batches",
    ):
        self.app = app
        self.task_module = task_module
        self.queue = queue

    async def enqueue(self, job_name: str, payload: dict) -> None:
        task_name = f"{self.task_module}.{job_name}"
        # send_task blocks on the broker round-trip
        result = await asyncio.to_thread(
            self.app.send_task, task_name, kwargs={"payload": payload}, queue=self.queue
        )
        logger.debug(f"Enqueued {task_name} as {result.id}")
