"""Job dispatchers.

``TranscodeDispatcher`` runs coordinator runs as asyncio tasks in this
process, at most ``max_concurrent`` at a time with up to ``max_queued``
waiting. New work is rejected once that capacity is used up.
``CeleryDispatcher`` hands jobs to Celery workers instead.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from functools import partial
from typing import Optional

from transcoder.core.logging import log_error, log_warning
from transcoder.core.metrics import TRANSCODE_JOBS_ACTIVE, TRANSCODE_QUEUE_DEPTH
from transcoder.modules.transcoding.coordinator import TranscodeCoordinator
from transcoder.modules.transcoding.errors import QueueFullError

logger = logging.getLogger(__name__)


class JobDispatcher(ABC):
    """Schedules coordinator runs for pending jobs."""

    @abstractmethod
    def reserve(self) -> None:
        """Claim capacity for a job about to be created.

        Raises:
            QueueFullError: If no capacity is left
        """

    @abstractmethod
    def release(self) -> None:
        """Return a reservation that will not be used."""

    @abstractmethod
    def submit(self, job_id: str, reserved: bool = True) -> None:
        """Schedule a run for ``job_id``."""

    @abstractmethod
    async def abort(self, job_id: str) -> bool:
        """Stop a running job's engine invocation, if this dispatcher can."""

    async def shutdown(self) -> None:
        """Stop accepting work and wind down running jobs."""


class TranscodeDispatcher(JobDispatcher):
    """Bounded in-process worker pool.

    Args:
        coordinator: Coordinator executing each job
        max_concurrent: Runs allowed at the same time
        max_queued: Admitted runs allowed to wait for a slot
    """

    def __init__(
        self,
        coordinator: TranscodeCoordinator,
        max_concurrent: int = 4,
        max_queued: int = 100,
    ):
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        if max_queued < 0:
            raise ValueError("max_queued must be non-negative")
        self.coordinator = coordinator
        self.max_concurrent = max_concurrent
        self.max_queued = max_queued
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._tasks: dict[str, asyncio.Task] = {}
        self._reserved = 0
        self._running = 0
        self._closed = False

    @property
    def capacity(self) -> int:
        return self.max_concurrent + self.max_queued

    @property
    def running(self) -> int:
        return self._running

    @property
    def queued(self) -> int:
        return len(self._tasks) - self._running

    @property
    def reserved(self) -> int:
        return self._reserved

    def _in_use(self) -> int:
        return len(self._tasks) + self._reserved

    def _update_gauges(self) -> None:
        TRANSCODE_JOBS_ACTIVE.set(self._running)
        TRANSCODE_QUEUE_DEPTH.set(self.queued)

    def _admit(self) -> None:
        if self._closed or self._in_use() >= self.capacity:
            raise QueueFullError(self.capacity)

    def reserve(self) -> None:
        self._admit()
        self._reserved += 1

    def release(self) -> None:
        if self._reserved > 0:
            self._reserved -= 1

    def submit(self, job_id: str, reserved: bool = True) -> None:
        if reserved:
            self.release()
        if job_id in self._tasks:
            log_warning(logger, "Job already dispatched", job_id=job_id)
            return
        if not reserved:
            self._admit()

        task = asyncio.create_task(self._run(job_id), name=f"transcode-{job_id}")
        self._tasks[job_id] = task
        task.add_done_callback(partial(self._on_done, job_id))
        self._update_gauges()

    def task_for(self, job_id: str) -> Optional[asyncio.Task]:
        return self._tasks.get(job_id)

    async def _run(self, job_id: str) -> None:
        async with self._semaphore:
            self._running += 1
            self._update_gauges()
            try:
                await self.coordinator.run(job_id)
            finally:
                self._running -= 1
                self._update_gauges()

    def _on_done(self, job_id: str, task: asyncio.Task) -> None:
        if self._tasks.get(job_id) is task:
            del self._tasks[job_id]
        self._update_gauges()
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            log_error(logger, "Transcoding run crashed", exception=exc, job_id=job_id)

    async def abort(self, job_id: str) -> bool:
        return await self.coordinator.abort(job_id)

    async def join(self) -> None:
        """Wait until every dispatched run has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks.values()), return_exceptions=True)

    async def shutdown(self) -> None:
        self._closed = True
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._update_gauges()


class CeleryDispatcher(JobDispatcher):
    """Sends each job to a Celery worker; the broker queue is unbounded."""

    def __init__(self, celery_app=None):
        if celery_app is None:
            from transcoder.core.celery_app import celery_app
        self.celery_app = celery_app

    def reserve(self) -> None:
        pass

    def release(self) -> None:
        pass

    def submit(self, job_id: str, reserved: bool = True) -> None:
        from transcoder.modules.transcoding.tasks import transcode_job_task

        # task id == job id so the job can be revoked by id
        transcode_job_task.apply_async(args=[job_id], task_id=job_id)

    async def abort(self, job_id: str) -> bool:
        # A running task notices the cancellation at its next progress update
        self.celery_app.control.revoke(job_id)
        return False
