"""Job store interface and in-memory implementation.

Stores hand out ``Job`` snapshots. All status changes go through
``apply_transition``, which validates them against the job state machine;
mutations for one job id are serialized while distinct ids proceed in
parallel.
"""

import asyncio
import copy
import logging
import uuid
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Callable, Optional

from transcoder.modules.transcoding import state
from transcoder.modules.transcoding.models import Job, JobStatus

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def clamp_progress(value: float) -> int:
    return int(min(100, max(0, value)))


def validate_page(limit: int, offset: int) -> None:
    if limit < 0:
        raise ValueError(f"limit must be non-negative, got {limit}")
    if offset < 0:
        raise ValueError(f"offset must be non-negative, got {offset}")


class KeyedLock:
    """One asyncio lock per key, dropped once nobody holds or waits for it."""

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}
        self._refs: dict[str, int] = {}

    @asynccontextmanager
    async def acquire(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._refs[key] = self._refs.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._refs[key] -= 1
            if self._refs[key] == 0:
                del self._refs[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)


class JobStore(ABC):
    """Storage for transcoding jobs."""

    @abstractmethod
    async def create(
        self,
        owner_id: str,
        video_id: str,
        input_filename: str,
        quality: str,
        format: str = "mp4",
        parameters: Optional[dict[str, Any]] = None,
    ) -> Job:
        """Create a ``pending`` job with a fresh id and ``created_at = now``."""

    @abstractmethod
    async def get_by_id(self, job_id: str) -> Optional[Job]:
        ...

    @abstractmethod
    async def list_all(
        self,
        status: Optional[JobStatus] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[Job], int]:
        """List jobs newest first.

        Args:
            status: Optional status filter
            limit: Page size
            offset: Number of matching jobs to skip

        Returns:
            tuple: (page of jobs, total number of matching jobs)

        Raises:
            ValueError: If limit or offset is negative
        """

    @abstractmethod
    async def list_by_owner(self, owner_id: str) -> list[Job]:
        """List an owner's jobs newest first."""

    @abstractmethod
    async def apply_transition(
        self,
        job_id: str,
        new_status: JobStatus,
        output_path: Optional[str] = None,
        error: Optional[str] = None,
    ) -> Optional[Job]:
        """Atomically move a job to ``new_status`` and apply its side effects.

        Returns:
            The updated job, or None if the job does not exist

        Raises:
            InvalidTransitionError: If the move is not allowed
        """

    @abstractmethod
    async def set_progress(self, job_id: str, value: float) -> Optional[Job]:
        """Record progress for a processing job.

        The value is clamped to [0, 100]. The update is ignored when the job
        is not processing or when it would lower the recorded progress.

        Returns:
            The job after the update, or None if the job does not exist
        """

    async def close(self) -> None:
        """Release any resources held by the store."""


class InMemoryJobStore(JobStore):
    """Process-local job store backed by a dict."""

    def __init__(self, clock: Optional[Clock] = None):
        self._clock = clock or utc_now
        self._jobs: dict[str, Job] = {}
        # insertion order breaks created_at ties when listing
        self._seq: dict[str, int] = {}
        self._next_seq = 0
        self._locks = KeyedLock()

    @staticmethod
    def _snapshot(job: Job) -> Job:
        return replace(job, parameters=copy.deepcopy(job.parameters))

    def _newest_first(self, jobs: list[Job]) -> list[Job]:
        return sorted(
            jobs,
            key=lambda j: (j.created_at, self._seq[j.id]),
            reverse=True,
        )

    async def create(
        self,
        owner_id: str,
        video_id: str,
        input_filename: str,
        quality: str,
        format: str = "mp4",
        parameters: Optional[dict[str, Any]] = None,
    ) -> Job:
        job_id = str(uuid.uuid4())
        while job_id in self._jobs:
            job_id = str(uuid.uuid4())

        job = Job(
            id=job_id,
            owner_id=owner_id,
            video_id=video_id,
            input_filename=input_filename,
            quality=quality,
            format=format,
            parameters=copy.deepcopy(parameters or {}),
            status=JobStatus.PENDING,
            created_at=self._clock(),
        )
        self._jobs[job_id] = job
        self._seq[job_id] = self._next_seq
        self._next_seq += 1
        return self._snapshot(job)

    async def get_by_id(self, job_id: str) -> Optional[Job]:
        job = self._jobs.get(job_id)
        return self._snapshot(job) if job else None

    async def list_all(
        self,
        status: Optional[JobStatus] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[Job], int]:
        validate_page(limit, offset)
        matching = [
            job for job in self._jobs.values()
            if status is None or job.status == JobStatus(status)
        ]
        page = self._newest_first(matching)[offset:offset + limit]
        return [self._snapshot(j) for j in page], len(matching)

    async def list_by_owner(self, owner_id: str) -> list[Job]:
        owned = [job for job in self._jobs.values() if job.owner_id == owner_id]
        return [self._snapshot(j) for j in self._newest_first(owned)]

    async def apply_transition(
        self,
        job_id: str,
        new_status: JobStatus,
        output_path: Optional[str] = None,
        error: Optional[str] = None,
    ) -> Optional[Job]:
        async with self._locks.acquire(job_id):
            job = self._jobs.get(job_id)
            if job is None:
                return None
            updated = state.apply_transition(
                job, new_status, self._clock(), output_path=output_path, error=error
            )
            self._jobs[job_id] = updated
            logger.debug(
                "Job status changed",
                extra={"job_id": job_id, "from": job.status.value, "to": updated.status.value},
            )
            return self._snapshot(updated)

    async def set_progress(self, job_id: str, value: float) -> Optional[Job]:
        async with self._locks.acquire(job_id):
            job = self._jobs.get(job_id)
            if job is None:
                return None
            progress = clamp_progress(value)
            if job.status != JobStatus.PROCESSING or progress <= job.progress:
                return self._snapshot(job)
            updated = replace(job, progress=progress)
            self._jobs[job_id] = updated
            return self._snapshot(updated)
