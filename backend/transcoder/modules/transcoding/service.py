"""Transcoding service facade used by the API routers."""

import logging
from typing import Any, Optional

from transcoder.core.logging import log_info, log_warning
from transcoder.modules.auth.permissions import AccessPolicy, OwnerOrAdminPolicy, Principal
from transcoder.modules.transcoding.cancellation import CancellationHandler
from transcoder.modules.transcoding.dispatcher import JobDispatcher
from transcoder.modules.transcoding.errors import ForbiddenError, JobNotFoundError, QueueFullError
from transcoder.modules.transcoding.models import Job, JobStatus
from transcoder.modules.transcoding.presets import QUALITY_PRESETS, QualityPreset
from transcoder.modules.transcoding.store import JobStore

logger = logging.getLogger(__name__)


class TranscodingService:
    """Creates, reads and cancels transcoding jobs."""

    def __init__(
        self,
        store: JobStore,
        dispatcher: JobDispatcher,
        policy: Optional[AccessPolicy] = None,
        cancellation: Optional[CancellationHandler] = None,
    ):
        self.store = store
        self.dispatcher = dispatcher
        self.policy = policy or OwnerOrAdminPolicy()
        self.cancellation = cancellation or CancellationHandler(
            store, dispatcher, self.policy
        )

    async def create_job(
        self,
        owner_id: str,
        video_id: str,
        input_filename: str,
        quality: str = "medium",
        format: str = "mp4",
        parameters: Optional[dict[str, Any]] = None,
    ) -> Job:
        """Record a pending job and schedule it.

        Capacity is reserved before the job is written, so a full pool
        rejects the request without leaving a job behind.

        Raises:
            QueueFullError: If the worker pool cannot take more jobs
        """
        self.dispatcher.reserve()
        try:
            job = await self.store.create(
                owner_id=owner_id,
                video_id=video_id,
                input_filename=input_filename,
                quality=quality,
                format=format,
                parameters=parameters,
            )
        except Exception:
            self.dispatcher.release()
            raise

        self.dispatcher.submit(job.id, reserved=True)
        log_info(logger, "Transcoding job queued", job_id=job.id, owner_id=owner_id, quality=quality)
        return job

    async def get_job(self, job_id: str, requester: Principal) -> Job:
        """Get a job visible to the requester.

        Raises:
            JobNotFoundError: If the job does not exist
            ForbiddenError: If the requester is neither owner nor admin
        """
        job = await self.store.get_by_id(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        if not self.policy.can_access(requester, job.owner_id):
            raise ForbiddenError()
        return job

    async def list_jobs(
        self,
        status: Optional[JobStatus] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[Job], int]:
        return await self.store.list_all(status=status, limit=limit, offset=offset)

    async def list_jobs_by_owner(self, owner_id: str, requester: Principal) -> list[Job]:
        if not self.policy.can_access(requester, owner_id):
            raise ForbiddenError()
        return await self.store.list_by_owner(owner_id)

    async def cancel_job(self, job_id: str, requester: Principal) -> Job:
        return await self.cancellation.cancel(job_id, requester)

    def list_presets(self) -> list[QualityPreset]:
        return list(QUALITY_PRESETS.values())

    async def resume_pending(self) -> int:
        """Dispatch jobs left pending by a previous process, oldest first.

        Jobs that do not fit in the pool stay pending.

        Returns:
            int: Number of jobs dispatched
        """
        _, total = await self.store.list_all(status=JobStatus.PENDING, limit=0)
        pending, _ = await self.store.list_all(status=JobStatus.PENDING, limit=total)

        resumed = 0
        for job in reversed(pending):
            try:
                self.dispatcher.submit(job.id, reserved=False)
            except QueueFullError:
                log_warning(
                    logger, "Worker pool full, leaving jobs pending",
                    resumed=resumed, remaining=len(pending) - resumed,
                )
                break
            resumed += 1

        if resumed:
            log_info(logger, "Resumed pending jobs", count=resumed)
        return resumed
