"""Job cancellation."""

import logging
from typing import Optional

from transcoder.core.logging import log_info, log_warning
from transcoder.core.metrics import TRANSCODE_JOBS_TOTAL
from transcoder.modules.auth.permissions import AccessPolicy, OwnerOrAdminPolicy, Principal
from transcoder.modules.transcoding.dispatcher import JobDispatcher
from transcoder.modules.transcoding.errors import (
    ForbiddenError,
    InvalidStateError,
    InvalidTransitionError,
    JobNotFoundError,
)
from transcoder.modules.transcoding.models import Job, JobStatus
from transcoder.modules.transcoding.store import JobStore

logger = logging.getLogger(__name__)


class CancellationHandler:
    """Cancels pending or processing jobs.

    The status change is what counts: a running coordinator sees it at its
    next progress update and stops. Aborting the engine through the
    dispatcher only makes that happen sooner.
    """

    def __init__(
        self,
        store: JobStore,
        dispatcher: Optional[JobDispatcher] = None,
        policy: Optional[AccessPolicy] = None,
    ):
        self.store = store
        self.dispatcher = dispatcher
        self.policy = policy or OwnerOrAdminPolicy()

    async def cancel(self, job_id: str, requester: Principal) -> Job:
        """Cancel a job.

        Args:
            job_id: Job to cancel
            requester: Caller asking for the cancellation

        Returns:
            Job: The cancelled job

        Raises:
            JobNotFoundError: If the job does not exist
            ForbiddenError: If the requester may not act on the job
            InvalidStateError: If the job already finished
        """
        job = await self.store.get_by_id(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        if not self.policy.can_access(requester, job.owner_id):
            raise ForbiddenError()
        if job.is_terminal:
            raise InvalidStateError(job.status.value)

        try:
            cancelled = await self.store.apply_transition(job_id, JobStatus.CANCELLED)
        except InvalidTransitionError:
            # finished between the read and the transition
            current = await self.store.get_by_id(job_id)
            raise InvalidStateError(current.status.value if current else job.status.value)
        if cancelled is None:
            raise JobNotFoundError(job_id)

        TRANSCODE_JOBS_TOTAL.labels(status=JobStatus.CANCELLED.value).inc()
        log_info(logger, "Job cancelled", job_id=job_id, requested_by=requester.user_id)

        if self.dispatcher is not None:
            try:
                await self.dispatcher.abort(job_id)
            except Exception as e:
                log_warning(logger, "Could not abort engine for cancelled job", job_id=job_id, error=str(e))
        return cancelled
