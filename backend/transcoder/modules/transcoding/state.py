"""Job status state machine.

This table is the only place that decides whether a status change is legal
and what it does to the job record.
"""

from dataclasses import replace
from datetime import datetime
from typing import Optional

from transcoder.modules.transcoding.errors import InvalidTransitionError
from transcoder.modules.transcoding.models import Job, JobStatus

TERMINAL_STATUSES = frozenset({
    JobStatus.COMPLETED,
    JobStatus.FAILED,
    JobStatus.CANCELLED,
})

_TRANSITIONS = frozenset({
    (JobStatus.PENDING, JobStatus.PROCESSING),
    (JobStatus.PENDING, JobStatus.CANCELLED),
    (JobStatus.PROCESSING, JobStatus.COMPLETED),
    (JobStatus.PROCESSING, JobStatus.FAILED),
    (JobStatus.PROCESSING, JobStatus.CANCELLED),
})


def is_terminal(status: JobStatus) -> bool:
    return JobStatus(status) in TERMINAL_STATUSES


def can_transition(current: JobStatus, target: JobStatus) -> bool:
    return (JobStatus(current), JobStatus(target)) in _TRANSITIONS


def validate_transition(
    current: JobStatus,
    target: JobStatus,
    job_id: Optional[str] = None,
) -> None:
    """Raise InvalidTransitionError unless ``current -> target`` is legal."""
    if not can_transition(current, target):
        raise InvalidTransitionError(
            JobStatus(current).value, JobStatus(target).value, job_id
        )


def apply_transition(
    job: Job,
    target: JobStatus,
    now: datetime,
    output_path: Optional[str] = None,
    error: Optional[str] = None,
) -> Job:
    """Validate a transition and return the job with its side effects applied.

    Args:
        job: Current job snapshot
        target: Status to move to
        now: Timestamp for started_at / completed_at
        output_path: Output location, required when completing
        error: Failure message, required when failing

    Returns:
        Job: A new snapshot; ``job`` itself is not modified

    Raises:
        InvalidTransitionError: If the move is not allowed, or a required
            output_path / error is missing
    """
    target = JobStatus(target)
    validate_transition(job.status, target, job.id)

    if target == JobStatus.PROCESSING:
        return replace(job, status=target, started_at=now)

    if target == JobStatus.COMPLETED:
        if not output_path:
            raise InvalidTransitionError(
                job.status.value, target.value, job.id
            )
        return replace(
            job,
            status=target,
            progress=100,
            output_path=output_path,
            completed_at=now,
        )

    if target == JobStatus.FAILED:
        if error is None:
            raise InvalidTransitionError(
                job.status.value, target.value, job.id
            )
        return replace(job, status=target, error=error, completed_at=now)

    # cancelled
    return replace(job, status=target, completed_at=now)
