"""Transcoding domain errors.

Routers translate these into HTTP responses; see ``http_status`` on each class.
"""

from typing import Optional


class TranscodingError(Exception):
    """Base class for transcoding errors."""

    http_status = 500

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class JobNotFoundError(TranscodingError):
    http_status = 404

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__("Job not found")


class ForbiddenError(TranscodingError):
    http_status = 403

    def __init__(self, message: str = "Access denied"):
        super().__init__(message)


class InvalidTransitionError(TranscodingError):
    """Raised when a status change is not allowed by the job state machine."""

    http_status = 409

    def __init__(self, current: str, target: str, job_id: Optional[str] = None):
        self.current = current
        self.target = target
        self.job_id = job_id
        super().__init__(f"Invalid job status transition: {current} -> {target}")


class InvalidStateError(TranscodingError):
    """Raised when cancelling a job that has already finished."""

    http_status = 400

    def __init__(self, status: str):
        self.status = status
        super().__init__(f"Cannot cancel a job that is already {status}")


class EngineFailureError(TranscodingError):
    """The engine reported an error or ended without a result.

    Caught by the coordinator, which records ``message`` on the job verbatim.
    """


class QueueFullError(TranscodingError):
    http_status = 503

    def __init__(self, capacity: int):
        self.capacity = capacity
        super().__init__(
            f"Transcoding queue is full ({capacity} jobs), try again later"
        )
