"""Celery application configuration.

Only used when ``EXECUTION_BACKEND=celery``; the default backend runs jobs
in-process.
"""

from celery import Celery

from transcoder.core.config import settings

celery_app = Celery(
    "transcoder",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    # Hard limit sits above the coordinator's own timeout so the job is
    # recorded as failed before the worker is killed.
    task_time_limit=(settings.JOB_TIMEOUT_SECONDS + 60) if settings.JOB_TIMEOUT_SECONDS > 0 else None,
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
)

celery_app.autodiscover_tasks(["transcoder.modules.transcoding"])
