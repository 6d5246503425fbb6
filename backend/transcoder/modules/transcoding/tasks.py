"""Celery tasks for the ``celery`` execution backend.

Each task runs the coordinator for one job against the SQL job store, in a
fresh event loop with its own database engine.
"""

import asyncio
import logging
from typing import Optional

from celery import Task

from transcoder.core.celery_app import celery_app
from transcoder.core.config import settings
from transcoder.core.logging import log_warning
from transcoder.modules.transcoding.engine import TranscodeEngine
from transcoder.modules.transcoding.errors import InvalidTransitionError
from transcoder.modules.transcoding.factory import build_coordinator, build_store
from transcoder.modules.transcoding.models import JobStatus
from transcoder.modules.transcoding.store import JobStore

logger = logging.getLogger(__name__)


class TranscodeTask(Task):
    """Base task that records a crashed run on the job."""
    abstract = True

    def on_failure(self, exc, task_id, args, kwargs, einfo):
        job_id = args[0] if args else kwargs.get("job_id")
        if job_id:
            asyncio.run(_mark_job_failed(job_id, str(exc) or exc.__class__.__name__))


async def _mark_job_failed(
    job_id: str,
    error: str,
    store: Optional[JobStore] = None,
) -> None:
    own_store = store is None
    store = store or build_store(settings)
    try:
        await store.apply_transition(job_id, JobStatus.FAILED, error=error)
    except InvalidTransitionError:
        log_warning(logger, "Task failed for a job that is not processing", job_id=job_id, error=error)
    finally:
        if own_store:
            await store.close()


@celery_app.task(bind=True, base=TranscodeTask, name="transcoder.transcode_job")
def transcode_job_task(self: TranscodeTask, job_id: str) -> dict:
    """Transcode one job.

    Args:
        job_id: Id of a pending job

    Returns:
        dict: Final status of the job
    """
    return asyncio.run(_run_job_async(job_id))


async def _run_job_async(
    job_id: str,
    store: Optional[JobStore] = None,
    engine: Optional[TranscodeEngine] = None,
) -> dict:
    own_store = store is None
    store = store or build_store(settings)
    try:
        coordinator = build_coordinator(settings, store, engine)
        job = await coordinator.run(job_id)
        if job is None:
            return {"job_id": job_id, "processed": False}
        return {
            "job_id": job_id,
            "processed": True,
            "status": job.status.value,
            "output_path": job.output_path,
            "error": job.error,
        }
    finally:
        if own_store:
            await store.close()
