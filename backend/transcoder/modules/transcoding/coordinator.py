"""Transcode coordinator.

Drives one job from ``pending`` to a terminal status: starts the engine,
records progress, and turns the engine's outcome (or any fault along the
way) into a status transition. A failing job never affects other jobs.
"""

import asyncio
import logging
import math
import os
import time
from typing import Optional

from transcoder.core.logging import log_error, log_info, log_warning, set_correlation_id
from transcoder.core.metrics import TRANSCODE_JOBS_TOTAL, TRANSCODE_JOB_DURATION_SECONDS
from transcoder.modules.transcoding.engine import (
    CompletedEvent,
    EngineRequest,
    EngineRun,
    ErrorEvent,
    ProgressEvent,
    TranscodeEngine,
)
from transcoder.modules.transcoding.errors import EngineFailureError, InvalidTransitionError
from transcoder.modules.transcoding.models import Job, JobStatus
from transcoder.modules.transcoding.presets import resolve_preset
from transcoder.modules.transcoding.store import JobStore

logger = logging.getLogger(__name__)

NO_RESULT_MESSAGE = "Transcoding engine exited without reporting a result"
SHUTDOWN_MESSAGE = "Transcoding interrupted by shutdown"


def round_percent(value: float) -> int:
    """Round half up and clamp to [0, 100]; NaN and infinities count as 0."""
    if not math.isfinite(value):
        return 0
    return int(min(100, max(0, math.floor(value + 0.5))))


def timeout_message(seconds: float) -> str:
    return f"Transcoding timed out after {seconds:g} seconds"


class _Stopped(Exception):
    """The job left ``processing`` while the engine was running."""


class TranscodeCoordinator:
    """Runs transcoding jobs against an engine.

    Args:
        store: Job store
        engine: Transcoding engine
        upload_dir: Directory holding uploaded inputs
        output_dir: Directory receiving transcoded outputs
        timeout: Per-job limit in seconds, or None for no limit
    """

    def __init__(
        self,
        store: JobStore,
        engine: TranscodeEngine,
        upload_dir: str,
        output_dir: str,
        timeout: Optional[float] = None,
    ):
        self.store = store
        self.engine = engine
        self.upload_dir = upload_dir
        self.output_dir = output_dir
        self.timeout = timeout
        self._active: dict[str, EngineRun] = {}
        self._aborted: set[str] = set()

    def input_path_for(self, job: Job) -> str:
        return os.path.join(self.upload_dir, os.path.basename(job.input_filename))

    def output_path_for(self, job: Job) -> str:
        return os.path.join(self.output_dir, f"{job.id}_{job.quality}.{job.format}")

    def is_active(self, job_id: str) -> bool:
        return job_id in self._active

    async def run(self, job_id: str) -> Optional[Job]:
        """Process one job.

        Does nothing if the job does not exist or is no longer pending, so a
        job dispatched twice is only processed once.

        Args:
            job_id: Job to process

        Returns:
            The job as left by this run, or None if it was not processed
        """
        try:
            job = await self.store.apply_transition(job_id, JobStatus.PROCESSING)
        except InvalidTransitionError as e:
            log_warning(logger, "Skipping job that is not pending", job_id=job_id, reason=e.message)
            return None
        if job is None:
            log_warning(logger, "Skipping unknown job", job_id=job_id)
            return None

        set_correlation_id(job_id)
        log_info(logger, "Transcoding started", job_id=job_id, quality=job.quality, format=job.format)
        started = time.monotonic()
        try:
            status, output_path, error = await self._execute(job)
        except asyncio.CancelledError:
            await self._finish(job_id, JobStatus.FAILED, error=SHUTDOWN_MESSAGE, started=started)
            raise

        if status is None:
            log_info(logger, "Transcoding stopped, job is no longer processing", job_id=job_id)
            return await self.store.get_by_id(job_id)
        return await self._finish(
            job_id, status, output_path=output_path, error=error, started=started
        )

    async def abort(self, job_id: str) -> bool:
        """Terminate the engine invocation of a running job.

        Returns:
            True if an invocation was running
        """
        run = self._active.get(job_id)
        if run is None:
            return False
        self._aborted.add(job_id)
        await run.terminate()
        return True

    async def _execute(
        self, job: Job
    ) -> tuple[Optional[JobStatus], Optional[str], Optional[str]]:
        """Run the engine; returns (status, output_path, error), status None if stopped."""
        run: Optional[EngineRun] = None
        try:
            preset = resolve_preset(job.quality)
            input_path = self.input_path_for(job)
            if not os.path.isfile(input_path):
                raise FileNotFoundError(f"Input file not found: {input_path}")
            output_path = self.output_path_for(job)

            request = EngineRequest(
                input_path=input_path,
                output_path=output_path,
                format=job.format,
                params={**preset.to_engine_params(), **job.parameters},
            )
            run = await self.engine.start(request)
            self._active[job.id] = run

            try:
                await asyncio.wait_for(
                    self._consume(job.id, run), timeout=self.timeout
                )
            except asyncio.TimeoutError:
                await run.terminate()
                return JobStatus.FAILED, None, timeout_message(self.timeout)
            except _Stopped:
                await run.terminate()
                return None, None, None
            except EngineFailureError as e:
                return JobStatus.FAILED, None, e.message

            return JobStatus.COMPLETED, output_path, None
        except asyncio.CancelledError:
            if run is not None:
                await run.terminate()
            raise
        except Exception as e:
            log_error(logger, "Transcoding run raised", exception=e, job_id=job.id)
            if run is not None:
                await run.terminate()
            return JobStatus.FAILED, None, str(e) or e.__class__.__name__
        finally:
            self._active.pop(job.id, None)
            self._aborted.discard(job.id)

    async def _consume(self, job_id: str, run: EngineRun) -> None:
        """Apply engine events until the run reports its result.

        Raises:
            EngineFailureError: If the engine reported an error or no result
        """
        async for event in run.events():
            if isinstance(event, ProgressEvent):
                job = await self.store.set_progress(job_id, round_percent(event.percent))
                if job is None or job.status != JobStatus.PROCESSING:
                    raise _Stopped()
            elif isinstance(event, CompletedEvent):
                return
            elif isinstance(event, ErrorEvent):
                raise EngineFailureError(event.message)

        if job_id in self._aborted:
            raise _Stopped()
        raise EngineFailureError(NO_RESULT_MESSAGE)

    async def _finish(
        self,
        job_id: str,
        status: JobStatus,
        output_path: Optional[str] = None,
        error: Optional[str] = None,
        started: Optional[float] = None,
    ) -> Optional[Job]:
        try:
            job = await self.store.apply_transition(
                job_id, status, output_path=output_path, error=error
            )
        except InvalidTransitionError as e:
            # cancelled while the engine was finishing
            log_warning(logger, "Discarding transcoding result", job_id=job_id, reason=e.message)
            return await self.store.get_by_id(job_id)

        TRANSCODE_JOBS_TOTAL.labels(status=status.value).inc()
        if started is not None:
            TRANSCODE_JOB_DURATION_SECONDS.labels(status=status.value).observe(
                time.monotonic() - started
            )
        if status == JobStatus.COMPLETED:
            log_info(logger, "Transcoding completed", job_id=job_id, output_path=output_path)
        else:
            log_warning(logger, "Transcoding failed", job_id=job_id, error=error)
        return job
