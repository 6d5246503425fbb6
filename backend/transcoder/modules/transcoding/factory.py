"""Builds the transcoding components from settings."""

from typing import Optional

from transcoder.core.config import Settings
from transcoder.modules.transcoding.coordinator import TranscodeCoordinator
from transcoder.modules.transcoding.dispatcher import (
    CeleryDispatcher,
    JobDispatcher,
    TranscodeDispatcher,
)
from transcoder.modules.transcoding.engine import SimulatedEngine, TranscodeEngine
from transcoder.modules.transcoding.ffmpeg import FFmpegEngine
from transcoder.modules.transcoding.store import InMemoryJobStore, JobStore


def build_store(settings: Settings, database_url: Optional[str] = None) -> JobStore:
    """Create the configured job store.

    Args:
        settings: Application settings
        database_url: Overrides DATABASE_URL, e.g. to get an engine bound to
            a fresh event loop in a worker process
    """
    backend = settings.JOB_STORE_BACKEND.lower()
    if backend == "memory":
        return InMemoryJobStore()
    if backend == "sql":
        from transcoder.core.database import create_engine, create_session_maker
        from transcoder.modules.transcoding.repository import SqlJobStore

        engine = create_engine(database_url or settings.DATABASE_URL)
        return SqlJobStore(create_session_maker(engine))
    raise ValueError(f"Unknown JOB_STORE_BACKEND: {settings.JOB_STORE_BACKEND}")


def build_engine(settings: Settings) -> TranscodeEngine:
    name = settings.TRANSCODE_ENGINE.lower()
    if name == "ffmpeg":
        return FFmpegEngine(
            ffmpeg_path=settings.FFMPEG_PATH,
            encoder_preset=settings.FFMPEG_ENCODER_PRESET,
            grace_seconds=settings.ENGINE_TERMINATE_GRACE_SECONDS,
        )
    if name == "simulated":
        return SimulatedEngine(step_delay=0.5)
    raise ValueError(f"Unknown TRANSCODE_ENGINE: {settings.TRANSCODE_ENGINE}")


def build_coordinator(
    settings: Settings,
    store: JobStore,
    engine: Optional[TranscodeEngine] = None,
) -> TranscodeCoordinator:
    return TranscodeCoordinator(
        store=store,
        engine=engine or build_engine(settings),
        upload_dir=settings.UPLOAD_DIR,
        output_dir=settings.OUTPUT_DIR,
        timeout=settings.job_timeout,
    )


def build_dispatcher(
    settings: Settings,
    coordinator: TranscodeCoordinator,
) -> JobDispatcher:
    """Create the configured dispatcher.

    Raises:
        ValueError: For an unknown backend, or Celery without the SQL store
    """
    backend = settings.EXECUTION_BACKEND.lower()
    if backend == "local":
        return TranscodeDispatcher(
            coordinator,
            max_concurrent=settings.MAX_CONCURRENT_JOBS,
            max_queued=settings.MAX_QUEUED_JOBS,
        )
    if backend == "celery":
        if settings.JOB_STORE_BACKEND.lower() != "sql":
            raise ValueError("EXECUTION_BACKEND=celery requires JOB_STORE_BACKEND=sql")
        return CeleryDispatcher()
    raise ValueError(f"Unknown EXECUTION_BACKEND: {settings.EXECUTION_BACKEND}")
