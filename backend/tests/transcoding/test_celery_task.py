"""Tests for the Celery task wrappers and the component factory."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from transcoder.core.config import Settings
from transcoder.modules.transcoding import tasks
from transcoder.modules.transcoding.dispatcher import CeleryDispatcher, TranscodeDispatcher
from transcoder.modules.transcoding.engine import SimulatedEngine
from transcoder.modules.transcoding.factory import (
    build_coordinator,
    build_dispatcher,
    build_engine,
    build_store,
)
from transcoder.modules.transcoding.ffmpeg import FFmpegEngine
from transcoder.modules.transcoding.models import JobStatus
from transcoder.modules.transcoding.repository import SqlJobStore
from transcoder.modules.transcoding.store import InMemoryJobStore


def make_settings(**overrides) -> Settings:
    return Settings(SECRET_KEY="test", **overrides)


@pytest.fixture
def dirs(tmp_path, monkeypatch):
    upload_dir = tmp_path / "uploads"
    output_dir = tmp_path / "outputs"
    upload_dir.mkdir()
    monkeypatch.setattr(tasks.settings, "UPLOAD_DIR", str(upload_dir))
    monkeypatch.setattr(tasks.settings, "OUTPUT_DIR", str(output_dir))
    monkeypatch.setattr(tasks.settings, "JOB_TIMEOUT_SECONDS", 0)
    return upload_dir, output_dir


async def pending_job(store, upload_dir=None):
    job = await store.create(
        owner_id="owner", video_id="video-1", input_filename="video-1.mp4", quality="low",
    )
    if upload_dir is not None:
        (upload_dir / "video-1.mp4").write_bytes(b"\x00")
    return job


class TestRunJob:
    """Tests for the task body."""

    @pytest.mark.asyncio
    async def test_runs_job_to_completion(self, dirs) -> None:
        upload_dir, output_dir = dirs
        store = InMemoryJobStore()
        job = await pending_job(store, upload_dir)

        result = await tasks._run_job_async(job.id, store=store, engine=SimulatedEngine())

        assert result == {
            "job_id": job.id,
            "processed": True,
            "status": "completed",
            "output_path": str(output_dir / f"{job.id}_low.mp4"),
            "error": None,
        }
        assert (await store.get_by_id(job.id)).progress == 100

    @pytest.mark.asyncio
    async def test_engine_error_fails_job(self, dirs) -> None:
        upload_dir, _ = dirs
        store = InMemoryJobStore()
        job = await pending_job(store, upload_dir)

        result = await tasks._run_job_async(
            job.id, store=store, engine=SimulatedEngine(script=(30,), error="codec not found"),
        )

        assert result["status"] == "failed"
        assert result["error"] == "codec not found"

    @pytest.mark.asyncio
    async def test_job_that_is_not_pending_is_skipped(self, dirs) -> None:
        store = InMemoryJobStore()
        job = await pending_job(store)
        await store.apply_transition(job.id, JobStatus.CANCELLED)
        engine = SimulatedEngine()

        result = await tasks._run_job_async(job.id, store=store, engine=engine)

        assert result == {"job_id": job.id, "processed": False}
        assert engine.requests == []


class TestFailureHandler:
    """Tests for recording crashed task runs."""

    @pytest.mark.asyncio
    async def test_mark_processing_job_failed(self) -> None:
        store = InMemoryJobStore()
        job = await pending_job(store)
        await store.apply_transition(job.id, JobStatus.PROCESSING)

        await tasks._mark_job_failed(job.id, "worker lost", store=store)

        failed = await store.get_by_id(job.id)
        assert failed.status == JobStatus.FAILED
        assert failed.error == "worker lost"

    @pytest.mark.asyncio
    async def test_terminal_job_is_left_alone(self) -> None:
        store = InMemoryJobStore()
        job = await pending_job(store)
        await store.apply_transition(job.id, JobStatus.CANCELLED)

        await tasks._mark_job_failed(job.id, "worker lost", store=store)

        assert (await store.get_by_id(job.id)).status == JobStatus.CANCELLED

    def test_on_failure_marks_job(self) -> None:
        with patch.object(tasks, "_mark_job_failed", new=AsyncMock()) as mark:
            tasks.transcode_job_task.on_failure(
                RuntimeError("boom"), "job-1", ["job-1"], {}, None
            )

        mark.assert_awaited_once_with("job-1", "boom")

    def test_on_failure_uses_exception_name_without_message(self) -> None:
        with patch.object(tasks, "_mark_job_failed", new=AsyncMock()) as mark:
            tasks.transcode_job_task.on_failure(MemoryError(), "job-1", [], {"job_id": "job-1"}, None)

        mark.assert_awaited_once_with("job-1", "MemoryError")

    def test_task_is_registered_by_name(self) -> None:
        assert tasks.transcode_job_task.name == "transcoder.transcode_job"


class TestFactory:
    """Tests for building components from settings."""

    def test_memory_store(self) -> None:
        assert isinstance(build_store(make_settings()), InMemoryJobStore)

    def test_sql_store(self, tmp_path) -> None:
        store = build_store(
            make_settings(JOB_STORE_BACKEND="sql"),
            database_url=f"sqlite+aiosqlite:///{tmp_path}/jobs.db",
        )
        assert isinstance(store, SqlJobStore)

    def test_unknown_store(self) -> None:
        with pytest.raises(ValueError):
            build_store(make_settings(JOB_STORE_BACKEND="redis"))

    def test_engines(self) -> None:
        engine = build_engine(make_settings(FFMPEG_PATH="/opt/ffmpeg", FFMPEG_ENCODER_PRESET="fast"))
        assert isinstance(engine, FFmpegEngine)
        assert engine.ffmpeg_path == "/opt/ffmpeg"
        assert engine.encoder_preset == "fast"

        assert isinstance(build_engine(make_settings(TRANSCODE_ENGINE="simulated")), SimulatedEngine)
        with pytest.raises(ValueError):
            build_engine(make_settings(TRANSCODE_ENGINE="handbrake"))

    def test_coordinator_timeout(self) -> None:
        store = InMemoryJobStore()

        assert build_coordinator(make_settings(JOB_TIMEOUT_SECONDS=90), store).timeout == 90.0
        assert build_coordinator(make_settings(JOB_TIMEOUT_SECONDS=0), store).timeout is None

    def test_dispatchers(self) -> None:
        coordinator = MagicMock()

        local = build_dispatcher(make_settings(MAX_CONCURRENT_JOBS=2, MAX_QUEUED_JOBS=3), coordinator)
        assert isinstance(local, TranscodeDispatcher)
        assert local.capacity == 5

        celery = build_dispatcher(
            make_settings(EXECUTION_BACKEND="celery", JOB_STORE_BACKEND="sql"), coordinator
        )
        assert isinstance(celery, CeleryDispatcher)

    def test_celery_requires_sql_store(self) -> None:
        with pytest.raises(ValueError):
            build_dispatcher(make_settings(EXECUTION_BACKEND="celery"), MagicMock())
