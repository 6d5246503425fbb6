"""End-to-end tests against the assembled application.

Runs the real lifespan wiring (local worker pool, in-memory or SQLite store) with the
simulated engine, from upload through polling to a terminal status.
"""

import asyncio
import time

import pytest
from fastapi.testclient import TestClient

from transcoder.core.config import settings
from transcoder.modules.auth.jwt import create_access_token
from transcoder.modules.transcoding.factory import build_store
from transcoder.modules.transcoding.repository import init_models

POLL_TIMEOUT = 15.0


@pytest.fixture
def client(tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "UPLOAD_DIR", str(tmp_path / "uploads"))
    monkeypatch.setattr(settings, "OUTPUT_DIR", str(tmp_path / "outputs"))
    monkeypatch.setattr(settings, "TRANSCODE_ENGINE", "simulated")
    monkeypatch.setattr(settings, "JOB_STORE_BACKEND", "memory")
    monkeypatch.setattr(settings, "EXECUTION_BACKEND", "local")

    from transcoder.main import app

    with TestClient(app) as c:
        yield c


def headers(user_id: str = "alice", role: str = "user") -> dict:
    return {"Authorization": f"Bearer {create_access_token(user_id, role=role)}"}


def submit(client, quality: str = "high") -> dict:
    video = client.post(
        "/api/videos/upload",
        files={"file": ("clip.mp4", b"\x00" * 256, "video/mp4")},
        headers=headers(),
    ).json()
    response = client.post(
        f"/api/videos/{video['video_id']}/transcode",
        json={"quality": quality},
        headers=headers(),
    )
    assert response.status_code == 202
    return response.json()["job"]


def wait_for(client, job_id: str, statuses: set[str]) -> dict:
    deadline = time.monotonic() + POLL_TIMEOUT
    while True:
        job = client.get(f"/api/jobs/{job_id}", headers=headers()).json()
        if job["status"] in statuses or time.monotonic() > deadline:
            return job
        time.sleep(0.1)


class TestTranscodeFlow:
    def test_health_and_metrics(self, client) -> None:
        assert client.get("/health").json() == {"status": "healthy"}

        response = client.get("/metrics")
        assert response.status_code == 200
        assert "transcode_jobs_total" in response.text
        assert "http_requests_total" in response.text

    def test_correlation_id_is_echoed(self, client) -> None:
        response = client.get("/health", headers={"X-Correlation-ID": "req-123"})
        assert response.headers["X-Correlation-ID"] == "req-123"

    def test_job_runs_to_completion(self, client, tmp_path) -> None:
        job = submit(client)

        finished = wait_for(client, job["id"], {"completed", "failed", "cancelled"})

        assert finished["status"] == "completed"
        assert finished["progress"] == 100
        assert finished["output_path"] == str(tmp_path / "outputs" / f"{job['id']}_high.mp4")
        assert finished["started_at"] is not None
        assert finished["completed_at"] is not None

    def test_job_can_be_cancelled_while_processing(self, client) -> None:
        job = submit(client)
        wait_for(client, job["id"], {"processing"})

        response = client.post(f"/api/jobs/{job['id']}/cancel", headers=headers())
        assert response.status_code == 200

        time.sleep(1.0)
        final = client.get(f"/api/jobs/{job['id']}", headers=headers()).json()
        assert final["status"] == "cancelled"
        assert final["output_path"] is None


class TestRestart:
    def test_pending_jobs_resume_after_restart(self, tmp_path, monkeypatch) -> None:
        upload_dir = tmp_path / "uploads"
        upload_dir.mkdir()
        (upload_dir / "left-over.mp4").write_bytes(b"\x00" * 16)
        monkeypatch.setattr(settings, "UPLOAD_DIR", str(upload_dir))
        monkeypatch.setattr(settings, "OUTPUT_DIR", str(tmp_path / "outputs"))
        monkeypatch.setattr(settings, "TRANSCODE_ENGINE", "simulated")
        monkeypatch.setattr(settings, "JOB_STORE_BACKEND", "sql")
        monkeypatch.setattr(settings, "EXECUTION_BACKEND", "local")
        monkeypatch.setattr(settings, "DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path}/jobs.db")

        async def leave_pending_job() -> str:
            store = build_store(settings)
            await init_models(store.session_maker.kw["bind"])
            try:
                job = await store.create(
                    owner_id="alice", video_id="v-1", input_filename="left-over.mp4", quality="low",
                )
            finally:
                await store.close()
            return job.id

        job_id = asyncio.run(leave_pending_job())

        from transcoder.main import app

        with TestClient(app) as client:
            finished = wait_for(client, job_id, {"completed", "failed", "cancelled"})

        assert finished["status"] == "completed"
        assert finished["output_path"] == str(tmp_path / "outputs" / f"{job_id}_low.mp4")
