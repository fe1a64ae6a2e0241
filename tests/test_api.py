"""Tests for the job status API."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from conftest import FakeChunker, FakeMeteredBackend, FakeSegmentation, FakeSpeech, FakeStorage, FakeVision
from voicedesc import __version__
from voicedesc.main import create_app
from voicedesc.models.pipeline import ProcessingRequest
from voicedesc.orchestrator import UnifiedOrchestrator


def _make_orchestrator(settings, metered_backend=None) -> UnifiedOrchestrator:
    return UnifiedOrchestrator.create(
        settings,
        storage=FakeStorage(),
        segmentation=FakeSegmentation(),
        chunker=FakeChunker(),
        vision=FakeVision(),
        speech=FakeSpeech(),
        metered_backend=metered_backend or FakeMeteredBackend(),
    )


def _run_video(orchestrator: UnifiedOrchestrator, **overrides) -> str:
    fields = {"content": b"video-bytes", "filename": "clip.mp4"}
    fields.update(overrides)
    result = asyncio.run(orchestrator.process_video(ProcessingRequest(**fields)))
    return result.job_id


class TestJobsAPI:
    @pytest.fixture(autouse=True)
    def setup_client(self, settings) -> None:
        self.orchestrator = _make_orchestrator(settings)
        self.client = TestClient(create_app(self.orchestrator))

    def test_list_jobs(self) -> None:
        assert self.client.get("/api/v1/jobs").json() == []

        job_id = _run_video(self.orchestrator)
        response = self.client.get("/api/v1/jobs")
        assert response.status_code == 200
        items = response.json()
        assert len(items) == 1
        assert items[0]["job_id"] == job_id
        assert items[0]["kind"] == "video"
        assert items[0]["pipeline"] == "llm-vision"
        assert items[0]["status"] == "completed"

    def test_job_detail(self) -> None:
        job_id = _run_video(self.orchestrator)
        response = self.client.get(f"/api/v1/jobs/{job_id}")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "completed"
        assert body["step"] == "completed"
        assert body["progress"] == 100
        assert body["chunks"] == 3
        assert body["analyses"] == 3
        assert body["failed_chunks"] == 0
        assert body["audio_ref"] == f"audio/{job_id}.mp3"
        assert body["compiled_text"].startswith("The video begins with")
        assert body["error"] is None

    def test_job_status(self) -> None:
        job_id = _run_video(self.orchestrator)
        response = self.client.get(f"/api/v1/jobs/{job_id}/status")
        assert response.status_code == 200
        body = response.json()
        assert body["job_id"] == job_id
        assert body["status"] == "completed"
        assert "kind" not in body

    def test_failed_job_reports_error(self, settings) -> None:
        orchestrator = _make_orchestrator(settings, FakeMeteredBackend(fail_all=True))
        client = TestClient(create_app(orchestrator))
        job_id = _run_video(orchestrator)

        body = client.get(f"/api/v1/jobs/{job_id}/status").json()
        assert body["status"] == "failed"
        assert body["step"] == "analysis"
        assert body["error"]["code"] == "STEP_VALIDATION_FAILED"

    def test_unknown_job(self) -> None:
        assert self.client.get("/api/v1/jobs/missing").status_code == 404
        assert self.client.get("/api/v1/jobs/missing/status").status_code == 404
        assert self.client.delete("/api/v1/jobs/missing").status_code == 404

    def test_delete_job(self) -> None:
        job_id = _run_video(self.orchestrator)
        assert self.client.delete(f"/api/v1/jobs/{job_id}").status_code == 204
        assert self.client.get(f"/api/v1/jobs/{job_id}").status_code == 404

    def test_cleanup(self) -> None:
        old_id = _run_video(self.orchestrator)
        _run_video(self.orchestrator)
        self.orchestrator.get_job(old_id).status.created_at = datetime.now(timezone.utc) - timedelta(hours=5)

        response = self.client.post("/api/v1/jobs/cleanup", json={"max_age_hours": 1})
        assert response.status_code == 200
        assert response.json() == {"removed": 1}
        assert len(self.client.get("/api/v1/jobs").json()) == 1

    def test_cleanup_uses_configured_age(self) -> None:
        _run_video(self.orchestrator)
        response = self.client.post("/api/v1/jobs/cleanup")
        assert response.status_code == 200
        assert response.json() == {"removed": 0}

    def test_cleanup_rejects_invalid_age(self) -> None:
        response = self.client.post("/api/v1/jobs/cleanup", json={"max_age_hours": 0})
        assert response.status_code == 422


class TestHealthAPI:
    def test_health(self, settings) -> None:
        orchestrator = _make_orchestrator(settings)
        client = TestClient(create_app(orchestrator))
        _run_video(orchestrator)

        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {
            "status": "healthy",
            "version": __version__,
            "active_jobs": 0,
            "completed_jobs": 1,
            "failed_jobs": 0,
        }
