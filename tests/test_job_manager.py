"""Tests for the cloud-vision job manager."""

import asyncio

import pytest

from conftest import FakeSegmentation, FakeSpeech, FakeVision
from voicedesc.errors import JobNotFoundError
from voicedesc.jobs.manager import SinglePipelineJobManager, health_from_counts
from voicedesc.jobs.models import JobState, JobStep
from voicedesc.models.pipeline import MediaKind, PipelineType, ProcessingRequest


def _make_request(**overrides) -> ProcessingRequest:
    fields = {"content": b"video-bytes", "filename": "clip.mp4"}
    fields.update(overrides)
    return ProcessingRequest(**fields)


def _make_manager(settings, storage, chunker, segmentation=None, vision=None, speech=None):
    return SinglePipelineJobManager(
        storage=storage,
        segmentation=segmentation or FakeSegmentation(),
        chunker=chunker,
        vision=vision or FakeVision(),
        speech=speech or FakeSpeech(),
        settings=settings,
    )


def _record_progress(manager: SinglePipelineJobManager) -> list[tuple[str, str, int]]:
    seen: list[tuple[str, str, int]] = []
    manager.store.subscribe(lambda job_id, s: seen.append((s.state.value, s.step.value, s.progress)))
    return seen


class TestCreateJob:
    @pytest.mark.asyncio
    async def test_uploads_content(self, settings, storage, chunker) -> None:
        manager = _make_manager(settings, storage, chunker)
        job = await manager.create_job(_make_request())

        assert job.pipeline == PipelineType.CLOUD_VISION
        assert job.input_ref == f"uploads/{job.id}.mp4"
        assert storage.objects[job.input_ref] == b"video-bytes"
        assert job.status.state == JobState.PENDING
        assert job.status.step == JobStep.UPLOAD
        assert job.status.progress == 10

    @pytest.mark.asyncio
    async def test_existing_reference(self, settings, storage, chunker) -> None:
        await storage.put("library/clip.mp4", b"video")
        manager = _make_manager(settings, storage, chunker)
        job = await manager.create_job(ProcessingRequest(input_ref="library/clip.mp4"))
        assert job.input_ref == "library/clip.mp4"
        assert job.status.state == JobState.PENDING

    @pytest.mark.asyncio
    async def test_missing_reference_fails_job(self, settings, storage, chunker) -> None:
        manager = _make_manager(settings, storage, chunker)
        job = await manager.create_job(ProcessingRequest(input_ref="library/none.mp4"))
        assert job.status.state == JobState.FAILED
        assert job.status.error.code == "VALIDATION_ERROR"


class TestProcessVideo:
    @pytest.mark.asyncio
    async def test_runs_every_step(self, settings, storage, chunker, speech) -> None:
        segmentation = FakeSegmentation()
        vision = FakeVision()
        manager = _make_manager(settings, storage, chunker, segmentation, vision, speech)
        job = await manager.create_job(_make_request())
        seen = _record_progress(manager)

        job = await manager.process_job(job.id)

        assert job.status.state == JobState.COMPLETED
        assert job.status.progress == 100
        assert segmentation.calls == [job.input_ref]
        assert chunker.calls[0]["hints"] == segmentation.segments
        assert len(vision.calls) == 3
        assert len(job.analyses) == 3
        assert job.compiled_text
        assert job.audio_ref.startswith(f"audio/{job.id}-")
        assert storage.objects[job.audio_ref] == speech.audio
        assert [p for _, _, p in seen] == [15, 35, 40, 55, 60, 75, 80, 85, 90, 95, 100]
        result = job.status.result
        assert result.compiled.stats.total_scenes >= 1
        assert result.segments == segmentation.segments

    @pytest.mark.asyncio
    async def test_audio_is_optional(self, settings, storage, chunker, speech) -> None:
        manager = _make_manager(settings, storage, chunker, speech=speech)
        job = await manager.create_job(_make_request(generate_audio=False))
        job = await manager.process_job(job.id)
        assert job.status.state == JobState.COMPLETED
        assert job.audio_ref is None
        assert speech.calls == []

    @pytest.mark.asyncio
    async def test_segmentation_failure_keeps_step(self, settings, storage, chunker) -> None:
        manager = _make_manager(
            settings, storage, chunker, segmentation=FakeSegmentation(error=RuntimeError("service down"))
        )
        job = await manager.create_job(_make_request())
        job = await manager.process_job(job.id)

        assert job.status.state == JobState.FAILED
        assert job.status.step == JobStep.SEGMENTATION
        assert job.status.progress == 15
        assert job.status.error.code == "EXTERNAL_SERVICE_ERROR"
        assert "service down" in job.status.error.message

    @pytest.mark.asyncio
    async def test_empty_segmentation_fails_validation(self, settings, storage, chunker) -> None:
        manager = _make_manager(settings, storage, chunker, segmentation=FakeSegmentation(segments=[]))
        job = await manager.create_job(_make_request())
        job = await manager.process_job(job.id)
        assert job.status.error.code == "STEP_VALIDATION_FAILED"
        assert chunker.calls == []

    @pytest.mark.asyncio
    async def test_scene_failure_is_fatal_and_keeps_artifacts(self, settings, storage, chunker) -> None:
        manager = _make_manager(settings, storage, chunker, vision=FakeVision(error=RuntimeError("quota")))
        job = await manager.create_job(_make_request())
        job = await manager.process_job(job.id)

        assert job.status.state == JobState.FAILED
        assert job.status.step == JobStep.ANALYSIS
        assert len(job.segments) == 3
        assert len(job.scenes) == 3
        assert job.compiled_text is None

    @pytest.mark.asyncio
    async def test_speech_failure_fails_job(self, settings, storage, chunker) -> None:
        manager = _make_manager(settings, storage, chunker, speech=FakeSpeech(audio=b""))
        job = await manager.create_job(_make_request())
        job = await manager.process_job(job.id)
        assert job.status.state == JobState.FAILED
        assert job.status.step == JobStep.SYNTHESIS

    @pytest.mark.asyncio
    async def test_completed_job_is_not_reprocessed(self, settings, storage, chunker) -> None:
        segmentation = FakeSegmentation()
        manager = _make_manager(settings, storage, chunker, segmentation=segmentation)
        job = await manager.create_job(_make_request())
        await manager.process_job(job.id)
        await manager.process_job(job.id)
        assert len(segmentation.calls) == 1


class TestProcessImage:
    @pytest.mark.asyncio
    async def test_image_skips_segmentation(self, settings, storage, chunker) -> None:
        segmentation = FakeSegmentation()
        vision = FakeVision(text="A cat sleeps on a sofa.", labels=("cat", "sofa"))
        manager = _make_manager(settings, storage, chunker, segmentation, vision)
        job = await manager.create_job(_make_request(kind=MediaKind.IMAGE, filename="cat.png"))
        job = await manager.process_job(job.id)

        assert job.status.state == JobState.COMPLETED
        assert segmentation.calls == []
        assert chunker.calls == []
        assert vision.calls == [job.input_ref]
        assert job.status.result.image.labels == ["cat", "sofa"]


class TestBackgroundAndQueries:
    @pytest.mark.asyncio
    async def test_submit_runs_in_background(self, settings, storage, chunker) -> None:
        manager = _make_manager(settings, storage, chunker)
        job = await manager.submit(_make_request())
        await manager.wait_for_background()
        assert manager.get_status(job.id).state == JobState.COMPLETED

    @pytest.mark.asyncio
    async def test_run_job_respects_concurrency_limit(self, settings, storage, chunker) -> None:
        segmentation = FakeSegmentation(delay=0.01)
        bounded = settings.model_copy(update={"max_concurrent_jobs": 1})
        manager = _make_manager(bounded, storage, chunker, segmentation=segmentation)
        jobs = [await manager.create_job(_make_request()) for _ in range(3)]

        done = await asyncio.gather(*(manager.run_job(job.id) for job in jobs))

        assert [job.status.state for job in done] == [JobState.COMPLETED] * 3
        assert len(segmentation.calls) == 3
        assert segmentation.peak == 1

    @pytest.mark.asyncio
    async def test_get_status_returns_snapshot(self, settings, storage, chunker) -> None:
        manager = _make_manager(settings, storage, chunker)
        job = await manager.create_job(_make_request())
        snapshot = manager.get_status(job.id)
        await manager.process_job(job.id)
        assert snapshot.state == JobState.PENDING

    def test_unknown_job(self, settings, storage, chunker) -> None:
        manager = _make_manager(settings, storage, chunker)
        with pytest.raises(JobNotFoundError):
            manager.get_status("missing")
        assert manager.get_job("missing") is None

    @pytest.mark.asyncio
    async def test_list_and_delete(self, settings, storage, chunker) -> None:
        manager = _make_manager(settings, storage, chunker)
        job = await manager.create_job(_make_request())
        assert [j.id for j in manager.list_jobs()] == [job.id]
        assert manager.delete_job(job.id)
        assert manager.list_jobs() == []

    @pytest.mark.asyncio
    async def test_health_reflects_failures(self, settings, storage, chunker) -> None:
        manager = _make_manager(settings, storage, chunker, vision=FakeVision(error=RuntimeError("down")))
        assert manager.health().status == "healthy"
        job = await manager.create_job(_make_request())
        await manager.process_job(job.id)
        health = manager.health()
        assert health.status == "unhealthy"
        assert health.failed_jobs == 1


class TestHealthFromCounts:
    def _counts(self, pending=0, processing=0, completed=0, failed=0):
        return {
            JobState.PENDING: pending,
            JobState.PROCESSING: processing,
            JobState.COMPLETED: completed,
            JobState.FAILED: failed,
        }

    def test_healthy(self) -> None:
        assert health_from_counts(self._counts(completed=5), 10).status == "healthy"

    def test_degraded_on_any_failure(self) -> None:
        assert health_from_counts(self._counts(processing=2, failed=1), 10).status == "degraded"

    def test_degraded_when_overloaded(self) -> None:
        assert health_from_counts(self._counts(processing=11), 10).status == "degraded"

    def test_unhealthy_when_failures_dominate(self) -> None:
        summary = health_from_counts(self._counts(processing=1, failed=2), 10)
        assert summary.status == "unhealthy"
        assert summary.active_jobs == 1
