"""Cloud-vision job manager with in-memory storage and background execution."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable
from dataclasses import replace
from typing import TypeVar
from uuid import uuid4

from voicedesc.config import Settings
from voicedesc.errors import ExternalServiceError, StepValidationError, ValidationError, VoiceDescError
from voicedesc.jobs.models import HealthSummary, Job, JobError, JobState, JobStatus, JobStep
from voicedesc.models.media import SceneAnalysis
from voicedesc.models.pipeline import MediaKind, PipelineResults, PipelineType, ProcessingRequest
from voicedesc.pipeline.store import JobStore
from voicedesc.services.compilation import DescriptionCompiler
from voicedesc.services.interfaces import (
    IChunker,
    IMediaStorage,
    ISegmentationService,
    ISpeechSynthesizer,
    IVisionBackend,
)
from voicedesc.services.retry import call_with_timeout

logger = logging.getLogger(__name__)

T = TypeVar("T")


def health_from_counts(counts: dict[JobState, int], active_threshold: int) -> HealthSummary:
    """Unhealthy when failures outnumber active jobs; degraded on any failure or overload."""
    active = counts[JobState.PENDING] + counts[JobState.PROCESSING]
    failed = counts[JobState.FAILED]
    if failed > 0 and failed > active:
        status = "unhealthy"
    elif failed > 0 or active > active_threshold:
        status = "degraded"
    else:
        status = "healthy"
    return HealthSummary(
        status=status,
        active_jobs=active,
        completed_jobs=counts[JobState.COMPLETED],
        failed_jobs=failed,
    )


def error_from_exception(exc: Exception) -> JobError:
    if isinstance(exc, VoiceDescError):
        return JobError.from_payload(exc.to_payload())
    return JobError(code=ExternalServiceError.code, message=str(exc) or type(exc).__name__)


class SinglePipelineJobManager:
    """Runs cloud-vision jobs step by step.

    Jobs are stored in a :class:`JobStore`. :meth:`run_job` bounds
    processing by ``max_concurrent_jobs`` and :meth:`submit` schedules it
    with ``asyncio.create_task``. Each step announces itself before it
    starts and validates the previous step's output before the job moves on.
    """

    def __init__(
        self,
        *,
        storage: IMediaStorage,
        segmentation: ISegmentationService,
        chunker: IChunker,
        vision: IVisionBackend,
        speech: ISpeechSynthesizer,
        settings: Settings,
        compiler: DescriptionCompiler | None = None,
        store: JobStore | None = None,
    ) -> None:
        self.storage = storage
        self.segmentation = segmentation
        self.chunker = chunker
        self.vision = vision
        self.speech = speech
        self.settings = settings
        self.compiler = compiler or DescriptionCompiler()
        self.store = store or JobStore()
        self._semaphore = asyncio.Semaphore(settings.max_concurrent_jobs)
        self._tasks: set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def create_job(self, request: ProcessingRequest) -> Job:
        """Register a job and upload or verify its input.

        Returns:
            The job, pending at the upload step (or failed if the input
            could not be stored).
        """
        job = Job(kind=request.kind, request=request)
        job.assign_pipeline(PipelineType.CLOUD_VISION)
        self.store.add(job)
        try:
            job.input_ref = await self._stage_input(job, request)
            self.store.advance(
                job.id, step=JobStep.UPLOAD, progress=10, message="Upload complete", state=JobState.PENDING
            )
        except Exception as e:
            self._fail(job, e)
        return job

    async def _stage_input(self, job: Job, request: ProcessingRequest) -> str:
        if request.content is not None:
            suffix = f".{request.media_format}" if request.media_format else ""
            key = f"uploads/{job.id}{suffix}"
            return await self._timed(
                self.storage.put(key, request.content), "storage"
            )
        if not await self._timed(self.storage.exists(request.input_ref), "storage"):
            raise ValidationError(f"Input not found: {request.input_ref}")
        return request.input_ref

    async def process_job(self, job_id: str) -> Job:
        """Run every step of a pending job; never raises for step failures."""
        job = self.store.require(job_id)
        if job.status.state != JobState.PENDING:
            logger.debug("Job %s is %s, not processing", job_id, job.status.state.value)
            return job

        executors = {
            MediaKind.VIDEO: self._exec_video,
            MediaKind.IMAGE: self._exec_image,
        }
        try:
            results = await executors[job.kind](job)
            self.store.complete(job.id, result=results)
            logger.info("Job %s completed", job.id)
        except Exception as e:
            self._fail(job, e)
        return job

    async def submit(self, request: ProcessingRequest) -> Job:
        """Create a job and process it in the background."""
        job = await self.create_job(request)
        if job.status.state == JobState.PENDING:
            task = asyncio.create_task(self.run_job(job.id))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
        return job

    async def run_job(self, job_id: str) -> Job:
        """Process a job once a slot under ``max_concurrent_jobs`` is free."""
        async with self._semaphore:
            return await self.process_job(job_id)

    def _fail(self, job: Job, exc: Exception) -> None:
        error = error_from_exception(exc)
        logger.error("Job %s failed at %s: %s", job.id, job.status.step.value, error.message, exc_info=exc)
        if not job.status.state.is_terminal:
            self.store.fail(job.id, error)

    async def _timed(self, awaitable: Awaitable[T], service: str) -> T:
        """Await a collaborator call with the configured timeout.

        Non-voicedesc exceptions are wrapped as ExternalServiceError.
        """
        try:
            return await call_with_timeout(awaitable, self.settings.external_call_timeout_seconds, service)
        except VoiceDescError:
            raise
        except Exception as e:
            raise ExternalServiceError(f"{service} failed: {e}", service=service) from e

    # ------------------------------------------------------------------
    # Executors
    # ------------------------------------------------------------------

    async def _exec_video(self, job: Job) -> PipelineResults:
        request = job.request

        self.store.advance(job.id, step=JobStep.SEGMENTATION, progress=15, message="Detecting scenes...")
        segments = await self._timed(self.segmentation.segment(job.input_ref), "segmentation")
        if not segments:
            raise StepValidationError("Segmentation returned no segments")
        job.segments.extend(segments)
        self.store.advance(job.id, progress=35, message=f"Detected {len(segments)} segments")

        self.store.advance(job.id, step=JobStep.EXTRACTION, progress=40, message="Extracting scenes...")
        scenes = await self._timed(
            self.chunker.chunk(job.input_ref, hints=segments, max_chunk_duration=request.max_chunk_duration),
            "extraction",
        )
        if not scenes:
            raise StepValidationError("Scene extraction produced no scenes")
        job.scenes.extend(scenes)
        self.store.advance(job.id, progress=55, message=f"Extracted {len(scenes)} scenes")

        self.store.advance(job.id, step=JobStep.ANALYSIS, progress=60, message="Analyzing scenes...")
        analyses = await self._analyze_scenes(job)
        job.analyses.extend(analyses)
        self.store.advance(job.id, progress=75, message=f"Analyzed {len(analyses)} scenes")

        self.store.advance(job.id, step=JobStep.COMPILATION, progress=80, message="Compiling description...")
        compiled = self.compiler.compile(job.analyses)
        text = self.compiler.format_for_speech(compiled.clean_text)
        self.store.advance(job.id, progress=85, message="Description compiled")

        audio_ref = await self._synthesize(job, text)
        job.record_output(compiled.clean_text, audio_ref)
        return PipelineResults(
            compiled_text=compiled.clean_text,
            audio_ref=audio_ref,
            segments=list(job.segments),
            analyses=list(job.analyses),
            compiled=compiled,
        )

    async def _exec_image(self, job: Job) -> PipelineResults:
        request = job.request

        self.store.advance(job.id, step=JobStep.ANALYSIS, progress=60, message="Analyzing image...")
        analysis = await self._timed(
            self.vision.analyze(job.input_ref, {"detail_level": request.detail_level}), "vision"
        )
        self.store.advance(job.id, progress=75, message="Image analyzed")

        self.store.advance(job.id, step=JobStep.COMPILATION, progress=80, message="Compiling description...")
        description = self.compiler.compile_vision(analysis, request.detail_level)
        self.store.advance(job.id, progress=85, message="Description compiled")

        audio_ref = await self._synthesize(job, self.compiler.format_image_for_speech(description))
        job.record_output(description.detailed_description, audio_ref)
        return PipelineResults(
            compiled_text=description.detailed_description,
            audio_ref=audio_ref,
            image=description,
        )

    async def _analyze_scenes(self, job: Job) -> list[SceneAnalysis]:
        semaphore = asyncio.Semaphore(self.settings.max_concurrent_analyses)
        options = {"language": job.request.language} if job.request.language else None

        async def _analyze(scene) -> SceneAnalysis:
            async with semaphore:
                result = await self._timed(self.vision.analyze(scene.ref, options), "vision")
            return SceneAnalysis(
                segment_id=scene.chunk_id,
                start_time=scene.start_time,
                end_time=scene.end_time,
                description=result.text,
                confidence=result.confidence,
                visual_elements=list(result.labels),
            )

        analyses = await asyncio.gather(*(_analyze(scene) for scene in job.scenes))
        if not any(a.description.strip() for a in analyses):
            raise StepValidationError("Scene analysis produced no descriptions")
        return list(analyses)

    async def _synthesize(self, job: Job, text: str) -> str | None:
        if not job.request.generate_audio:
            return None
        self.store.advance(job.id, step=JobStep.SYNTHESIS, progress=90, message="Synthesizing audio...")
        audio = await self._timed(self.speech.synthesize(text), "speech")
        if not audio:
            raise StepValidationError("Speech synthesis returned no audio")
        audio_ref = await self._timed(
            self.storage.put(f"audio/{job.id}-{uuid4().hex[:8]}.mp3", audio, "audio/mpeg"), "storage"
        )
        self.store.advance(job.id, progress=95, message="Audio stored")
        return audio_ref

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_job(self, job_id: str) -> Job | None:
        return self.store.get(job_id)

    def get_status(self, job_id: str) -> JobStatus:
        """Snapshot of a job's status. Raises JobNotFoundError."""
        return replace(self.store.require(job_id).status)

    def list_jobs(self) -> list[Job]:
        return self.store.list()

    def delete_job(self, job_id: str) -> bool:
        return self.store.delete(job_id)

    def cleanup(self, max_age_hours: float | None = None) -> int:
        return self.store.cleanup(max_age_hours if max_age_hours is not None else self.settings.job_max_age_hours)

    def health(self) -> HealthSummary:
        return health_from_counts(self.store.counts(), self.settings.health_active_job_threshold)

    async def wait_for_background(self) -> None:
        """Wait for all scheduled jobs to finish."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
