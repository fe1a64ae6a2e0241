"""Unified orchestrator: routes each request to one pipeline and reports a uniform result."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field, replace
from typing import TypeVar

from voicedesc.config import Settings, get_settings
from voicedesc.errors import (
    ExternalServiceError,
    InvalidTransitionError,
    StepValidationError,
    ValidationError,
    VoiceDescError,
)
from voicedesc.jobs.manager import SinglePipelineJobManager, error_from_exception, health_from_counts
from voicedesc.jobs.models import HealthSummary, Job, JobState, JobStatus, JobStep
from voicedesc.models.media import Chunk, SceneAnalysis, VideoSegment
from voicedesc.models.pipeline import (
    CostBreakdown,
    MediaKind,
    PipelineResults,
    PipelineSelection,
    PipelineType,
    ProcessingRequest,
    ProcessingResult,
    ResultMetadata,
    ResultStatus,
)
from voicedesc.orchestrator.selector import PipelineSelector
from voicedesc.pipeline.store import JobStore
from voicedesc.services.cache.keys import fingerprint_bytes
from voicedesc.services.cache.redis_store import RedisCacheStore
from voicedesc.services.cache.response_cache import ResponseCache
from voicedesc.services.chunking import FFmpegChunker
from voicedesc.services.compilation import DescriptionCompiler
from voicedesc.services.cost.optimizer import CostOptimizer
from voicedesc.services.interfaces import (
    IChunker,
    IEmbedder,
    IMediaStorage,
    IMeteredAnalysisBackend,
    IPersistentCacheStore,
    ISegmentationService,
    ISpeechSynthesizer,
    IVisionBackend,
)
from voicedesc.services.llm.claude import ClaudeVisionBackend
from voicedesc.services.llm.metered import MeteredAnalyzer, MeteredResponse
from voicedesc.services.llm.prompts import chunk_prompt, image_prompt
from voicedesc.services.retry import call_with_timeout
from voicedesc.services.storage import LocalMediaStorage
from voicedesc.services.synthesis import DescriptionSynthesizer, parse_chunk_analysis

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_IMAGE_CONFIDENCE = 0.8


@dataclass
class _LLMSpend:
    """Metered spend accumulated while one job runs."""

    tokens: int = 0
    cost: float = 0.0
    cached_calls: int = 0

    def add(self, response: MeteredResponse) -> None:
        if response.cached:
            self.cached_calls += 1
        else:
            self.tokens += response.total_tokens
            self.cost += response.cost


@dataclass
class _Outcome:
    results: PipelineResults
    cost: CostBreakdown = field(default_factory=CostBreakdown)


Strategy = Callable[[Job], Awaitable[_Outcome]]


class UnifiedOrchestrator:
    """Entry point for video and image description jobs.

    Every job is bound to exactly one pipeline. Cloud-vision jobs are
    delegated to a :class:`SinglePipelineJobManager` and its status is
    mirrored onto the orchestrator's own job record. The llm-vision and
    hybrid strategies run here, calling the metered backend only through
    :class:`MeteredAnalyzer`.

    :meth:`process_video` and :meth:`process_image` never raise; failures
    come back as a failed :class:`ProcessingResult`.
    """

    def __init__(
        self,
        *,
        settings: Settings,
        storage: IMediaStorage,
        segmentation: ISegmentationService,
        chunker: IChunker,
        vision: IVisionBackend,
        speech: ISpeechSynthesizer,
        metered: MeteredAnalyzer,
        cloud_manager: SinglePipelineJobManager,
        selector: PipelineSelector | None = None,
        compiler: DescriptionCompiler | None = None,
        synthesizer: DescriptionSynthesizer | None = None,
        store: JobStore | None = None,
    ) -> None:
        self.settings = settings
        self.storage = storage
        self.segmentation = segmentation
        self.chunker = chunker
        self.vision = vision
        self.speech = speech
        self.metered = metered
        self.cloud_manager = cloud_manager
        self.selector = selector or PipelineSelector(settings)
        self.compiler = compiler or DescriptionCompiler()
        self.synthesizer = synthesizer or DescriptionSynthesizer()
        self.store = store or JobStore()
        self._delegates: dict[str, str] = {}
        self.cloud_manager.store.subscribe(self._mirror_delegate)

        self._video_strategies: dict[PipelineType, Strategy] = {
            PipelineType.CLOUD_VISION: self._run_cloud,
            PipelineType.LLM_VISION: self._run_llm_video,
            PipelineType.HYBRID: self._run_hybrid_video,
        }
        self._image_strategies: dict[PipelineType, Strategy] = {
            PipelineType.CLOUD_VISION: self._run_cloud,
            PipelineType.LLM_VISION: self._run_llm_image,
            PipelineType.HYBRID: self._run_hybrid_image,
        }

    @classmethod
    def create(
        cls,
        settings: Settings | None = None,
        *,
        segmentation: ISegmentationService,
        vision: IVisionBackend,
        speech: ISpeechSynthesizer,
        storage: IMediaStorage | None = None,
        chunker: IChunker | None = None,
        metered_backend: IMeteredAnalysisBackend | None = None,
        persistent_cache: IPersistentCacheStore | None = None,
        embedder: IEmbedder | None = None,
    ) -> UnifiedOrchestrator:
        """Wire the cache, cost optimizer, metered boundary and cloud manager from settings.

        The cloud collaborators are always supplied by the caller. Storage,
        chunker, metered backend and the persistent cache tier default to
        the local filesystem, ffmpeg, Claude and (when ``redis_url`` is set)
        Redis.
        """
        if settings is None:
            settings = get_settings()
        if storage is None:
            storage = LocalMediaStorage(settings.storage_dir)
        if chunker is None:
            if not isinstance(storage, LocalMediaStorage):
                raise ValidationError("The ffmpeg chunker needs local storage; pass a chunker")
            chunker = FFmpegChunker.from_settings(storage, settings)
        if metered_backend is None:
            metered_backend = ClaudeVisionBackend(
                storage, api_key=settings.anthropic_api_key, max_tokens=settings.llm_max_tokens
            )
        if persistent_cache is None and settings.redis_url:
            persistent_cache = RedisCacheStore.from_url(settings.redis_url)

        cache = ResponseCache.from_settings(settings, persistent=persistent_cache, embedder=embedder)
        optimizer = CostOptimizer(
            cache,
            default_model=settings.llm_model,
            ledger_size=settings.token_ledger_size,
        )
        metered = MeteredAnalyzer.from_settings(metered_backend, optimizer, settings)
        cloud_manager = SinglePipelineJobManager(
            storage=storage,
            segmentation=segmentation,
            chunker=chunker,
            vision=vision,
            speech=speech,
            settings=settings,
        )
        return cls(
            settings=settings,
            storage=storage,
            segmentation=segmentation,
            chunker=chunker,
            vision=vision,
            speech=speech,
            metered=metered,
            cloud_manager=cloud_manager,
        )

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def process_video(self, request: ProcessingRequest) -> ProcessingResult:
        return await self._process(request.model_copy(update={"kind": MediaKind.VIDEO}))

    async def process_image(self, request: ProcessingRequest) -> ProcessingResult:
        return await self._process(request.model_copy(update={"kind": MediaKind.IMAGE}))

    async def _process(self, request: ProcessingRequest) -> ProcessingResult:
        started = time.perf_counter()
        job = Job(kind=request.kind, request=request)
        self.store.add(job)
        self.store.advance(
            job.id, step=JobStep.UPLOAD, progress=5, message="Selecting pipeline...", state=JobState.PENDING
        )

        selection = self.selector.select(request)
        job.assign_pipeline(selection.pipeline)

        try:
            self._validate(request, selection)
        except ValidationError as e:
            logger.warning("Rejected job %s: %s", job.id, e.message)
            self.store.fail(job.id, error_from_exception(e))
            return self._envelope(job, selection, started, error=e.to_payload())

        strategies = self._video_strategies if request.kind == MediaKind.VIDEO else self._image_strategies
        strategy = strategies[selection.pipeline]
        logger.info("Job %s: %s %s via %s", job.id, request.kind.value, request.filename or "", selection.pipeline.value)

        try:
            outcome = await strategy(job)
            self.store.complete(job.id, result=outcome.results)
            return self._envelope(job, selection, started, results=outcome.results, cost=outcome.cost)
        except Exception as e:
            error = error_from_exception(e)
            logger.error(
                "Job %s failed in %s pipeline at %s: %s",
                job.id,
                selection.pipeline.value,
                job.status.step.value,
                error.message,
                exc_info=e,
            )
            if not job.status.state.is_terminal:
                self.store.fail(job.id, error)
            return self._envelope(
                job,
                selection,
                started,
                error={
                    "code": self._failure_code(selection.pipeline, request.kind),
                    "message": f"{selection.pipeline.value} {request.kind.value} processing failed",
                    "details": error.to_dict(),
                },
            )

    def _validate(self, request: ProcessingRequest, selection: PipelineSelection) -> None:
        media_format = request.media_format
        if media_format and media_format not in selection.limits.supported_formats:
            raise ValidationError(
                f"Format {media_format} is not supported by the {selection.pipeline.value} pipeline",
                details={"supported_formats": selection.limits.supported_formats},
            )
        validation = self.selector.validate_selection(
            selection.pipeline, request.effective_size, request.duration_seconds
        )
        for warning in validation.warnings:
            logger.info("Pipeline warning: %s", warning)
        if not validation.valid:
            raise ValidationError("; ".join(validation.errors), details={"errors": validation.errors})

    @staticmethod
    def _failure_code(pipeline: PipelineType, kind: MediaKind) -> str:
        prefix = pipeline.value.upper().replace("-", "_")
        if kind == MediaKind.IMAGE:
            return f"{prefix}_IMAGE_PIPELINE_FAILED"
        return f"{prefix}_PIPELINE_FAILED"

    def _envelope(
        self,
        job: Job,
        selection: PipelineSelection,
        started: float,
        *,
        results: PipelineResults | None = None,
        cost: CostBreakdown | None = None,
        error: dict | None = None,
    ) -> ProcessingResult:
        return ProcessingResult(
            pipeline=selection.pipeline,
            job_id=job.id,
            status=ResultStatus.FAILED if error else ResultStatus.COMPLETED,
            results=results,
            error=error,
            metadata=ResultMetadata(
                processing_time_ms=(time.perf_counter() - started) * 1000,
                pipeline_config=selection.limits,
                cost_estimate=cost,
                selection_reason=selection.reason,
            ),
        )

    # ------------------------------------------------------------------
    # Cloud-vision (delegated)
    # ------------------------------------------------------------------

    async def _run_cloud(self, job: Job) -> _Outcome:
        delegate = await self.cloud_manager.create_job(job.request)
        job.delegate_job_id = delegate.id
        self._delegates[delegate.id] = job.id
        try:
            if delegate.status.state != JobState.FAILED:
                delegate = await self.cloud_manager.run_job(delegate.id)
        finally:
            self._delegates.pop(delegate.id, None)

        job.input_ref = delegate.input_ref
        job.segments.extend(delegate.segments)
        job.scenes.extend(delegate.scenes)
        job.analyses.extend(delegate.analyses)

        if delegate.status.state != JobState.COMPLETED:
            error = delegate.status.error
            raise VoiceDescError(
                error.message if error else "Delegated job did not complete",
                code=error.code if error else None,
                details=error.details if error else {"delegate_job_id": delegate.id},
            )

        job.record_output(delegate.compiled_text or "", delegate.audio_ref)
        services = {"analysis": max(len(delegate.analyses), 1) * self.settings.cloud_cost_per_analysis}
        if job.kind == MediaKind.VIDEO:
            services["segmentation"] = len(delegate.segments) * self.settings.cloud_cost_per_segment
        if delegate.audio_ref:
            services["speech"] = self.settings.cloud_cost_per_synthesis
        return _Outcome(results=delegate.status.result, cost=CostBreakdown(cloud_services=services))

    def _mirror_delegate(self, delegate_id: str, status: JobStatus) -> None:
        job_id = self._delegates.get(delegate_id)
        if job_id is None or status.state != JobState.PROCESSING:
            return
        try:
            self.store.advance(job_id, step=status.step, progress=status.progress, message=status.message)
        except InvalidTransitionError as e:
            logger.debug("Ignoring delegate status for %s: %s", job_id, e.message)

    # ------------------------------------------------------------------
    # llm-vision and hybrid (video)
    # ------------------------------------------------------------------

    async def _run_llm_video(self, job: Job) -> _Outcome:
        spend = _LLMSpend()
        await self._upload(job, progress=10)

        self.store.advance(job.id, step=JobStep.EXTRACTION, progress=25, message="Chunking video...")
        chunks = await self._chunk(job, hints=None)

        self.store.advance(job.id, step=JobStep.ANALYSIS, progress=50, message=f"Analyzing {len(chunks)} chunks...")
        await self._analyze_chunks(job, chunks, spend)

        self.store.advance(job.id, step=JobStep.COMPILATION, progress=75, message="Synthesizing description...")
        synthesized = self.synthesizer.synthesize(job.analyses)

        audio_ref = await self._speak(job, synthesized.narrative, progress=90)
        job.record_output(synthesized.narrative, audio_ref)
        return _Outcome(
            results=PipelineResults(
                compiled_text=synthesized.narrative,
                audio_ref=audio_ref,
                analyses=list(job.analyses),
                synthesized=synthesized,
                failed_chunks=job.failed_chunks,
            ),
            cost=self._cost(spend, audio_ref),
        )

    async def _run_hybrid_video(self, job: Job) -> _Outcome:
        spend = _LLMSpend()
        await self._upload(job, progress=10)

        self.store.advance(job.id, step=JobStep.SEGMENTATION, progress=15, message="Detecting scenes...")
        segments = await self._timed(self.segmentation.segment(job.input_ref), "segmentation")
        if not segments:
            raise StepValidationError("Segmentation returned no segments")
        job.segments.extend(segments)

        self.store.advance(job.id, step=JobStep.EXTRACTION, progress=30, message="Chunking along scenes...")
        chunks = await self._chunk(job, hints=segments)

        self.store.advance(job.id, step=JobStep.ANALYSIS, progress=55, message=f"Analyzing {len(chunks)} chunks...")
        await self._analyze_chunks(job, chunks, spend, segments=segments)

        self.store.advance(job.id, step=JobStep.COMPILATION, progress=80, message="Synthesizing description...")
        synthesized = self.synthesizer.synthesize(job.analyses)

        audio_ref = await self._speak(job, synthesized.narrative, progress=95)
        job.record_output(synthesized.narrative, audio_ref)
        cost = self._cost(spend, audio_ref)
        cost.cloud_services["segmentation"] = len(segments) * self.settings.cloud_cost_per_segment
        return _Outcome(
            results=PipelineResults(
                compiled_text=synthesized.narrative,
                audio_ref=audio_ref,
                segments=list(job.segments),
                analyses=list(job.analyses),
                synthesized=synthesized,
                failed_chunks=job.failed_chunks,
            ),
            cost=cost,
        )

    async def _chunk(self, job: Job, hints: list[VideoSegment] | None) -> list[Chunk]:
        chunks = await self._timed(
            self.chunker.chunk(job.input_ref, hints=hints, max_chunk_duration=job.request.max_chunk_duration),
            "chunking",
        )
        if not chunks:
            raise StepValidationError("Chunking produced no chunks")
        job.scenes.extend(chunks)
        return chunks

    async def _analyze_chunks(
        self,
        job: Job,
        chunks: list[Chunk],
        spend: _LLMSpend,
        segments: list[VideoSegment] | None = None,
    ) -> None:
        """Analyze chunks with bounded concurrency, tolerating individual failures."""
        semaphore = asyncio.Semaphore(self.settings.max_concurrent_analyses)
        request = job.request

        async def _analyze(chunk: Chunk) -> SceneAnalysis | VoiceDescError:
            prompt = chunk_prompt(
                chunk.start_time,
                chunk.end_time,
                title=request.title,
                scene_context=_scene_context(chunk, segments),
                custom=request.prompt,
            )
            try:
                async with semaphore:
                    response = await self.metered.analyze(chunk.ref, prompt, fingerprint=chunk.content_hash)
                spend.add(response)
                return parse_chunk_analysis(chunk, response.text, response.total_tokens)
            except VoiceDescError as e:
                logger.warning("Chunk %s of job %s failed: %s", chunk.chunk_id, job.id, e.message)
                return e

        outcomes = await asyncio.gather(*(_analyze(chunk) for chunk in chunks))
        analyses = [o for o in outcomes if isinstance(o, SceneAnalysis)]
        failures = [o for o in outcomes if isinstance(o, VoiceDescError)]
        job.failed_chunks = len(failures)
        if not analyses:
            raise StepValidationError(
                f"All {len(chunks)} chunk analyses failed",
                details={"first_error": failures[0].to_payload() if failures else None},
            )
        job.analyses.extend(analyses)

    # ------------------------------------------------------------------
    # llm-vision and hybrid (image)
    # ------------------------------------------------------------------

    async def _run_llm_image(self, job: Job) -> _Outcome:
        spend = _LLMSpend()
        request = job.request
        await self._upload(job, progress=10)

        self.store.advance(job.id, step=JobStep.ANALYSIS, progress=50, message="Analyzing image...")
        response = await self.metered.analyze(
            job.input_ref,
            image_prompt(request.detail_level, custom=request.prompt),
            fingerprint=self._fingerprint(job),
        )
        spend.add(response)

        self.store.advance(job.id, step=JobStep.COMPILATION, progress=75, message="Compiling description...")
        description = self.compiler.compile_image(
            text=response.text, confidence=DEFAULT_IMAGE_CONFIDENCE, detail_level=request.detail_level
        )

        audio_ref = await self._speak(job, self.compiler.format_image_for_speech(description), progress=90)
        job.record_output(description.detailed_description, audio_ref)
        return _Outcome(
            results=PipelineResults(
                compiled_text=description.detailed_description, audio_ref=audio_ref, image=description
            ),
            cost=self._cost(spend, audio_ref),
        )

    async def _run_hybrid_image(self, job: Job) -> _Outcome:
        spend = _LLMSpend()
        request = job.request
        await self._upload(job, progress=10)

        self.store.advance(job.id, step=JobStep.ANALYSIS, progress=30, message="Detecting labels...")
        vision = await self._timed(
            self.vision.analyze(job.input_ref, {"detail_level": request.detail_level}), "vision"
        )

        self.store.advance(job.id, progress=55, message="Analyzing image with detected labels...")
        response = await self.metered.analyze(
            job.input_ref,
            image_prompt(request.detail_level, labels=vision.labels, custom=request.prompt),
            fingerprint=self._fingerprint(job),
        )
        spend.add(response)

        self.store.advance(job.id, step=JobStep.COMPILATION, progress=80, message="Compiling description...")
        description = self.compiler.compile_image(
            text=response.text,
            confidence=vision.confidence or DEFAULT_IMAGE_CONFIDENCE,
            labels=vision.labels,
            detail_level=request.detail_level,
        )

        audio_ref = await self._speak(job, self.compiler.format_image_for_speech(description), progress=95)
        job.record_output(description.detailed_description, audio_ref)
        cost = self._cost(spend, audio_ref)
        cost.cloud_services["analysis"] = self.settings.cloud_cost_per_analysis
        return _Outcome(
            results=PipelineResults(
                compiled_text=description.detailed_description, audio_ref=audio_ref, image=description
            ),
            cost=cost,
        )

    # ------------------------------------------------------------------
    # Shared steps
    # ------------------------------------------------------------------

    async def _timed(self, awaitable: Awaitable[T], service: str) -> T:
        try:
            return await call_with_timeout(awaitable, self.settings.external_call_timeout_seconds, service)
        except VoiceDescError:
            raise
        except Exception as e:
            raise ExternalServiceError(f"{service} failed: {e}", service=service) from e

    async def _upload(self, job: Job, progress: int) -> None:
        request = job.request
        if request.content is not None:
            suffix = f".{request.media_format}" if request.media_format else ""
            job.input_ref = await self._timed(
                self.storage.put(f"uploads/{job.id}{suffix}", request.content), "storage"
            )
        elif await self._timed(self.storage.exists(request.input_ref), "storage"):
            job.input_ref = request.input_ref
        else:
            raise ValidationError(f"Input not found: {request.input_ref}")
        self.store.advance(job.id, step=JobStep.UPLOAD, progress=progress, message="Upload complete")

    async def _speak(self, job: Job, text: str, progress: int) -> str | None:
        if not job.request.generate_audio:
            return None
        self.store.advance(job.id, step=JobStep.SYNTHESIS, progress=progress, message="Synthesizing audio...")
        audio = await self._timed(self.speech.synthesize(text), "speech")
        if not audio:
            raise StepValidationError("Speech synthesis returned no audio")
        return await self._timed(self.storage.put(f"audio/{job.id}.mp3", audio, "audio/mpeg"), "storage")

    def _cost(self, spend: _LLMSpend, audio_ref: str | None) -> CostBreakdown:
        services = {"speech": self.settings.cloud_cost_per_synthesis} if audio_ref else {}
        return CostBreakdown(
            llm_tokens=spend.tokens,
            llm_cost=spend.cost,
            cached_calls=spend.cached_calls,
            cloud_services=services,
        )

    @staticmethod
    def _fingerprint(job: Job) -> str:
        if job.request.content is not None:
            return fingerprint_bytes(job.request.content)
        return job.input_ref

    # ------------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------------

    def get_job(self, job_id: str) -> Job | None:
        return self.store.get(job_id)

    def get_status(self, job_id: str) -> JobStatus:
        """Snapshot of a job's status. Raises JobNotFoundError."""
        return replace(self.store.require(job_id).status)

    def list_jobs(self) -> list[Job]:
        return self.store.list()

    def pipeline_jobs(self) -> list[dict[str, str | None]]:
        return [
            {
                "job_id": job.id,
                "pipeline": job.pipeline.value if job.pipeline else None,
                "status": job.status.state.value,
            }
            for job in self.store.list()
        ]

    def delete_job(self, job_id: str) -> bool:
        job = self.store.get(job_id)
        if job is not None and job.delegate_job_id:
            self.cloud_manager.delete_job(job.delegate_job_id)
        return self.store.delete(job_id)

    def cleanup(self, max_age_hours: float | None = None) -> int:
        max_age = max_age_hours if max_age_hours is not None else self.settings.job_max_age_hours
        self.cloud_manager.cleanup(max_age)
        return self.store.cleanup(max_age)

    def health(self) -> HealthSummary:
        return health_from_counts(self.store.counts(), self.settings.health_active_job_threshold)


def _scene_context(chunk: Chunk, segments: list[VideoSegment] | None) -> str | None:
    if not segments:
        return None
    inside = [
        f"{s.start_time:.1f}-{s.end_time:.1f}s"
        for s in segments
        if s.end_time > chunk.start_time and s.start_time < chunk.end_time
    ]
    return ", ".join(inside) or None
