"""Job domain models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import uuid4

from voicedesc.errors import InvalidTransitionError
from voicedesc.models.media import Chunk, SceneAnalysis, VideoSegment
from voicedesc.models.pipeline import MediaKind, PipelineType, ProcessingRequest


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobState(str, Enum):
    """Lifecycle state of a job."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.COMPLETED, JobState.FAILED)


class JobStep(str, Enum):
    """Processing step, in execution order."""

    UPLOAD = "upload"
    SEGMENTATION = "segmentation"
    EXTRACTION = "extraction"
    ANALYSIS = "analysis"
    COMPILATION = "compilation"
    SYNTHESIS = "synthesis"
    COMPLETED = "completed"

    @property
    def order(self) -> int:
        return _STEP_ORDER.index(self)


_STEP_ORDER = list(JobStep)


@dataclass
class JobError:
    """Structured failure attached to a job."""

    code: str
    message: str
    details: Any = None

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> JobError:
        return cls(
            code=payload.get("code", "UNKNOWN"),
            message=payload.get("message", ""),
            details=payload.get("details"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": self.details}


@dataclass
class JobStatus:
    """Externally visible progress of a job."""

    state: JobState = JobState.PENDING
    step: JobStep = JobStep.UPLOAD
    progress: int = 0
    message: str = ""
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)
    result: Any = None
    error: JobError | None = None


@dataclass
class Job:
    """A unit of work: one video or image moving through a pipeline.

    ``pipeline`` is assigned exactly once through :meth:`assign_pipeline`.
    ``compiled_text`` and ``audio_ref`` are written at most once, on the
    success path, through :meth:`record_output`.
    """

    id: str = field(default_factory=lambda: str(uuid4()))
    input_ref: str = ""
    kind: MediaKind = MediaKind.VIDEO
    pipeline: PipelineType | None = None
    status: JobStatus = field(default_factory=JobStatus)
    request: ProcessingRequest | None = None
    segments: list[VideoSegment] = field(default_factory=list)
    scenes: list[Chunk] = field(default_factory=list)
    analyses: list[SceneAnalysis] = field(default_factory=list)
    compiled_text: str | None = None
    audio_ref: str | None = None
    delegate_job_id: str | None = None
    failed_chunks: int = 0

    @property
    def created_at(self) -> datetime:
        return self.status.created_at

    def assign_pipeline(self, pipeline: PipelineType) -> None:
        if self.pipeline is not None and self.pipeline != pipeline:
            raise InvalidTransitionError(
                f"Job {self.id} is already bound to {self.pipeline.value}",
                details={"requested": pipeline.value},
            )
        self.pipeline = pipeline

    def record_output(self, compiled_text: str, audio_ref: str | None = None) -> None:
        if self.compiled_text is not None or self.audio_ref is not None:
            raise InvalidTransitionError(f"Job {self.id} output already recorded")
        self.compiled_text = compiled_text
        self.audio_ref = audio_ref


@dataclass
class HealthSummary:
    """Aggregate job health of a manager or orchestrator."""

    status: str
    active_jobs: int = 0
    completed_jobs: int = 0
    failed_jobs: int = 0
