"""Pipeline routing, request and result-envelope models."""

from datetime import datetime, timezone
from enum import Enum
from pathlib import PurePosixPath
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field, model_validator

from voicedesc.models.media import (
    CompiledDescription,
    ImageDescription,
    SceneAnalysis,
    SynthesizedDescription,
    VideoSegment,
)


class PipelineType(str, Enum):
    """Backend route chosen for a job."""

    CLOUD_VISION = "cloud-vision"
    LLM_VISION = "llm-vision"
    HYBRID = "hybrid"


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class MediaKind(str, Enum):
    VIDEO = "video"
    IMAGE = "image"


class ProcessingRequest(BaseModel):
    """A request to describe one video or image.

    ``request_id`` and ``submitted_at`` are bookkeeping only; nothing
    downstream keys on them.
    """

    kind: MediaKind = MediaKind.VIDEO
    content: bytes | None = Field(None, description="Raw media bytes to upload")
    input_ref: str | None = Field(None, description="Existing storage reference")
    filename: str | None = Field(None, description="Original file name")
    size_bytes: int | None = Field(None, ge=0)
    duration_seconds: float | None = Field(None, ge=0.0)
    priority: Priority | None = None
    pipeline: PipelineType | None = Field(None, description="Explicit pipeline override")
    language: str | None = None
    title: str | None = None
    prompt: str | None = Field(None, description="Custom analysis prompt")
    detail_level: str | None = Field(None, description="basic, comprehensive or technical")
    generate_audio: bool = True
    max_chunk_duration: float | None = Field(None, gt=0.0)
    request_id: str = Field(default_factory=lambda: str(uuid4()))
    submitted_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @model_validator(mode="after")
    def validate_source(self) -> "ProcessingRequest":
        """Require either uploaded bytes or an existing reference."""
        if self.content is None and not self.input_ref:
            raise ValueError("either content or input_ref is required")
        return self

    @property
    def effective_size(self) -> int | None:
        """Declared size, falling back to the length of uploaded bytes."""
        if self.size_bytes:
            return self.size_bytes
        if self.content is not None:
            return len(self.content)
        return None

    @property
    def media_format(self) -> str | None:
        """Lower-case file extension of the source, if any."""
        name = self.filename or self.input_ref
        if not name:
            return None
        suffix = PurePosixPath(name).suffix.lstrip(".").lower()
        return suffix or None


class RateLimits(BaseModel):
    requests_per_minute: int | None = None
    tokens_per_minute: int | None = None
    concurrent_jobs: int | None = None


class PipelineLimits(BaseModel):
    """Capabilities and hard limits of one pipeline."""

    provider: str
    max_file_size: int = Field(..., description="Maximum input size in bytes")
    max_duration: int = Field(..., description="Maximum input duration in seconds")
    supported_formats: list[str] = Field(default_factory=list)
    rate_limits: RateLimits = Field(default_factory=RateLimits)
    features: dict[str, bool] = Field(default_factory=dict)


class PipelineSelection(BaseModel):
    """Transient routing decision."""

    pipeline: PipelineType
    reason: str = Field(..., min_length=1)
    auto_selected: bool
    limits: PipelineLimits


class SelectionValidation(BaseModel):
    valid: bool
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


class ResultStatus(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"


class CostBreakdown(BaseModel):
    """Estimated spend of one job across both backends (USD)."""

    llm_tokens: int = 0
    llm_cost: float = 0.0
    cached_calls: int = 0
    cloud_services: dict[str, float] = Field(default_factory=dict)

    @property
    def total(self) -> float:
        return self.llm_cost + sum(self.cloud_services.values())


class PipelineResults(BaseModel):
    """Artifacts of a completed job."""

    compiled_text: str | None = None
    audio_ref: str | None = None
    segments: list[VideoSegment] = Field(default_factory=list)
    analyses: list[SceneAnalysis] = Field(default_factory=list)
    compiled: CompiledDescription | None = None
    synthesized: SynthesizedDescription | None = None
    image: ImageDescription | None = None
    failed_chunks: int = 0


class ResultMetadata(BaseModel):
    processing_time_ms: float
    pipeline_config: PipelineLimits
    cost_estimate: CostBreakdown | None = None
    selection_reason: str | None = None


class ProcessingResult(BaseModel):
    """Uniform envelope returned by the orchestrator for every job."""

    pipeline: PipelineType
    job_id: str
    status: ResultStatus
    results: PipelineResults | None = None
    error: dict[str, Any] | None = None
    metadata: ResultMetadata
