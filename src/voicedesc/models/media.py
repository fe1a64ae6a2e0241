"""Media and description data models."""

from pydantic import BaseModel, Field, model_validator


class VideoSegment(BaseModel):
    """A scene boundary reported by the segmentation service (seconds)."""

    start_time: float = Field(..., ge=0.0, description="Segment start in seconds")
    end_time: float = Field(..., ge=0.0, description="Segment end in seconds")
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)
    type: str = Field(default="SHOT", description="SHOT or TECHNICAL_CUE")

    @model_validator(mode="after")
    def validate_range(self) -> "VideoSegment":
        """Ensure end is not before start."""
        if self.end_time < self.start_time:
            raise ValueError("end_time must not be before start_time")
        return self

    @property
    def duration(self) -> float:
        return self.end_time - self.start_time


class Chunk(BaseModel):
    """A bounded sub-segment of a video prepared for independent analysis."""

    chunk_id: str = Field(..., description="Stable identifier within the job")
    index: int = Field(..., ge=0)
    ref: str = Field(..., description="Storage reference of the chunk artifact")
    start_time: float = Field(default=0.0, ge=0.0)
    end_time: float = Field(default=0.0, ge=0.0)
    content_hash: str | None = Field(None, description="Fingerprint of chunk bytes")
    size: int = Field(default=0, ge=0)

    @property
    def duration(self) -> float:
        return max(self.end_time - self.start_time, 0.0)


class SceneAnalysis(BaseModel):
    """Description of one scene or chunk, from either backend."""

    segment_id: str
    start_time: float = 0.0
    end_time: float = 0.0
    description: str
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    visual_elements: list[str] = Field(default_factory=list)
    actions: list[str] = Field(default_factory=list)
    context: str = ""
    tokens_used: int = Field(default=0, ge=0)


class VisionAnalysis(BaseModel):
    """Response of the non-metered vision backend."""

    text: str
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    labels: list[str] = Field(default_factory=list)


class AnalysisResponse(BaseModel):
    """Response of the token-metered analysis backend."""

    text: str
    prompt_tokens: int = Field(default=0, ge=0)
    completion_tokens: int = Field(default=0, ge=0)
    model: str = ""

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


class DescriptionStats(BaseModel):
    """Aggregate statistics of a compiled or synthesized description."""

    total_scenes: int = 0
    total_duration: float = 0.0
    average_confidence: float = 0.0
    word_count: int = 0


class CompiledDescription(BaseModel):
    """Cloud-pipeline description compiled from scene analyses."""

    timestamped_text: str
    clean_text: str
    stats: DescriptionStats = Field(default_factory=DescriptionStats)


class KeyMoment(BaseModel):
    timestamp: float
    description: str
    importance: str = Field(..., description="high, medium or low")


class Chapter(BaseModel):
    timestamp: float
    title: str
    description: str


class SynthesizedDescription(BaseModel):
    """LLM-pipeline description synthesized from chunk analyses."""

    narrative: str
    timestamped: str
    technical: str
    accessibility: str
    key_moments: list[KeyMoment] = Field(default_factory=list)
    highlights: list[str] = Field(default_factory=list)
    chapters: list[Chapter] = Field(default_factory=list)
    stats: DescriptionStats = Field(default_factory=DescriptionStats)
    total_tokens_used: int = 0
    unique_visual_elements: int = 0
    unique_actions: int = 0


class ImageDescription(BaseModel):
    """Accessibility description of a single image."""

    alt_text: str
    detailed_description: str
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    word_count: int = 0
    labels: list[str] = Field(default_factory=list)
