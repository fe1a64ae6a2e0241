"""Data models for voicedesc."""

from voicedesc.models.cost import (
    BatchOptions,
    BatchOutcome,
    BatchRequest,
    CacheEntry,
    CacheLookup,
    CostAnalytics,
    CostEstimate,
    ModelCostSummary,
    ModelPricing,
    OptimizationOptions,
    OptimizationResult,
    TokenUsage,
)
from voicedesc.models.media import (
    AnalysisResponse,
    Chapter,
    Chunk,
    CompiledDescription,
    DescriptionStats,
    ImageDescription,
    KeyMoment,
    SceneAnalysis,
    SynthesizedDescription,
    VideoSegment,
    VisionAnalysis,
)
from voicedesc.models.pipeline import (
    CostBreakdown,
    MediaKind,
    PipelineLimits,
    PipelineResults,
    PipelineSelection,
    PipelineType,
    Priority,
    ProcessingRequest,
    ProcessingResult,
    RateLimits,
    ResultMetadata,
    ResultStatus,
    SelectionValidation,
)

__all__ = [
    # Media
    "VideoSegment",
    "Chunk",
    "SceneAnalysis",
    "VisionAnalysis",
    "AnalysisResponse",
    "DescriptionStats",
    "CompiledDescription",
    "KeyMoment",
    "Chapter",
    "SynthesizedDescription",
    "ImageDescription",
    # Pipeline
    "PipelineType",
    "Priority",
    "MediaKind",
    "ProcessingRequest",
    "RateLimits",
    "PipelineLimits",
    "PipelineSelection",
    "SelectionValidation",
    "ResultStatus",
    "CostBreakdown",
    "PipelineResults",
    "ResultMetadata",
    "ProcessingResult",
    # Cost
    "ModelPricing",
    "TokenUsage",
    "CacheEntry",
    "CacheLookup",
    "CostEstimate",
    "OptimizationOptions",
    "OptimizationResult",
    "BatchRequest",
    "BatchOptions",
    "BatchOutcome",
    "ModelCostSummary",
    "CostAnalytics",
]
