"""Routing of requests to a backend pipeline."""

from __future__ import annotations

import logging
from typing import Any

from voicedesc.config import MB, Settings
from voicedesc.models.pipeline import (
    MediaKind,
    PipelineLimits,
    PipelineSelection,
    PipelineType,
    Priority,
    ProcessingRequest,
    RateLimits,
    SelectionValidation,
)

logger = logging.getLogger(__name__)

# Below this size cloud-vision is flagged as a slower choice than llm-vision.
CLOUD_SMALL_FILE_WARNING = 5 * MB
# Above this size llm-vision input needs heavy chunking.
LLM_LARGE_FILE_WARNING = 20 * MB

_RECOMMENDED = {
    PipelineType.LLM_VISION: [
        "Small videos (< 25MB)",
        "Short duration (< 3 min)",
        "High priority requests",
        "Technical image analysis",
        "Detailed scene descriptions",
    ],
    PipelineType.CLOUD_VISION: [
        "Large videos (> 25MB)",
        "Long duration (> 3 min)",
        "Batch processing",
        "Professional video content",
        "Cost-sensitive workloads",
    ],
    PipelineType.HYBRID: [
        "Medium-sized videos (20-100MB)",
        "Mixed content complexity",
        "Balance of speed and cost",
    ],
}


def _mb(size: int) -> int:
    return round(size / MB)


class PipelineSelector:
    """Chooses a pipeline from request size, duration and hints.

    Selection is a pure function of its inputs and the settings it was
    built with.
    """

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self.default_pipeline = PipelineType(settings.default_pipeline)

    def select(
        self,
        request: ProcessingRequest,
        size_bytes: int | None = None,
        duration_seconds: float | None = None,
    ) -> PipelineSelection:
        """Pick the pipeline for ``request``.

        Args:
            request: The processing request; an explicit ``pipeline`` wins.
            size_bytes: Input size; falls back to the request's size. Zero or
                None means unknown and skips size rules.
            duration_seconds: Input duration; same fallback and meaning.
        """
        if request.pipeline is not None:
            return self._selection(
                request.pipeline,
                f"Explicit override: {request.pipeline.value} was requested",
                auto_selected=False,
            )

        size = size_bytes if size_bytes is not None else request.effective_size
        duration = duration_seconds if duration_seconds is not None else request.duration_seconds
        is_image = request.kind == MediaKind.IMAGE

        suitable, llm_reason, hard_rejected = self._llm_suitability(
            size, duration, request.priority, request.detail_level if is_image else None
        )
        if suitable:
            selection = self._selection(PipelineType.LLM_VISION, llm_reason)
        elif not is_image and (hybrid_reason := self._hybrid_suitability(size, duration)):
            selection = self._selection(PipelineType.HYBRID, hybrid_reason)
        else:
            pipeline = self.default_pipeline
            if pipeline == PipelineType.LLM_VISION and hard_rejected:
                pipeline = PipelineType.CLOUD_VISION
            elif pipeline == PipelineType.HYBRID and is_image:
                pipeline = PipelineType.CLOUD_VISION
            reason = f"{llm_reason}; using default {pipeline.value} pipeline"
            selection = self._selection(pipeline, reason)

        logger.info("Selected %s pipeline: %s", selection.pipeline.value, selection.reason)
        return selection

    def _llm_suitability(
        self,
        size: int | None,
        duration: float | None,
        priority: Priority | None,
        detail_level: str | None,
    ) -> tuple[bool, str, bool]:
        """Returns ``(suitable, reason, rejected_by_hard_limit)``."""
        s = self.settings
        if size and size > s.llm_max_file_size_bytes:
            return False, f"File size ({_mb(size)}MB) exceeds llm-vision limit ({s.llm_max_file_size_mb}MB)", True
        if duration and duration > s.llm_max_duration_seconds:
            return False, f"Duration ({duration:g}s) exceeds llm-vision limit ({s.llm_max_duration_seconds}s)", True
        if priority == Priority.HIGH:
            return True, "High priority request - using faster llm-vision pipeline", False
        if size and size < s.llm_small_file_mb * MB:
            return True, "Small file size - llm-vision provides better quality for small inputs", False
        if duration and duration < s.llm_short_duration_seconds:
            return True, "Short duration - llm-vision provides faster processing", False
        if detail_level == "technical":
            return True, "Technical detail requested - llm-vision provides richer analysis", False
        return False, "Input characteristics better suited for cloud-vision pipeline", False

    def _hybrid_suitability(self, size: int | None, duration: float | None) -> str | None:
        s = self.settings
        if size and s.hybrid_min_file_mb * MB < size < s.hybrid_max_file_mb * MB:
            return "Medium-sized file - using hybrid approach for optimal performance"
        if duration and s.hybrid_min_duration_seconds < duration < s.hybrid_max_duration_seconds:
            return "Medium duration - hybrid approach balances speed and cost"
        return None

    def _selection(self, pipeline: PipelineType, reason: str, auto_selected: bool = True) -> PipelineSelection:
        return PipelineSelection(
            pipeline=pipeline,
            reason=reason,
            auto_selected=auto_selected,
            limits=self.limits_for(pipeline),
        )

    def limits_for(self, pipeline: PipelineType) -> PipelineLimits:
        s = self.settings
        if pipeline == PipelineType.LLM_VISION:
            return PipelineLimits(
                provider="llm",
                max_file_size=s.llm_max_file_size_bytes,
                max_duration=s.llm_max_duration_seconds,
                supported_formats=["mp4", "webm", "mov", "avi", "jpg", "jpeg", "png", "gif", "webp"],
                rate_limits=RateLimits(
                    requests_per_minute=s.llm_requests_per_minute,
                    tokens_per_minute=s.llm_tokens_per_minute,
                ),
                features={
                    "video_chunking": True,
                    "batch_processing": True,
                    "multi_modal": True,
                    "custom_prompts": True,
                },
            )
        if pipeline == PipelineType.HYBRID:
            return PipelineLimits(
                provider="hybrid",
                max_file_size=s.cloud_max_file_size_bytes,
                max_duration=s.cloud_max_duration_seconds,
                supported_formats=["mp4", "webm", "mov", "avi", "mkv", "jpg", "jpeg", "png", "gif", "webp"],
                rate_limits=RateLimits(
                    requests_per_minute=s.llm_requests_per_minute,
                    tokens_per_minute=s.llm_tokens_per_minute,
                    concurrent_jobs=s.cloud_concurrent_jobs,
                ),
                features={
                    "video_chunking": True,
                    "video_segmentation": True,
                    "scene_detection": True,
                    "multi_modal": True,
                },
            )
        return PipelineLimits(
            provider="cloud",
            max_file_size=s.cloud_max_file_size_bytes,
            max_duration=s.cloud_max_duration_seconds,
            supported_formats=["mp4", "mov", "avi", "mkv", "jpg", "jpeg", "png", "bmp"],
            rate_limits=RateLimits(
                requests_per_minute=s.cloud_requests_per_minute,
                concurrent_jobs=s.cloud_concurrent_jobs,
            ),
            features={
                "video_segmentation": True,
                "scene_detection": True,
                "parallel_processing": True,
                "label_detection": True,
            },
        )

    def validate_selection(
        self,
        pipeline: PipelineType,
        size_bytes: int | None = None,
        duration_seconds: float | None = None,
    ) -> SelectionValidation:
        """Check a pipeline against an input: hard limits are errors, poor fits are warnings."""
        limits = self.limits_for(pipeline)
        errors: list[str] = []
        warnings: list[str] = []

        if size_bytes and size_bytes > limits.max_file_size:
            errors.append(
                f"File size ({_mb(size_bytes)}MB) exceeds {pipeline.value} pipeline limit "
                f"({_mb(limits.max_file_size)}MB)"
            )
        if duration_seconds and duration_seconds > limits.max_duration:
            errors.append(
                f"Duration ({duration_seconds:g}s) exceeds {pipeline.value} pipeline limit ({limits.max_duration}s)"
            )
        if pipeline == PipelineType.CLOUD_VISION and size_bytes and size_bytes < CLOUD_SMALL_FILE_WARNING:
            warnings.append("Small files process faster with llm-vision pipeline")
        if pipeline == PipelineType.LLM_VISION and size_bytes and size_bytes > LLM_LARGE_FILE_WARNING:
            warnings.append("Large files may require chunking, consider cloud-vision pipeline")

        return SelectionValidation(valid=not errors, errors=errors, warnings=warnings)

    def statistics(self) -> dict[str, Any]:
        """Limits and recommended uses of every pipeline."""
        return {
            "pipelines": [
                {
                    "name": pipeline.value,
                    "limits": self.limits_for(pipeline).model_dump(),
                    "recommended": list(_RECOMMENDED[pipeline]),
                }
                for pipeline in (PipelineType.LLM_VISION, PipelineType.CLOUD_VISION, PipelineType.HYBRID)
            ],
            "default_pipeline": self.default_pipeline.value,
        }
