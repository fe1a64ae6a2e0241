"""Rule-based compilation of scene analyses into a description.

Used by the cloud pipeline, where each segment is analysed independently
and the results have to be stitched into one readable narrative.
"""

from __future__ import annotations

import logging
import math
import re

from voicedesc.errors import StepValidationError
from voicedesc.models.media import (
    CompiledDescription,
    DescriptionStats,
    ImageDescription,
    SceneAnalysis,
    VisionAnalysis,
)
from voicedesc.services.llm.parsing import as_confidence, as_str_list, extract_json

logger = logging.getLogger(__name__)

SCENE_CONNECTORS = (
    "Next,",
    "Then,",
    "Subsequently,",
    "Following this,",
    "Meanwhile,",
    "At this point,",
    "Continuing,",
    "Later,",
)
ALT_TEXT_MAX_LENGTH = 125

_FILLER_PHRASES = re.compile(
    r"\b(the scene shows|we can see|there is|there are|in this scene|this video shows)\b",
    re.IGNORECASE,
)
_HEDGES = re.compile(r"\b(appears to be|seems to|looks like)\b", re.IGNORECASE)
_WHITESPACE = re.compile(r"\s+")
_LEADING_PUNCT = re.compile(r"^\s*[,;]\s*")
_TRAILING_PUNCT = re.compile(r"\s*[,;]\s*$")
_SENTENCE_SPLIT = re.compile(r"[.!?]+")
_BRACKETED = re.compile(r"\[.*?\]")
_PUNCT_SPACING = re.compile(r"([.!?])\s*([A-Z])")


def clean_description(description: str) -> str:
    """Strip filler phrasing, capitalize, and end with sentence punctuation."""
    text = _FILLER_PHRASES.sub("", description.strip())
    text = _HEDGES.sub("", text)
    text = _WHITESPACE.sub(" ", text)
    text = _LEADING_PUNCT.sub("", text)
    text = _TRAILING_PUNCT.sub("", text).strip()
    if not text:
        return text
    text = text[0].upper() + text[1:]
    if text[-1] not in ".!?":
        text += "."
    return text


def format_timestamp(seconds: float) -> str:
    """``MM:SS.cc``"""
    minutes = math.floor(seconds / 60)
    remaining = math.floor(seconds % 60)
    centis = math.floor((seconds % 1) * 100)
    return f"{minutes:02d}:{remaining:02d}.{centis:02d}"


def scene_connector(index: int, total: int) -> str:
    if index == total // 2:
        return "Midway through,"
    if index == total - 1:
        return "Finally,"
    return SCENE_CONNECTORS[index % len(SCENE_CONNECTORS)]


def _unique(items: list[str]) -> list[str]:
    return list(dict.fromkeys(items))


class DescriptionCompiler:
    """Merges related adjacent scenes and renders timestamped and flowing text."""

    def __init__(self, merge_threshold: float = 2.0) -> None:
        self.merge_threshold = merge_threshold

    def compile(self, analyses: list[SceneAnalysis]) -> CompiledDescription:
        """Compile scene analyses.

        Raises:
            StepValidationError: If there is nothing to compile.
        """
        if not analyses:
            raise StepValidationError("No scene analyses provided for compilation", code="NO_ANALYSES")

        ordered = sorted(analyses, key=lambda a: a.start_time)
        merged = self.merge_adjacent(ordered)
        processed = [a.model_copy(update={"description": clean_description(a.description)}) for a in merged]

        compiled = CompiledDescription(
            timestamped_text=self.timestamped_text(processed),
            clean_text=self.clean_text(processed),
            stats=self.stats(processed),
        )
        logger.info(
            "Compiled %d analyses into %d scenes (%d words)",
            len(analyses),
            compiled.stats.total_scenes,
            compiled.stats.word_count,
        )
        return compiled

    def merge_adjacent(self, analyses: list[SceneAnalysis]) -> list[SceneAnalysis]:
        if len(analyses) <= 1 or self.merge_threshold <= 0:
            return list(analyses)

        merged = [analyses[0]]
        for current in analyses[1:]:
            previous = merged[-1]
            gap = current.start_time - previous.end_time
            if gap <= self.merge_threshold and self.scenes_related(previous, current):
                merged[-1] = SceneAnalysis(
                    segment_id=f"{previous.segment_id}-{current.segment_id}",
                    start_time=previous.start_time,
                    end_time=current.end_time,
                    description=self.merge_descriptions(previous.description, current.description),
                    confidence=max(previous.confidence, current.confidence),
                    visual_elements=_unique(previous.visual_elements + current.visual_elements),
                    actions=_unique(previous.actions + current.actions),
                    context=self.merge_contexts(previous.context, current.context),
                    tokens_used=previous.tokens_used + current.tokens_used,
                )
            else:
                merged.append(current)

        if len(merged) < len(analyses):
            logger.debug("Merged %d scenes into %d", len(analyses), len(merged))
        return merged

    @staticmethod
    def scenes_related(first: SceneAnalysis, second: SceneAnalysis) -> bool:
        if set(first.visual_elements) & set(second.visual_elements):
            return True
        if set(first.actions) & set(second.actions):
            return True
        return DescriptionCompiler.contexts_related(first.context, second.context)

    @staticmethod
    def contexts_related(first: str, second: str) -> bool:
        if not first or not second:
            return False
        second_words = set(second.lower().split())
        common = [w for w in first.lower().split() if w in second_words and len(w) > 3]
        return len(common) >= 2

    @staticmethod
    def merge_descriptions(first: str, second: str) -> str:
        sentences = [s for s in _SENTENCE_SPLIT.split(first) + _SENTENCE_SPLIT.split(second) if s.strip()]
        seen: set[str] = set()
        unique: list[str] = []
        for sentence in sentences:
            normalized = sentence.strip().lower()
            if normalized not in seen:
                seen.add(normalized)
                unique.append(sentence)
        return ". ".join(unique).strip() + "."

    @staticmethod
    def merge_contexts(first: str, second: str) -> str:
        if not first:
            return second
        if not second or first == second:
            return first
        return f"{first}; {second}"

    @staticmethod
    def timestamped_text(analyses: list[SceneAnalysis]) -> str:
        return "\n\n".join(
            f"[{format_timestamp(a.start_time)} - {format_timestamp(a.end_time)}] {a.description}"
            for a in analyses
        )

    @staticmethod
    def clean_text(analyses: list[SceneAnalysis]) -> str:
        parts: list[str] = []
        for index, analysis in enumerate(analyses):
            if index == 0:
                parts.append(analysis.description)
            else:
                parts.append(f"{scene_connector(index, len(analyses))} {analysis.description}")
        return " ".join(parts)

    @staticmethod
    def stats(analyses: list[SceneAnalysis]) -> DescriptionStats:
        total_duration = sum(a.end_time - a.start_time for a in analyses)
        average_confidence = sum(a.confidence for a in analyses) / len(analyses) if analyses else 0.0
        words = " ".join(a.description for a in analyses).split()
        return DescriptionStats(
            total_scenes=len(analyses),
            total_duration=round(total_duration, 1),
            average_confidence=round(average_confidence, 1),
            word_count=len(words),
        )

    @staticmethod
    def format_for_speech(text: str) -> str:
        """Flatten text for text-to-speech."""
        text = _BRACKETED.sub("", text)
        text = _WHITESPACE.sub(" ", text)
        return _PUNCT_SPACING.sub(r"\1 \2", text).strip()

    # ------------------------------------------------------------------
    # Images
    # ------------------------------------------------------------------

    def compile_image(
        self,
        *,
        text: str,
        confidence: float,
        labels: list[str] | None = None,
        detail_level: str | None = None,
    ) -> ImageDescription:
        """Compile an image description from a backend response.

        ``text`` may be the JSON object requested by the image prompt or
        plain prose; plain prose becomes the detailed description and the
        alt text is derived from it.
        """
        labels = list(labels or [])
        data = extract_json(text) or {}
        detailed = str(data.get("detailed_description") or data.get("description") or text).strip()
        if not detailed:
            raise StepValidationError("Image analysis returned no description")
        elements = _unique(as_str_list(data.get("visual_elements")) + labels)
        alt_text = str(data.get("alt_text") or "").strip() or self.alt_text_from(detailed, elements)
        confidence = as_confidence(data.get("confidence"), confidence)

        if detail_level == "basic":
            detailed = _SENTENCE_SPLIT.split(detailed)[0]
        elif elements and detail_level == "technical":
            detailed = f"{detailed} Key visual elements include: {', '.join(elements)}."

        detailed = clean_description(detailed)
        return ImageDescription(
            alt_text=clean_description(self._truncate_alt(alt_text)),
            detailed_description=detailed,
            confidence=confidence,
            word_count=len(detailed.split()),
            labels=elements,
        )

    def compile_vision(self, analysis: VisionAnalysis, detail_level: str | None = None) -> ImageDescription:
        return self.compile_image(
            text=analysis.text,
            confidence=analysis.confidence,
            labels=analysis.labels,
            detail_level=detail_level,
        )

    @staticmethod
    def alt_text_from(description: str, elements: list[str]) -> str:
        if elements:
            return ", ".join(elements[:3])
        first_sentence = _SENTENCE_SPLIT.split(description)[0].strip()
        return first_sentence or "Image"

    @staticmethod
    def _truncate_alt(alt_text: str) -> str:
        if len(alt_text) > ALT_TEXT_MAX_LENGTH:
            return alt_text[: ALT_TEXT_MAX_LENGTH - 3] + "..."
        return alt_text

    @staticmethod
    def format_image_for_speech(description: ImageDescription) -> str:
        parts = [description.alt_text]
        if description.detailed_description:
            parts.extend(["In more detail:", description.detailed_description])
        return DescriptionCompiler.format_for_speech(" ".join(parts))
