"""Rule-based synthesis of chunk analyses into a multi-format description.

Used by the LLM and hybrid pipelines. Each chunk has already been
described by the metered backend; this module turns the ordered chunk
descriptions into narrative, timestamped, technical and accessibility
text, and extracts key moments, highlights and chapters.
"""

from __future__ import annotations

import logging
import math
import re

from voicedesc.errors import StepValidationError
from voicedesc.models.media import (
    Chapter,
    Chunk,
    DescriptionStats,
    KeyMoment,
    SceneAnalysis,
    SynthesizedDescription,
)
from voicedesc.services.llm.parsing import as_confidence, as_str_list, extract_json

logger = logging.getLogger(__name__)

NARRATIVE_TRANSITIONS = ("Next, ", "Then, ", "Following this, ", "Subsequently, ", "Meanwhile, ")
DEFAULT_CHUNK_CONFIDENCE = 0.8
MAX_HIGHLIGHTS = 10
KEY_MOMENT_LENGTH = 50
CHAPTER_DESCRIPTION_LENGTH = 200
_IMPORTANCE_ORDER = {"high": 0, "medium": 1, "low": 2}

_SENTENCE_SPLIT = re.compile(r"[.!?]+")
_ON_SCREEN_TEXT = re.compile(
    r"(?:text|title|caption|label|sign|banner)(?:\s+(?:reads?|says?|shows?))?\s*[:\s]+[\"']([^\"']+)[\"']",
    re.IGNORECASE,
)


def parse_chunk_analysis(chunk: Chunk, text: str, tokens_used: int = 0) -> SceneAnalysis:
    """Build a SceneAnalysis from a metered-backend response for ``chunk``.

    Accepts the JSON object the chunk prompt asks for, or plain prose.

    Raises:
        StepValidationError: If the response carries no description.
    """
    data = extract_json(text)
    if data is None:
        description = text.strip()
        if not description:
            raise StepValidationError(f"Empty analysis for {chunk.chunk_id}")
        return SceneAnalysis(
            segment_id=chunk.chunk_id,
            start_time=chunk.start_time,
            end_time=chunk.end_time,
            description=description,
            confidence=DEFAULT_CHUNK_CONFIDENCE,
            tokens_used=tokens_used,
        )

    description = str(data.get("description") or "").strip()
    if not description:
        raise StepValidationError(f"Analysis for {chunk.chunk_id} has no description")
    return SceneAnalysis(
        segment_id=chunk.chunk_id,
        start_time=chunk.start_time,
        end_time=chunk.end_time,
        description=description,
        confidence=as_confidence(data.get("confidence"), DEFAULT_CHUNK_CONFIDENCE),
        visual_elements=as_str_list(data.get("visual_elements")),
        actions=as_str_list(data.get("actions")),
        context=str(data.get("context") or "").strip(),
        tokens_used=tokens_used,
    )


def format_timestamp(seconds: float) -> str:
    """``H:MM:SS`` past the hour, ``M:SS`` otherwise."""
    hours = math.floor(seconds / 3600)
    minutes = math.floor((seconds % 3600) / 60)
    secs = math.floor(seconds % 60)
    if hours > 0:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"


def condense(description: str, max_length: int) -> str:
    """Shorten to whole sentences within ``max_length``, else hard-cut with an ellipsis."""
    if len(description) <= max_length:
        return description
    condensed = ""
    for sentence in _SENTENCE_SPLIT.split(description):
        if len(condensed) + len(sentence) < max_length:
            condensed += sentence + ". "
        else:
            break
    return condensed.strip() or description[:max_length] + "..."


def transition(index: int, total: int) -> str:
    if index == 0:
        return "The video begins with "
    if index == total - 1:
        return "Finally, "
    if index == total // 2:
        return "In the middle, "
    return NARRATIVE_TRANSITIONS[index % len(NARRATIVE_TRANSITIONS)]


def importance(analysis: SceneAnalysis) -> str:
    if analysis.confidence > 0.9 and len(analysis.actions) > 3:
        return "high"
    if analysis.confidence > 0.7 and len(analysis.actions) > 1:
        return "medium"
    return "low"


def context_similarity(first: str, second: str) -> float:
    """Jaccard similarity of the word sets."""
    words1 = set(first.lower().split())
    words2 = set(second.lower().split())
    union = words1 | words2
    return len(words1 & words2) / len(union) if union else 0.0


class DescriptionSynthesizer:
    """Synthesizes a SynthesizedDescription from ordered chunk analyses."""

    def __init__(self, max_segment_length: int = 150, min_chapter_duration: float = 30.0) -> None:
        self.max_segment_length = max_segment_length
        self.min_chapter_duration = min_chapter_duration

    def synthesize(self, analyses: list[SceneAnalysis]) -> SynthesizedDescription:
        """Raises StepValidationError when there are no analyses."""
        if not analyses:
            raise StepValidationError("No chunk analyses provided for synthesis", code="NO_ANALYSES")

        ordered = sorted(analyses, key=lambda a: a.start_time)
        all_text = " ".join(a.description for a in ordered)
        visual_elements = {e for a in ordered for e in a.visual_elements}
        actions = {act for a in ordered for act in a.actions}

        result = SynthesizedDescription(
            narrative=self.narrative(ordered),
            timestamped=self.timestamped(ordered),
            technical=self.technical(ordered),
            accessibility=self.accessibility(ordered),
            key_moments=self.key_moments(ordered),
            highlights=self.highlights(ordered),
            chapters=self.chapters(ordered),
            stats=DescriptionStats(
                total_scenes=len(ordered),
                total_duration=ordered[-1].end_time,
                average_confidence=sum(a.confidence for a in ordered) / len(ordered),
                word_count=len(all_text.split()),
            ),
            total_tokens_used=sum(a.tokens_used for a in ordered),
            unique_visual_elements=len(visual_elements),
            unique_actions=len(actions),
        )
        logger.info(
            "Synthesized %d chunks: %d words, %d key moments, %d chapters",
            len(ordered),
            result.stats.word_count,
            len(result.key_moments),
            len(result.chapters),
        )
        return result

    @staticmethod
    def narrative(analyses: list[SceneAnalysis]) -> str:
        parts = []
        for index, analysis in enumerate(analyses):
            description = analysis.description
            if index == 0 and description:
                description = description[0].lower() + description[1:]
            parts.append(f"{transition(index, len(analyses))}{description}")
        return " ".join(parts)

    def timestamped(self, analyses: list[SceneAnalysis]) -> str:
        return "\n\n".join(
            f"[{format_timestamp(a.start_time)} - {format_timestamp(a.end_time)}] "
            f"{condense(a.description, self.max_segment_length)}"
            for a in analyses
        )

    @staticmethod
    def technical(analyses: list[SceneAnalysis]) -> str:
        average = sum(a.confidence for a in analyses) / len(analyses)
        lines = [
            "## Technical Analysis Summary",
            f"Total Segments: {len(analyses)}",
            f"Duration: {format_timestamp(analyses[-1].end_time)}",
            f"Average Confidence: {average:.2f}",
            "",
            "## Segment Details",
        ]
        for a in analyses:
            lines.extend(
                [
                    f"### Segment {a.segment_id}",
                    f"Time: {format_timestamp(a.start_time)} - {format_timestamp(a.end_time)}",
                    f"Confidence: {a.confidence * 100:.1f}%",
                    f"Visual Elements: {', '.join(a.visual_elements) or 'None identified'}",
                    f"Actions: {', '.join(a.actions) or 'None identified'}",
                    f"Context: {a.context}",
                    "",
                    f"Description: {a.description}",
                    "---",
                ]
            )
        return "\n".join(lines)

    @staticmethod
    def accessibility(analyses: list[SceneAnalysis]) -> str:
        lines = ["Audio Description Track", ""]
        for a in analyses:
            essential = []
            if a.visual_elements:
                essential.append(", ".join(a.visual_elements[:3]))
            if a.actions:
                essential.append(" and ".join(a.actions[:2]))
            if a.context and len(a.context) > 20:
                essential.append(a.context)
            if essential:
                lines.append(f"{format_timestamp(a.start_time)}: {'. '.join(essential)}")

        on_screen = list(
            dict.fromkeys(m.group(0) for a in analyses for m in _ON_SCREEN_TEXT.finditer(a.description))
        )
        if on_screen:
            lines.extend(["", "On-screen text and visual cues:"])
            lines.extend(f"- {text}" for text in on_screen)
        return "\n".join(lines)

    @staticmethod
    def key_moments(analyses: list[SceneAnalysis]) -> list[KeyMoment]:
        moments = []
        for a in analyses:
            level = importance(a)
            if level != "low" or len(a.actions) > 2:
                moments.append(
                    KeyMoment(
                        timestamp=a.start_time,
                        description=condense(a.description, KEY_MOMENT_LENGTH),
                        importance=level,
                    )
                )
        return sorted(moments, key=lambda m: (_IMPORTANCE_ORDER[m.importance], m.timestamp))

    @staticmethod
    def highlights(analyses: list[SceneAnalysis]) -> list[str]:
        found: dict[str, None] = {}
        for a in analyses:
            for element in a.visual_elements:
                if len(element) > 3:
                    found.setdefault(element)
            for action in a.actions:
                if len(action) > 4:
                    found.setdefault(action)
        return list(found)[:MAX_HIGHLIGHTS]

    def chapters(self, analyses: list[SceneAnalysis]) -> list[Chapter]:
        """Group analyses into chapters; videos under two chapter lengths get none."""
        if analyses[-1].end_time < self.min_chapter_duration * 2:
            return []

        chapters: list[Chapter] = []
        current: list[SceneAnalysis] = []
        last_context = ""
        for a in analyses:
            if not current:
                current = [a]
                last_context = a.context
                continue
            too_long = a.end_time - current[0].start_time > self.min_chapter_duration * 2
            if context_similarity(last_context, a.context) < 0.5 or too_long:
                chapters.append(self._chapter(current))
                current = [a]
                last_context = a.context
            else:
                current.append(a)
        if current:
            chapters.append(self._chapter(current))
        return chapters

    @staticmethod
    def _chapter(analyses: list[SceneAnalysis]) -> Chapter:
        timestamp = analyses[0].start_time
        counts: dict[str, int] = {}
        for a in analyses:
            for element in a.visual_elements + a.actions:
                counts[element] = counts.get(element, 0) + 1
        common = sorted(counts, key=lambda e: counts[e], reverse=True)[:3]
        title = " & ".join(common) if common else f"Scene {math.floor(timestamp / 60) + 1}"
        text = " ".join(a.description for a in analyses)
        if len(text) > CHAPTER_DESCRIPTION_LENGTH:
            text = text[:CHAPTER_DESCRIPTION_LENGTH] + "..."
        return Chapter(timestamp=timestamp, title=title, description=text)
