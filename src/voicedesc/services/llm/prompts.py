"""Prompt templates for the metered vision backend."""

_CHUNK_PROMPT = """\
You are writing audio description for blind and low-vision viewers.

The image is a 2x2 contact sheet of frames sampled in order from a video \
segment running {start:.1f}s to {end:.1f}s.{title_line}

Respond with ONLY a JSON object in this exact format (no markdown, no extra text):
{{"description": "<what happens, in present tense>", \
"visual_elements": ["..."], "actions": ["..."], \
"context": "<setting or situation>", "confidence": <0.0-1.0>}}
{context_line}"""

_IMAGE_PROMPT = """\
Describe this image for a screen-reader user.
{detail_instruction}

Respond with ONLY a JSON object in this exact format (no markdown, no extra text):
{{"alt_text": "<at most 125 characters>", \
"detailed_description": "<full description>", \
"visual_elements": ["..."], "confidence": <0.0-1.0>}}
{context_line}"""

_DETAIL_INSTRUCTIONS = {
    "basic": "Focus on the main subject and action.",
    "comprehensive": (
        "Cover the main subjects and their positions, actions, setting, "
        "notable colors and composition, mood, and any visible text."
    ),
    "technical": (
        "Be precise about composition, lighting, camera angle, visible text, "
        "labels, data and any technical detail a sighted expert would notice."
    ),
}


def chunk_prompt(
    start: float,
    end: float,
    title: str | None = None,
    scene_context: str | None = None,
    custom: str | None = None,
) -> str:
    """Prompt for one video chunk, optionally with scene hints from segmentation."""
    if custom:
        return custom
    return _CHUNK_PROMPT.format(
        start=start,
        end=end,
        title_line=f' The video is titled "{title}".' if title else "",
        context_line=f"\nKnown scene boundaries: {scene_context}" if scene_context else "",
    )


def image_prompt(
    detail_level: str | None = None,
    labels: list[str] | None = None,
    custom: str | None = None,
) -> str:
    """Prompt for a single image; ``labels`` come from the cloud vision pass."""
    if custom:
        return custom
    instruction = _DETAIL_INSTRUCTIONS.get(detail_level or "comprehensive", _DETAIL_INSTRUCTIONS["comprehensive"])
    context = f"\nA vision service detected: {', '.join(labels)}." if labels else ""
    return _IMAGE_PROMPT.format(detail_instruction=instruction, context_line=context)
