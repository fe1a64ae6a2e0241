"""Parsing of JSON-shaped model responses."""

import json
from typing import Any


def extract_json(raw_text: str) -> dict[str, Any] | None:
    """Parse a JSON object from a model response, tolerating markdown fences.

    Returns None when the text holds no JSON object.
    """
    text = raw_text.strip()
    if text.startswith("```"):
        lines = [line for line in text.split("\n") if not line.strip().startswith("```")]
        text = "\n".join(lines).strip()
    if not text.startswith("{"):
        start, end = text.find("{"), text.rfind("}")
        if start == -1 or end <= start:
            return None
        text = text[start : end + 1]
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        return None
    return data if isinstance(data, dict) else None


def as_str_list(value: Any) -> list[str]:
    if isinstance(value, list):
        return [str(v).strip() for v in value if str(v).strip()]
    if isinstance(value, str) and value.strip():
        return [value.strip()]
    return []


def as_confidence(value: Any, default: float) -> float:
    """Clamp a model-reported confidence to 0..1, accepting percentages."""
    try:
        confidence = float(value)
    except (TypeError, ValueError):
        return default
    if confidence > 1.0:
        confidence /= 100.0
    return min(max(confidence, 0.0), 1.0)
