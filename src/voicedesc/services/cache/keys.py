"""Cache key and content fingerprint helpers."""

import hashlib
import json
import re
from typing import Any

_WHITESPACE = re.compile(r"\s+")


def normalize_prompt(prompt: str) -> str:
    """Collapse whitespace so formatting differences share a cache entry."""
    return _WHITESPACE.sub(" ", prompt).strip()


def make_cache_key(model: str, prompt: str, fingerprint: str = "") -> str:
    """Derive a cache key from the model, prompt and content fingerprint only.

    Request metadata (ids, timestamps, priority) never contributes.
    """
    payload = json.dumps([model, normalize_prompt(prompt), fingerprint or ""])
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def content_hash(value: Any) -> str:
    """Stable digest of a cached value, used to verify persisted entries."""
    payload = json.dumps(value, sort_keys=True, default=str)
    return hashlib.md5(payload.encode("utf-8")).hexdigest()


def fingerprint_bytes(data: bytes) -> str:
    """Content fingerprint of raw media bytes, folded into cache keys."""
    return hashlib.sha256(data).hexdigest()
