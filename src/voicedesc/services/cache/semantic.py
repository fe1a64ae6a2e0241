"""Similarity lookup over cached prompts."""

from __future__ import annotations

import hashlib
import logging
import re
import threading
from collections import OrderedDict
from collections.abc import Callable

import numpy as np

from voicedesc.services.interfaces import IEmbedder

logger = logging.getLogger(__name__)

_TOKEN = re.compile(r"\w+")


class HashingEmbedder:
    """Bag-of-words embedding via feature hashing of words and bigrams.

    Deterministic and local: prompts that share most of their wording
    land close together, unrelated prompts are near-orthogonal.
    """

    def __init__(self, dimensions: int = 1024) -> None:
        self.dimensions = dimensions

    def embed(self, text: str) -> np.ndarray:
        vector = np.zeros(self.dimensions, dtype=np.float32)
        words = _TOKEN.findall(text.lower())
        features = words + [f"{a} {b}" for a, b in zip(words, words[1:])]
        for feature in features:
            digest = hashlib.md5(feature.encode("utf-8")).digest()
            index = int.from_bytes(digest[:4], "little") % self.dimensions
            sign = 1.0 if digest[4] & 1 else -1.0
            vector[index] += sign
        norm = np.linalg.norm(vector)
        if norm > 0:
            vector /= norm
        return vector


def cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
    denom = float(np.linalg.norm(a) * np.linalg.norm(b))
    if denom == 0.0:
        return 0.0
    return float(np.dot(a, b) / denom)


class SemanticIndex:
    """Bounded map of cache key to prompt embedding."""

    def __init__(
        self,
        embedder: IEmbedder | None = None,
        threshold: float = 0.95,
        max_entries: int = 10000,
    ) -> None:
        self.embedder = embedder or HashingEmbedder()
        self.threshold = threshold
        self.max_entries = max_entries
        self._vectors: OrderedDict[str, np.ndarray] = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._vectors)

    def add(self, key: str, prompt: str) -> None:
        vector = np.asarray(self.embedder.embed(prompt), dtype=np.float32)
        with self._lock:
            self._vectors.pop(key, None)
            self._vectors[key] = vector
            while len(self._vectors) > self.max_entries:
                self._vectors.popitem(last=False)

    def remove(self, key: str) -> None:
        with self._lock:
            self._vectors.pop(key, None)

    def search(
        self,
        prompt: str,
        is_live: Callable[[str], bool] | None = None,
    ) -> tuple[str, float] | None:
        """Best match strictly above the threshold among live keys."""
        query = np.asarray(self.embedder.embed(prompt), dtype=np.float32)
        with self._lock:
            candidates = list(self._vectors.items())

        best: tuple[str, float] | None = None
        for key, vector in candidates:
            similarity = cosine_similarity(query, vector)
            if similarity <= self.threshold:
                continue
            if best is not None and similarity <= best[1]:
                continue
            if is_live is not None and not is_live(key):
                continue
            best = (key, similarity)
        if best:
            logger.debug("Semantic match %s (similarity %.3f)", best[0][:12], best[1])
        return best
