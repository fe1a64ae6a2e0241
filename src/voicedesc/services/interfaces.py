"""Service interfaces (Protocols) for voicedesc.

These protocols define the contracts of the external collaborators the
orchestration layer drives. Concrete cloud adapters live outside this
package; tests supply fakes.
"""

from collections.abc import Sequence
from typing import Any, Protocol

from voicedesc.models.media import (
    AnalysisResponse,
    Chunk,
    VideoSegment,
    VisionAnalysis,
)


class IMediaStorage(Protocol):
    """Interface for blob storage of inputs and generated artifacts."""

    async def put(self, key: str, data: bytes, content_type: str | None = None) -> str:
        """Store bytes under ``key``.

        Returns:
            A reference that :meth:`get` accepts.
        """
        ...

    async def get(self, ref: str) -> bytes:
        """Fetch the bytes behind a reference."""
        ...

    async def exists(self, ref: str) -> bool:
        ...


class ISegmentationService(Protocol):
    """Interface for shot/scene boundary detection."""

    async def segment(self, ref: str) -> list[VideoSegment]:
        """Detect segments in the video at ``ref``.

        Returns:
            Segments in chronological order.
        """
        ...


class IChunker(Protocol):
    """Interface for splitting a video into analysable chunks."""

    async def chunk(
        self,
        ref: str,
        hints: list[VideoSegment] | None = None,
        max_chunk_duration: float | None = None,
    ) -> list[Chunk]:
        """Split the video at ``ref``.

        Args:
            ref: Storage reference of the video.
            hints: Scene boundaries to align chunks with, if known.
            max_chunk_duration: Upper bound on chunk length in seconds.

        Returns:
            Chunks in chronological order.
        """
        ...


class IMeteredAnalysisBackend(Protocol):
    """Interface for the token-metered multimodal model."""

    async def analyze(self, ref: str, prompt: str, model: str) -> AnalysisResponse:
        ...


class IVisionBackend(Protocol):
    """Interface for the non-metered cloud vision service."""

    async def analyze(self, ref: str, options: dict[str, Any] | None = None) -> VisionAnalysis:
        ...


class ISpeechSynthesizer(Protocol):
    """Interface for text-to-speech."""

    async def synthesize(self, text: str, voice: str | None = None) -> bytes:
        """Render ``text`` as audio.

        Returns:
            Encoded audio bytes (mp3).
        """
        ...


class IPersistentCacheStore(Protocol):
    """Interface for the durable tier of the response cache."""

    async def get(self, key: str) -> dict[str, Any] | None:
        ...

    async def put(self, key: str, value: dict[str, Any], ttl_seconds: int) -> None:
        ...


class IEmbedder(Protocol):
    """Interface for turning prompts into vectors for similarity lookup."""

    def embed(self, text: str) -> Sequence[float]:
        ...
