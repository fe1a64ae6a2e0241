"""Services module for voicedesc."""

from voicedesc.services.chunking import FFmpegChunker
from voicedesc.services.interfaces import (
    IChunker,
    IEmbedder,
    IMediaStorage,
    IMeteredAnalysisBackend,
    IPersistentCacheStore,
    ISegmentationService,
    ISpeechSynthesizer,
    IVisionBackend,
)
from voicedesc.services.storage import LocalMediaStorage

__all__ = [
    "IChunker",
    "IEmbedder",
    "IMediaStorage",
    "IMeteredAnalysisBackend",
    "IPersistentCacheStore",
    "ISegmentationService",
    "ISpeechSynthesizer",
    "IVisionBackend",
    "FFmpegChunker",
    "LocalMediaStorage",
]
