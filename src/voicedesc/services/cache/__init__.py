"""Response cache tiers."""

from voicedesc.services.cache.keys import content_hash, make_cache_key
from voicedesc.services.cache.lru import LRUCache
from voicedesc.services.cache.response_cache import ResponseCache
from voicedesc.services.cache.semantic import HashingEmbedder, SemanticIndex

__all__ = [
    "HashingEmbedder",
    "LRUCache",
    "ResponseCache",
    "SemanticIndex",
    "content_hash",
    "make_cache_key",
]
