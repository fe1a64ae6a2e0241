"""Tiered response cache for the token-metered backend."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from voicedesc.config import Settings
from voicedesc.models.cost import CacheEntry, CacheLookup
from voicedesc.services.cache.keys import content_hash
from voicedesc.services.cache.lru import LRUCache
from voicedesc.services.cache.semantic import SemanticIndex
from voicedesc.services.interfaces import IEmbedder, IPersistentCacheStore

logger = logging.getLogger(__name__)


class ResponseCache:
    """Memory tier, then an optional persistent tier, then optional semantic lookup.

    Only the memory tier is authoritative for writes; persistent and
    embedding writes are best effort and their failures never reach the
    caller.
    """

    def __init__(
        self,
        memory: LRUCache,
        persistent: IPersistentCacheStore | None = None,
        semantic: SemanticIndex | None = None,
        persist_min_tokens: int = 500,
        persist_ttl_seconds: int = 7 * 24 * 60 * 60,
        semantic_min_prompt_chars: int = 50,
    ) -> None:
        self.memory = memory
        self.persistent = persistent
        self.semantic = semantic
        self.persist_min_tokens = persist_min_tokens
        self.persist_ttl_seconds = persist_ttl_seconds
        self.semantic_min_prompt_chars = semantic_min_prompt_chars
        self.hits = 0
        self.misses = 0

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        persistent: IPersistentCacheStore | None = None,
        embedder: IEmbedder | None = None,
    ) -> ResponseCache:
        semantic = None
        if settings.cache_semantic_enabled or embedder is not None:
            semantic = SemanticIndex(
                embedder=embedder,
                threshold=settings.cache_semantic_threshold,
                max_entries=settings.cache_semantic_max_entries,
            )
        return cls(
            memory=LRUCache(
                max_entries=settings.cache_max_entries,
                max_bytes=settings.cache_max_bytes,
                ttl_seconds=settings.cache_ttl_seconds,
            ),
            persistent=persistent,
            semantic=semantic,
            persist_min_tokens=settings.cache_persist_min_tokens,
            persist_ttl_seconds=settings.cache_persist_ttl_seconds,
            semantic_min_prompt_chars=settings.cache_semantic_min_prompt_chars,
        )

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0

    async def lookup(
        self,
        key: str,
        prompt: str | None = None,
        use_semantic: bool = False,
    ) -> CacheLookup | None:
        entry = self.memory.get(key)
        if entry is not None:
            self.hits += 1
            logger.debug("Cache hit (memory): %s", key[:12])
            return CacheLookup(entry=entry, tier="memory")

        entry = await self._lookup_persistent(key)
        if entry is not None:
            self.hits += 1
            logger.debug("Cache hit (persistent): %s", key[:12])
            return CacheLookup(entry=entry, tier="persistent")

        if use_semantic and prompt and self.semantic is not None:
            match = self.semantic.search(prompt, is_live=self.memory.contains)
            if match is not None:
                matched_key, similarity = match
                entry = self.memory.get(matched_key)
                if entry is not None:
                    self.hits += 1
                    logger.debug("Cache hit (semantic %.3f): %s", similarity, matched_key[:12])
                    return CacheLookup(entry=entry, tier="semantic", similarity=similarity)

        self.misses += 1
        logger.debug("Cache miss: %s", key[:12])
        return None

    async def _lookup_persistent(self, key: str) -> CacheEntry | None:
        if self.persistent is None:
            return None
        try:
            raw = await self.persistent.get(key)
        except Exception:
            logger.warning("Persistent cache read failed for %s", key[:12], exc_info=True)
            return None
        if not raw:
            return None

        try:
            entry = CacheEntry.model_validate(raw)
            if entry.key != key or entry.content_hash != content_hash(entry.value):
                logger.warning("Discarding persisted cache entry with mismatched hash: %s", key[:12])
                return None

            entry.hit_count += 1
            entry.last_accessed_at = datetime.now(timezone.utc)
            evicted_keys = self.memory.put(entry)
        except Exception:
            logger.warning("Discarding unreadable persisted cache entry: %s", key[:12], exc_info=True)
            return None

        if self.semantic is not None:
            for evicted in evicted_keys:
                self.semantic.remove(evicted)
        return entry

    async def store(
        self,
        key: str,
        value: Any,
        token_cost: int,
        prompt: str | None = None,
    ) -> CacheEntry:
        """Record a successful backend response.

        Raises:
            ResourceExhaustionError: If the value alone exceeds the memory bound.
        """
        entry = CacheEntry(
            key=key,
            value=value,
            token_cost=token_cost,
            content_hash=content_hash(value),
        )
        for evicted in self.memory.put(entry):
            if self.semantic is not None:
                self.semantic.remove(evicted)

        if self.persistent is not None and token_cost > self.persist_min_tokens:
            try:
                await self.persistent.put(key, entry.model_dump(mode="json"), self.persist_ttl_seconds)
            except Exception:
                logger.warning("Persistent cache write failed for %s", key[:12], exc_info=True)

        if self.semantic is not None and prompt and len(prompt) > self.semantic_min_prompt_chars:
            try:
                self.semantic.add(key, prompt)
            except Exception:
                logger.warning("Embedding failed for %s", key[:12], exc_info=True)

        return entry

    def stats(self) -> dict[str, Any]:
        return {
            "entries": len(self.memory),
            "bytes": self.memory.size_bytes,
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": self.hit_rate,
            "semantic_entries": len(self.semantic) if self.semantic is not None else 0,
        }
