"""Bounded in-memory LRU tier of the response cache."""

from __future__ import annotations

import json
import logging
import threading
import time
from collections import OrderedDict
from collections.abc import Callable
from datetime import datetime, timezone

from voicedesc.errors import ResourceExhaustionError
from voicedesc.models.cost import CacheEntry

logger = logging.getLogger(__name__)


def estimate_size(entry: CacheEntry) -> int:
    """Approximate memory footprint of an entry in bytes."""
    return len(json.dumps(entry.value, default=str).encode("utf-8")) + len(entry.key)


class LRUCache:
    """Entry- and byte-bounded LRU map of :class:`CacheEntry` objects.

    Entries expire ``ttl_seconds`` after creation; access does not extend
    their lifetime. Every read or write marks the key most recently used.
    """

    def __init__(
        self,
        max_entries: int = 500,
        max_bytes: int = 500 * 1024 * 1024,
        ttl_seconds: float = 24 * 60 * 60,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if max_entries <= 0 or max_bytes <= 0:
            raise ValueError("cache bounds must be positive")
        self.max_entries = max_entries
        self.max_bytes = max_bytes
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: OrderedDict[str, tuple[CacheEntry, int]] = OrderedDict()
        self._bytes = 0
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    @property
    def size_bytes(self) -> int:
        return self._bytes

    def keys(self) -> list[str]:
        """Keys from least to most recently used."""
        with self._lock:
            return list(self._entries)

    def _expired(self, entry: CacheEntry) -> bool:
        return self._clock() - entry.created_at.timestamp() > self.ttl_seconds

    def _remove(self, key: str) -> None:
        _, size = self._entries.pop(key)
        self._bytes -= size

    def get(self, key: str) -> CacheEntry | None:
        """Return a live entry, recording the hit, or None."""
        with self._lock:
            item = self._entries.get(key)
            if item is None:
                return None
            entry, _ = item
            if self._expired(entry):
                self._remove(key)
                logger.debug("Cache entry expired: %s", key[:12])
                return None
            self._entries.move_to_end(key)
            entry.hit_count += 1
            entry.last_accessed_at = datetime.fromtimestamp(self._clock(), timezone.utc)
            return entry

    def contains(self, key: str) -> bool:
        """True if ``key`` is live, without touching recency."""
        with self._lock:
            item = self._entries.get(key)
            return item is not None and not self._expired(item[0])

    def put(self, entry: CacheEntry) -> list[str]:
        """Insert or replace an entry and evict past the bounds.

        Returns:
            Keys evicted to make room.

        Raises:
            ResourceExhaustionError: If the entry alone exceeds ``max_bytes``.
        """
        size = estimate_size(entry)
        if size > self.max_bytes:
            raise ResourceExhaustionError(
                f"Cache entry of {size} bytes exceeds the {self.max_bytes} byte bound",
                details={"key": entry.key, "size": size},
            )
        evicted: list[str] = []
        with self._lock:
            if entry.key in self._entries:
                self._remove(entry.key)
            self._entries[entry.key] = (entry, size)
            self._bytes += size
            while len(self._entries) > self.max_entries or self._bytes > self.max_bytes:
                oldest = next(iter(self._entries))
                self._remove(oldest)
                evicted.append(oldest)
        if evicted:
            logger.debug("Evicted %d cache entr%s", len(evicted), "y" if len(evicted) == 1 else "ies")
        return evicted

    def delete(self, key: str) -> bool:
        with self._lock:
            if key not in self._entries:
                return False
            self._remove(key)
            return True

    def purge_expired(self) -> int:
        with self._lock:
            stale = [key for key, (entry, _) in self._entries.items() if self._expired(entry)]
            for key in stale:
                self._remove(key)
        return len(stale)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._bytes = 0
