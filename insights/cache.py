"""In-memory response cache with TTL expiry and LRU eviction.

Entries are keyed by ``Query.cache_key()``. Expiry is lazy: an expired entry
is dropped when it is next looked up, or in bulk by ``evict_expired()``.
Recency is refreshed by ``get`` hits only; overwriting a key with ``put``
leaves its position in the LRU order untouched.
"""

from __future__ import annotations

import logging
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Optional

from insights.models import InsightSet

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CacheEntry:
    """A cached InsightSet and its freshness window."""

    key: str
    value: InsightSet
    stored_at: float
    ttl: float

    @property
    def expires_at(self) -> float:
        return self.stored_at + self.ttl

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


@dataclass
class CacheStats:
    """Running hit/miss counters."""

    hits: int = 0
    misses: int = 0
    evictions: int = 0
    size: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total > 0 else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "evictions": self.evictions,
            "size": self.size,
            "hit_rate": round(self.hit_rate * 100, 2),
        }


class ResponseCache:
    """Bounded TTL cache of normalised insight results.

    Not thread-safe: it is only ever touched from the orchestrator's event
    loop, between suspension points.
    """

    def __init__(
        self,
        max_entries: int = 128,
        default_ttl: float = 300.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.max_entries = max_entries
        self.default_ttl = default_ttl
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._stats = CacheStats()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    @property
    def stats(self) -> CacheStats:
        self._stats.size = len(self._entries)
        return self._stats

    def get(self, key: str) -> Optional[CacheEntry]:
        """Return the fresh entry for *key*, or ``None`` on a miss."""
        entry = self._entries.get(key)
        if entry is None:
            self._stats.misses += 1
            return None

        if entry.is_expired(self._clock()):
            del self._entries[key]
            self._stats.misses += 1
            self._stats.evictions += 1
            logger.debug("Cache entry expired key=%s", key)
            return None

        self._entries.move_to_end(key)
        self._stats.hits += 1
        return entry

    def put(self, key: str, value: InsightSet, ttl: Optional[float] = None) -> CacheEntry:
        """Store *value* under *key*, replacing any existing entry."""
        entry = CacheEntry(
            key=key,
            value=value,
            stored_at=self._clock(),
            ttl=self.default_ttl if ttl is None else ttl,
        )
        self._entries[key] = entry

        if len(self._entries) > self.max_entries:
            self.evict_expired()
            while len(self._entries) > self.max_entries:
                evicted_key, _ = self._entries.popitem(last=False)
                self._stats.evictions += 1
                logger.debug("Cache LRU eviction key=%s", evicted_key)
        return entry

    def evict_expired(self) -> int:
        """Drop every expired entry and return how many were removed."""
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
        for key in expired:
            del self._entries[key]
        self._stats.evictions += len(expired)
        return len(expired)

    def invalidate(self, key: str) -> bool:
        """Remove *key*; returns ``True`` if it was present."""
        return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        self._entries.clear()
        logger.info("Response cache cleared")
