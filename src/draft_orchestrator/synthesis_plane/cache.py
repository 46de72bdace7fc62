"""
draft-orchestrator — provider response cache

File: src/draft_orchestrator/synthesis_plane/cache.py

Purpose
- In-process LRU+TTL store for serialized provider results, keyed by a hash of the
  semantic identity of a call (provider, model, prompt content).

What should be included in this file
- Lazy TTL expiry on read; no background eviction.
- Eviction on insert by the lowest ``hit_count - seconds_since_creation`` score.
- Substring invalidation over the original (unhashed) keys.
- Hit/miss/eviction statistics.

Functional requirements
- Each operation is synchronous so it is atomic with respect to the event loop.
- A hash slot whose stored raw key differs from the requested key is a miss.

Non-functional requirements
- Process lifetime only; nothing is persisted.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import structlog

from draft_orchestrator.constants import DEFAULT_CACHE_MAX_SIZE, DEFAULT_CACHE_TTL_SECONDS
from draft_orchestrator.utils.hashing import cache_key_hash

Clock = Callable[[], float]


@dataclass(slots=True)
class CacheEntry:
    """One cached value. Owned by ``ResponseCache``; never handed out."""

    key_hash: str
    raw_key: str
    value: str
    created_at: float
    hit_count: int = 0


@dataclass(frozen=True, slots=True)
class CacheStats:
    size: int
    max_size: int
    hits: int
    misses: int
    evictions: int
    hit_rate: float
    ttl_seconds: float

    def to_dict(self) -> dict[str, int | float]:
        return {
            "size": self.size,
            "max_size": self.max_size,
            "hits": self.hits,
            "misses": self.misses,
            "evictions": self.evictions,
            "hit_rate": self.hit_rate,
            "ttl_seconds": self.ttl_seconds,
        }


class ResponseCache:
    """LRU+TTL cache for serialized provider results."""

    def __init__(
        self,
        *,
        max_size: int = DEFAULT_CACHE_MAX_SIZE,
        ttl_seconds: float = DEFAULT_CACHE_TTL_SECONDS,
        clock: Clock = time.monotonic,
        logger: Any | None = None,
    ) -> None:
        if max_size <= 0:
            raise ValueError("max_size must be > 0")
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be > 0")
        self._max_size = max_size
        self._ttl_seconds = float(ttl_seconds)
        self._clock = clock
        self._logger = logger if logger is not None else structlog.get_logger(__name__)
        self._entries: dict[str, CacheEntry] = {}
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    @property
    def max_size(self) -> int:
        return self._max_size

    @property
    def ttl_seconds(self) -> float:
        return self._ttl_seconds

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        if not isinstance(key, str):
            return False
        entry = self._entries.get(cache_key_hash(key))
        return entry is not None and entry.raw_key == key

    def get(self, key: str) -> tuple[str | None, bool]:
        """Return ``(value, True)`` on a live hit, ``(None, False)`` otherwise."""

        key_hash = cache_key_hash(key)
        entry = self._entries.get(key_hash)
        if entry is None or entry.raw_key != key:
            self._misses += 1
            return None, False

        if self._clock() - entry.created_at > self._ttl_seconds:
            del self._entries[key_hash]
            self._misses += 1
            self._logger.debug("cache_entry_expired", key_hash=key_hash)
            return None, False

        entry.hit_count += 1
        self._hits += 1
        return entry.value, True

    def set(self, key: str, value: str) -> None:
        if not isinstance(value, str):
            raise TypeError("cache values must be serialized strings")
        key_hash = cache_key_hash(key)
        now = self._clock()

        existing = self._entries.get(key_hash)
        if existing is not None and existing.raw_key != key:
            self._logger.warning(
                "cache_hash_collision",
                key_hash=key_hash,
                replaced_key_length=len(existing.raw_key),
            )

        if existing is None and len(self._entries) >= self._max_size:
            self._evict_one(now)

        self._entries[key_hash] = CacheEntry(
            key_hash=key_hash,
            raw_key=key,
            value=value,
            created_at=now,
        )

    def invalidate(self, pattern: str) -> int:
        """Remove every entry whose original key contains ``pattern``."""

        doomed = [
            key_hash for key_hash, entry in self._entries.items() if pattern in entry.raw_key
        ]
        for key_hash in doomed:
            del self._entries[key_hash]
        if doomed:
            self._logger.info("cache_invalidated", pattern=pattern, removed=len(doomed))
        return len(doomed)

    def clear(self) -> None:
        self._entries.clear()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def stats(self) -> CacheStats:
        lookups = self._hits + self._misses
        return CacheStats(
            size=len(self._entries),
            max_size=self._max_size,
            hits=self._hits,
            misses=self._misses,
            evictions=self._evictions,
            hit_rate=(self._hits / lookups) if lookups else 0.0,
            ttl_seconds=self._ttl_seconds,
        )

    def _evict_one(self, now: float) -> None:
        victim = min(
            self._entries.values(),
            key=lambda entry: entry.hit_count - (now - entry.created_at),
        )
        del self._entries[victim.key_hash]
        self._evictions += 1
        self._logger.debug(
            "cache_evicted",
            key_hash=victim.key_hash,
            hit_count=victim.hit_count,
            age_seconds=round(now - victim.created_at, 3),
        )


__all__ = ["CacheEntry", "CacheStats", "Clock", "ResponseCache"]
