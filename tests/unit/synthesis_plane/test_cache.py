"""
draft-orchestrator — response cache tests

File: tests/unit/synthesis_plane/test_cache.py

Purpose
- Validate LRU+TTL semantics of the provider response cache with a fake clock.

What this test file should cover
- Lazy TTL expiry, eviction scoring, substring invalidation, and statistics.
- Capacity invariant under arbitrary insert sequences.

Functional requirements
- No real time passes; the clock is injected.
"""

from __future__ import annotations

from dataclasses import dataclass

import pytest
from hypothesis import given
from hypothesis import strategies as st

from draft_orchestrator.synthesis_plane.cache import ResponseCache
from draft_orchestrator.utils.hashing import cache_key_hash


@dataclass(slots=True)
class FakeClock:
    current: float = 0.0

    def __call__(self) -> float:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += seconds


def _cache(clock: FakeClock, *, max_size: int = 4, ttl_seconds: float = 300.0) -> ResponseCache:
    return ResponseCache(max_size=max_size, ttl_seconds=ttl_seconds, clock=clock)


def test_get_returns_value_within_ttl_and_misses_after() -> None:
    clock = FakeClock()
    cache = _cache(clock)
    cache.set("claude:model:prompt", "answer")

    clock.advance(240)
    assert cache.get("claude:model:prompt") == ("answer", True)

    clock.advance(120)
    assert cache.get("claude:model:prompt") == (None, False)
    assert len(cache) == 0


def test_entry_at_exact_ttl_boundary_is_still_live() -> None:
    clock = FakeClock()
    cache = _cache(clock, ttl_seconds=10)
    cache.set("k", "v")
    clock.advance(10)
    assert cache.get("k") == ("v", True)


def test_absent_key_is_a_miss() -> None:
    cache = _cache(FakeClock())
    assert cache.get("nothing") == (None, False)
    assert cache.stats().misses == 1


def test_eviction_prefers_old_unused_entries_over_hot_ones() -> None:
    clock = FakeClock()
    cache = _cache(clock, max_size=2)
    cache.set("hot", "1")
    clock.advance(5)
    cache.set("cold", "2")
    for _ in range(10):
        cache.get("hot")

    clock.advance(1)
    cache.set("new", "3")

    assert "hot" in cache
    assert "cold" not in cache
    assert "new" in cache
    assert cache.stats().evictions == 1


def test_eviction_picks_oldest_when_hit_counts_tie() -> None:
    clock = FakeClock()
    cache = _cache(clock, max_size=2)
    cache.set("first", "1")
    clock.advance(1)
    cache.set("second", "2")
    clock.advance(1)
    cache.set("third", "3")

    assert "first" not in cache
    assert "second" in cache
    assert "third" in cache


def test_overwriting_existing_key_does_not_evict() -> None:
    clock = FakeClock()
    cache = _cache(clock, max_size=2)
    cache.set("a", "1")
    cache.set("b", "2")
    cache.set("a", "updated")

    assert cache.get("a") == ("updated", True)
    assert "b" in cache
    assert cache.stats().evictions == 0


def test_invalidate_matches_substring_of_original_key() -> None:
    cache = _cache(FakeClock(), max_size=10)
    cache.set("bulk_models_peticao.txt_abc", "[]")
    cache.set("bulk_models_contrato.md_def", "[]")
    cache.set("claude:sonnet:hello", "hi")

    removed = cache.invalidate("bulk_models_")

    assert removed == 2
    assert len(cache) == 1
    assert "claude:sonnet:hello" in cache
    assert cache.invalidate("no-such-fragment") == 0


def test_stats_track_hits_misses_and_rate() -> None:
    cache = _cache(FakeClock())
    cache.set("a", "1")
    cache.get("a")
    cache.get("a")
    cache.get("b")

    stats = cache.stats()
    assert (stats.hits, stats.misses, stats.size) == (2, 1, 1)
    assert stats.hit_rate == pytest.approx(2 / 3)
    assert stats.to_dict()["max_size"] == 4


def test_clear_resets_entries_and_counters() -> None:
    cache = _cache(FakeClock())
    cache.set("a", "1")
    cache.get("a")
    cache.clear()

    stats = cache.stats()
    assert (stats.size, stats.hits, stats.misses, stats.evictions) == (0, 0, 0, 0)
    assert stats.hit_rate == 0.0


def test_colliding_slot_with_different_raw_key_is_a_miss() -> None:
    cache = _cache(FakeClock())
    cache.set("original", "value")
    slot = cache_key_hash("original")
    # Simulate a colliding key by rewriting the stored raw key in place.
    cache._entries[slot].raw_key = "someone-else"  # noqa: SLF001

    assert cache.get("original") == (None, False)
    assert "original" not in cache


def test_constructor_and_set_validation() -> None:
    with pytest.raises(ValueError):
        ResponseCache(max_size=0)
    with pytest.raises(ValueError):
        ResponseCache(ttl_seconds=0)
    with pytest.raises(TypeError):
        ResponseCache().set("k", {"not": "serialized"})  # type: ignore[arg-type]


@given(
    max_size=st.integers(min_value=1, max_value=8),
    keys=st.lists(st.text(min_size=1, max_size=6), max_size=40),
)
def test_size_never_exceeds_capacity(max_size: int, keys: list[str]) -> None:
    clock = FakeClock()
    cache = ResponseCache(max_size=max_size, ttl_seconds=60, clock=clock)
    for key in keys:
        clock.advance(0.5)
        cache.set(key, key)
        assert len(cache) <= max_size
