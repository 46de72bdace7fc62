"""
draft-orchestrator — hashing utilities

File: src/draft_orchestrator/utils/hashing.py

Purpose
- Provide deterministic hashes for semantic cache keys and request fingerprints.

Functional requirements
- Cache-key hashing is a fast 32-bit FNV-1a over UTF-8 bytes; collisions are possible
  and callers that care must keep the raw key alongside the hash.

Non-functional requirements
- Standard library only; behavior is cross-platform deterministic.
"""

from __future__ import annotations

from typing import Final

_FNV32_OFFSET_BASIS: Final[int] = 0x811C9DC5
_FNV32_PRIME: Final[int] = 0x01000193
_UINT32_MASK: Final[int] = 0xFFFFFFFF

__all__ = [
    "cache_key_hash",
    "fnv1a_32",
]


def fnv1a_32(data: bytes) -> int:
    """Return the 32-bit FNV-1a hash of ``data``."""

    value = _FNV32_OFFSET_BASIS
    for byte in data:
        value ^= byte
        value = (value * _FNV32_PRIME) & _UINT32_MASK
    return value


def cache_key_hash(raw_key: str) -> str:
    """Return the 8-char hex cache-slot identifier for a semantic key string."""

    if not isinstance(raw_key, str):
        raise TypeError("raw_key must be a string")
    return f"{fnv1a_32(raw_key.encode('utf-8')):08x}"
