"""
draft-orchestrator — knowledge plane

File: src/draft_orchestrator/knowledge_plane/__init__.py

Purpose
- Corpus-facing helpers: duplicate detection for generated payloads.
"""

from draft_orchestrator.knowledge_plane.similarity import (
    CorpusEntry,
    SimilarityIndex,
    SimilarityMatch,
    TfidfSimilarityIndex,
    cosine,
    tokenize,
)

__all__ = [
    "CorpusEntry",
    "SimilarityIndex",
    "SimilarityMatch",
    "TfidfSimilarityIndex",
    "cosine",
    "tokenize",
]
