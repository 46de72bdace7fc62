"""
draft-orchestrator — similarity index

File: src/draft_orchestrator/knowledge_plane/similarity.py

Purpose
- Flag generated payloads that duplicate an entry already present in the corpus
  before a reviewer saves them.

What should be included in this file
- ``SimilarityIndex`` protocol consumed by the batch orchestrator.
- ``TfidfSimilarityIndex``: accent-folding tokenizer, document-frequency filtered
  vocabulary, sublinear tf-idf weights, L2-normalized sparse vectors, cosine score.

Functional requirements
- ``find_similar`` never matches a candidate against an entry with the same id.
- Only scores at or above the threshold are reported; the best one wins.

Non-functional requirements
- Deterministic; the index is rebuilt lazily when the corpus changes.
"""

from __future__ import annotations

import math
import re
import unicodedata
from collections import Counter
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Final, Protocol

from draft_orchestrator.constants import SIMILARITY_THRESHOLD

STOPWORDS: Final[frozenset[str]] = frozenset(
    """
    de da do das dos em na no nas nos para por com sem sob sobre entre ate o a os as um uma
    uns umas e ou mas porem contudo todavia que qual quais quando onde como porque ser estar
    ter haver fazer ir vir foi era sido sendo seja foram sao ao aos pela pelo pelas pelos este
    esta estes estas esse essa esses essas isso isto aquilo aquele aquela se nao sim mais menos
    muito pouco art artigo paragrafo inciso alinea fls folhas pag pagina id processo autos
    requerente requerido reclamante reclamada autor reu parte partes assim ainda ja tambem
    apenas mesmo so entao pois
    """.split()
)

_MIN_TOKEN_LENGTH: Final[int] = 3
_MIN_DOCUMENT_FREQUENCY: Final[int] = 2
_MAX_DOCUMENT_RATIO: Final[float] = 0.9

_TAG_PATTERN: Final[re.Pattern[str]] = re.compile(r"<[^>]+>")
_PUNCTUATION_PATTERN: Final[re.Pattern[str]] = re.compile(r"[^\w\s]", re.ASCII)
_DIGITS_PATTERN: Final[re.Pattern[str]] = re.compile(r"\d+")

SparseVector = dict[int, float]


@dataclass(frozen=True, slots=True)
class CorpusEntry:
    """One existing document the candidate is compared against."""

    id: str
    content: str
    title: str = ""


@dataclass(frozen=True, slots=True)
class SimilarityMatch:
    has_similar: bool
    similarity: float = 0.0
    match: CorpusEntry | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "has_similar": self.has_similar,
            "similarity": round(self.similarity, 4),
            "match_id": None if self.match is None else self.match.id,
            "match_title": None if self.match is None else self.match.title,
        }


class SimilarityIndex(Protocol):
    def find_similar(
        self,
        candidate: CorpusEntry,
        corpus: Sequence[CorpusEntry],
        threshold: float = SIMILARITY_THRESHOLD,
    ) -> SimilarityMatch: ...


def tokenize(text: str) -> list[str]:
    """Lowercase, strip accents and markup, and drop short words, digits, and stopwords."""

    folded = unicodedata.normalize("NFD", (text or "").lower())
    folded = "".join(char for char in folded if not unicodedata.combining(char))
    folded = _TAG_PATTERN.sub(" ", folded)
    folded = _PUNCTUATION_PATTERN.sub(" ", folded)
    folded = _DIGITS_PATTERN.sub(" ", folded)
    return [
        word
        for word in folded.split()
        if len(word) >= _MIN_TOKEN_LENGTH and word not in STOPWORDS
    ]


def cosine(left: SparseVector, right: SparseVector) -> float:
    """Dot product of two L2-normalized sparse vectors."""

    if len(right) < len(left):
        left, right = right, left
    return sum(value * right[index] for index, value in left.items() if index in right)


@dataclass(slots=True)
class TfidfSimilarityIndex:
    """In-memory tf-idf index over a corpus of entries."""

    _vocabulary: dict[str, int] = field(default_factory=dict)
    _idf: dict[str, float] = field(default_factory=dict)
    _vectors: dict[str, SparseVector] = field(default_factory=dict)
    _fingerprint: tuple[str, ...] | None = None

    @property
    def vocabulary_size(self) -> int:
        return len(self._vocabulary)

    def build(self, corpus: Sequence[CorpusEntry]) -> None:
        total = len(corpus)
        document_frequency: Counter[str] = Counter()
        for entry in corpus:
            document_frequency.update(set(tokenize(entry.content)))

        self._vocabulary = {}
        self._idf = {}
        for term in sorted(document_frequency):
            frequency = document_frequency[term]
            if frequency >= _MIN_DOCUMENT_FREQUENCY and frequency < total * _MAX_DOCUMENT_RATIO:
                self._vocabulary[term] = len(self._vocabulary)
                self._idf[term] = math.log(total / frequency) + 1.0

        self._vectors = {entry.id: self.vectorize(entry.content) for entry in corpus}
        self._fingerprint = tuple(entry.id for entry in corpus)

    def invalidate(self) -> None:
        self._fingerprint = None
        self._vectors.clear()

    def vectorize(self, text: str) -> SparseVector:
        counts = Counter(token for token in tokenize(text) if token in self._vocabulary)
        vector: SparseVector = {}
        for term, count in counts.items():
            vector[self._vocabulary[term]] = (1.0 + math.log(count)) * self._idf[term]
        norm = math.sqrt(sum(value * value for value in vector.values()))
        if norm > 0:
            vector = {index: value / norm for index, value in vector.items()}
        return vector

    def find_similar(
        self,
        candidate: CorpusEntry,
        corpus: Sequence[CorpusEntry],
        threshold: float = SIMILARITY_THRESHOLD,
    ) -> SimilarityMatch:
        if self._fingerprint != tuple(entry.id for entry in corpus):
            self.build(corpus)

        probe = self.vectorize(candidate.content)
        best: CorpusEntry | None = None
        best_score = 0.0
        for entry in corpus:
            if entry.id == candidate.id:
                continue
            existing = self._vectors.get(entry.id)
            if existing is None:
                continue
            score = cosine(probe, existing)
            if score >= threshold and score > best_score:
                best, best_score = entry, score

        if best is None:
            return SimilarityMatch(has_similar=False)
        return SimilarityMatch(has_similar=True, similarity=best_score, match=best)


__all__ = [
    "STOPWORDS",
    "CorpusEntry",
    "SimilarityIndex",
    "SimilarityMatch",
    "SparseVector",
    "TfidfSimilarityIndex",
    "cosine",
    "tokenize",
]
