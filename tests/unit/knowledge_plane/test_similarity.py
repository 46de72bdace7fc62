"""
draft-orchestrator — similarity index tests

File: tests/unit/knowledge_plane/test_similarity.py

Purpose
- Validate tokenization, vocabulary filtering, and best-match selection of the
  tf-idf similarity index.
"""

from __future__ import annotations

import pytest

from draft_orchestrator.knowledge_plane.similarity import (
    CorpusEntry,
    SimilarityMatch,
    TfidfSimilarityIndex,
    cosine,
    tokenize,
)

_CORPUS = (
    CorpusEntry(id="A", title="Despejo", content="contrato locacao imovel aluguel fiador despejo"),
    CorpusEntry(
        id="B", title="Garantia", content="contrato locacao imovel aluguel fiador garantia"
    ),
    CorpusEntry(id="C", title="Pensao", content="divorcio guarda alimentos filhos pensao"),
    CorpusEntry(id="D", title="Visitas", content="divorcio guarda alimentos filhos visitas"),
    CorpusEntry(id="E", title="Tributario", content="tributario imposto renda isencao"),
)


def test_tokenize_folds_accents_and_drops_noise() -> None:
    text = "Ação de DESPEJO, art. 5 <b>urgente</b> 2024 do réu"
    assert tokenize(text) == ["acao", "despejo", "urgente"]
    assert tokenize("") == []


def test_vocabulary_keeps_terms_shared_by_some_but_not_most_documents() -> None:
    index = TfidfSimilarityIndex()
    index.build(_CORPUS)

    # Nine terms appear in exactly two documents; singletons are dropped.
    assert index.vocabulary_size == 9
    assert index.vectorize("despejo garantia") == {}


def test_near_duplicate_is_flagged_with_first_best_match() -> None:
    index = TfidfSimilarityIndex()
    candidate = CorpusEntry(
        id="new", content="Contrato de locação do imóvel com aluguel e fiador"
    )

    match = index.find_similar(candidate, _CORPUS, threshold=0.8)

    assert match.has_similar is True
    assert match.match is not None
    assert match.match.id == "A"
    assert match.similarity == pytest.approx(1.0)
    assert match.to_dict() == {
        "has_similar": True,
        "similarity": 1.0,
        "match_id": "A",
        "match_title": "Despejo",
    }


def test_candidate_never_matches_itself() -> None:
    index = TfidfSimilarityIndex()
    match = index.find_similar(_CORPUS[0], _CORPUS)

    assert match.has_similar is True
    assert match.match is not None
    assert match.match.id == "B"


def test_unrelated_candidate_is_not_flagged() -> None:
    index = TfidfSimilarityIndex()
    match = index.find_similar(CorpusEntry(id="x", content="imposto renda restituicao"), _CORPUS)

    assert match == SimilarityMatch(has_similar=False)
    assert match.to_dict()["match_id"] is None


def test_partial_overlap_below_threshold_is_not_reported() -> None:
    index = TfidfSimilarityIndex()
    candidate = CorpusEntry(id="x", content="contrato locacao imovel guarda")

    assert index.find_similar(candidate, _CORPUS, threshold=0.8).has_similar is False
    relaxed = index.find_similar(candidate, _CORPUS, threshold=0.6)
    assert relaxed.has_similar is True
    assert relaxed.match is not None
    assert relaxed.match.id == "A"
    assert relaxed.similarity == pytest.approx(3 / (2 * 5**0.5))


def test_index_rebuilds_when_corpus_changes() -> None:
    index = TfidfSimilarityIndex()
    index.find_similar(CorpusEntry(id="x", content="contrato"), _CORPUS)
    first_size = index.vocabulary_size

    index.find_similar(CorpusEntry(id="x", content="contrato"), _CORPUS[:2])

    # With two documents every shared term reaches the 90% ceiling.
    assert first_size == 9
    assert index.vocabulary_size == 0


def test_cosine_is_symmetric() -> None:
    left = {0: 0.6, 1: 0.8}
    right = {1: 1.0}
    assert cosine(left, right) == pytest.approx(0.8)
    assert cosine(right, left) == pytest.approx(0.8)
