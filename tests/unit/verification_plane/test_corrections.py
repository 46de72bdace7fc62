from __future__ import annotations

import json

from draft_orchestrator.verification_plane.corrections import (
    apply_selected,
    describe,
    select_only,
    to_selectable,
)

_TEXT = "Condeno a ré ao pagamento de R$ 1.000,00. Custas pela ré."


def test_selectable_ids_are_stable_and_selected_by_default() -> None:
    corrections = to_selectable(
        "dispositivo",
        [
            {
                "type": "modify",
                "item": "R$ 1.000,00",
                "suggestion": "R$ 2.000,00",
                "reason": "erro",
            },
            {"type": "add", "item": "Juros de mora desde a citação."},
        ],
    )

    assert [item.id for item in corrections] == ["dispositivo-0-modify", "dispositivo-1-add"]
    assert all(item.selected for item in corrections)
    assert corrections[0].description == 'Modificar: "R$ 1.000,00" → "R$ 2.000,00"'
    assert corrections[0].reason == "erro"


def test_no_selection_keeps_original_and_full_selection_uses_verified() -> None:
    corrections = to_selectable("dispositivo", [{"type": "remove", "item": "Custas pela ré."}])

    assert apply_selected("dispositivo", _TEXT, "VERIFIED", select_only(corrections, [])) == _TEXT
    assert apply_selected("dispositivo", _TEXT, "VERIFIED", corrections) == "VERIFIED"


def test_partial_selection_replays_kept_text_corrections_on_original() -> None:
    corrections = to_selectable(
        "dispositivo",
        [
            {"type": "modify", "item": "R$ 1.000,00", "suggestion": "R$ 2.000,00"},
            {"type": "remove", "item": " Custas pela ré."},
            {"type": "add", "item": "Juros de mora desde a citação."},
        ],
    )
    kept = select_only(corrections, {"dispositivo-0-modify", "dispositivo-2-add"})

    result = apply_selected("dispositivo", _TEXT, "VERIFIED", kept)

    assert result == (
        "Condeno a ré ao pagamento de R$ 2.000,00. Custas pela ré."
        "\n\nJuros de mora desde a citação."
    )


def test_modify_without_matching_item_appends_suggestion() -> None:
    corrections = to_selectable(
        "sentence_review",
        [
            {"type": "improve", "item": "inexistente", "suggestion": "Novo parágrafo."},
            {"type": "false_positive", "item": "x"},
        ],
    )
    kept = select_only(corrections, {"sentence_review-0-improve"})

    assert apply_selected("sentence_review", "Texto.", None, kept) == "Texto.\n\nNovo parágrafo."


def test_topic_corrections_patch_the_json_document() -> None:
    original = json.dumps(
        [
            {"title": "HORAS EXTRAS", "category": "MÉRITO"},
            {"title": "INTERVALO", "category": "MÉRITO"},
            {"title": "PRESCRIÇÃO", "category": "MÉRITO"},
        ],
        ensure_ascii=False,
    )
    corrections = to_selectable(
        "topic_extraction",
        [
            {"type": "remove", "topic": "INTERVALO"},
            {"type": "reclassify", "topic": "PRESCRIÇÃO", "from": "MÉRITO", "to": "PREJUDICIAL"},
            {"type": "add", "topic": {"title": "DANO MORAL", "category": "MÉRITO"}},
        ],
    )
    kept = select_only(corrections, {"topic_extraction-0-remove", "topic_extraction-1-reclassify"})

    result = json.loads(apply_selected("topic_extraction", original, None, kept))

    assert result == [
        {"title": "HORAS EXTRAS", "category": "MÉRITO"},
        {"title": "PRESCRIÇÃO", "category": "PREJUDICIAL"},
    ]


def test_topic_merge_replaces_sources_at_first_position() -> None:
    topics = [{"title": "A", "category": "X"}, {"title": "B"}, {"title": "C"}]
    original = json.dumps({"topics": topics})
    corrections = to_selectable(
        "topic_extraction",
        [
            {"type": "merge", "topics": ["A", "C"], "into": "A+C"},
            {"type": "remove", "topic": "B"},
        ],
    )
    kept = select_only(corrections, {"topic_extraction-0-merge"})

    result = json.loads(apply_selected("topic_extraction", original, None, kept))

    assert result == {"topics": [{"title": "A+C", "category": "X"}, {"title": "B"}]}


def test_facts_corrections_patch_rows_and_lists() -> None:
    original = json.dumps(
        {"tabela": [{"tema": "Jornada", "status": "controverso"}, {"tema": "Salário"}]}
    )
    corrections = to_selectable(
        "facts_comparison",
        [
            {"type": "fix_row", "tema": "Jornada", "field": "status", "newValue": "incontroverso"},
            {"type": "remove_row", "tema": "Salário"},
            {"type": "add_fato", "list": "fatosIncontroversos", "fato": "Admissão em 2020"},
            {"type": "add_row", "row": {"tema": "Férias"}},
        ],
    )
    kept = select_only(corrections, {item.id for item in corrections[:3]})

    result = json.loads(apply_selected("facts_comparison", original, None, kept))

    assert result == {
        "tabela": [{"tema": "Jornada", "status": "incontroverso"}],
        "fatosIncontroversos": ["Admissão em 2020"],
    }


def test_structured_operation_with_non_json_original_falls_back() -> None:
    corrections = to_selectable(
        "topic_extraction", [{"type": "remove", "topic": "A"}, {"type": "remove", "topic": "B"}]
    )
    kept = select_only(corrections, {"topic_extraction-0-remove"})

    assert apply_selected("topic_extraction", "not json", "VERIFIED", kept) == "VERIFIED"
    assert apply_selected("topic_extraction", "not json", None, kept) == "not json"


def test_descriptions_per_operation() -> None:
    assert describe("topic_extraction", {"type": "remove", "topic": "X"}) == 'Remover tópico "X"'
    assert (
        describe("topic_extraction", {"type": "add", "topic": {"title": "Y"}})
        == 'Adicionar tópico "Y" em MÉRITO'
    )
    assert (
        describe("facts_comparison", {"type": "add_fato", "fato": "F"})
        == 'Adicionar fato controverso: "F"'
    )
    assert (
        describe(
            "facts_comparison",
            {"type": "fix_row", "tema": "T", "field": "relevancia", "newValue": "alta"},
        )
        == 'Alterar relevância em "T": "alta"'
    )
    assert describe("quick_prompt", {"type": "missed", "item": "Z"}) == 'Omissão detectada: "Z"'
    assert describe("quick_prompt", {"type": "merge"}) == "Correção: merge"
