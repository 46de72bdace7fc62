"""
draft-orchestrator — selectable corrections

File: src/draft_orchestrator/verification_plane/corrections.py

Purpose
- Turn reviewer corrections into individually toggleable items and compute the text
  that results from the subset a human kept.

What should be included in this file
- ``Correction`` model with stable ids ``{operation}-{index}-{type}``.
- Human-readable descriptions per operation kind.
- ``apply_selected``: none selected -> original, all selected -> reviewer text,
  partial -> selected corrections replayed on the original.

Functional requirements
- Text operations patch by item/suggestion; topic and facts operations patch JSON.
"""

from __future__ import annotations

import json
from collections.abc import Collection, Mapping, Sequence
from dataclasses import dataclass, field, replace
from typing import Any

import structlog

_logger = structlog.get_logger(__name__)

_TOPIC_OPERATION = "topic_extraction"
_FACTS_OPERATION = "facts_comparison"

_FIELD_LABELS: dict[str, str] = {
    "alegacaoReclamante": "alegação do reclamante",
    "alegacaoReclamada": "alegação da reclamada",
    "status": "status",
    "relevancia": "relevância",
    "observacao": "observação",
}


@dataclass(frozen=True, slots=True)
class Correction:
    """One reviewer-proposed change, selected by default."""

    id: str
    type: str
    reason: str = ""
    item: str = ""
    suggestion: str = ""
    description: str = ""
    selected: bool = True
    details: Mapping[str, Any] = field(default_factory=dict, compare=False)

    def with_selected(self, selected: bool) -> Correction:
        return replace(self, selected=selected)


def to_selectable(
    operation: str,
    raw_corrections: Sequence[Mapping[str, Any]],
    *,
    initially_selected: bool = True,
) -> tuple[Correction, ...]:
    corrections: list[Correction] = []
    for index, raw in enumerate(raw_corrections):
        correction_type = str(raw.get("type", ""))
        corrections.append(
            Correction(
                id=f"{operation}-{index}-{correction_type}",
                type=correction_type,
                reason=_text(raw.get("reason")),
                item=_item_label(raw),
                suggestion=_text(raw.get("suggestion")),
                description=describe(operation, raw),
                selected=initially_selected,
                details=dict(raw),
            )
        )
    return tuple(corrections)


def select_only(
    corrections: Sequence[Correction], selected_ids: Collection[str]
) -> tuple[Correction, ...]:
    return tuple(item.with_selected(item.id in selected_ids) for item in corrections)


def describe(operation: str, raw: Mapping[str, Any]) -> str:
    correction_type = str(raw.get("type", ""))
    item = _item_label(raw)
    suggestion = _text(raw.get("suggestion"))

    if operation == _TOPIC_OPERATION:
        if correction_type == "remove":
            return f'Remover tópico "{item or "tópico"}"'
        if correction_type == "add":
            topic = raw.get("topic")
            if isinstance(topic, Mapping) and topic.get("title"):
                category = topic.get("category") or "MÉRITO"
                return f'Adicionar tópico "{topic["title"]}" em {category}'
            return "Adicionar novo tópico"
        if correction_type == "merge":
            merged = '" + "'.join(str(name) for name in raw.get("topics") or [])
            return f'Mesclar "{merged}" → "{_text(raw.get("into"))}"'
        if correction_type == "reclassify":
            return (
                f'Reclassificar "{item or "tópico"}" de '
                f'{_text(raw.get("from"))} para {_text(raw.get("to"))}'
            )

    if operation == _FACTS_OPERATION:
        if correction_type == "add_row":
            row = raw.get("row")
            tema = row.get("tema") if isinstance(row, Mapping) else None
            return f'Adicionar linha: "{tema or "Nova linha"}"'
        if correction_type == "fix_row":
            tema = _text(raw.get("tema")) or "(tema não especificado)"
            field_name = _text(raw.get("field")) or "campo"
            new_value = _text(raw.get("newValue"))
            if field_name == "tabela" or not new_value:
                return f'Corrigir "{tema}" - ver detalhes no motivo'
            return f'Alterar {_FIELD_LABELS.get(field_name, field_name)} em "{tema}": "{new_value}"'
        if correction_type == "remove_row":
            return f'Remover linha: "{_text(raw.get("tema"))}"'
        if correction_type == "add_fato":
            kind = "incontroverso" if raw.get("list") == "fatosIncontroversos" else "controverso"
            return f'Adicionar fato {kind}: "{_text(raw.get("fato"))}"'

    if correction_type in {"add", "missed"}:
        prefix = "Adicionar" if correction_type == "add" else "Omissão detectada"
        return f'{prefix}: "{item}"'
    if correction_type in {"modify", "improve"}:
        prefix = "Modificar" if correction_type == "modify" else "Melhorar"
        return f'{prefix}: "{item}" → "{suggestion}"'
    if correction_type == "remove":
        return f'Remover: "{item}"'
    if correction_type == "false_positive":
        return f'Falso positivo: "{item}" não é problema real'
    return f"Correção: {correction_type}"


def apply_selected(
    operation: str,
    original: str,
    verified: str | None,
    corrections: Sequence[Correction],
) -> str:
    """Final text for the corrections the human kept selected."""

    selected = [item for item in corrections if item.selected]
    if not selected:
        return original
    if len(selected) == len(corrections) and verified is not None:
        return verified

    if operation in {_TOPIC_OPERATION, _FACTS_OPERATION}:
        try:
            document = json.loads(original)
        except json.JSONDecodeError:
            _logger.warning(
                "partial_corrections_fallback",
                operation=operation,
                selected=len(selected),
                total=len(corrections),
            )
            return verified if verified is not None else original
        for correction in selected:
            if operation == _TOPIC_OPERATION:
                document = _apply_topic_correction(document, correction.details)
            else:
                _apply_facts_correction(document, correction.details)
        return json.dumps(document, ensure_ascii=False)

    text = original
    for correction in selected:
        text = _apply_text_correction(text, correction)
    return text


def _apply_text_correction(text: str, correction: Correction) -> str:
    item, suggestion = correction.item, correction.suggestion
    if correction.type in {"modify", "improve", "fix_row"}:
        if item and item in text:
            return text.replace(item, suggestion, 1)
        return _append_paragraph(text, suggestion)
    if correction.type in {"remove", "false_positive", "remove_row"}:
        if item and item in text:
            return text.replace(item, "", 1)
        return text
    if correction.type in {"add", "missed", "add_row", "add_fato"}:
        return _append_paragraph(text, suggestion or item)
    return text


def _apply_topic_correction(document: Any, raw: Mapping[str, Any]) -> Any:
    wrapped = isinstance(document, Mapping)
    topics: list[Any] = list(document.get("topics", []) if wrapped else document)
    correction_type = raw.get("type")

    if correction_type == "remove":
        name = _item_label(raw)
        topics = [topic for topic in topics if _topic_title(topic) != name]
    elif correction_type == "add":
        topic = raw.get("topic")
        if isinstance(topic, Mapping):
            topics.append(dict(topic))
        elif isinstance(topic, str) and topic:
            topics.append({"title": topic, "category": "MÉRITO"})
    elif correction_type == "merge":
        names = {str(name) for name in raw.get("topics") or []}
        merged = [topic for topic in topics if _topic_title(topic) in names]
        if merged:
            position = topics.index(merged[0])
            topics = [topic for topic in topics if _topic_title(topic) not in names]
            category = merged[0].get("category") if isinstance(merged[0], Mapping) else None
            topics.insert(position, {"title": _text(raw.get("into")), "category": category or ""})
    elif correction_type == "reclassify":
        name = _item_label(raw)
        topics = [
            {**topic, "category": _text(raw.get("to"))}
            if isinstance(topic, Mapping) and _topic_title(topic) == name
            else topic
            for topic in topics
        ]

    if wrapped:
        return {**document, "topics": topics}
    return topics


def _apply_facts_correction(document: Any, raw: Mapping[str, Any]) -> None:
    if not isinstance(document, dict):
        return
    rows = document.setdefault("tabela", [])
    correction_type = raw.get("type")
    tema = _text(raw.get("tema"))

    if correction_type == "fix_row":
        field_name = _text(raw.get("field"))
        if not field_name or field_name == "tabela":
            return
        for row in rows:
            if isinstance(row, dict) and row.get("tema") == tema:
                row[field_name] = raw.get("newValue")
    elif correction_type == "add_row" and isinstance(raw.get("row"), Mapping):
        rows.append(dict(raw["row"]))
    elif correction_type == "remove_row":
        document["tabela"] = [
            row for row in rows if not (isinstance(row, Mapping) and row.get("tema") == tema)
        ]
    elif correction_type == "add_fato":
        list_name = _text(raw.get("list")) or "fatosControversos"
        document.setdefault(list_name, []).append(_text(raw.get("fato")))


def _append_paragraph(text: str, addition: str) -> str:
    if not addition:
        return text
    if not text:
        return addition
    return f"{text.rstrip()}\n\n{addition}"


def _item_label(raw: Mapping[str, Any]) -> str:
    for key in ("item", "topic", "tema", "fato"):
        value = raw.get(key)
        if isinstance(value, str) and value:
            return value
        if isinstance(value, Mapping) and value.get("title"):
            return str(value["title"])
    return ""


def _topic_title(topic: object) -> str:
    if isinstance(topic, Mapping):
        return str(topic.get("title", ""))
    return str(topic)


def _text(value: object) -> str:
    if value is None:
        return ""
    return value if isinstance(value, str) else str(value)


__all__ = [
    "Correction",
    "apply_selected",
    "describe",
    "select_only",
    "to_selectable",
]
