"""
draft-orchestrator — structured response schemas

File: src/draft_orchestrator/verification_plane/schema.py

Purpose
- Validate JSON produced by models: the double-check review object and the bulk
  model-extraction payload.

What should be included in this file
- Strict validation of the whole response text.
- Lenient fallback that pulls the first fenced ```json block, or the first
  decodable ``{...}``/``[...]`` value, out of surrounding prose.
- ``SchemaValidationError`` for responses that cannot be salvaged.

Functional requirements
- Unknown correction types fail strict validation and are dropped by the lenient path.
- Keywords in bulk payloads accept a list or a comma separated string.
"""

from __future__ import annotations

import json
import math
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Final

from draft_orchestrator.constants import DEFAULT_VERIFICATION_CONFIDENCE

CORRECTION_TYPES: Final[frozenset[str]] = frozenset(
    {
        "remove",
        "add",
        "merge",
        "reclassify",
        "modify",
        "false_positive",
        "missed",
        "improve",
        "add_row",
        "fix_row",
        "remove_row",
        "add_fato",
    }
)

# Operation kind -> key carrying the reviewer's fully corrected output.
VERIFIED_FIELDS: Final[Mapping[str, str]] = {
    "topic_extraction": "verifiedTopics",
    "dispositivo": "verifiedDispositivo",
    "sentence_review": "verifiedReview",
    "facts_comparison": "verifiedResult",
    "proof_analysis": "verifiedResult",
    "quick_prompt": "verifiedResult",
}
_GENERIC_VERIFIED_FIELD: Final[str] = "verifiedText"

_FENCED_JSON_PATTERN: Final[re.Pattern[str]] = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```")
_DECODER: Final[json.JSONDecoder] = json.JSONDecoder()


class SchemaValidationError(ValueError):
    """Model output did not match the expected structure, even leniently."""

    retryable = False

    def __init__(self, message: str, *, issues: Sequence[str] = ()) -> None:
        self.issues = tuple(issues)
        detail = f"{message}: {'; '.join(self.issues)}" if self.issues else message
        super().__init__(detail)


@dataclass(frozen=True, slots=True)
class DoubleCheckResponse:
    corrections: tuple[dict[str, Any], ...]
    confidence: float = DEFAULT_VERIFICATION_CONFIDENCE
    summary: str = ""
    verified: str | None = None
    lenient: bool = False


@dataclass(frozen=True, slots=True)
class BulkModel:
    title: str
    category: str
    keywords: tuple[str, ...]
    content: str
    extra: dict[str, Any] = field(default_factory=dict)


def extract_json(text: str) -> str | None:
    """Return the first JSON-looking substring of ``text`` or ``None``."""

    fenced = _FENCED_JSON_PATTERN.search(text)
    if fenced is not None:
        return fenced.group(1).strip()

    for index, char in enumerate(text):
        if char not in "{[":
            continue
        try:
            _, end = _DECODER.raw_decode(text, index)
        except json.JSONDecodeError:
            continue
        return text[index:end]
    return None


def parse_double_check(text: str, *, operation: str | None = None) -> DoubleCheckResponse:
    """Parse a double-check reply strictly, then leniently."""

    issues: list[str] = []
    try:
        payload = json.loads(text.strip())
    except json.JSONDecodeError as exc:
        issues.append(f"not a JSON document ({exc.msg})")
    else:
        strict_issues = _double_check_issues(payload)
        if not strict_issues:
            return _build_double_check(payload, operation=operation, lenient=False)
        issues.extend(strict_issues)

    payload = _lenient_payload(text, issues)
    if not isinstance(payload, Mapping):
        raise SchemaValidationError("double-check response must be a JSON object", issues=issues)
    return _build_double_check(payload, operation=operation, lenient=True)


def parse_bulk_models(text: str) -> tuple[BulkModel, ...]:
    """Parse ``{"modelos": [...]}`` and reject an empty list."""

    issues: list[str] = []
    try:
        payload = json.loads(text.strip())
    except json.JSONDecodeError as exc:
        issues.append(f"not a JSON document ({exc.msg})")
        payload = _lenient_payload(text, issues)

    raw_models = payload.get("modelos") if isinstance(payload, Mapping) else None
    if not isinstance(raw_models, list):
        raise SchemaValidationError("response has no 'modelos' list", issues=issues)

    models = tuple(
        _build_bulk_model(entry, index)
        for index, entry in enumerate(raw_models)
        if isinstance(entry, Mapping)
    )
    if not models:
        raise SchemaValidationError("no models identified in the document", issues=issues)
    return models


def _lenient_payload(text: str, issues: list[str]) -> Any:
    candidate = extract_json(text)
    if candidate is None:
        raise SchemaValidationError("no JSON found in response", issues=issues)
    try:
        return json.loads(candidate)
    except json.JSONDecodeError as exc:
        raise SchemaValidationError(
            "embedded JSON could not be decoded", issues=[*issues, exc.msg]
        ) from exc


def _double_check_issues(payload: object) -> list[str]:
    if not isinstance(payload, Mapping):
        return ["top-level value must be an object"]
    issues: list[str] = []
    corrections = payload.get("corrections", [])
    if not isinstance(corrections, list):
        issues.append("corrections must be a list")
    else:
        for index, entry in enumerate(corrections):
            if not isinstance(entry, Mapping):
                issues.append(f"corrections[{index}] must be an object")
            elif entry.get("type") not in CORRECTION_TYPES:
                issues.append(f"corrections[{index}].type {entry.get('type')!r} is not supported")
    confidence = payload.get("confidence", DEFAULT_VERIFICATION_CONFIDENCE)
    if not _is_number(confidence) or not (0.0 <= float(confidence) <= 1.0):
        issues.append("confidence must be a number between 0 and 1")
    summary = payload.get("summary")
    if summary is not None and not isinstance(summary, str):
        issues.append("summary must be a string")
    return issues


def _build_double_check(
    payload: Mapping[str, Any], *, operation: str | None, lenient: bool
) -> DoubleCheckResponse:
    raw_corrections = payload.get("corrections")
    corrections = tuple(
        dict(entry)
        for entry in (raw_corrections if isinstance(raw_corrections, list) else [])
        if isinstance(entry, Mapping) and entry.get("type") in CORRECTION_TYPES
    )

    confidence = payload.get("confidence")
    if _is_number(confidence):
        resolved_confidence = min(1.0, max(0.0, float(confidence)))
    else:
        resolved_confidence = DEFAULT_VERIFICATION_CONFIDENCE

    summary = payload.get("summary")
    return DoubleCheckResponse(
        corrections=corrections,
        confidence=resolved_confidence,
        summary=summary if isinstance(summary, str) else "",
        verified=_verified_text(payload, operation),
        lenient=lenient,
    )


def _verified_text(payload: Mapping[str, Any], operation: str | None) -> str | None:
    keys = [_GENERIC_VERIFIED_FIELD]
    if operation is not None and operation in VERIFIED_FIELDS:
        keys.insert(0, VERIFIED_FIELDS[operation])
    for key in keys:
        value = payload.get(key)
        if value is None:
            continue
        if isinstance(value, str):
            return value
        return json.dumps(value, ensure_ascii=False)
    return None


def _build_bulk_model(entry: Mapping[str, Any], index: int) -> BulkModel:
    keywords = entry.get("palavrasChave")
    if isinstance(keywords, str):
        parsed_keywords = tuple(part.strip() for part in keywords.split(",") if part.strip())
    elif isinstance(keywords, list):
        parsed_keywords = tuple(str(item).strip() for item in keywords if str(item).strip())
    else:
        parsed_keywords = ()

    extra = {
        key: value
        for key, value in entry.items()
        if key not in {"titulo", "categoria", "palavrasChave", "conteudo"}
    }
    return BulkModel(
        title=_text_or(entry.get("titulo"), f"Modelo {index + 1}"),
        category=_text_or(entry.get("categoria"), "Sem categoria"),
        keywords=parsed_keywords,
        content=_text_or(entry.get("conteudo"), ""),
        extra=extra,
    )


def _text_or(value: object, default: str) -> str:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return default


def _is_number(value: object) -> bool:
    return (
        isinstance(value, (int, float))
        and not isinstance(value, bool)
        and math.isfinite(float(value))
    )


__all__ = [
    "CORRECTION_TYPES",
    "VERIFIED_FIELDS",
    "BulkModel",
    "DoubleCheckResponse",
    "SchemaValidationError",
    "extract_json",
    "parse_bulk_models",
    "parse_double_check",
]
