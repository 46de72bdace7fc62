"""Prompt templates for double-check reviews and bulk model extraction."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from functools import lru_cache
from importlib import resources
from pathlib import Path
from typing import Final

import yaml
from jinja2 import Environment, StrictUndefined, Template, TemplateError

from draft_orchestrator.config.schema import VERIFICATION_OPERATIONS

PROMPTS_RESOURCE: Final[str] = "prompts.yaml"

_ENVIRONMENT: Final[Environment] = Environment(
    undefined=StrictUndefined,
    autoescape=False,
    trim_blocks=True,
    lstrip_blocks=True,
    keep_trailing_newline=True,
)


class PromptCatalogError(ValueError):
    """Prompt catalog file is missing, malformed, or incomplete."""


@dataclass(frozen=True, slots=True)
class PromptCatalog:
    double_check: Mapping[str, Template]
    bulk_analysis: Template
    labels: Mapping[str, str]

    def label(self, operation: str) -> str:
        return self.labels.get(operation, operation)

    def build_double_check(
        self,
        operation: str,
        *,
        original_response: str,
        context: str,
        user_prompt: str | None = None,
    ) -> str:
        """Render the review prompt; the user request section only appears when given."""

        template = self.double_check.get(operation)
        if template is None:
            raise KeyError(f"no double-check prompt for operation {operation!r}")
        return template.render(
            context=context,
            original_response=original_response,
            user_prompt=user_prompt or "",
        )

    def build_bulk_analysis(self, text: str, *, style: str = "") -> str:
        return self.bulk_analysis.render(text=text, style=style.strip() or "-")


def load_prompt_catalog(path: str | Path | None = None) -> PromptCatalog:
    """Load templates from ``path`` or from the packaged ``prompts.yaml``."""

    try:
        if path is None:
            raw = (
                resources.files("draft_orchestrator.verification_plane")
                .joinpath(PROMPTS_RESOURCE)
                .read_text(encoding="utf-8")
            )
        else:
            raw = Path(path).read_text(encoding="utf-8")
        payload = yaml.safe_load(raw)
    except OSError as exc:
        raise PromptCatalogError(f"unable to read prompt catalog: {exc}") from exc
    except yaml.YAMLError as exc:
        raise PromptCatalogError(f"invalid YAML in prompt catalog: {exc}") from exc

    if not isinstance(payload, Mapping):
        raise PromptCatalogError("prompt catalog must be a mapping")
    double_check = payload.get("double_check")
    if not isinstance(double_check, Mapping):
        raise PromptCatalogError("prompt catalog needs a 'double_check' mapping")
    missing = sorted(set(VERIFICATION_OPERATIONS) - set(double_check))
    if missing:
        raise PromptCatalogError(f"missing double-check prompts: {', '.join(missing)}")
    bulk_analysis = payload.get("bulk_analysis")
    if not isinstance(bulk_analysis, str) or not bulk_analysis.strip():
        raise PromptCatalogError("prompt catalog needs a 'bulk_analysis' template")
    labels = payload.get("labels") or {}

    return PromptCatalog(
        double_check={
            str(key): _compile(f"double_check.{key}", str(value))
            for key, value in double_check.items()
        },
        bulk_analysis=_compile("bulk_analysis", bulk_analysis),
        labels={str(key): str(value) for key, value in labels.items()},
    )


def _compile(name: str, source: str) -> Template:
    try:
        return _ENVIRONMENT.from_string(source)
    except TemplateError as exc:
        raise PromptCatalogError(f"invalid template {name}: {exc}") from exc


@lru_cache(maxsize=1)
def default_prompt_catalog() -> PromptCatalog:
    return load_prompt_catalog()


__all__ = [
    "PROMPTS_RESOURCE",
    "PromptCatalog",
    "PromptCatalogError",
    "default_prompt_catalog",
    "load_prompt_catalog",
]
