"""
draft-orchestrator — bulk model generation

File: src/draft_orchestrator/control_plane/bulk.py

Purpose
- Per-file pipeline for bulk uploads: extract text, ask the model for reusable
  decision models, and parse them into generated items for review.

What should be included in this file
- ``TextExtractor`` collaborator protocol plus a plain-text implementation.
- ``BulkModelGenerator.process_file``: cancel check, extraction, cancel check, then a
  retry-wrapped generation with a short per-attempt timeout.
- ``BulkModelGenerator.run``: the batch orchestrator over a bounded list of files.

Functional requirements
- Text shorter than the configured minimum is rejected before any provider call.
- Successful generations are cached under ``bulk_models_{file_name}_{text}``.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Sequence
from pathlib import Path
from typing import Any, Final, Protocol

import structlog

from draft_orchestrator.config.schema import Settings
from draft_orchestrator.control_plane.batch import (
    BatchOptions,
    BatchOrchestrator,
    BatchRun,
    GeneratedItem,
    ProgressCallback,
)
from draft_orchestrator.knowledge_plane.similarity import CorpusEntry
from draft_orchestrator.synthesis_plane.cache import ResponseCache
from draft_orchestrator.synthesis_plane.providers.base import CallOptions, CanonicalMessage
from draft_orchestrator.synthesis_plane.retry import RetryOptions, SleepFn, execute_with_retry
from draft_orchestrator.utils.concurrency import CancellationToken
from draft_orchestrator.verification_plane.prompts import PromptCatalog, default_prompt_catalog
from draft_orchestrator.verification_plane.schema import parse_bulk_models
from draft_orchestrator.verification_plane.workflow import CallAI

BULK_CACHE_PREFIX: Final[str] = "bulk_models_"
SUPPORTED_SUFFIXES: Final[frozenset[str]] = frozenset({".txt", ".md"})

# Sampling used for template extraction: conservative, close to the source wording.
BULK_TEMPERATURE: Final[float] = 0.3
BULK_TOP_P: Final[float] = 0.9
BULK_TOP_K: Final[int] = 50

_logger = structlog.get_logger(__name__)


class BulkInputError(ValueError):
    """Input rejected before generation (too many files, text too short)."""


class TextExtractor(Protocol):
    async def extract_text(self, source: Path) -> str: ...


class PlainTextExtractor:
    """Reads UTF-8 text files off the event loop."""

    async def extract_text(self, source: Path) -> str:
        if source.suffix.lower() not in SUPPORTED_SUFFIXES:
            raise BulkInputError(f"unsupported file type: {source.name}")
        return await asyncio.to_thread(source.read_text, encoding="utf-8")


def bulk_cache_key(file_name: str, text: str) -> str:
    return f"{BULK_CACHE_PREFIX}{file_name}_{text}"


class BulkModelGenerator:
    """Turns uploaded documents into reviewable model drafts."""

    def __init__(
        self,
        settings: Settings,
        caller: CallAI,
        *,
        extractor: TextExtractor | None = None,
        cache: ResponseCache | None = None,
        prompts: PromptCatalog | None = None,
        style: str = "",
        orchestrator: BatchOrchestrator | None = None,
        sleep: SleepFn = asyncio.sleep,
        logger: Any | None = None,
    ) -> None:
        self._settings = settings
        self._caller = caller
        self._extractor = extractor if extractor is not None else PlainTextExtractor()
        self._cache = cache
        self._prompts = prompts if prompts is not None else default_prompt_catalog()
        self._style = style
        self._sleep = sleep
        self._logger = logger if logger is not None else _logger
        self._orchestrator = (
            orchestrator
            if orchestrator is not None
            else BatchOrchestrator(sleep=sleep, logger=self._logger)
        )

    async def run(
        self,
        sources: Sequence[Path],
        *,
        corpus: Sequence[CorpusEntry] = (),
        cancel_token: CancellationToken | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> BatchRun[Path]:
        limit = self._settings.batch.max_bulk_files
        if len(sources) > limit:
            raise BulkInputError(f"at most {limit} files per bulk run (got {len(sources)})")
        options = BatchOptions.from_settings(self._settings.batch, cancel_token=cancel_token)
        return await self._orchestrator.run(
            list(sources), self.process_file, options, on_progress, corpus=corpus
        )

    async def process_file(
        self, source: Path, cancel_token: CancellationToken
    ) -> tuple[GeneratedItem, ...]:
        cancel_token.raise_if_cancelled()
        text = await self._extractor.extract_text(source)
        cancel_token.raise_if_cancelled()

        def _on_retry(attempt: int, error: BaseException, delay_seconds: float) -> None:
            self._logger.warning(
                "bulk_generation_retry",
                file=source.name,
                attempt=attempt,
                delay_seconds=delay_seconds,
                error=str(error),
            )

        return await execute_with_retry(
            lambda: self.generate_from_text(text, source.name, cancel_token),
            RetryOptions(
                max_attempts=self._settings.retry.max_attempts,
                per_attempt_timeout=self._settings.batch.attempt_timeout_seconds,
                cancel_token=cancel_token,
                on_retry=_on_retry,
            ),
            sleep=self._sleep,
            logger=self._logger,
        )

    async def generate_from_text(
        self,
        text: str,
        file_name: str,
        cancel_token: CancellationToken | None = None,
    ) -> tuple[GeneratedItem, ...]:
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()
        if len(text.strip()) < self._settings.batch.min_text_chars:
            raise BulkInputError("text too short or invalid for analysis")

        key = bulk_cache_key(file_name, text)
        if self._cache is not None:
            cached, found = self._cache.get(key)
            if found and cached is not None:
                self._logger.debug("bulk_generation_cache_hit", file=file_name)
                return _items_from_payloads(file_name, json.loads(cached))

        prompt = self._prompts.build_bulk_analysis(text.strip(), style=self._style)
        reply = await self._caller.call_ai(
            [CanonicalMessage.user(prompt)],
            CallOptions(
                max_tokens=self._settings.max_tokens,
                temperature=BULK_TEMPERATURE,
                top_p=BULK_TOP_P,
                top_k=BULK_TOP_K,
                use_instructions=True,
                max_attempts=1,
                cancel_token=cancel_token,
            ),
        )
        models = parse_bulk_models(reply if isinstance(reply, str) else json.dumps(reply))
        payloads = [
            {
                "title": model.title,
                "category": model.category,
                "keywords": ", ".join(model.keywords),
                "content": model.content,
                "source_file": file_name,
            }
            for model in models
        ]
        if self._cache is not None:
            self._cache.set(key, json.dumps(payloads, ensure_ascii=False))
        self._logger.info("bulk_models_generated", file=file_name, models=len(payloads))
        return _items_from_payloads(file_name, payloads)


def _items_from_payloads(file_name: str, payloads: Sequence[Any]) -> tuple[GeneratedItem, ...]:
    return tuple(
        GeneratedItem(
            input_ref=file_name,
            item_id=f"bulk-{file_name}-{index}",
            content=str(payload.get("content", "")),
            payload=dict(payload),
        )
        for index, payload in enumerate(payloads)
        if isinstance(payload, dict)
    )


def discover_sources(directory: Path) -> list[Path]:
    """Supported files directly under ``directory``, sorted by name."""

    return sorted(
        path
        for path in directory.iterdir()
        if path.is_file() and path.suffix.lower() in SUPPORTED_SUFFIXES
    )


__all__ = [
    "BULK_CACHE_PREFIX",
    "SUPPORTED_SUFFIXES",
    "BulkInputError",
    "BulkModelGenerator",
    "PlainTextExtractor",
    "TextExtractor",
    "bulk_cache_key",
    "discover_sources",
]
