"""Command-line interface router for draft-orchestrator."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
import uuid
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from draft_orchestrator.config import (
    ConfigLoadError,
    ConfigValidationError,
    Settings,
    dump_effective_config,
    load_config,
    settings_from_config,
)
from draft_orchestrator.constants import SUPPORTED_PROVIDERS
from draft_orchestrator.control_plane import (
    BatchOrchestrator,
    BatchProgress,
    BatchRun,
    BulkInputError,
    BulkModelGenerator,
    bulk_cache_key,
    discover_sources,
)
from draft_orchestrator.knowledge_plane import CorpusEntry, SimilarityMatch, TfidfSimilarityIndex
from draft_orchestrator.observability import correlation_scope, setup_logging, shutdown_logging
from draft_orchestrator.synthesis_plane import Dispatcher, ResponseCache, TokenLedger, UsageSnapshot
from draft_orchestrator.ui.render import CLIRenderer, create_renderer
from draft_orchestrator.utils.hashing import cache_key_hash

EXIT_PARTIAL_FAILURE = 1
EXIT_CONFIG_ERROR = 2
EXIT_CANCELLED = 130


@dataclass(frozen=True, slots=True)
class CLIError(RuntimeError):
    """Typed CLI failure with an explicit process exit code."""

    message: str
    exit_code: int = 1

    def __str__(self) -> str:
        return self.message


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse command router for all supported CLI workflows."""

    parser = argparse.ArgumentParser(
        prog="draft",
        description=(
            "draft-orchestrator — batched, cached, retrying LLM calls for document drafting.\n\n"
            "Common workflows:\n"
            "  draft bulk ./uploads          Generate reusable models from text files\n"
            "  draft config                  Show effective settings (redacted)\n"
            "  draft cache-key 'text'        Show the cache slot for a semantic key\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--config",
        dest="config_path",
        default=None,
        help="Path to TOML config (default: ./draft_orchestrator.toml if present).",
    )
    common.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        default=False,
        help="Show detailed output.",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # bulk ----------------------------------------------------------------
    bulk_parser = subparsers.add_parser(
        "bulk",
        parents=[common],
        help="Generate model drafts from every .txt/.md file in a directory",
        description=(
            "Process uploaded files in staggered parallel batches and print a results table.\n\n"
            "Examples:\n"
            "  draft bulk ./uploads\n"
            "  draft bulk ./uploads --provider gemini --parallel 3\n"
            "  draft bulk ./uploads --corpus ./library --json\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    bulk_parser.add_argument("directory", help="Directory containing .txt/.md files")
    bulk_parser.add_argument(
        "--provider", choices=SUPPORTED_PROVIDERS, default=None, help="Provider override"
    )
    bulk_parser.add_argument(
        "--parallel", type=int, default=None, help="Parallel requests per batch"
    )
    bulk_parser.add_argument(
        "--stagger", type=float, default=None, help="Per-item start offset in seconds"
    )
    bulk_parser.add_argument(
        "--corpus",
        default=None,
        help="Directory of existing models used for the duplicate pre-check",
    )
    bulk_parser.add_argument(
        "--log-level", default=None, help="Override observability.log_level"
    )
    bulk_parser.add_argument("--json", action="store_true", help="Emit JSON output")
    bulk_parser.set_defaults(handler=_cmd_bulk)

    # config --------------------------------------------------------------
    config_parser = subparsers.add_parser(
        "config",
        parents=[common],
        help="Show effective configuration (redacted)",
        description=(
            "Display the effective config after merging defaults, file, and env.\n"
            "Sensitive values are redacted.\n\n"
            "Examples:\n"
            "  draft config\n"
            "  draft config --json\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    config_parser.add_argument("--json", action="store_true", help="Emit JSON output")
    config_parser.set_defaults(handler=_cmd_config)

    # cache-key -----------------------------------------------------------
    key_parser = subparsers.add_parser(
        "cache-key",
        help="Show the cache slot hash of a semantic key",
        description=(
            "Print the 32-bit FNV-1a slot used by the response cache.\n\n"
            "Examples:\n"
            "  draft cache-key 'claude:prompt text'\n"
            "  draft cache-key --file-name peticao.txt \"$(cat peticao.txt)\"\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    key_parser.add_argument("text", help="Raw semantic key, or document text with --file-name")
    key_parser.add_argument(
        "--file-name",
        default=None,
        help="Hash the bulk-generation key for this file name and text",
    )
    key_parser.set_defaults(handler=_cmd_cache_key)

    return parser


# ---------------------------------------------------------------------------
# Entrypoints
# ---------------------------------------------------------------------------


def run_cli(argv: Sequence[str] | None = None, *, renderer: CLIRenderer | None = None) -> int:
    """Parse argv, route to a command handler, and return process exit code."""

    parser = build_parser()
    namespace = parser.parse_args(list(argv) if argv is not None else None)
    handler = getattr(namespace, "handler", None)
    if not callable(handler):
        parser.print_help(sys.stderr)
        return EXIT_CONFIG_ERROR

    active_renderer = renderer if renderer is not None else create_renderer(
        verbose=bool(getattr(namespace, "verbose", False))
    )
    try:
        result = handler(namespace, active_renderer)
    except CLIError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return exc.exit_code
    return int(result)


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


def _cmd_bulk(args: argparse.Namespace, renderer: CLIRenderer) -> int:
    overrides: dict[str, object] = {
        "providers.default": args.provider,
        "batch.parallel_requests": args.parallel,
        "batch.stagger_delay_seconds": args.stagger,
        "observability.log_level": args.log_level.upper() if args.log_level else None,
    }
    settings = settings_from_config(_load_effective_config(args, overrides))

    directory = Path(args.directory).expanduser()
    if not directory.is_dir():
        raise CLIError(f"not a directory: {directory}", exit_code=EXIT_CONFIG_ERROR)
    sources = discover_sources(directory)
    if not sources:
        raise CLIError(f"no .txt or .md files in {directory}", exit_code=EXIT_CONFIG_ERROR)
    corpus = _load_corpus(Path(args.corpus).expanduser()) if args.corpus else ()

    def _on_progress(progress: BatchProgress) -> None:
        if renderer.verbose and not args.json:
            renderer.text(
                f"batch {progress.batch_index + 1}/{progress.total_batches}: "
                f"{progress.processed}/{progress.total} processed, {progress.errors} errors"
            )

    handle = setup_logging(settings.observability)
    try:
        with correlation_scope(run_id=uuid.uuid4().hex):
            run, usage = asyncio.run(_run_bulk(settings, sources, corpus, _on_progress))
    except BulkInputError as exc:
        raise CLIError(str(exc), exit_code=EXIT_CONFIG_ERROR) from exc
    finally:
        shutdown_logging(handle)

    if args.json:
        _emit_json(renderer, _bulk_payload(run, usage))
    else:
        _render_bulk(renderer, run, usage)

    if run.cancelled:
        return EXIT_CANCELLED
    return EXIT_PARTIAL_FAILURE if run.errors else 0


def _cmd_config(args: argparse.Namespace, renderer: CLIRenderer) -> int:
    config = _load_effective_config(args)
    if args.json:
        renderer.text(json.dumps(json.loads(dump_effective_config(config)), sort_keys=True))
        return 0
    renderer.kv("Config file", args.config_path or "(default search)")
    renderer.text(dump_effective_config(config))
    return 0


def _cmd_cache_key(args: argparse.Namespace, renderer: CLIRenderer) -> int:
    raw_key = args.text if args.file_name is None else bulk_cache_key(args.file_name, args.text)
    renderer.kv("slot", cache_key_hash(raw_key))
    renderer.kv("key_chars", len(raw_key))
    return 0


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def _run_bulk(
    settings: Settings,
    sources: Sequence[Path],
    corpus: Sequence[CorpusEntry],
    on_progress: Any,
) -> tuple[BatchRun[Path], UsageSnapshot]:
    cache = (
        ResponseCache(max_size=settings.cache.max_size, ttl_seconds=settings.cache.ttl_seconds)
        if settings.cache.enabled
        else None
    )
    ledger = TokenLedger()
    async with Dispatcher(settings, usage_sink=ledger) as dispatcher:
        generator = BulkModelGenerator(
            settings,
            dispatcher,
            cache=cache,
            orchestrator=BatchOrchestrator(similarity_index=TfidfSimilarityIndex()),
        )
        run = await generator.run(sources, corpus=corpus, on_progress=on_progress)
    return run, ledger.snapshot()


def _load_corpus(directory: Path) -> tuple[CorpusEntry, ...]:
    if not directory.is_dir():
        raise CLIError(f"corpus is not a directory: {directory}", exit_code=EXIT_CONFIG_ERROR)
    return tuple(
        CorpusEntry(id=path.name, content=path.read_text(encoding="utf-8"), title=path.stem)
        for path in discover_sources(directory)
    )


def _load_effective_config(
    args: argparse.Namespace, overrides: Mapping[str, object] | None = None
) -> dict[str, Any]:
    try:
        return load_config(args.config_path, cli_overrides=overrides)
    except (ConfigLoadError, ConfigValidationError) as exc:
        raise CLIError(str(exc), exit_code=EXIT_CONFIG_ERROR) from exc


def _render_bulk(renderer: CLIRenderer, run: BatchRun[Path], usage: UsageSnapshot) -> None:
    renderer.table(
        ["File", "Status", "Models", "Seconds", "Error"],
        [
            [
                job.input_ref,
                job.status.value,
                len(job.result),
                f"{job.duration_ms / 1000:.1f}",
                _truncate(job.error_message or "", 60),
            ]
            for job in run.jobs
        ],
        title="Files:",
    )
    renderer.table(
        ["Title", "Category", "Source", "Similar"],
        [
            [
                _truncate(str(item.payload.get("title", "")), 48),
                str(item.payload.get("category", "")),
                item.input_ref,
                _similar_label(item.similarity),
            ]
            for item in run.generated
        ],
        title="Generated models:",
    )
    renderer.section("Summary:")
    renderer.kv("  processed", f"{len(run.processed)}/{len(run.items)}")
    renderer.kv("  generated", len(run.generated))
    renderer.kv("  errors", len(run.errors))
    renderer.kv("  requests", usage.request_count)
    renderer.kv(
        "  tokens",
        f"in={usage.total.input} out={usage.total.output} "
        f"cache_read={usage.total.cache_read} cache_creation={usage.total.cache_creation}",
    )
    if run.cancelled:
        renderer.warning("run cancelled before all batches finished")
    for item in run.similar:
        title = item.payload.get("title", item.item_id)
        renderer.warning(f"'{title}' looks like an existing model")


def _bulk_payload(run: BatchRun[Path], usage: UsageSnapshot) -> dict[str, object]:
    return {
        "command": "bulk",
        "cancelled": run.cancelled,
        "jobs": [
            {
                "file": job.input_ref,
                "status": job.status.value,
                "models": len(job.result),
                "duration_ms": job.duration_ms,
                "error": job.error_message,
            }
            for job in run.jobs
        ],
        "generated": [
            {
                **item.payload,
                "id": item.item_id,
                "similarity": None if item.similarity is None else item.similarity.to_dict(),
            }
            for item in run.generated
        ],
        "usage": usage.to_dict(),
    }


def _similar_label(similarity: SimilarityMatch | None) -> str:
    if similarity is None or not similarity.has_similar:
        return "-"
    return f"{similarity.similarity:.0%}"


def _emit_json(renderer: CLIRenderer, payload: Mapping[str, object]) -> None:
    renderer.text(json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False))


def _truncate(text: str, max_len: int) -> str:
    if len(text) <= max_len:
        return text
    return text[: max_len - 3] + "..."


__all__ = ["CLIError", "build_parser", "run_cli"]
