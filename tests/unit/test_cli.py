"""
draft-orchestrator — CLI router tests

File: tests/unit/test_cli.py

Purpose
- Exercise argument parsing, command routing, exit codes, and rendered output of the
  ``draft`` command without touching the network.

Functional requirements
- The bulk command's provider-facing runner is replaced with a scripted coroutine.
"""

from __future__ import annotations

import io
import json
from collections.abc import Sequence
from pathlib import Path
from typing import Any

import pytest

from draft_orchestrator.config import Settings
from draft_orchestrator.control_plane import BatchProgress, BatchRun
from draft_orchestrator.control_plane.batch import BatchError, BatchJob, GeneratedItem, JobStatus
from draft_orchestrator.knowledge_plane import CorpusEntry, SimilarityMatch
from draft_orchestrator.synthesis_plane import TokenLedger
from draft_orchestrator.synthesis_plane.providers import TokenUsage
from draft_orchestrator.ui import cli
from draft_orchestrator.ui.render import CLIRenderer
from draft_orchestrator.utils.concurrency import CancellationToken
from draft_orchestrator.utils.hashing import cache_key_hash


def _renderer(*, verbose: bool = False) -> tuple[CLIRenderer, io.StringIO]:
    stream = io.StringIO()
    return CLIRenderer(stream=stream, verbose=verbose), stream


def _empty_config(tmp_path: Path) -> Path:
    path = tmp_path / "draft_orchestrator.toml"
    path.write_text("", encoding="utf-8")
    return path


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.chdir(tmp_path)
    for name in ("DRAFT_PROVIDERS_DEFAULT", "DRAFT_BATCH_PARALLEL_REQUESTS"):
        monkeypatch.delenv(name, raising=False)


def test_parser_requires_a_command() -> None:
    with pytest.raises(SystemExit) as excinfo:
        cli.build_parser().parse_args([])

    assert excinfo.value.code == 2


def test_parser_rejects_unknown_provider() -> None:
    with pytest.raises(SystemExit):
        cli.build_parser().parse_args(["bulk", "./uploads", "--provider", "mistral"])


def test_config_json_is_redacted_effective_config(tmp_path: Path) -> None:
    renderer, stream = _renderer()
    argv = ["config", "--json", "--config", str(_empty_config(tmp_path))]

    code = cli.run_cli(argv, renderer=renderer)

    assert code == 0
    payload = json.loads(stream.getvalue())
    assert payload["batch"]["parallel_requests"] == 5
    assert payload["providers"]["claude"]["api_key_env"] == "ANTHROPIC_API_KEY"


def test_config_text_output_names_the_file(tmp_path: Path) -> None:
    renderer, stream = _renderer()
    config_path = _empty_config(tmp_path)

    assert cli.run_cli(["config", "--config", str(config_path)], renderer=renderer) == 0
    assert stream.getvalue().startswith(f"Config file: {config_path}")


def test_missing_config_file_is_a_config_error(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    renderer, _ = _renderer()

    code = cli.run_cli(["config", "--config", str(tmp_path / "absent.toml")], renderer=renderer)

    assert code == 2
    assert "config file not found" in capsys.readouterr().err


def test_cache_key_reports_slot_hash() -> None:
    renderer, stream = _renderer()

    assert cli.run_cli(["cache-key", "claude:prompt"], renderer=renderer) == 0

    lines = stream.getvalue().splitlines()
    assert lines == [f"slot: {cache_key_hash('claude:prompt')}", "key_chars: 13"]


def test_cache_key_for_bulk_file_uses_bulk_key() -> None:
    renderer, stream = _renderer()

    cli.run_cli(["cache-key", "--file-name", "a.txt", "texto"], renderer=renderer)

    assert stream.getvalue().splitlines()[0] == (
        f"slot: {cache_key_hash(cli.bulk_cache_key('a.txt', 'texto'))}"
    )


def test_bulk_rejects_missing_directory(tmp_path: Path) -> None:
    renderer, _ = _renderer()

    code = cli.run_cli(
        ["bulk", str(tmp_path / "nowhere"), "--config", str(_empty_config(tmp_path))],
        renderer=renderer,
    )

    assert code == 2


def test_bulk_rejects_directory_without_sources(tmp_path: Path) -> None:
    uploads = tmp_path / "uploads"
    uploads.mkdir()
    (uploads / "scan.pdf").write_bytes(b"%PDF")
    renderer, _ = _renderer()

    code = cli.run_cli(
        ["bulk", str(uploads), "--config", str(_empty_config(tmp_path))], renderer=renderer
    )

    assert code == 2


def _scripted_run(sources: Sequence[Path]) -> BatchRun[Path]:
    run: BatchRun[Path] = BatchRun(
        items=tuple(sources), batch_size=2, cancel_token=CancellationToken()
    )
    similar = SimilarityMatch(
        has_similar=True,
        similarity=0.91,
        match=CorpusEntry(id="old.txt", content="despejo", title="Despejo antigo"),
    )
    generated = GeneratedItem(
        input_ref=sources[0].name,
        item_id=f"bulk-{sources[0].name}-0",
        content="<p>Despejo</p>",
        payload={"title": "Despejo", "category": "Civil"},
        similarity=similar,
    )
    run.jobs.append(
        BatchJob(
            input_ref=sources[0].name,
            status=JobStatus.SUCCESS,
            result=(generated,),
            duration_ms=1200,
        )
    )
    run.jobs.append(
        BatchJob(
            input_ref=sources[1].name,
            status=JobStatus.ERROR,
            error_message="text too short or invalid for analysis",
        )
    )
    run.generated.append(generated)
    run.errors.append(BatchError(sources[1].name, "text too short or invalid for analysis"))
    return run


def _install_fake_runner(
    monkeypatch: pytest.MonkeyPatch, captured: dict[str, Any]
) -> None:
    async def fake_run_bulk(
        settings: Settings,
        sources: Sequence[Path],
        corpus: Sequence[CorpusEntry],
        on_progress: Any,
    ) -> tuple[BatchRun[Path], Any]:
        captured["settings"] = settings
        captured["corpus"] = corpus
        on_progress(
            BatchProgress(
                batch_index=0, total_batches=1, processed=2, total=2, generated=1, errors=1
            )
        )
        ledger = TokenLedger()
        ledger.record_usage(TokenUsage(input=100, output=20), "claude-sonnet-4-20250514", "claude")
        return _scripted_run(sources), ledger.snapshot()

    monkeypatch.setattr(cli, "_run_bulk", fake_run_bulk)


def _uploads(tmp_path: Path) -> Path:
    uploads = tmp_path / "uploads"
    uploads.mkdir()
    (uploads / "a.txt").write_text("conteúdo a", encoding="utf-8")
    (uploads / "b.md").write_text("conteúdo b", encoding="utf-8")
    return uploads


def test_bulk_renders_tables_and_reports_partial_failure(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    captured: dict[str, Any] = {}
    _install_fake_runner(monkeypatch, captured)
    corpus_dir = tmp_path / "library"
    corpus_dir.mkdir()
    (corpus_dir / "old.txt").write_text("despejo por falta de pagamento", encoding="utf-8")
    renderer, stream = _renderer(verbose=True)

    code = cli.run_cli(
        [
            "bulk",
            str(_uploads(tmp_path)),
            "--config",
            str(_empty_config(tmp_path)),
            "--provider",
            "gemini",
            "--parallel",
            "2",
            "--corpus",
            str(corpus_dir),
        ],
        renderer=renderer,
    )

    assert code == 1
    settings = captured["settings"]
    assert settings.provider == "gemini"
    assert settings.batch.parallel_requests == 2
    assert [entry.id for entry in captured["corpus"]] == ["old.txt"]

    output = stream.getvalue()
    assert "batch 1/1: 2/2 processed, 1 errors" in output
    assert "Files:" in output and "Generated models:" in output
    assert "91%" in output
    assert "  processed: 2/2" in output
    assert "  tokens: in=100 out=20 cache_read=0 cache_creation=0" in output
    assert "Warning: 'Despejo' looks like an existing model" in output


def test_bulk_json_output(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    _install_fake_runner(monkeypatch, {})
    renderer, stream = _renderer()

    code = cli.run_cli(
        ["bulk", str(_uploads(tmp_path)), "--config", str(_empty_config(tmp_path)), "--json"],
        renderer=renderer,
    )

    assert code == 1
    payload = json.loads(stream.getvalue())
    assert payload["command"] == "bulk"
    assert [job["status"] for job in payload["jobs"]] == ["success", "error"]
    assert payload["generated"][0]["id"] == "bulk-a.txt-0"
    assert payload["generated"][0]["similarity"]["match_id"] == "old.txt"
    assert payload["usage"]["request_count"] == 1
