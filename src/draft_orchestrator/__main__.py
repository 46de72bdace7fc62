"""Module entrypoint for ``python -m draft_orchestrator``."""

from __future__ import annotations

from draft_orchestrator.main import cli_entrypoint

if __name__ == "__main__":
    raise SystemExit(cli_entrypoint())
