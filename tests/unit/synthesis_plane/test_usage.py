from __future__ import annotations

from draft_orchestrator.synthesis_plane.providers import TokenUsage
from draft_orchestrator.synthesis_plane.usage import TokenLedger, UsageSink


def test_ledger_accumulates_totals_and_routes() -> None:
    ledger = TokenLedger()
    ledger.record_usage(TokenUsage(input=10, output=2, cache_read=4), "sonnet", "claude")
    ledger.record_usage(TokenUsage(input=5, output=1), "sonnet", "claude")
    ledger.record_usage(TokenUsage(input=7, output=3), "gpt-4o", "openai")

    snapshot = ledger.snapshot()

    assert snapshot.total == TokenUsage(input=22, output=6, cache_read=4)
    assert snapshot.request_count == 3
    assert [(provider, model) for provider, model, _ in snapshot.by_route] == [
        ("claude", "sonnet"),
        ("openai", "gpt-4o"),
    ]
    assert snapshot.to_dict()["by_route"][0] == {  # type: ignore[index]
        "provider": "claude",
        "model": "sonnet",
        "input": 15,
        "output": 3,
        "cache_read": 4,
        "cache_creation": 0,
    }


def test_reset_clears_everything() -> None:
    ledger = TokenLedger()
    ledger.record_usage(TokenUsage(input=1), "m", "p")
    ledger.reset()

    assert ledger.total == TokenUsage()
    assert ledger.request_count == 0
    assert ledger.snapshot().by_route == ()


def test_ledger_satisfies_usage_sink_protocol() -> None:
    assert isinstance(TokenLedger(), UsageSink)
