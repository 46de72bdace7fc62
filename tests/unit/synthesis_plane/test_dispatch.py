"""
draft-orchestrator — dispatch tests

File: tests/unit/synthesis_plane/test_dispatch.py

Purpose
- Validate ``call_ai`` routing, response caching, raw mode, and usage accounting with
  scripted transports.

Functional requirements
- No real network calls; time is injected into the cache.
"""

from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass, field

import pytest

from draft_orchestrator.config.schema import Settings
from draft_orchestrator.synthesis_plane.cache import ResponseCache
from draft_orchestrator.synthesis_plane.dispatch import Dispatcher, build_default_registry
from draft_orchestrator.synthesis_plane.providers import (
    CallOptions,
    CanonicalMessage,
    ProviderRequest,
    ProviderUnavailableError,
    TokenUsage,
)
from draft_orchestrator.synthesis_plane.usage import TokenLedger


@dataclass(slots=True)
class ScriptedTransport:
    outcomes: deque[dict[str, object] | Exception]
    requests: list[ProviderRequest] = field(default_factory=list)

    async def post_json(self, request: ProviderRequest) -> dict[str, object]:
        self.requests.append(request)
        if not self.outcomes:
            raise RuntimeError("scripted outcomes exhausted")
        outcome = self.outcomes.popleft()
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


@dataclass(slots=True)
class FakeClock:
    current: float = 0.0

    def __call__(self) -> float:
        return self.current


async def _no_sleep(seconds: float) -> None:
    _ = seconds
    await asyncio.sleep(0)


def _claude_response(
    text: str, *, input_tokens: int = 10, output_tokens: int = 5
) -> dict[str, object]:
    return {
        "content": [{"type": "text", "text": text}],
        "usage": {"input_tokens": input_tokens, "output_tokens": output_tokens},
    }


def _dispatcher(
    transport: ScriptedTransport,
    *,
    settings: Settings | None = None,
    cache: ResponseCache | None = None,
    ledger: TokenLedger | None = None,
) -> Dispatcher:
    resolved = settings if settings is not None else Settings()
    registry = build_default_registry(resolved, transport=transport, environ={}, sleep=_no_sleep)
    return Dispatcher(resolved, registry=registry, cache=cache, usage_sink=ledger)


async def test_call_ai_defaults_to_settings_provider_and_extracts_text() -> None:
    transport = ScriptedTransport(deque([_claude_response("drafted")]))
    dispatcher = _dispatcher(transport)

    result = await dispatcher.call_ai([CanonicalMessage.user("write")])

    assert result == "drafted"
    assert transport.requests[0].path == "/api/claude/messages"
    assert transport.requests[0].model == "claude-sonnet-4-20250514"


async def test_call_ai_routes_by_provider_option() -> None:
    transport = ScriptedTransport(
        deque([{"candidates": [{"content": {"parts": [{"text": "from gemini"}]}}]}])
    )
    dispatcher = _dispatcher(transport)

    result = await dispatcher.call_ai(
        [CanonicalMessage.user("write")],
        CallOptions(provider="gemini", model="gemini-custom"),
    )

    assert result == "from gemini"
    assert transport.requests[0].path == "/api/gemini/generate"
    assert transport.requests[0].body["model"] == "gemini-custom"


async def test_cached_response_is_reused_until_ttl_elapses() -> None:
    clock = FakeClock()
    cache = ResponseCache(max_size=10, ttl_seconds=300, clock=clock)
    transport = ScriptedTransport(deque([_claude_response("first"), _claude_response("second")]))
    dispatcher = _dispatcher(transport, cache=cache)
    options = CallOptions(cache_key="claude:topics:doc-1")
    messages = [CanonicalMessage.user("extract topics")]

    assert await dispatcher.call_ai(messages, options) == "first"

    clock.current = 4 * 60
    assert await dispatcher.call_ai(messages, options) == "first"
    assert len(transport.requests) == 1

    clock.current = 6 * 60
    assert await dispatcher.call_ai(messages, options) == "second"
    assert len(transport.requests) == 2


async def test_raw_mode_returns_provider_json_and_caches_separately() -> None:
    cache = ResponseCache(max_size=10, ttl_seconds=300, clock=FakeClock())
    raw_payload = _claude_response("raw text")
    transport = ScriptedTransport(deque([raw_payload, _claude_response("text mode")]))
    dispatcher = _dispatcher(transport, cache=cache)
    messages = [CanonicalMessage.user("q")]

    raw = await dispatcher.call_ai(messages, CallOptions(extract_text=False, cache_key="k"))
    assert raw == raw_payload
    assert "raw:k" in cache

    again = await dispatcher.call_ai(messages, CallOptions(extract_text=False, cache_key="k"))
    assert again == raw_payload
    assert len(transport.requests) == 1

    text = await dispatcher.call_ai(messages, CallOptions(cache_key="k"))
    assert text == "text mode"
    assert len(transport.requests) == 2


async def test_usage_is_recorded_per_route_unless_metrics_are_disabled() -> None:
    ledger = TokenLedger()
    transport = ScriptedTransport(
        deque(
            [
                _claude_response("a", input_tokens=100, output_tokens=10),
                _claude_response("b", input_tokens=50, output_tokens=5),
                _claude_response("c", input_tokens=999, output_tokens=999),
            ]
        )
    )
    dispatcher = _dispatcher(transport, ledger=ledger)
    messages = [CanonicalMessage.user("q")]

    await dispatcher.call_ai(messages)
    await dispatcher.call_ai(messages)
    await dispatcher.call_ai(messages, CallOptions(log_metrics=False))

    assert ledger.total == TokenUsage(input=150, output=15)
    assert ledger.request_count == 2
    assert ledger.usage_for("claude", "claude-sonnet-4-20250514").total == 165


async def test_unknown_provider_and_empty_messages_are_rejected() -> None:
    dispatcher = _dispatcher(ScriptedTransport(deque()))

    with pytest.raises(ValueError):
        await dispatcher.call_ai([])
    with pytest.raises(ProviderUnavailableError):
        await dispatcher.call_ai([CanonicalMessage.user("q")], CallOptions(provider="mistral"))


async def test_instructions_from_settings_reach_the_payload_on_request() -> None:
    settings = Settings(instructions="Always cite the statute.")
    transport = ScriptedTransport(deque([_claude_response("ok"), _claude_response("ok")]))
    dispatcher = _dispatcher(transport, settings=settings)
    messages = [CanonicalMessage.user("q")]

    await dispatcher.call_ai(messages)
    await dispatcher.call_ai(messages, CallOptions(use_instructions=True))

    assert "system" not in transport.requests[0].body
    system_blocks = transport.requests[1].body["system"]
    assert system_blocks[-1]["text"] == "Always cite the statute."  # type: ignore[index]


def test_default_registry_reads_api_keys_from_environment() -> None:
    registry = build_default_registry(
        Settings(),
        transport=ScriptedTransport(deque()),
        environ={"ANTHROPIC_API_KEY": "sk-ant-from-env"},
    )

    assert registry.names() == ("claude", "gemini", "grok", "openai")
    request = registry.get("claude").build_request([CanonicalMessage.user("q")], CallOptions())
    assert request.headers["x-api-key"] == "sk-ant-from-env"
    gemini_request = registry.get("gemini").build_request(
        [CanonicalMessage.user("q")], CallOptions()
    )
    assert "x-api-key" not in gemini_request.headers
