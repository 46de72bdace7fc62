"""
draft-orchestrator — provider adapter tests

File: tests/unit/synthesis_plane/test_providers.py

Purpose
- Validate request building, text extraction, and usage mapping for every adapter family.

What this test file should cover
- Claude prompt-caching markers, thinking blocks, and usage credits.
- Gemini generationConfig, role mapping, block reasons, and thought parts.
- OpenAI/Grok system message placement, attachments, and finish reasons.
- Retry behavior of ``call`` through a scripted transport.

Functional requirements
- No real network calls.
"""

from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass, field

import pytest

from draft_orchestrator.synthesis_plane.providers import (
    CallOptions,
    CanonicalMessage,
    ClaudeAdapter,
    DocumentBlock,
    GeminiAdapter,
    ImageBlock,
    OpenAICompatibleAdapter,
    ProviderContentBlockedError,
    ProviderInvalidRequestError,
    ProviderRateLimitError,
    ProviderRegistry,
    ProviderRequest,
    ProviderResponseError,
    ProviderUnavailableError,
    TextBlock,
    TokenUsage,
)
from draft_orchestrator.synthesis_plane.providers.base import error_for_body, error_for_status
from draft_orchestrator.synthesis_plane.providers.claude_adapter import CLAUDE_MESSAGES_PATH
from draft_orchestrator.synthesis_plane.providers.gemini_adapter import GEMINI_GENERATE_PATH
from draft_orchestrator.synthesis_plane.retry import RetryOptions

_LONG_TEXT = "x" * 2500


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
class SleepRecorder:
    calls: list[float] = field(default_factory=list)

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        await asyncio.sleep(0)


def _claude(transport: ScriptedTransport | None = None, **kwargs: object) -> ClaudeAdapter:
    return ClaudeAdapter(
        model="claude-test",
        transport=transport or ScriptedTransport(deque()),
        **kwargs,  # type: ignore[arg-type]
    )


# ---------------------------------------------------------------------------
# Canonical model
# ---------------------------------------------------------------------------


def test_canonical_message_keeps_plain_strings_and_wraps_mixed_content() -> None:
    plain = CanonicalMessage.user("hello")
    assert plain.content == "hello"
    assert plain.blocks == (TextBlock("hello"),)

    mixed = CanonicalMessage.user("look", ImageBlock(mime_type="image/png", data="AAAA"))
    assert isinstance(mixed.content, tuple)
    assert mixed.text() == "look"


def test_call_options_validation() -> None:
    assert CallOptions(provider=" Claude ").provider == "claude"
    with pytest.raises(ValueError):
        CallOptions(temperature=3.0)
    with pytest.raises(ValueError):
        CallOptions(top_p=0.0)
    with pytest.raises(ValueError):
        CallOptions(max_attempts=0)


def test_token_usage_adds_and_rejects_negatives() -> None:
    total = TokenUsage(input=10, output=5) + TokenUsage(input=1, cache_read=3)
    assert total == TokenUsage(input=11, output=5, cache_read=3)
    assert total.total == 16
    with pytest.raises(ValueError):
        TokenUsage(input=-1)


def test_registry_is_a_lookup_table_with_cached_instances() -> None:
    registry = ProviderRegistry()
    created: list[ClaudeAdapter] = []

    def factory() -> ClaudeAdapter:
        adapter = _claude()
        created.append(adapter)
        return adapter

    registry.register("Claude", factory)
    assert registry.names() == ("claude",)
    assert registry.get("claude") is registry.get("CLAUDE")
    assert len(created) == 1

    with pytest.raises(ValueError):
        registry.register("claude", factory)
    with pytest.raises(ProviderUnavailableError):
        registry.get("unknown")


def test_error_mapping_by_status_and_body() -> None:
    assert isinstance(error_for_status("claude", 429, "slow"), ProviderRateLimitError)
    assert isinstance(error_for_status("claude", 400, "bad"), ProviderInvalidRequestError)
    assert error_for_status("claude", 529, "overloaded").retryable is True
    assert error_for_status("claude", 500, "boom").retryable is False

    overloaded = error_for_body("claude", {"type": "overloaded_error", "message": "busy"})
    assert overloaded.retryable is True
    plain = error_for_body("claude", {"message": "nope"})
    assert isinstance(plain, ProviderResponseError)
    assert plain.retryable is False


# ---------------------------------------------------------------------------
# Claude
# ---------------------------------------------------------------------------


def test_claude_payload_omits_unset_sampling_parameters() -> None:
    request = _claude().build_request([CanonicalMessage.user("hi")], CallOptions())

    assert request.path == CLAUDE_MESSAGES_PATH
    assert request.body["model"] == "claude-test"
    assert request.body["max_tokens"] == 8000
    assert request.body["messages"] == [{"role": "user", "content": "hi"}]
    for key in ("temperature", "top_p", "top_k", "thinking", "system"):
        assert key not in request.body


def test_claude_payload_carries_sampling_thinking_and_system() -> None:
    adapter = _claude(instructions="Follow house style.", api_key="sk-ant-secret")
    options = CallOptions(
        max_tokens=100,
        temperature=0.3,
        top_p=0.9,
        top_k=50,
        thinking_budget=1024,
        system_prompt="You are a drafter.",
        use_instructions=True,
    )
    request = adapter.build_request([CanonicalMessage.user("hi")], options)

    assert request.body["temperature"] == 0.3
    assert request.body["top_p"] == 0.9
    assert request.body["top_k"] == 50
    assert request.body["thinking"] == {"type": "enabled", "budget_tokens": 1024}
    assert request.body["system"] == [
        {"type": "text", "text": "You are a drafter.", "cache_control": {"type": "ephemeral"}},
        {"type": "text", "text": "Follow house style."},
    ]
    assert request.headers["x-api-key"] == "sk-ant-secret"
    assert "anthropic-beta" in request.headers


def test_claude_marks_at_most_three_blocks_and_never_the_final_block() -> None:
    docs = [DocumentBlock(mime_type="application/pdf", data=f"PDF{index}") for index in range(4)]
    message = CanonicalMessage.user(*docs, _LONG_TEXT)
    request = _claude().build_request([message], CallOptions())

    content = request.body["messages"][0]["content"]  # type: ignore[index]
    marked = [index for index, block in enumerate(content) if "cache_control" in block]
    assert marked == [0, 1, 2]
    assert "cache_control" not in content[-1]


def test_claude_final_long_text_block_is_not_marked() -> None:
    request = _claude().build_request([CanonicalMessage.user("short", _LONG_TEXT)], CallOptions())

    content = request.body["messages"][0]["content"]  # type: ignore[index]
    assert all("cache_control" not in block for block in content)


def test_claude_trailing_system_message_does_not_expose_final_block_to_caching() -> None:
    messages = [
        CanonicalMessage.user("short", _LONG_TEXT),
        CanonicalMessage(role="system", content="Be precise."),
    ]
    request = _claude().build_request(messages, CallOptions())

    assert len(request.body["messages"]) == 1  # type: ignore[arg-type]
    content = request.body["messages"][0]["content"]  # type: ignore[index]
    assert all("cache_control" not in block for block in content)
    assert request.body["system"][0]["text"] == "Be precise."  # type: ignore[index]


def test_claude_extract_text_skips_thinking_blocks() -> None:
    adapter = _claude()
    raw = {
        "content": [
            {"type": "thinking", "thinking": "hmm"},
            {"type": "text", "text": "answer"},
        ]
    }
    assert adapter.extract_text(raw) == "answer"
    assert adapter.extract_text({"content": []}) == ""

    with pytest.raises(ProviderResponseError, match="only thinking"):
        adapter.extract_text({"content": [{"type": "thinking", "thinking": "hmm"}]})


def test_claude_usage_includes_cache_credits_and_defaults_to_zero() -> None:
    adapter = _claude()
    usage = adapter.extract_token_usage(
        {
            "usage": {
                "input_tokens": 100,
                "output_tokens": 20,
                "cache_read_input_tokens": 80,
                "cache_creation_input_tokens": 5,
            }
        }
    )
    assert usage == TokenUsage(input=100, output=20, cache_read=80, cache_creation=5)
    assert adapter.extract_token_usage({}) == TokenUsage()
    assert adapter.extract_token_usage({"usage": {"input_tokens": "many"}}) == TokenUsage()


async def test_claude_call_retries_rate_limits_through_transport() -> None:
    transport = ScriptedTransport(
        deque(
            [
                ProviderRateLimitError("slow down", provider="claude"),
                {"content": [{"type": "text", "text": "ok"}]},
            ]
        )
    )
    sleep = SleepRecorder()
    adapter = _claude(transport, retry=RetryOptions(max_attempts=3), sleep=sleep)

    raw = await adapter.call([CanonicalMessage.user("hi")], CallOptions())

    assert adapter.extract_text(raw) == "ok"
    assert len(transport.requests) == 2
    assert sleep.calls == [4.0]


async def test_call_options_max_attempts_overrides_adapter_default() -> None:
    transport = ScriptedTransport(deque([ProviderRateLimitError("slow", provider="claude")]))
    adapter = _claude(transport, retry=RetryOptions(max_attempts=3), sleep=SleepRecorder())

    with pytest.raises(ProviderRateLimitError, match="slow"):
        await adapter.call([CanonicalMessage.user("hi")], CallOptions(max_attempts=1))

    assert len(transport.requests) == 1


# ---------------------------------------------------------------------------
# Gemini
# ---------------------------------------------------------------------------


def _gemini() -> GeminiAdapter:
    return GeminiAdapter(
        model="gemini-test",
        transport=ScriptedTransport(deque()),
        instructions="House style.",
    )


def test_gemini_payload_shape() -> None:
    messages = [
        CanonicalMessage(role="system", content="Be precise."),
        CanonicalMessage.user("question", ImageBlock(mime_type="image/png", data="AAAA")),
        CanonicalMessage.assistant("previous answer"),
    ]
    options = CallOptions(temperature=0.3, top_p=0.9, top_k=50, thinking_budget=512)
    request = _gemini().build_request(messages, options)

    assert request.path == GEMINI_GENERATE_PATH
    assert request.body["model"] == "gemini-test"
    inner = request.body["request"]
    assert inner["contents"] == [  # type: ignore[index]
        {
            "role": "user",
            "parts": [
                {"text": "question"},
                {"inlineData": {"mimeType": "image/png", "data": "AAAA"}},
            ],
        },
        {"role": "model", "parts": [{"text": "previous answer"}]},
    ]
    assert inner["generationConfig"] == {  # type: ignore[index]
        "maxOutputTokens": 8000,
        "temperature": 0.3,
        "topP": 0.9,
        "topK": 50,
        "thinkingConfig": {"thinkingBudget": 512},
    }
    assert inner["systemInstruction"] == {"parts": [{"text": "Be precise."}]}  # type: ignore[index]


def test_gemini_instructions_only_when_requested() -> None:
    request = _gemini().build_request(
        [CanonicalMessage.user("q")], CallOptions(use_instructions=True)
    )
    assert request.body["request"]["systemInstruction"] == {  # type: ignore[index]
        "parts": [{"text": "House style."}]
    }


def test_gemini_extract_text_joins_parts_and_skips_thoughts() -> None:
    raw = {
        "candidates": [
            {
                "finishReason": "STOP",
                "content": {
                    "parts": [
                        {"text": "thinking...", "thought": True},
                        {"text": "Hello "},
                        {"text": "world"},
                    ]
                },
            }
        ]
    }
    assert _gemini().extract_text(raw) == "Hello world"
    assert _gemini().extract_text({"candidates": []}) == ""


@pytest.mark.parametrize(
    ("raw", "reason"),
    [
        ({"promptFeedback": {"blockReason": "OTHER"}}, "prompt_blocked"),
        ({"candidates": [{"finishReason": "SAFETY"}]}, "safety"),
        ({"candidates": [{"finishReason": "RECITATION"}]}, "recitation"),
    ],
)
def test_gemini_block_reasons(raw: dict[str, object], reason: str) -> None:
    with pytest.raises(ProviderContentBlockedError) as excinfo:
        _gemini().extract_text(raw)
    assert excinfo.value.reason == reason
    assert excinfo.value.retryable is False


def test_gemini_only_thoughts_is_an_error() -> None:
    raw = {"candidates": [{"content": {"parts": [{"text": "x", "thought": True}]}}]}
    with pytest.raises(ProviderResponseError):
        _gemini().extract_text(raw)


def test_gemini_usage_mapping() -> None:
    usage = _gemini().extract_token_usage(
        {
            "usageMetadata": {
                "promptTokenCount": 12,
                "candidatesTokenCount": 7,
                "cachedContentTokenCount": 4,
            }
        }
    )
    assert usage == TokenUsage(input=12, output=7, cache_read=4)


# ---------------------------------------------------------------------------
# OpenAI / Grok
# ---------------------------------------------------------------------------


def _openai(name: str = "openai") -> OpenAICompatibleAdapter:
    return OpenAICompatibleAdapter(
        name=name,
        model=f"{name}-test",
        transport=ScriptedTransport(deque()),
    )


def test_openai_system_message_first_and_attachments_as_data_urls() -> None:
    message = CanonicalMessage.user(
        "analyse",
        ImageBlock(mime_type="image/png", data="IMG"),
        DocumentBlock(mime_type="application/pdf", data="PDF"),
    )
    request = _openai().build_request(
        [message], CallOptions(system_prompt="Be brief.", temperature=0.5)
    )

    assert request.path == "/api/openai/chat"
    messages = request.body["messages"]
    assert messages[0] == {"role": "system", "content": "Be brief."}  # type: ignore[index]
    assert messages[1]["content"] == [  # type: ignore[index]
        {"type": "text", "text": "analyse"},
        {"type": "image_url", "image_url": {"url": "data:image/png;base64,IMG"}},
        {
            "type": "file",
            "file": {"filename": "document.pdf", "file_data": "data:application/pdf;base64,PDF"},
        },
    ]
    assert request.body["temperature"] == 0.5
    assert "top_p" not in request.body


def test_grok_flattens_block_content_to_text() -> None:
    image = ImageBlock(mime_type="image/png", data="IMG")
    message = CanonicalMessage.user("first", image, "second")
    request = _openai("grok").build_request([message], CallOptions())

    assert request.path == "/api/grok/chat"
    assert request.body["messages"] == [{"role": "user", "content": "first\nsecond"}]


def test_openai_extract_text_and_finish_reasons() -> None:
    adapter = _openai()
    raw = {"choices": [{"finish_reason": "stop", "message": {"content": "  hi  "}}]}
    assert adapter.extract_text(raw) == "hi"
    assert adapter.extract_text({"choices": []}) == ""

    truncated = {"choices": [{"finish_reason": "length", "message": {"content": "partial"}}]}
    assert adapter.extract_text(truncated) == "partial"

    with pytest.raises(ProviderContentBlockedError):
        adapter.extract_text({"choices": [{"finish_reason": "content_filter", "message": {}}]})


def test_openai_usage_reads_cached_prompt_tokens() -> None:
    usage = _openai().extract_token_usage(
        {
            "usage": {
                "prompt_tokens": 30,
                "completion_tokens": 10,
                "prompt_tokens_details": {"cached_tokens": 16},
            }
        }
    )
    assert usage == TokenUsage(input=30, output=10, cache_read=16)


def test_openai_rejects_unknown_family() -> None:
    with pytest.raises(ValueError):
        OpenAICompatibleAdapter(name="mistral", model="m", transport=ScriptedTransport(deque()))
