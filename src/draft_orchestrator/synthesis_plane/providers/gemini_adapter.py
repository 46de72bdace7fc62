"""
draft-orchestrator — Gemini provider adapter

File: src/draft_orchestrator/synthesis_plane/providers/gemini_adapter.py

Purpose
- Gemini ``generateContent`` adapter reached through the ``/api/gemini/generate`` proxy.

What should be included in this file
- Payload building with ``generationConfig``, ``systemInstruction`` and thinking budget.
- Text extraction that skips thought parts and classifies block reasons.

Functional requirements
- ``promptFeedback.blockReason`` and the SAFETY/RECITATION finish reasons raise
  ``ProviderContentBlockedError``; MAX_TOKENS only logs.
- A well-formed response without candidates yields an empty string.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from typing import Any, Final

import structlog

from draft_orchestrator.constants import DEFAULT_MAX_TOKENS, PROVIDER_GEMINI
from draft_orchestrator.synthesis_plane.providers.base import (
    CallOptions,
    CanonicalMessage,
    ContentBlock,
    JSONObject,
    JSONValue,
    ProviderContentBlockedError,
    ProviderRequest,
    ProviderResponseError,
    TextBlock,
    TokenUsage,
    read_int,
    read_sequence,
    read_str,
    read_value,
)
from draft_orchestrator.synthesis_plane.providers.transport import (
    ProviderTransport,
    retry_options_for,
    send_with_retry,
)
from draft_orchestrator.synthesis_plane.retry import RetryOptions

GEMINI_GENERATE_PATH: Final[str] = "/api/gemini/generate"

_ROLE_MAP: Final[dict[str, str]] = {"user": "user", "assistant": "model"}

_logger = structlog.get_logger(__name__)


class GeminiAdapter:
    """Gemini-style adapter; the proxy expects ``{model, request}``."""

    name = PROVIDER_GEMINI

    def __init__(
        self,
        *,
        model: str,
        transport: ProviderTransport,
        api_key: str | None = None,
        default_max_tokens: int = DEFAULT_MAX_TOKENS,
        instructions: str | None = None,
        retry: RetryOptions | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        logger: Any | None = None,
    ) -> None:
        if not model.strip():
            raise ValueError("model cannot be empty")
        if default_max_tokens <= 0:
            raise ValueError("default_max_tokens must be > 0")
        self.model = model.strip()
        self._transport = transport
        self._api_key = api_key
        self._default_max_tokens = default_max_tokens
        self._instructions = instructions
        self._retry = retry if retry is not None else RetryOptions()
        self._sleep = sleep
        self._logger = logger if logger is not None else _logger

    def build_request(
        self, messages: Sequence[CanonicalMessage], options: CallOptions
    ) -> ProviderRequest:
        model = options.model or self.model

        generation_config: dict[str, JSONValue] = {
            "maxOutputTokens": options.max_tokens or self._default_max_tokens,
        }
        if options.temperature is not None:
            generation_config["temperature"] = options.temperature
        if options.top_p is not None:
            generation_config["topP"] = options.top_p
        if options.top_k is not None:
            generation_config["topK"] = options.top_k
        if options.thinking_budget is not None:
            generation_config["thinkingConfig"] = {"thinkingBudget": options.thinking_budget}

        request: dict[str, JSONValue] = {
            "contents": _convert_contents(messages),
            "generationConfig": generation_config,
        }
        system_text = self._system_text(messages, options)
        if system_text:
            request["systemInstruction"] = {"parts": [{"text": system_text}]}

        headers: dict[str, str] = {}
        if self._api_key:
            headers["x-api-key"] = self._api_key
        return ProviderRequest(
            provider=self.name,
            model=model,
            path=GEMINI_GENERATE_PATH,
            body={"model": model, "request": request},
            headers=headers,
        )

    def extract_text(self, raw_response: object) -> str:
        feedback = read_value(raw_response, "promptFeedback")
        block_reason = read_str(feedback, "blockReason") if feedback is not None else None
        if block_reason:
            raise ProviderContentBlockedError(
                "prompt_blocked", provider=self.name, detail=block_reason
            )

        candidates = read_sequence(raw_response, "candidates")
        if not candidates:
            return ""
        candidate = candidates[0]

        finish_reason = read_str(candidate, "finishReason")
        if finish_reason == "SAFETY":
            raise ProviderContentBlockedError("safety", provider=self.name)
        if finish_reason == "RECITATION":
            raise ProviderContentBlockedError("recitation", provider=self.name)
        if finish_reason == "MAX_TOKENS":
            self._logger.warning("provider_response_truncated", provider=self.name)

        parts = read_sequence(read_value(candidate, "content"), "parts")
        if not parts:
            return ""
        texts: list[str] = []
        for part in parts:
            if read_value(part, "thought") is True:
                continue
            text = read_value(part, "text")
            if isinstance(text, str):
                texts.append(text)
        if not texts:
            raise ProviderResponseError(
                "no text content in response (only thought parts)",
                provider=self.name,
            )
        return "".join(texts)

    def extract_token_usage(self, raw_response: object) -> TokenUsage:
        usage = read_value(raw_response, "usageMetadata")
        if usage is None:
            return TokenUsage()
        return TokenUsage(
            input=read_int(usage, "promptTokenCount"),
            output=read_int(usage, "candidatesTokenCount"),
            cache_read=read_int(usage, "cachedContentTokenCount"),
        )

    async def call(self, messages: Sequence[CanonicalMessage], options: CallOptions) -> JSONObject:
        request = self.build_request(messages, options)
        return await send_with_retry(
            self._transport,
            request,
            retry_options_for(self._retry, options, provider=self.name, logger=self._logger),
            sleep=self._sleep,
        )

    def _system_text(self, messages: Sequence[CanonicalMessage], options: CallOptions) -> str:
        parts = list(options.system_parts())
        parts.extend(message.text() for message in messages if message.role == "system")
        if options.use_instructions and self._instructions:
            parts.append(self._instructions)
        return "\n\n".join(part for part in parts if part)


def _convert_contents(messages: Sequence[CanonicalMessage]) -> list[JSONValue]:
    contents: list[JSONValue] = []
    for message in messages:
        if message.role == "system":
            continue
        parts: list[JSONValue] = [_part_payload(block) for block in message.blocks]
        contents.append({"role": _ROLE_MAP[message.role], "parts": parts})
    return contents


def _part_payload(block: ContentBlock) -> dict[str, JSONValue]:
    if isinstance(block, TextBlock):
        return {"text": block.text}
    return {"inlineData": {"mimeType": block.mime_type, "data": block.data}}


__all__ = ["GEMINI_GENERATE_PATH", "GeminiAdapter"]
