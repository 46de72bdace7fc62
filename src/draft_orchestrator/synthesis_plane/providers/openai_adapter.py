"""
draft-orchestrator — OpenAI-compatible provider adapter

File: src/draft_orchestrator/synthesis_plane/providers/openai_adapter.py

Purpose
- Chat-completions adapter shared by the OpenAI and Grok proxies
  (``/api/openai/chat`` and ``/api/grok/chat``).

What should be included in this file
- Message conversion with the system prompt as the first message.
- Inline image and document attachments as data URLs (OpenAI); Grok receives
  flattened string content.
- Text extraction from ``choices[0].message.content`` with finish-reason handling.

Functional requirements
- ``finish_reason == "content_filter"`` raises ``ProviderContentBlockedError``.
- ``finish_reason == "length"`` only logs a truncation warning.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from typing import Any, Final

import structlog

from draft_orchestrator.constants import DEFAULT_MAX_TOKENS, PROVIDER_GROK, PROVIDER_OPENAI
from draft_orchestrator.synthesis_plane.providers.base import (
    CallOptions,
    CanonicalMessage,
    ContentBlock,
    DocumentBlock,
    ImageBlock,
    JSONObject,
    JSONValue,
    ProviderContentBlockedError,
    ProviderRequest,
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

CHAT_PATHS: Final[dict[str, str]] = {
    PROVIDER_OPENAI: "/api/openai/chat",
    PROVIDER_GROK: "/api/grok/chat",
}
DOCUMENT_FILENAME: Final[str] = "document.pdf"

_logger = structlog.get_logger(__name__)


class OpenAICompatibleAdapter:
    """Chat-completions adapter; ``name`` selects the proxy endpoint and content shape."""

    def __init__(
        self,
        *,
        name: str = PROVIDER_OPENAI,
        model: str,
        transport: ProviderTransport,
        api_key: str | None = None,
        default_max_tokens: int = DEFAULT_MAX_TOKENS,
        instructions: str | None = None,
        retry: RetryOptions | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        logger: Any | None = None,
    ) -> None:
        normalized = name.strip().lower()
        if normalized not in CHAT_PATHS:
            raise ValueError(f"unsupported OpenAI-compatible provider: {name}")
        if not model.strip():
            raise ValueError("model cannot be empty")
        if default_max_tokens <= 0:
            raise ValueError("default_max_tokens must be > 0")
        self.name = normalized
        self.model = model.strip()
        self._transport = transport
        self._api_key = api_key
        self._default_max_tokens = default_max_tokens
        self._instructions = instructions
        self._retry = retry if retry is not None else RetryOptions()
        self._sleep = sleep
        self._logger = logger if logger is not None else _logger

    @property
    def flattens_content(self) -> bool:
        return self.name == PROVIDER_GROK

    def build_request(
        self, messages: Sequence[CanonicalMessage], options: CallOptions
    ) -> ProviderRequest:
        model = options.model or self.model
        converted: list[JSONValue] = []

        system_parts = list(options.system_parts())
        system_parts.extend(message.text() for message in messages if message.role == "system")
        if options.use_instructions and self._instructions:
            system_parts.append(self._instructions)
        if system_parts:
            converted.append({"role": "system", "content": "\n\n".join(system_parts)})

        for message in messages:
            if message.role == "system":
                continue
            converted.append({"role": message.role, "content": self._content(message)})

        body: JSONObject = {
            "model": model,
            "messages": converted,
            "max_tokens": options.max_tokens or self._default_max_tokens,
        }
        if options.temperature is not None:
            body["temperature"] = options.temperature
        if options.top_p is not None:
            body["top_p"] = options.top_p

        headers: dict[str, str] = {}
        if self._api_key:
            headers["x-api-key"] = self._api_key
        return ProviderRequest(
            provider=self.name,
            model=model,
            path=CHAT_PATHS[self.name],
            body=body,
            headers=headers,
        )

    def extract_text(self, raw_response: object) -> str:
        choices = read_sequence(raw_response, "choices")
        if not choices:
            return ""
        choice = choices[0]

        finish_reason = read_str(choice, "finish_reason")
        if finish_reason == "content_filter":
            raise ProviderContentBlockedError("content_filter", provider=self.name)
        if finish_reason == "length":
            self._logger.warning("provider_response_truncated", provider=self.name)

        content = read_value(read_value(choice, "message"), "content")
        return content.strip() if isinstance(content, str) else ""

    def extract_token_usage(self, raw_response: object) -> TokenUsage:
        usage = read_value(raw_response, "usage")
        if usage is None:
            return TokenUsage()
        details = read_value(usage, "prompt_tokens_details")
        return TokenUsage(
            input=read_int(usage, "prompt_tokens"),
            output=read_int(usage, "completion_tokens"),
            cache_read=read_int(details, "cached_tokens") if details is not None else 0,
        )

    async def call(self, messages: Sequence[CanonicalMessage], options: CallOptions) -> JSONObject:
        request = self.build_request(messages, options)
        return await send_with_retry(
            self._transport,
            request,
            retry_options_for(self._retry, options, provider=self.name, logger=self._logger),
            sleep=self._sleep,
        )

    def _content(self, message: CanonicalMessage) -> JSONValue:
        if isinstance(message.content, str):
            return message.content
        if self.flattens_content:
            return "\n".join(
                block.text for block in message.content if isinstance(block, TextBlock)
            )
        return [_part_payload(block) for block in message.content]


def _part_payload(block: ContentBlock) -> dict[str, JSONValue]:
    if isinstance(block, ImageBlock):
        return {"type": "image_url", "image_url": {"url": block.data_url}}
    if isinstance(block, DocumentBlock):
        return {
            "type": "file",
            "file": {"filename": DOCUMENT_FILENAME, "file_data": block.data_url},
        }
    return {"type": "text", "text": block.text}


__all__ = ["CHAT_PATHS", "DOCUMENT_FILENAME", "OpenAICompatibleAdapter"]
