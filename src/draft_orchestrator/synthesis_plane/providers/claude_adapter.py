"""
draft-orchestrator — Claude provider adapter

File: src/draft_orchestrator/synthesis_plane/providers/claude_adapter.py

Purpose
- Claude messages-API adapter reached through the ``/api/claude/messages`` proxy.

What should be included in this file
- Payload building with prompt-caching markers and extended thinking.
- Text extraction that skips thinking blocks.
- Usage mapping including cache-read and cache-creation credits.

Functional requirements
- At most three content blocks are marked cache-eligible and the final block of the
  conversation is never marked.
- Sampling parameters are omitted entirely when not provided.

Non-functional requirements
- Must be configurable and safe; no secrets in logs.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from typing import Any, Final

import structlog

from draft_orchestrator.constants import DEFAULT_MAX_TOKENS, PROVIDER_CLAUDE
from draft_orchestrator.synthesis_plane.providers.base import (
    CallOptions,
    CanonicalMessage,
    ContentBlock,
    DocumentBlock,
    ImageBlock,
    JSONObject,
    JSONValue,
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

CLAUDE_MESSAGES_PATH: Final[str] = "/api/claude/messages"
PROMPT_CACHING_BETA: Final[str] = "prompt-caching-2024-07-31"
MAX_CACHE_BLOCKS: Final[int] = 3
CACHEABLE_TEXT_MIN_CHARS: Final[int] = 2000

_EPHEMERAL: Final[dict[str, JSONValue]] = {"type": "ephemeral"}

_logger = structlog.get_logger(__name__)


class ClaudeAdapter:
    """Claude-style adapter with prompt caching and optional extended thinking."""

    name = PROVIDER_CLAUDE

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
        body: JSONObject = {
            "model": model,
            "max_tokens": options.max_tokens or self._default_max_tokens,
            "messages": _convert_messages(messages),
        }

        system = self._system_blocks(messages, options)
        if system:
            body["system"] = system
        if options.temperature is not None:
            body["temperature"] = options.temperature
        if options.top_p is not None:
            body["top_p"] = options.top_p
        if options.top_k is not None:
            body["top_k"] = options.top_k
        if options.thinking_budget is not None:
            body["thinking"] = {"type": "enabled", "budget_tokens": options.thinking_budget}

        headers = {"anthropic-beta": PROMPT_CACHING_BETA}
        if self._api_key:
            headers["x-api-key"] = self._api_key
        return ProviderRequest(
            provider=self.name,
            model=model,
            path=CLAUDE_MESSAGES_PATH,
            body=body,
            headers=headers,
        )

    def extract_text(self, raw_response: object) -> str:
        blocks = read_sequence(raw_response, "content")
        if not blocks:
            return ""

        if read_str(raw_response, "stop_reason") == "max_tokens":
            self._logger.warning("provider_response_truncated", provider=self.name)

        for block in blocks:
            if read_str(block, "type") == "text":
                text = read_value(block, "text")
                return text if isinstance(text, str) else ""

        raise ProviderResponseError(
            "no text content in response (only thinking blocks)",
            provider=self.name,
        )

    def extract_token_usage(self, raw_response: object) -> TokenUsage:
        usage = read_value(raw_response, "usage")
        if usage is None:
            return TokenUsage()
        return TokenUsage(
            input=read_int(usage, "input_tokens"),
            output=read_int(usage, "output_tokens"),
            cache_read=read_int(usage, "cache_read_input_tokens"),
            cache_creation=read_int(usage, "cache_creation_input_tokens"),
        )

    async def call(self, messages: Sequence[CanonicalMessage], options: CallOptions) -> JSONObject:
        request = self.build_request(messages, options)
        return await send_with_retry(
            self._transport,
            request,
            retry_options_for(self._retry, options, provider=self.name, logger=self._logger),
            sleep=self._sleep,
        )

    def _system_blocks(
        self, messages: Sequence[CanonicalMessage], options: CallOptions
    ) -> list[JSONValue]:
        texts = list(options.system_parts())
        texts.extend(message.text() for message in messages if message.role == "system")
        if options.use_instructions and self._instructions:
            texts.append(self._instructions)
        blocks: list[JSONValue] = []
        for index, text in enumerate(texts):
            block: dict[str, JSONValue] = {"type": "text", "text": text}
            if index == 0:
                block["cache_control"] = dict(_EPHEMERAL)
            blocks.append(block)
        return blocks


def _convert_messages(messages: Sequence[CanonicalMessage]) -> list[JSONValue]:
    converted: list[JSONValue] = []
    remaining_marks = MAX_CACHE_BLOCKS
    last_message_index = max(
        (index for index, message in enumerate(messages) if message.role != "system"),
        default=-1,
    )

    for message_index, message in enumerate(messages):
        if message.role == "system":
            continue
        if isinstance(message.content, str):
            converted.append({"role": message.role, "content": message.content})
            continue

        content: list[JSONValue] = []
        last_block_index = len(message.content) - 1
        for block_index, block in enumerate(message.content):
            payload = _block_payload(block)
            is_final_block = (
                message_index == last_message_index and block_index == last_block_index
            )
            if remaining_marks > 0 and not is_final_block and _is_cache_eligible(block):
                payload["cache_control"] = dict(_EPHEMERAL)
                remaining_marks -= 1
            content.append(payload)
        converted.append({"role": message.role, "content": content})
    return converted


def _is_cache_eligible(block: ContentBlock) -> bool:
    if isinstance(block, DocumentBlock):
        return True
    return isinstance(block, TextBlock) and len(block.text) > CACHEABLE_TEXT_MIN_CHARS


def _block_payload(block: ContentBlock) -> dict[str, JSONValue]:
    if isinstance(block, TextBlock):
        return {"type": "text", "text": block.text}
    kind = "image" if isinstance(block, ImageBlock) else "document"
    return {
        "type": kind,
        "source": {"type": "base64", "media_type": block.mime_type, "data": block.data},
    }


__all__ = ["CLAUDE_MESSAGES_PATH", "ClaudeAdapter", "MAX_CACHE_BLOCKS", "PROMPT_CACHING_BETA"]
