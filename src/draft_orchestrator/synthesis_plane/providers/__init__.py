"""
draft-orchestrator — provider adapters and shared provider API

File: src/draft_orchestrator/synthesis_plane/providers/__init__.py

Purpose
- Provider adapters (Claude, Gemini, OpenAI, Grok) behind one adapter protocol.

Functional requirements
- Must normalize responses (text, token usage, block reasons) into a common format.

Non-functional requirements
- Must never log secrets or raw API keys.
"""

from draft_orchestrator.synthesis_plane.providers.base import (
    CallOptions,
    CanonicalMessage,
    ContentBlock,
    DocumentBlock,
    ImageBlock,
    JSONObject,
    JSONValue,
    ProviderAdapter,
    ProviderAuthenticationError,
    ProviderContentBlockedError,
    ProviderError,
    ProviderFactory,
    ProviderInvalidRequestError,
    ProviderRateLimitError,
    ProviderRegistry,
    ProviderRequest,
    ProviderResponseError,
    ProviderServiceError,
    ProviderTimeoutError,
    ProviderUnavailableError,
    TextBlock,
    TokenUsage,
    error_for_body,
    error_for_status,
    is_retryable_error,
)
from draft_orchestrator.synthesis_plane.providers.claude_adapter import ClaudeAdapter
from draft_orchestrator.synthesis_plane.providers.gemini_adapter import GeminiAdapter
from draft_orchestrator.synthesis_plane.providers.openai_adapter import OpenAICompatibleAdapter
from draft_orchestrator.synthesis_plane.providers.transport import (
    HttpTransport,
    ProviderTransport,
    send_with_retry,
)

__all__ = [
    "CallOptions",
    "CanonicalMessage",
    "ClaudeAdapter",
    "ContentBlock",
    "DocumentBlock",
    "GeminiAdapter",
    "HttpTransport",
    "ImageBlock",
    "JSONObject",
    "JSONValue",
    "OpenAICompatibleAdapter",
    "ProviderAdapter",
    "ProviderAuthenticationError",
    "ProviderContentBlockedError",
    "ProviderError",
    "ProviderFactory",
    "ProviderInvalidRequestError",
    "ProviderRateLimitError",
    "ProviderRegistry",
    "ProviderRequest",
    "ProviderResponseError",
    "ProviderServiceError",
    "ProviderTimeoutError",
    "ProviderTransport",
    "ProviderUnavailableError",
    "TextBlock",
    "TokenUsage",
    "error_for_body",
    "error_for_status",
    "is_retryable_error",
    "send_with_retry",
]
