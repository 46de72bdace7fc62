"""
draft-orchestrator — synthesis plane

File: src/draft_orchestrator/synthesis_plane/__init__.py

Purpose
- Provider-facing half of the orchestrator: response cache, retry controller,
  provider adapters, token accounting, and the ``call_ai`` dispatch surface.
"""

from draft_orchestrator.synthesis_plane.cache import CacheEntry, CacheStats, ResponseCache
from draft_orchestrator.synthesis_plane.dispatch import Dispatcher, build_default_registry, call_ai
from draft_orchestrator.synthesis_plane.providers import (
    CallOptions,
    CanonicalMessage,
    DocumentBlock,
    ImageBlock,
    ProviderError,
    ProviderRegistry,
    TextBlock,
    TokenUsage,
)
from draft_orchestrator.synthesis_plane.retry import (
    RetryExhaustedError,
    RetryOptions,
    backoff_delay,
    execute_with_retry,
    is_retryable,
)
from draft_orchestrator.synthesis_plane.usage import TokenLedger, UsageSink, UsageSnapshot

__all__ = [
    "CacheEntry",
    "CacheStats",
    "CallOptions",
    "CanonicalMessage",
    "Dispatcher",
    "DocumentBlock",
    "ImageBlock",
    "ProviderError",
    "ProviderRegistry",
    "ResponseCache",
    "RetryExhaustedError",
    "RetryOptions",
    "TextBlock",
    "TokenLedger",
    "TokenUsage",
    "UsageSink",
    "UsageSnapshot",
    "backoff_delay",
    "build_default_registry",
    "call_ai",
    "execute_with_retry",
    "is_retryable",
]
