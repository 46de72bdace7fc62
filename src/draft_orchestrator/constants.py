"""Stable constants shared across orchestrator planes."""

from __future__ import annotations

from typing import Final

CONFIG_SCHEMA_VERSION: Final[int] = 1

# Provider identifiers accepted by the dispatch lookup table.
PROVIDER_CLAUDE: Final[str] = "claude"
PROVIDER_GEMINI: Final[str] = "gemini"
PROVIDER_OPENAI: Final[str] = "openai"
PROVIDER_GROK: Final[str] = "grok"
SUPPORTED_PROVIDERS: Final[tuple[str, ...]] = (
    PROVIDER_CLAUDE,
    PROVIDER_GEMINI,
    PROVIDER_OPENAI,
    PROVIDER_GROK,
)
DEFAULT_PROVIDER: Final[str] = PROVIDER_CLAUDE

# Provider call defaults.
DEFAULT_MAX_TOKENS: Final[int] = 8000
DEFAULT_BASE_URL: Final[str] = "http://localhost:3000"

# Retry policy.
RETRYABLE_STATUS_CODES: Final[frozenset[int]] = frozenset({429, 502, 503, 520, 529})
DEFAULT_MAX_ATTEMPTS: Final[int] = 3
DEFAULT_ATTEMPT_TIMEOUT_SECONDS: Final[float] = 180.0

# Response cache.
DEFAULT_CACHE_MAX_SIZE: Final[int] = 50
DEFAULT_CACHE_TTL_SECONDS: Final[float] = 300.0

# Bulk processing.
DEFAULT_PARALLEL_REQUESTS: Final[int] = 5
DEFAULT_STAGGER_DELAY_SECONDS: Final[float] = 0.0
INTER_BATCH_DELAY_SECONDS: Final[float] = 3.0
BULK_ATTEMPT_TIMEOUT_SECONDS: Final[float] = 60.0
MAX_BULK_FILES: Final[int] = 20
MIN_BULK_TEXT_CHARS: Final[int] = 50
SIMILARITY_THRESHOLD: Final[float] = 0.80

# Verification.
DEFAULT_VERIFICATION_CONFIDENCE: Final[float] = 0.85

__all__ = [
    "BULK_ATTEMPT_TIMEOUT_SECONDS",
    "CONFIG_SCHEMA_VERSION",
    "DEFAULT_ATTEMPT_TIMEOUT_SECONDS",
    "DEFAULT_BASE_URL",
    "DEFAULT_CACHE_MAX_SIZE",
    "DEFAULT_CACHE_TTL_SECONDS",
    "DEFAULT_MAX_ATTEMPTS",
    "DEFAULT_MAX_TOKENS",
    "DEFAULT_PARALLEL_REQUESTS",
    "DEFAULT_PROVIDER",
    "DEFAULT_STAGGER_DELAY_SECONDS",
    "DEFAULT_VERIFICATION_CONFIDENCE",
    "INTER_BATCH_DELAY_SECONDS",
    "MAX_BULK_FILES",
    "MIN_BULK_TEXT_CHARS",
    "PROVIDER_CLAUDE",
    "PROVIDER_GEMINI",
    "PROVIDER_GROK",
    "PROVIDER_OPENAI",
    "RETRYABLE_STATUS_CODES",
    "SIMILARITY_THRESHOLD",
    "SUPPORTED_PROVIDERS",
]
