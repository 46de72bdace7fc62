"""
draft-orchestrator config package public API.

File: src/draft_orchestrator/config/__init__.py

Purpose
- Export config loading/validation entrypoints and public error types.

Functional requirements
- Support loading from ``draft_orchestrator.toml`` + ``DRAFT_`` env overrides.
- Fail fast with clear structured validation/load errors.
"""

from draft_orchestrator.config.loader import (
    DEFAULT_CONFIG_FILE,
    ENV_PREFIX,
    ConfigLoadError,
    dump_effective_config,
    load_config,
    load_settings,
)
from draft_orchestrator.config.schema import (
    DEFAULT_CONFIG,
    VERIFICATION_OPERATIONS,
    BatchSettings,
    CacheSettings,
    ConfigValidationError,
    ConfigValidationIssue,
    ConfigValidationResult,
    ObservabilitySettings,
    ProviderSettings,
    RetrySettings,
    Settings,
    VerificationSettings,
    assert_valid_config,
    default_config,
    default_settings,
    merge_config,
    redact_config,
    settings_from_config,
    validate_config,
)

__all__ = [
    "BatchSettings",
    "CacheSettings",
    "ConfigLoadError",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "DEFAULT_CONFIG",
    "DEFAULT_CONFIG_FILE",
    "ENV_PREFIX",
    "ObservabilitySettings",
    "ProviderSettings",
    "RetrySettings",
    "Settings",
    "VERIFICATION_OPERATIONS",
    "VerificationSettings",
    "assert_valid_config",
    "default_config",
    "default_settings",
    "dump_effective_config",
    "load_config",
    "load_settings",
    "merge_config",
    "redact_config",
    "settings_from_config",
    "validate_config",
]
