"""
draft-orchestrator — configuration schema and validation.

File: src/draft_orchestrator/config/schema.py

Purpose
- Define authoritative configuration defaults, strict validation rules, and the
  immutable ``Settings`` object handed to every entry point.

What should be included in this file
- Schema versioning and migration guidance.
- Validation rules for required fields, types, enums, and numeric constraints.
- Deterministic deep-merge helpers.
- Redaction rules for sensitive fields.

Functional requirements
- Validate config payloads and return structured errors (field path + message).
- API keys are never stored in config; only the env var names that hold them.

Non-functional requirements
- Keep rules deterministic and easy to audit.
"""

from __future__ import annotations

import copy
import math
import re
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Final, Literal, TypedDict

from draft_orchestrator.constants import (
    BULK_ATTEMPT_TIMEOUT_SECONDS,
    CONFIG_SCHEMA_VERSION,
    DEFAULT_ATTEMPT_TIMEOUT_SECONDS,
    DEFAULT_BASE_URL,
    DEFAULT_CACHE_MAX_SIZE,
    DEFAULT_CACHE_TTL_SECONDS,
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_MAX_TOKENS,
    DEFAULT_PARALLEL_REQUESTS,
    DEFAULT_PROVIDER,
    DEFAULT_STAGGER_DELAY_SECONDS,
    INTER_BATCH_DELAY_SECONDS,
    MAX_BULK_FILES,
    MIN_BULK_TEXT_CHARS,
    PROVIDER_CLAUDE,
    SIMILARITY_THRESHOLD,
    SUPPORTED_PROVIDERS,
)

ConfigSchemaVersion: Final[int] = CONFIG_SCHEMA_VERSION

VERIFICATION_OPERATIONS: Final[tuple[str, ...]] = (
    "topic_extraction",
    "dispositivo",
    "sentence_review",
    "facts_comparison",
    "proof_analysis",
    "quick_prompt",
)
LOG_LEVELS: Final[tuple[str, ...]] = ("DEBUG", "INFO", "WARNING", "ERROR")

_ENV_NAME_PATTERN = re.compile(r"^[A-Z_][A-Z0-9_]*$")
_CAMEL_CASE_BOUNDARY = re.compile(r"([a-z0-9])([A-Z])")
_NON_ALNUM = re.compile(r"[^a-z0-9]+")

_SENSITIVE_KEY_TOKENS: Final[frozenset[str]] = frozenset(
    {
        "secret",
        "token",
        "password",
        "api",
        "key",
        "apikey",
        "credential",
        "credentials",
        "auth",
    }
)
_SENSITIVE_KEY_PHRASES: Final[tuple[str, ...]] = (
    "api_key",
    "access_token",
    "client_secret",
    "password",
    "secret",
)
# Env var names and feature toggles that only look sensitive.
_NON_SECRET_KEYS: Final[frozenset[str]] = frozenset({"api_key_env", "redact_secrets"})


class MetaConfig(TypedDict):
    schema_version: int


class ProviderEntry(TypedDict):
    model: str
    api_key_env: str


class ProvidersConfig(TypedDict):
    default: Literal["claude", "gemini", "openai", "grok"]
    base_url: str
    max_tokens: int
    instructions: str
    claude: ProviderEntry
    gemini: ProviderEntry
    openai: ProviderEntry
    grok: ProviderEntry


class BatchConfig(TypedDict):
    parallel_requests: int
    stagger_delay_seconds: float
    inter_batch_delay_seconds: float
    attempt_timeout_seconds: float
    max_bulk_files: int
    min_text_chars: int
    similarity_threshold: float


class CacheConfig(TypedDict):
    enabled: bool
    max_size: int
    ttl_seconds: float


class RetryConfig(TypedDict):
    max_attempts: int
    per_attempt_timeout_seconds: float


class VerificationConfig(TypedDict):
    enabled: bool
    provider: Literal["claude", "gemini", "openai", "grok"]
    model: str
    operations: dict[str, bool]


class ObservabilityConfig(TypedDict):
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"]
    log_format: Literal["json", "text"]
    log_file: str
    redact_secrets: bool


class DraftConfig(TypedDict):
    meta: MetaConfig
    providers: ProvidersConfig
    batch: BatchConfig
    cache: CacheConfig
    retry: RetryConfig
    verification: VerificationConfig
    observability: ObservabilityConfig


DEFAULT_CONFIG: Final[DraftConfig] = {
    "meta": {
        "schema_version": ConfigSchemaVersion,
    },
    "providers": {
        "default": "claude",
        "base_url": DEFAULT_BASE_URL,
        "max_tokens": DEFAULT_MAX_TOKENS,
        "instructions": "",
        "claude": {"model": "claude-sonnet-4-20250514", "api_key_env": "ANTHROPIC_API_KEY"},
        "gemini": {"model": "gemini-2.5-pro", "api_key_env": "GEMINI_API_KEY"},
        "openai": {"model": "gpt-4o", "api_key_env": "OPENAI_API_KEY"},
        "grok": {"model": "grok-4", "api_key_env": "XAI_API_KEY"},
    },
    "batch": {
        "parallel_requests": DEFAULT_PARALLEL_REQUESTS,
        "stagger_delay_seconds": DEFAULT_STAGGER_DELAY_SECONDS,
        "inter_batch_delay_seconds": INTER_BATCH_DELAY_SECONDS,
        "attempt_timeout_seconds": BULK_ATTEMPT_TIMEOUT_SECONDS,
        "max_bulk_files": MAX_BULK_FILES,
        "min_text_chars": MIN_BULK_TEXT_CHARS,
        "similarity_threshold": SIMILARITY_THRESHOLD,
    },
    "cache": {
        "enabled": True,
        "max_size": DEFAULT_CACHE_MAX_SIZE,
        "ttl_seconds": DEFAULT_CACHE_TTL_SECONDS,
    },
    "retry": {
        "max_attempts": DEFAULT_MAX_ATTEMPTS,
        "per_attempt_timeout_seconds": DEFAULT_ATTEMPT_TIMEOUT_SECONDS,
    },
    "verification": {
        "enabled": False,
        "provider": "claude",
        "model": "claude-sonnet-4-20250514",
        "operations": {name: False for name in VERIFICATION_OPERATIONS},
    },
    "observability": {
        "log_level": "INFO",
        "log_format": "json",
        "log_file": "",
        "redact_secrets": True,
    },
}


# ---------------------------------------------------------------------------
# Validation results
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ConfigValidationIssue:
    """Single structured validation failure."""

    path: str
    message: str


@dataclass(frozen=True, slots=True)
class ConfigValidationResult:
    """Validation result with normalized config when no issues were found."""

    config: dict[str, Any] | None
    issues: tuple[ConfigValidationIssue, ...]

    @property
    def is_valid(self) -> bool:
        return self.config is not None and not self.issues


class ConfigValidationError(ValueError):
    """Raised when strict config validation fails."""

    def __init__(self, issues: Sequence[ConfigValidationIssue]) -> None:
        self.issues = tuple(issues)
        if not self.issues:
            rendered = "unknown validation failure"
        else:
            rendered = "\n".join(f"- {item.path}: {item.message}" for item in self.issues)
        super().__init__(f"invalid config:\n{rendered}")


class _IssueCollector:
    __slots__ = ("_items",)

    def __init__(self) -> None:
        self._items: list[ConfigValidationIssue] = []

    def add(self, path: str, message: str) -> None:
        self._items.append(ConfigValidationIssue(path=path, message=message))

    def items(self) -> tuple[ConfigValidationIssue, ...]:
        return tuple(self._items)

    @property
    def has_issues(self) -> bool:
        return bool(self._items)


# ---------------------------------------------------------------------------
# Immutable runtime settings
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ProviderSettings:
    name: str
    model: str
    api_key_env: str

    def api_key(self, environ: Mapping[str, str]) -> str | None:
        value = environ.get(self.api_key_env, "").strip()
        return value or None


@dataclass(frozen=True, slots=True)
class BatchSettings:
    parallel_requests: int = DEFAULT_PARALLEL_REQUESTS
    stagger_delay_seconds: float = DEFAULT_STAGGER_DELAY_SECONDS
    inter_batch_delay_seconds: float = INTER_BATCH_DELAY_SECONDS
    attempt_timeout_seconds: float = BULK_ATTEMPT_TIMEOUT_SECONDS
    max_bulk_files: int = MAX_BULK_FILES
    min_text_chars: int = MIN_BULK_TEXT_CHARS
    similarity_threshold: float = SIMILARITY_THRESHOLD


@dataclass(frozen=True, slots=True)
class CacheSettings:
    enabled: bool = True
    max_size: int = DEFAULT_CACHE_MAX_SIZE
    ttl_seconds: float = DEFAULT_CACHE_TTL_SECONDS


@dataclass(frozen=True, slots=True)
class RetrySettings:
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    per_attempt_timeout_seconds: float = DEFAULT_ATTEMPT_TIMEOUT_SECONDS


@dataclass(frozen=True, slots=True)
class VerificationSettings:
    enabled: bool = False
    provider: str = PROVIDER_CLAUDE
    model: str = "claude-sonnet-4-20250514"
    operations: frozenset[str] = frozenset()

    def is_enabled_for(self, operation: str) -> bool:
        return self.enabled and operation in self.operations


@dataclass(frozen=True, slots=True)
class ObservabilitySettings:
    log_level: str = "INFO"
    log_format: str = "json"
    log_file: str | None = None
    redact_secrets: bool = True


@dataclass(frozen=True, slots=True)
class Settings:
    """Effective, validated configuration passed explicitly into each entry point."""

    provider: str = DEFAULT_PROVIDER
    base_url: str = DEFAULT_BASE_URL
    max_tokens: int = DEFAULT_MAX_TOKENS
    instructions: str | None = None
    providers: Mapping[str, ProviderSettings] = field(default_factory=lambda: _default_providers())
    batch: BatchSettings = field(default_factory=BatchSettings)
    cache: CacheSettings = field(default_factory=CacheSettings)
    retry: RetrySettings = field(default_factory=RetrySettings)
    verification: VerificationSettings = field(default_factory=VerificationSettings)
    observability: ObservabilitySettings = field(default_factory=ObservabilitySettings)

    def provider_settings(self, name: str) -> ProviderSettings:
        normalized = name.strip().lower()
        try:
            return self.providers[normalized]
        except KeyError:
            raise KeyError(f"provider is not configured: {normalized}") from None


def _default_providers() -> dict[str, ProviderSettings]:
    return {
        name: ProviderSettings(name=name, **DEFAULT_CONFIG["providers"][name])
        for name in SUPPORTED_PROVIDERS
    }


def settings_from_config(config: Mapping[str, Any]) -> Settings:
    """Materialize a validated config mapping into ``Settings``."""

    providers = config["providers"]
    batch = config["batch"]
    cache = config["cache"]
    retry = config["retry"]
    verification = config["verification"]
    observability = config["observability"]

    return Settings(
        provider=providers["default"],
        base_url=providers["base_url"],
        max_tokens=providers["max_tokens"],
        instructions=providers["instructions"] or None,
        providers={
            name: ProviderSettings(
                name=name,
                model=providers[name]["model"],
                api_key_env=providers[name]["api_key_env"],
            )
            for name in SUPPORTED_PROVIDERS
        },
        batch=BatchSettings(**batch),
        cache=CacheSettings(**cache),
        retry=RetrySettings(**retry),
        verification=VerificationSettings(
            enabled=verification["enabled"],
            provider=verification["provider"],
            model=verification["model"],
            operations=frozenset(
                name for name, enabled in verification["operations"].items() if enabled
            ),
        ),
        observability=ObservabilitySettings(
            log_level=observability["log_level"],
            log_format=observability["log_format"],
            log_file=observability["log_file"] or None,
            redact_secrets=observability["redact_secrets"],
        ),
    )


def default_settings() -> Settings:
    return settings_from_config(default_config())


# ---------------------------------------------------------------------------
# Public helpers
# ---------------------------------------------------------------------------


def default_config() -> DraftConfig:
    """Return a deep copy of deterministic built-in defaults."""

    return copy.deepcopy(DEFAULT_CONFIG)


def migration_guidance(found_version: int) -> str:
    """Return deterministic migration guidance for schema version mismatch."""

    if found_version < ConfigSchemaVersion:
        return (
            f"schema version {found_version} is older than supported {ConfigSchemaVersion}; "
            "upgrade draft_orchestrator.toml to the current schema"
        )
    if found_version > ConfigSchemaVersion:
        return (
            f"schema version {found_version} is newer than supported {ConfigSchemaVersion}; "
            "upgrade the draft-orchestrator runtime"
        )
    return "schema version is current"


def merge_config(base: Mapping[str, object], overlay: Mapping[str, object]) -> dict[str, Any]:
    """Deterministically deep-merge ``overlay`` onto ``base``."""

    merged = _deep_copy_mapping(base)
    _merge_into(merged, overlay)
    return merged


def validate_config(config: Mapping[str, object] | object) -> ConfigValidationResult:
    """Validate config and return structured issues with deterministic paths."""

    issues = _IssueCollector()
    root = _as_object(config, "<root>", issues)
    if root is None:
        return ConfigValidationResult(config=None, issues=issues.items())

    normalized = _validate_root(root, issues)
    if issues.has_issues:
        return ConfigValidationResult(config=None, issues=issues.items())
    return ConfigValidationResult(config=normalized, issues=())


def assert_valid_config(config: Mapping[str, object] | object) -> dict[str, Any]:
    """Validate config and raise ``ConfigValidationError`` on failure."""

    result = validate_config(config)
    if result.config is None:
        raise ConfigValidationError(result.issues)
    return result.config


def redact_config(config: Mapping[str, object] | object) -> dict[str, Any]:
    """Return deterministic redacted representation for logs."""

    if not isinstance(config, Mapping):
        return {}
    redacted = _redact_value(config, parent_key=None)
    if isinstance(redacted, dict):
        return redacted
    return {}


# ---------------------------------------------------------------------------
# Section validators
# ---------------------------------------------------------------------------

_SECTIONS: Final[tuple[str, ...]] = (
    "meta",
    "providers",
    "batch",
    "cache",
    "retry",
    "verification",
    "observability",
)


def _validate_root(payload: Mapping[str, object], issues: _IssueCollector) -> dict[str, Any]:
    _reject_unknown_keys(payload, set(_SECTIONS), "", issues)
    _require_keys(payload, set(_SECTIONS), "", issues)

    validators: dict[str, Callable[[dict[str, object], str, _IssueCollector], dict[str, Any]]] = {
        "meta": _validate_meta,
        "providers": _validate_providers,
        "batch": _validate_batch,
        "cache": _validate_cache,
        "retry": _validate_retry,
        "verification": _validate_verification,
        "observability": _validate_observability,
    }
    out: dict[str, Any] = {}
    for key in _SECTIONS:
        raw = payload.get(key)
        if raw is None:
            continue
        section = _as_object(raw, key, issues)
        if section is None:
            continue
        out[key] = validators[key](section, key, issues)
    return out


def _validate_meta(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    _reject_unknown_keys(payload, {"schema_version"}, path, issues)
    _require_keys(payload, {"schema_version"}, path, issues)

    out: dict[str, Any] = {}
    if "schema_version" in payload:
        key_path = _join(path, "schema_version")
        parsed = _as_int(payload["schema_version"], key_path, issues, minimum=1)
        if parsed is not None:
            out["schema_version"] = parsed
            if parsed != ConfigSchemaVersion:
                issues.add(key_path, migration_guidance(parsed))
    return out


def _validate_providers(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    scalars = {"default", "base_url", "max_tokens", "instructions"}
    allowed = scalars | set(SUPPORTED_PROVIDERS)
    _reject_unknown_keys(payload, allowed, path, issues)
    _require_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    if "default" in payload:
        parsed_default = _as_enum(
            payload["default"],
            _join(path, "default"),
            issues,
            allowed_values=SUPPORTED_PROVIDERS,
        )
        if parsed_default is not None:
            out["default"] = parsed_default
    if "base_url" in payload:
        parsed_url = _as_str(payload["base_url"], _join(path, "base_url"), issues)
        if parsed_url is not None:
            if not parsed_url.startswith(("http://", "https://")):
                issues.add(_join(path, "base_url"), "must start with http:// or https://")
            else:
                out["base_url"] = parsed_url.rstrip("/")
    if "max_tokens" in payload:
        parsed_tokens = _as_int(payload["max_tokens"], _join(path, "max_tokens"), issues, minimum=1)
        if parsed_tokens is not None:
            out["max_tokens"] = parsed_tokens
    if "instructions" in payload:
        instructions = payload["instructions"]
        if isinstance(instructions, str):
            out["instructions"] = instructions
        else:
            issues.add(
                _join(path, "instructions"),
                f"expected string, got {type(instructions).__name__}",
            )

    for provider_name in SUPPORTED_PROVIDERS:
        raw = payload.get(provider_name)
        if raw is None:
            continue
        section_path = _join(path, provider_name)
        section = _as_object(raw, section_path, issues)
        if section is None:
            continue
        out[provider_name] = _validate_provider_entry(section, section_path, issues)
    return out


def _validate_provider_entry(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    allowed = {"model", "api_key_env"}
    _reject_unknown_keys(payload, allowed, path, issues)
    _require_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    if "model" in payload:
        parsed_model = _as_str(payload["model"], _join(path, "model"), issues)
        if parsed_model is not None:
            out["model"] = parsed_model
    if "api_key_env" in payload:
        parsed_env = _as_env_name(payload["api_key_env"], _join(path, "api_key_env"), issues)
        if parsed_env is not None:
            out["api_key_env"] = parsed_env
    return out


def _validate_batch(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    allowed = {
        "parallel_requests",
        "stagger_delay_seconds",
        "inter_batch_delay_seconds",
        "attempt_timeout_seconds",
        "max_bulk_files",
        "min_text_chars",
        "similarity_threshold",
    }
    _reject_unknown_keys(payload, allowed, path, issues)
    _require_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    for key in ("parallel_requests", "max_bulk_files"):
        if key in payload:
            parsed_int = _as_int(payload[key], _join(path, key), issues, minimum=1)
            if parsed_int is not None:
                out[key] = parsed_int
    if "min_text_chars" in payload:
        parsed_min = _as_int(payload["min_text_chars"], _join(path, "min_text_chars"), issues)
        if parsed_min is not None:
            out["min_text_chars"] = max(parsed_min, 0)
    for key in ("stagger_delay_seconds", "inter_batch_delay_seconds"):
        if key in payload:
            parsed_delay = _as_float(payload[key], _join(path, key), issues, minimum=0.0)
            if parsed_delay is not None:
                out[key] = parsed_delay
    if "attempt_timeout_seconds" in payload:
        key_path = _join(path, "attempt_timeout_seconds")
        parsed_timeout = _as_float(payload["attempt_timeout_seconds"], key_path, issues)
        if parsed_timeout is not None:
            if parsed_timeout <= 0:
                issues.add(key_path, "must be > 0")
            else:
                out["attempt_timeout_seconds"] = parsed_timeout
    if "similarity_threshold" in payload:
        key_path = _join(path, "similarity_threshold")
        parsed_threshold = _as_float(payload["similarity_threshold"], key_path, issues)
        if parsed_threshold is not None:
            if not (0.0 <= parsed_threshold <= 1.0):
                issues.add(key_path, "must be between 0.0 and 1.0")
            else:
                out["similarity_threshold"] = parsed_threshold
    return out


def _validate_cache(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    allowed = {"enabled", "max_size", "ttl_seconds"}
    _reject_unknown_keys(payload, allowed, path, issues)
    _require_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    if "enabled" in payload:
        parsed_enabled = _as_bool(payload["enabled"], _join(path, "enabled"), issues)
        if parsed_enabled is not None:
            out["enabled"] = parsed_enabled
    if "max_size" in payload:
        parsed_size = _as_int(payload["max_size"], _join(path, "max_size"), issues, minimum=1)
        if parsed_size is not None:
            out["max_size"] = parsed_size
    if "ttl_seconds" in payload:
        key_path = _join(path, "ttl_seconds")
        parsed_ttl = _as_float(payload["ttl_seconds"], key_path, issues)
        if parsed_ttl is not None:
            if parsed_ttl <= 0:
                issues.add(key_path, "must be > 0")
            else:
                out["ttl_seconds"] = parsed_ttl
    return out


def _validate_retry(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    allowed = {"max_attempts", "per_attempt_timeout_seconds"}
    _reject_unknown_keys(payload, allowed, path, issues)
    _require_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    if "max_attempts" in payload:
        parsed_attempts = _as_int(
            payload["max_attempts"], _join(path, "max_attempts"), issues, minimum=1
        )
        if parsed_attempts is not None:
            out["max_attempts"] = parsed_attempts
    if "per_attempt_timeout_seconds" in payload:
        key_path = _join(path, "per_attempt_timeout_seconds")
        parsed_timeout = _as_float(payload["per_attempt_timeout_seconds"], key_path, issues)
        if parsed_timeout is not None:
            if parsed_timeout <= 0:
                issues.add(key_path, "must be > 0")
            else:
                out["per_attempt_timeout_seconds"] = parsed_timeout
    return out


def _validate_verification(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    allowed = {"enabled", "provider", "model", "operations"}
    _reject_unknown_keys(payload, allowed, path, issues)
    _require_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    if "enabled" in payload:
        parsed_enabled = _as_bool(payload["enabled"], _join(path, "enabled"), issues)
        if parsed_enabled is not None:
            out["enabled"] = parsed_enabled
    if "provider" in payload:
        parsed_provider = _as_enum(
            payload["provider"],
            _join(path, "provider"),
            issues,
            allowed_values=SUPPORTED_PROVIDERS,
        )
        if parsed_provider is not None:
            out["provider"] = parsed_provider
    if "model" in payload:
        parsed_model = _as_str(payload["model"], _join(path, "model"), issues)
        if parsed_model is not None:
            out["model"] = parsed_model
    if "operations" in payload:
        operations_path = _join(path, "operations")
        operations = _as_object(payload["operations"], operations_path, issues)
        if operations is not None:
            _reject_unknown_keys(operations, set(VERIFICATION_OPERATIONS), operations_path, issues)
            parsed_operations: dict[str, bool] = {}
            for name in VERIFICATION_OPERATIONS:
                if name not in operations:
                    parsed_operations[name] = False
                    continue
                flag = _as_bool(operations[name], _join(operations_path, name), issues)
                if flag is not None:
                    parsed_operations[name] = flag
            out["operations"] = parsed_operations
    return out


def _validate_observability(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    allowed = {"log_level", "log_format", "log_file", "redact_secrets"}
    _reject_unknown_keys(payload, allowed, path, issues)
    _require_keys(payload, allowed - {"log_file"}, path, issues)

    out: dict[str, Any] = {"log_file": ""}
    if "log_level" in payload:
        raw_level = payload["log_level"]
        parsed_level = _as_enum(
            raw_level.upper() if isinstance(raw_level, str) else raw_level,
            _join(path, "log_level"),
            issues,
            allowed_values=LOG_LEVELS,
        )
        if parsed_level is not None:
            out["log_level"] = parsed_level
    if "log_format" in payload:
        parsed_format = _as_enum(
            payload["log_format"],
            _join(path, "log_format"),
            issues,
            allowed_values=("json", "text"),
        )
        if parsed_format is not None:
            out["log_format"] = parsed_format
    if "log_file" in payload:
        log_file = payload["log_file"]
        if isinstance(log_file, str) and "\x00" not in log_file:
            out["log_file"] = log_file.strip()
        else:
            issues.add(_join(path, "log_file"), "expected a file path string")
    if "redact_secrets" in payload:
        parsed_redact = _as_bool(payload["redact_secrets"], _join(path, "redact_secrets"), issues)
        if parsed_redact is not None:
            out["redact_secrets"] = parsed_redact
    return out


# ---------------------------------------------------------------------------
# Primitive coercion
# ---------------------------------------------------------------------------


def _as_object(value: object, path: str, issues: _IssueCollector) -> dict[str, object] | None:
    if not isinstance(value, Mapping):
        issues.add(path, f"expected object, got {type(value).__name__}")
        return None
    out: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            issues.add(path, f"object key must be string, got {type(key).__name__}")
            continue
        out[key] = item
    return out


def _as_str(value: object, path: str, issues: _IssueCollector) -> str | None:
    if not isinstance(value, str):
        issues.add(path, f"expected string, got {type(value).__name__}")
        return None
    parsed = value.strip()
    if not parsed:
        issues.add(path, "must not be empty")
        return None
    return parsed


def _as_env_name(value: object, path: str, issues: _IssueCollector) -> str | None:
    parsed = _as_str(value, path, issues)
    if parsed is None:
        return None
    if not _ENV_NAME_PATTERN.fullmatch(parsed):
        issues.add(path, "must be an env var name (example: ANTHROPIC_API_KEY)")
        return None
    return parsed


def _as_bool(value: object, path: str, issues: _IssueCollector) -> bool | None:
    if isinstance(value, bool):
        return value
    issues.add(path, f"expected boolean, got {type(value).__name__}")
    return None


def _as_int(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    minimum: int | None = None,
) -> int | None:
    if isinstance(value, bool) or not isinstance(value, int):
        issues.add(path, f"expected integer, got {type(value).__name__}")
        return None
    if minimum is not None and value < minimum:
        issues.add(path, f"must be >= {minimum}")
        return None
    return value


def _as_float(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    minimum: float | None = None,
) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        issues.add(path, f"expected number, got {type(value).__name__}")
        return None
    parsed = float(value)
    if not math.isfinite(parsed):
        issues.add(path, "must be finite")
        return None
    if minimum is not None and parsed < minimum:
        issues.add(path, f"must be >= {minimum}")
        return None
    return parsed


def _as_enum(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    allowed_values: tuple[str, ...],
) -> str | None:
    parsed = _as_str(value, path, issues)
    if parsed is None:
        return None
    if parsed not in allowed_values:
        expected = ", ".join(sorted(allowed_values))
        issues.add(path, f"invalid value {parsed!r}; expected one of: {expected}")
        return None
    return parsed


def _reject_unknown_keys(
    payload: Mapping[str, object],
    allowed: set[str],
    path: str,
    issues: _IssueCollector,
) -> None:
    for key in sorted(payload):
        if key in allowed:
            continue
        key_path = _join(path, key)
        if _looks_sensitive_key(key):
            issues.add(
                key_path,
                "embedded secret values are forbidden; use an *_env key with an env var name",
            )
        else:
            issues.add(key_path, "unknown field")


def _require_keys(
    payload: Mapping[str, object],
    required: set[str],
    path: str,
    issues: _IssueCollector,
) -> None:
    for key in sorted(required):
        if key not in payload:
            issues.add(_join(path, key), "missing required field")


def _looks_sensitive_key(key: str) -> bool:
    normalized = _normalize_key(key)
    if normalized.endswith("_env"):
        return False
    if any(phrase in normalized for phrase in _SENSITIVE_KEY_PHRASES):
        return True
    tokens = tuple(token for token in normalized.split("_") if token)
    return any(token in _SENSITIVE_KEY_TOKENS for token in tokens)


def _normalize_key(key: str) -> str:
    with_boundaries = _CAMEL_CASE_BOUNDARY.sub(r"\1_\2", key.strip())
    return _NON_ALNUM.sub("_", with_boundaries.lower()).strip("_")


def _join(path: str, key: str) -> str:
    if not path:
        return key
    return f"{path}.{key}"


def _merge_into(target: dict[str, Any], overlay: Mapping[str, object]) -> None:
    for key in sorted(overlay):
        value = overlay[key]
        if isinstance(value, Mapping):
            existing = target.get(key)
            if isinstance(existing, dict):
                _merge_into(existing, value)
            else:
                nested: dict[str, Any] = {}
                _merge_into(nested, value)
                target[key] = nested
        else:
            target[key] = copy.deepcopy(value)


def _deep_copy_mapping(value: Mapping[str, object]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for key in sorted(value):
        item = value[key]
        out[key] = _deep_copy_mapping(item) if isinstance(item, Mapping) else copy.deepcopy(item)
    return out


def _redact_value(value: object, parent_key: str | None) -> object:
    if isinstance(value, Mapping):
        out: dict[str, object] = {}
        for key in sorted(value):
            item = value[key]
            if _key_is_sensitive_for_redaction(key):
                out[key] = "<redacted>"
            else:
                out[key] = _redact_value(item, key)
        return out
    if isinstance(value, (list, tuple)):
        return [_redact_value(item, parent_key) for item in value]
    return value


def _key_is_sensitive_for_redaction(key: str) -> bool:
    normalized = _normalize_key(key)
    if normalized in _NON_SECRET_KEYS:
        return False
    return _looks_sensitive_key(normalized)


__all__ = [
    "BatchSettings",
    "CacheSettings",
    "ConfigSchemaVersion",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "DEFAULT_CONFIG",
    "DraftConfig",
    "LOG_LEVELS",
    "ObservabilitySettings",
    "ProviderSettings",
    "RetrySettings",
    "Settings",
    "VERIFICATION_OPERATIONS",
    "VerificationSettings",
    "assert_valid_config",
    "default_config",
    "default_settings",
    "merge_config",
    "migration_guidance",
    "redact_config",
    "settings_from_config",
    "validate_config",
]
