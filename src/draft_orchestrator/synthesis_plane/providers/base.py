"""
draft-orchestrator — provider base models and shared utilities

File: src/draft_orchestrator/synthesis_plane/providers/base.py

Purpose
- Provider-agnostic request/response models and the adapter contract shared by every
  backend family (Claude, Gemini, OpenAI, Grok).

What should be included in this file
- Canonical conversation model: messages made of text, image, and document blocks.
- Call options, token usage snapshots, and the built provider request envelope.
- Error taxonomy and retryability classification.
- Adapter protocol and the lookup-table registry used by dispatch.

Functional requirements
- Error messages must be deterministic and machine-readable.
- Every usage field defaults to zero when the provider omits it.

Non-functional requirements
- Must make it easy to add new providers without touching core logic.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, ClassVar, Literal, Protocol, TypeAlias, cast, runtime_checkable

from draft_orchestrator.constants import RETRYABLE_STATUS_CODES
from draft_orchestrator.synthesis_plane.retry import message_signals_transient

if TYPE_CHECKING:
    from draft_orchestrator.utils.concurrency import CancellationToken

JSONScalar: TypeAlias = str | int | float | bool | None
JSONValue: TypeAlias = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]
JSONObject: TypeAlias = dict[str, JSONValue]

Role: TypeAlias = Literal["user", "assistant", "system"]
_ROLES: frozenset[str] = frozenset({"user", "assistant", "system"})


def _validate_non_empty_str(value: str, field_name: str, *, strip: bool = True) -> str:
    if not isinstance(value, str):
        raise TypeError(f"{field_name} must be a string")
    normalized = value.strip() if strip else value
    if not normalized:
        raise ValueError(f"{field_name} cannot be empty")
    return normalized


def _validate_optional_str(value: str | None, field_name: str, *, strip: bool = True) -> str | None:
    if value is None:
        return None
    return _validate_non_empty_str(value, field_name, strip=strip)


# ---------------------------------------------------------------------------
# Canonical conversation model
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class TextBlock:
    text: str

    block_type: ClassVar[str] = "text"

    def __post_init__(self) -> None:
        if not isinstance(self.text, str):
            raise TypeError("TextBlock.text must be a string")


@dataclass(frozen=True, slots=True)
class ImageBlock:
    """Inline image attachment carried as base64."""

    mime_type: str
    data: str

    block_type: ClassVar[str] = "image"

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "mime_type", _validate_non_empty_str(self.mime_type, "ImageBlock.mime_type")
        )
        object.__setattr__(self, "data", _validate_non_empty_str(self.data, "ImageBlock.data"))

    @property
    def data_url(self) -> str:
        return f"data:{self.mime_type};base64,{self.data}"


@dataclass(frozen=True, slots=True)
class DocumentBlock:
    """Inline document attachment (usually PDF) carried as base64."""

    mime_type: str
    data: str

    block_type: ClassVar[str] = "document"

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "mime_type", _validate_non_empty_str(self.mime_type, "DocumentBlock.mime_type")
        )
        object.__setattr__(self, "data", _validate_non_empty_str(self.data, "DocumentBlock.data"))

    @property
    def data_url(self) -> str:
        return f"data:{self.mime_type};base64,{self.data}"


ContentBlock: TypeAlias = TextBlock | ImageBlock | DocumentBlock


@dataclass(frozen=True, slots=True)
class CanonicalMessage:
    """Provider-agnostic conversation turn. Plain string content is kept as a string."""

    role: Role
    content: str | tuple[ContentBlock, ...]

    def __post_init__(self) -> None:
        if self.role not in _ROLES:
            raise ValueError(f"CanonicalMessage.role must be one of {sorted(_ROLES)}")
        if isinstance(self.content, str):
            return
        if not isinstance(self.content, Sequence):
            raise TypeError("CanonicalMessage.content must be a string or a sequence of blocks")
        blocks = tuple(self.content)
        for block in blocks:
            if not isinstance(block, (TextBlock, ImageBlock, DocumentBlock)):
                raise TypeError("CanonicalMessage.content items must be content blocks")
        object.__setattr__(self, "content", blocks)

    @classmethod
    def user(cls, *content: str | ContentBlock) -> CanonicalMessage:
        if len(content) == 1 and isinstance(content[0], str):
            return cls(role="user", content=content[0])
        return cls(role="user", content=_as_blocks(content))

    @classmethod
    def assistant(cls, text: str) -> CanonicalMessage:
        return cls(role="assistant", content=text)

    @property
    def blocks(self) -> tuple[ContentBlock, ...]:
        if isinstance(self.content, str):
            return (TextBlock(self.content),)
        return self.content

    def text(self) -> str:
        """Concatenated text of all text blocks; attachments are skipped."""

        return "\n\n".join(block.text for block in self.blocks if isinstance(block, TextBlock))


def _as_blocks(items: Sequence[str | ContentBlock]) -> tuple[ContentBlock, ...]:
    return tuple(TextBlock(item) if isinstance(item, str) else item for item in items)


# ---------------------------------------------------------------------------
# Options, usage, request envelope
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class CallOptions:
    """Per-call options accepted by ``call_ai`` and the adapters.

    ``None`` means "use the adapter or settings default"; sampling parameters left as
    ``None`` are omitted from the provider payload entirely.
    """

    provider: str | None = None
    model: str | None = None
    max_tokens: int | None = None
    temperature: float | None = None
    top_p: float | None = None
    top_k: int | None = None
    system_prompt: str | tuple[str, ...] | None = None
    use_instructions: bool = False
    thinking_budget: int | None = None
    timeout_seconds: float | None = None
    max_attempts: int | None = None
    cancel_token: CancellationToken | None = field(default=None, compare=False)
    log_metrics: bool = True
    extract_text: bool = True
    cache_key: str | None = None

    def __post_init__(self) -> None:
        if self.provider is not None:
            object.__setattr__(
                self, "provider", _validate_non_empty_str(self.provider, "provider").lower()
            )
        object.__setattr__(self, "model", _validate_optional_str(self.model, "model"))
        if self.max_tokens is not None and self.max_tokens <= 0:
            raise ValueError("max_tokens must be > 0")
        if self.temperature is not None and not (0.0 <= self.temperature <= 2.0):
            raise ValueError("temperature must be between 0.0 and 2.0")
        if self.top_p is not None and not (0.0 < self.top_p <= 1.0):
            raise ValueError("top_p must be in (0.0, 1.0]")
        if self.top_k is not None and self.top_k <= 0:
            raise ValueError("top_k must be > 0")
        if self.thinking_budget is not None and self.thinking_budget <= 0:
            raise ValueError("thinking_budget must be > 0")
        if self.timeout_seconds is not None and self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")
        if self.max_attempts is not None and self.max_attempts <= 0:
            raise ValueError("max_attempts must be > 0")
        if isinstance(self.system_prompt, list):
            object.__setattr__(self, "system_prompt", tuple(self.system_prompt))

    def system_parts(self) -> tuple[str, ...]:
        if self.system_prompt is None:
            return ()
        if isinstance(self.system_prompt, str):
            return (self.system_prompt,) if self.system_prompt.strip() else ()
        return tuple(part for part in self.system_prompt if part.strip())


@dataclass(frozen=True, slots=True)
class TokenUsage:
    """Per-call token accounting snapshot."""

    input: int = 0
    output: int = 0
    cache_read: int = 0
    cache_creation: int = 0

    def __post_init__(self) -> None:
        for name in ("input", "output", "cache_read", "cache_creation"):
            value = getattr(self, name)
            if not isinstance(value, int) or isinstance(value, bool):
                raise TypeError(f"TokenUsage.{name} must be an integer")
            if value < 0:
                raise ValueError(f"TokenUsage.{name} must be >= 0")

    def __add__(self, other: object) -> TokenUsage:
        if not isinstance(other, TokenUsage):
            return NotImplemented
        return TokenUsage(
            input=self.input + other.input,
            output=self.output + other.output,
            cache_read=self.cache_read + other.cache_read,
            cache_creation=self.cache_creation + other.cache_creation,
        )

    @property
    def total(self) -> int:
        return self.input + self.output

    def to_dict(self) -> dict[str, int]:
        return {
            "input": self.input,
            "output": self.output,
            "cache_read": self.cache_read,
            "cache_creation": self.cache_creation,
        }


@dataclass(frozen=True, slots=True)
class ProviderRequest:
    """Provider-native HTTP exchange built by one adapter for one call."""

    provider: str
    model: str
    path: str
    body: JSONObject
    headers: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "provider", _validate_non_empty_str(self.provider, "provider"))
        object.__setattr__(self, "model", _validate_non_empty_str(self.model, "model"))
        path = _validate_non_empty_str(self.path, "path")
        if not path.startswith("/"):
            raise ValueError("path must start with '/'")
        object.__setattr__(self, "path", path)
        object.__setattr__(self, "headers", dict(self.headers))


# ---------------------------------------------------------------------------
# Adapter contract
# ---------------------------------------------------------------------------


@runtime_checkable
class ProviderAdapter(Protocol):
    """Contract implemented by each backend family."""

    name: str

    def build_request(
        self, messages: Sequence[CanonicalMessage], options: CallOptions
    ) -> ProviderRequest: ...

    def extract_text(self, raw_response: object) -> str: ...

    def extract_token_usage(self, raw_response: object) -> TokenUsage: ...

    async def call(
        self, messages: Sequence[CanonicalMessage], options: CallOptions
    ) -> JSONObject: ...


ProviderFactory: TypeAlias = Callable[[], ProviderAdapter]


# ---------------------------------------------------------------------------
# Error taxonomy
# ---------------------------------------------------------------------------


class ProviderError(RuntimeError):
    """Base normalized provider error with deterministic machine-readable fields."""

    def __init__(
        self,
        *,
        provider: str,
        code: str,
        detail: str,
        retryable: bool,
        http_status: int | None = None,
    ) -> None:
        self.provider = _validate_non_empty_str(provider, "provider")
        self.code = _validate_non_empty_str(code, "code")
        self.detail = _normalize_detail(detail)
        self.retryable = bool(retryable)
        self.http_status = http_status

        parts = [
            f"provider={self.provider}",
            f"code={self.code}",
            f"retryable={str(self.retryable).lower()}",
        ]
        if self.http_status is not None:
            parts.append(f"http_status={self.http_status}")
        parts.append(f"detail={self.detail}")
        super().__init__(" ".join(parts))


class ProviderUnavailableError(ProviderError):
    """Raised when a provider is not registered or not configured."""

    def __init__(self, detail: str, *, provider: str = "provider") -> None:
        super().__init__(provider=provider, code="unavailable", detail=detail, retryable=False)


class ProviderAuthenticationError(ProviderError):
    """Authentication/authorization failures."""

    def __init__(
        self,
        detail: str,
        *,
        provider: str = "provider",
        http_status: int | None = None,
    ) -> None:
        super().__init__(
            provider=provider,
            code="auth",
            detail=detail,
            retryable=False,
            http_status=http_status,
        )


class ProviderInvalidRequestError(ProviderError):
    """Request payload rejected by the provider API."""

    def __init__(
        self,
        detail: str,
        *,
        provider: str = "provider",
        http_status: int | None = None,
    ) -> None:
        super().__init__(
            provider=provider,
            code="invalid_request",
            detail=detail,
            retryable=False,
            http_status=http_status,
        )


class ProviderRateLimitError(ProviderError):
    """Provider rate-limit responses (retryable)."""

    def __init__(
        self,
        detail: str,
        *,
        provider: str = "provider",
        http_status: int | None = 429,
    ) -> None:
        super().__init__(
            provider=provider,
            code="rate_limit",
            detail=detail,
            retryable=True,
            http_status=http_status,
        )


class ProviderTimeoutError(ProviderError):
    """Provider timeout failures (retryable)."""

    def __init__(self, detail: str, *, provider: str = "provider") -> None:
        super().__init__(provider=provider, code="timeout", detail=detail, retryable=True)


class ProviderServiceError(ProviderError):
    """Provider API/service failures; gateway and overload statuses are retryable."""

    def __init__(
        self,
        detail: str,
        *,
        provider: str = "provider",
        retryable: bool = True,
        http_status: int | None = None,
    ) -> None:
        super().__init__(
            provider=provider,
            code="service",
            detail=detail,
            retryable=retryable,
            http_status=http_status,
        )


class ProviderResponseError(ProviderError):
    """Raised when a response cannot be parsed or carries an explicit error body."""

    def __init__(
        self,
        detail: str,
        *,
        provider: str = "provider",
        retryable: bool = False,
        http_status: int | None = None,
    ) -> None:
        super().__init__(
            provider=provider,
            code="response_invalid",
            detail=detail,
            retryable=retryable,
            http_status=http_status,
        )


BlockReason: TypeAlias = Literal["safety", "content_filter", "recitation", "prompt_blocked"]

_BLOCK_REASON_TEXT: Mapping[str, str] = {
    "safety": "response blocked by provider safety filters",
    "content_filter": "response blocked by provider content filter",
    "recitation": "response blocked for reciting copyrighted material",
    "prompt_blocked": "prompt blocked by provider",
}


class ProviderContentBlockedError(ProviderError):
    """Provider refused to return content; never retried."""

    def __init__(
        self,
        reason: BlockReason,
        *,
        provider: str = "provider",
        detail: str | None = None,
    ) -> None:
        if reason not in _BLOCK_REASON_TEXT:
            raise ValueError(f"unknown block reason: {reason}")
        self.reason: BlockReason = reason
        summary = _BLOCK_REASON_TEXT[reason]
        super().__init__(
            provider=provider,
            code=f"blocked_{reason}",
            detail=f"{summary}: {detail}" if detail else summary,
            retryable=False,
        )


def is_retryable_error(error: BaseException) -> bool:
    """Return retryability classification for normalized provider errors."""

    return isinstance(error, ProviderError) and error.retryable


def error_for_status(provider: str, status_code: int, detail: str) -> ProviderError:
    """Map a non-success HTTP status to the matching ``ProviderError`` subclass."""

    message = f"HTTP {status_code}: {detail}" if detail else f"HTTP {status_code}"
    if status_code in {401, 403}:
        return ProviderAuthenticationError(message, provider=provider, http_status=status_code)
    if status_code == 429:
        return ProviderRateLimitError(message, provider=provider, http_status=status_code)
    if status_code in {400, 404, 409, 413, 422}:
        return ProviderInvalidRequestError(message, provider=provider, http_status=status_code)
    retryable = status_code in RETRYABLE_STATUS_CODES or message_signals_transient(detail)
    return ProviderServiceError(
        message,
        provider=provider,
        retryable=retryable,
        http_status=status_code,
    )


def error_for_body(provider: str, error_payload: object) -> ProviderError:
    """Map an ``{"error": {...}}`` body returned with a success status."""

    message = read_str(error_payload, "message") if isinstance(error_payload, Mapping) else None
    if message is None and isinstance(error_payload, str) and error_payload.strip():
        message = error_payload
    detail = message or "API error"
    error_type = (
        read_str(error_payload, "type") if isinstance(error_payload, Mapping) else None
    ) or ""
    if "rate_limit" in error_type:
        return ProviderRateLimitError(detail, provider=provider, http_status=None)
    if "overloaded" in error_type:
        return ProviderServiceError(detail, provider=provider, retryable=True)
    return ProviderResponseError(
        detail,
        provider=provider,
        retryable=message_signals_transient(detail),
    )


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class ProviderRegistry:
    """Lookup table of adapter factories keyed by provider name."""

    def __init__(self) -> None:
        self._factories: dict[str, ProviderFactory] = {}
        self._instances: dict[str, ProviderAdapter] = {}

    def register(self, name: str, factory: ProviderFactory, *, overwrite: bool = False) -> None:
        normalized = _validate_non_empty_str(name, "name").lower()
        if normalized in self._factories and not overwrite:
            raise ValueError(f"provider already registered: {normalized}")
        self._factories[normalized] = factory
        self._instances.pop(normalized, None)

    def names(self) -> tuple[str, ...]:
        return tuple(sorted(self._factories.keys()))

    def get(self, name: str) -> ProviderAdapter:
        normalized = _validate_non_empty_str(name, "name").lower()
        cached = self._instances.get(normalized)
        if cached is not None:
            return cached
        factory = self._factories.get(normalized)
        if factory is None:
            raise ProviderUnavailableError(
                provider=normalized,
                detail="provider is not registered",
            )
        adapter = factory()
        if not isinstance(adapter, ProviderAdapter):
            raise TypeError(f"provider factory returned invalid adapter for {normalized}")
        self._instances[normalized] = adapter
        return adapter


# ---------------------------------------------------------------------------
# Duck-typed readers shared by adapters
# ---------------------------------------------------------------------------


def read_value(value: object, key: str, *, default: object | None = None) -> object | None:
    if isinstance(value, Mapping):
        return cast("object | None", value.get(key, default))
    return cast("object | None", getattr(value, key, default))


def read_sequence(value: object, key: str) -> tuple[object, ...]:
    candidate = read_value(value, key)
    if isinstance(candidate, Sequence) and not isinstance(candidate, (str, bytes, bytearray)):
        return tuple(candidate)
    return ()


def read_int(value: object, key: str) -> int:
    """Integer field or zero; negatives and non-integers count as missing."""

    candidate = read_value(value, key)
    if isinstance(candidate, bool) or not isinstance(candidate, int):
        return 0
    return max(candidate, 0)


def read_str(value: object, key: str) -> str | None:
    candidate = read_value(value, key)
    if isinstance(candidate, str) and candidate.strip():
        return candidate
    return None


def _normalize_detail(value: object) -> str:
    text = str(value).strip()
    if not text:
        return "unknown error"
    return " ".join(text.split())


__all__ = [
    "BlockReason",
    "CallOptions",
    "CanonicalMessage",
    "ContentBlock",
    "DocumentBlock",
    "ImageBlock",
    "JSONObject",
    "JSONValue",
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
    "ProviderUnavailableError",
    "Role",
    "TextBlock",
    "TokenUsage",
    "error_for_body",
    "error_for_status",
    "is_retryable_error",
    "read_int",
    "read_sequence",
    "read_str",
    "read_value",
]
