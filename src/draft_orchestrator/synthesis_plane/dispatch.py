"""
draft-orchestrator — provider dispatch

File: src/draft_orchestrator/synthesis_plane/dispatch.py

Purpose
- Canonical ``call_ai`` surface: select an adapter from the lookup table, consult the
  response cache, execute the call, account token usage, and extract text.

What should be included in this file
- Default registry wiring for the four provider families from ``Settings``.
- Optional response caching keyed by a caller-supplied semantic key.
- Usage recording through a ``UsageSink``.

Functional requirements
- Provider defaults to ``settings.provider`` when the call does not name one.
- ``extract_text=False`` returns the raw provider JSON.
- Must support fake adapters for offline tests.
"""

from __future__ import annotations

import asyncio
import json
import os
import time
from collections.abc import Awaitable, Callable, Mapping, Sequence
from typing import Any

import structlog

from draft_orchestrator.config.schema import Settings, default_settings
from draft_orchestrator.constants import (
    PROVIDER_CLAUDE,
    PROVIDER_GEMINI,
    PROVIDER_GROK,
    PROVIDER_OPENAI,
)
from draft_orchestrator.synthesis_plane.cache import ResponseCache
from draft_orchestrator.synthesis_plane.providers.base import (
    CallOptions,
    CanonicalMessage,
    JSONObject,
    ProviderAdapter,
    ProviderRegistry,
)
from draft_orchestrator.synthesis_plane.providers.claude_adapter import ClaudeAdapter
from draft_orchestrator.synthesis_plane.providers.gemini_adapter import GeminiAdapter
from draft_orchestrator.synthesis_plane.providers.openai_adapter import OpenAICompatibleAdapter
from draft_orchestrator.synthesis_plane.providers.transport import HttpTransport, ProviderTransport
from draft_orchestrator.synthesis_plane.retry import RetryOptions
from draft_orchestrator.synthesis_plane.usage import UsageSink

SleepFn = Callable[[float], Awaitable[None]]

_RAW_KEY_PREFIX = "raw:"

_logger = structlog.get_logger(__name__)


def build_default_registry(
    settings: Settings,
    *,
    transport: ProviderTransport | None = None,
    environ: Mapping[str, str] | None = None,
    sleep: SleepFn = asyncio.sleep,
) -> ProviderRegistry:
    """Register the Claude, Gemini, OpenAI, and Grok adapters over one transport."""

    env_map = os.environ if environ is None else environ
    shared_transport = (
        transport if transport is not None else HttpTransport(base_url=settings.base_url)
    )
    retry = RetryOptions(
        max_attempts=settings.retry.max_attempts,
        per_attempt_timeout=settings.retry.per_attempt_timeout_seconds,
    )

    def _common(name: str) -> dict[str, Any]:
        provider = settings.provider_settings(name)
        return {
            "model": provider.model,
            "transport": shared_transport,
            "api_key": provider.api_key(env_map),
            "default_max_tokens": settings.max_tokens,
            "instructions": settings.instructions,
            "retry": retry,
            "sleep": sleep,
        }

    registry = ProviderRegistry()
    registry.register(PROVIDER_CLAUDE, lambda: ClaudeAdapter(**_common(PROVIDER_CLAUDE)))
    registry.register(PROVIDER_GEMINI, lambda: GeminiAdapter(**_common(PROVIDER_GEMINI)))
    registry.register(
        PROVIDER_OPENAI,
        lambda: OpenAICompatibleAdapter(name=PROVIDER_OPENAI, **_common(PROVIDER_OPENAI)),
    )
    registry.register(
        PROVIDER_GROK,
        lambda: OpenAICompatibleAdapter(name=PROVIDER_GROK, **_common(PROVIDER_GROK)),
    )
    return registry


class Dispatcher:
    """Stateful ``call_ai`` entry point bound to settings, registry, cache, and usage sink."""

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        registry: ProviderRegistry | None = None,
        transport: ProviderTransport | None = None,
        cache: ResponseCache | None = None,
        usage_sink: UsageSink | None = None,
        logger: Any | None = None,
    ) -> None:
        self.settings = settings if settings is not None else default_settings()
        self._owned_transport: HttpTransport | None = None
        if registry is None:
            if transport is None:
                self._owned_transport = HttpTransport(base_url=self.settings.base_url)
                transport = self._owned_transport
            registry = build_default_registry(self.settings, transport=transport)
        self.registry = registry
        self.cache = cache
        self.usage_sink = usage_sink
        self._logger = logger if logger is not None else _logger

    async def aclose(self) -> None:
        if self._owned_transport is not None:
            await self._owned_transport.aclose()

    async def __aenter__(self) -> Dispatcher:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    def adapter_for(self, options: CallOptions) -> ProviderAdapter:
        return self.registry.get(options.provider or self.settings.provider)

    async def call_ai(
        self,
        messages: Sequence[CanonicalMessage],
        options: CallOptions | None = None,
    ) -> str | JSONObject:
        opts = options if options is not None else CallOptions()
        if not messages:
            raise ValueError("messages cannot be empty")
        adapter = self.adapter_for(opts)
        model = opts.model or getattr(adapter, "model", None) or adapter.name

        cache_key = _scoped_cache_key(opts)
        if cache_key is not None and self.cache is not None:
            cached, found = self.cache.get(cache_key)
            if found and cached is not None:
                self._logger.debug("ai_call_cache_hit", provider=adapter.name, model=model)
                return cached if opts.extract_text else json.loads(cached)

        started = time.perf_counter()
        raw = await adapter.call(messages, opts)
        latency_ms = int((time.perf_counter() - started) * 1000)

        if opts.log_metrics:
            usage = adapter.extract_token_usage(raw)
            if self.usage_sink is not None:
                self.usage_sink.record_usage(usage, model, adapter.name)
            self._logger.info(
                "ai_call_completed",
                provider=adapter.name,
                model=model,
                latency_ms=latency_ms,
                input_tokens=usage.input,
                output_tokens=usage.output,
                cache_read_tokens=usage.cache_read,
                cache_creation_tokens=usage.cache_creation,
            )

        result: str | JSONObject = adapter.extract_text(raw) if opts.extract_text else raw
        if cache_key is not None and self.cache is not None:
            self.cache.set(
                cache_key,
                result if isinstance(result, str) else json.dumps(result, ensure_ascii=False),
            )
        return result


async def call_ai(
    messages: Sequence[CanonicalMessage],
    options: CallOptions | None = None,
    *,
    settings: Settings | None = None,
    registry: ProviderRegistry | None = None,
    cache: ResponseCache | None = None,
    usage_sink: UsageSink | None = None,
) -> str | JSONObject:
    """One-shot convenience wrapper around ``Dispatcher.call_ai``."""

    async with Dispatcher(
        settings, registry=registry, cache=cache, usage_sink=usage_sink
    ) as dispatcher:
        return await dispatcher.call_ai(messages, options)


def _scoped_cache_key(options: CallOptions) -> str | None:
    if options.cache_key is None:
        return None
    if options.extract_text:
        return options.cache_key
    return _RAW_KEY_PREFIX + options.cache_key


__all__ = ["Dispatcher", "build_default_registry", "call_ai"]
