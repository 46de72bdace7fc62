"""
Token accounting for provider calls.

The dispatch layer extracts a per-call ``TokenUsage`` snapshot and hands it to a
``UsageSink``. ``TokenLedger`` is the in-process sink: it keeps a running total
overall and per ``(provider, model)`` route, plus a request count.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

import structlog

from draft_orchestrator.synthesis_plane.providers.base import TokenUsage


@runtime_checkable
class UsageSink(Protocol):
    def record_usage(self, usage: TokenUsage, model: str, provider: str) -> None: ...


@dataclass(frozen=True, slots=True)
class UsageSnapshot:
    """Immutable view of accumulated usage."""

    total: TokenUsage
    request_count: int
    by_route: tuple[tuple[str, str, TokenUsage], ...]

    def to_dict(self) -> dict[str, object]:
        return {
            "total": self.total.to_dict(),
            "request_count": self.request_count,
            "by_route": [
                {"provider": provider, "model": model, **usage.to_dict()}
                for provider, model, usage in self.by_route
            ],
        }


class TokenLedger:
    """Running token totals keyed by provider and model."""

    def __init__(self, *, logger: Any | None = None) -> None:
        self._logger = logger if logger is not None else structlog.get_logger(__name__)
        self._total = TokenUsage()
        self._by_route: dict[tuple[str, str], TokenUsage] = {}
        self._request_count = 0

    @property
    def total(self) -> TokenUsage:
        return self._total

    @property
    def request_count(self) -> int:
        return self._request_count

    def record_usage(self, usage: TokenUsage, model: str, provider: str) -> None:
        route = (provider, model)
        self._total = self._total + usage
        self._by_route[route] = self._by_route.get(route, TokenUsage()) + usage
        self._request_count += 1
        self._logger.debug(
            "token_usage_recorded",
            provider=provider,
            model=model,
            input_tokens=usage.input,
            output_tokens=usage.output,
            cache_read_tokens=usage.cache_read,
            cache_creation_tokens=usage.cache_creation,
        )

    def usage_for(self, provider: str, model: str) -> TokenUsage:
        return self._by_route.get((provider, model), TokenUsage())

    def snapshot(self) -> UsageSnapshot:
        return UsageSnapshot(
            total=self._total,
            request_count=self._request_count,
            by_route=tuple(
                (provider, model, usage)
                for (provider, model), usage in sorted(self._by_route.items())
            ),
        )

    def reset(self) -> None:
        self._total = TokenUsage()
        self._by_route.clear()
        self._request_count = 0


__all__ = ["TokenLedger", "UsageSink", "UsageSnapshot"]
