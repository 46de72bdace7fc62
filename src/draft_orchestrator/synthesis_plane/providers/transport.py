"""
draft-orchestrator — HTTP transport for provider proxies

File: src/draft_orchestrator/synthesis_plane/providers/transport.py

Purpose
- POST provider-native JSON bodies to the per-family proxy endpoints and normalize
  every transport or status failure into the ``ProviderError`` taxonomy.

Functional requirements
- Timeouts map to ``ProviderTimeoutError``; connection drops map to a retryable
  ``ProviderServiceError``.
- Non-2xx responses map by status code; 2xx bodies carrying ``error`` are still errors.
- Undecodable bodies are treated as transient parse hiccups.

Non-functional requirements
- Credentials are sent as headers only and never logged.
"""

from __future__ import annotations

import json
import time
from collections.abc import Awaitable, Callable, Mapping
from typing import Any, Protocol, TypeAlias, runtime_checkable

import httpx
import structlog

from draft_orchestrator.constants import DEFAULT_BASE_URL
from draft_orchestrator.synthesis_plane.providers.base import (
    CallOptions,
    JSONObject,
    ProviderRequest,
    ProviderResponseError,
    ProviderServiceError,
    ProviderTimeoutError,
    error_for_body,
    error_for_status,
    read_str,
    read_value,
)
from draft_orchestrator.synthesis_plane.retry import RetryOptions, execute_with_retry

SleepFn: TypeAlias = Callable[[float], Awaitable[None]]

_logger = structlog.get_logger(__name__)


@runtime_checkable
class ProviderTransport(Protocol):
    async def post_json(self, request: ProviderRequest) -> JSONObject: ...


class HttpTransport:
    """``httpx.AsyncClient`` wrapper bound to the proxy base URL."""

    def __init__(
        self,
        *,
        base_url: str = DEFAULT_BASE_URL,
        timeout_seconds: float | None = None,
        client: httpx.AsyncClient | None = None,
        logger: Any | None = None,
    ) -> None:
        if timeout_seconds is not None and timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")
        self._base_url = base_url.rstrip("/")
        self._timeout_seconds = timeout_seconds
        self._client = client
        self._owns_client = client is None
        self._logger = logger if logger is not None else _logger

    @property
    def base_url(self) -> str:
        return self._base_url

    async def post_json(self, request: ProviderRequest) -> JSONObject:
        client = self._ensure_client()
        headers = {"Content-Type": "application/json", **request.headers}
        started = time.perf_counter()
        try:
            response = await client.post(request.path, json=request.body, headers=headers)
        except httpx.TimeoutException as exc:
            raise ProviderTimeoutError(
                f"Timeout: {exc.__class__.__name__} calling {request.path}",
                provider=request.provider,
            ) from exc
        except httpx.TransportError as exc:
            raise ProviderServiceError(
                f"Failed to fetch {request.path}: {exc.__class__.__name__} {exc}",
                provider=request.provider,
                retryable=True,
            ) from exc

        latency_ms = int((time.perf_counter() - started) * 1000)
        self._logger.debug(
            "provider_http_exchange",
            provider=request.provider,
            model=request.model,
            path=request.path,
            status_code=response.status_code,
            latency_ms=latency_ms,
        )

        payload = _decode_json(response)
        if not response.is_success:
            detail = _error_detail(payload) or response.reason_phrase or ""
            raise error_for_status(request.provider, response.status_code, detail)
        if payload is None:
            raise ProviderResponseError(
                "Unexpected end of JSON input: response body is not valid JSON",
                provider=request.provider,
                retryable=True,
                http_status=response.status_code,
            )
        if not isinstance(payload, dict):
            raise ProviderResponseError(
                "response body must be a JSON object",
                provider=request.provider,
                http_status=response.status_code,
            )
        error_payload = payload.get("error")
        if error_payload:
            raise error_for_body(request.provider, error_payload)
        return payload

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
        self._client = None

    async def __aenter__(self) -> HttpTransport:
        self._ensure_client()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                timeout=httpx.Timeout(self._timeout_seconds),
            )
            self._owns_client = True
        return self._client


def retry_options_for(
    base: RetryOptions,
    options: CallOptions,
    *,
    provider: str,
    logger: Any,
) -> RetryOptions:
    """Overlay per-call attempt, timeout, and cancel settings onto adapter defaults."""

    def _log_retry(attempt: int, error: BaseException, delay_seconds: float) -> None:
        logger.info(
            "provider_retry_scheduled",
            provider=provider,
            attempt=attempt,
            delay_seconds=delay_seconds,
            error_type=type(error).__name__,
        )

    return RetryOptions(
        max_attempts=options.max_attempts or base.max_attempts,
        per_attempt_timeout=options.timeout_seconds or base.per_attempt_timeout,
        cancel_token=options.cancel_token or base.cancel_token,
        is_retryable=base.is_retryable,
        on_retry=base.on_retry or _log_retry,
    )


async def send_with_retry(
    transport: ProviderTransport,
    request: ProviderRequest,
    retry: RetryOptions,
    *,
    sleep: SleepFn | None = None,
) -> JSONObject:
    """Execute one provider exchange through the retry controller."""

    if sleep is None:
        return await execute_with_retry(lambda: transport.post_json(request), retry)
    return await execute_with_retry(lambda: transport.post_json(request), retry, sleep=sleep)


def _decode_json(response: httpx.Response) -> object | None:
    if not response.content:
        return None
    try:
        return response.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None


def _error_detail(payload: object) -> str | None:
    if not isinstance(payload, Mapping):
        return None
    error_payload = read_value(payload, "error")
    if isinstance(error_payload, str):
        return error_payload
    if isinstance(error_payload, Mapping):
        return read_str(error_payload, "message")
    return read_str(payload, "message")


__all__ = ["HttpTransport", "ProviderTransport", "retry_options_for", "send_with_retry"]
