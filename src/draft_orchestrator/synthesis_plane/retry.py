"""
draft-orchestrator — retry controller

File: src/draft_orchestrator/synthesis_plane/retry.py

Purpose
- Execute an async operation with bounded attempts, a per-attempt timeout, and
  cooperative cancellation.

What should be included in this file
- Retryability classification for provider errors and raw transport exceptions.
- Aggressive exponential backoff (4s, 8s, 16s, ...) tuned for provider rate limits.
- Cancellation checkpoints before each attempt and around each backoff sleep.
- A terminal error that states how many attempts were made.

Functional requirements
- Cancellation is never retried and never reclassified as a failure.
- ``on_retry`` observes; it cannot change control flow.
"""

from __future__ import annotations

import asyncio
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, TypeAlias, TypeVar

import structlog

from draft_orchestrator.constants import (
    DEFAULT_ATTEMPT_TIMEOUT_SECONDS,
    DEFAULT_MAX_ATTEMPTS,
    RETRYABLE_STATUS_CODES,
)
from draft_orchestrator.utils.concurrency import (
    CancellationToken,
    OperationCancelledError,
    run_with_timeout,
)

T = TypeVar("T")

SleepFn: TypeAlias = Callable[[float], Awaitable[None]]
RetryCallback: TypeAlias = Callable[[int, BaseException, float], None]
RetryPredicate: TypeAlias = Callable[[BaseException], bool]

_TRANSIENT_MESSAGE_PATTERN = re.compile(
    r"timeout|timed out|rate limit|rate_limit|overloaded|failed to fetch|"
    r"connection (?:error|reset|refused|failed)|network error|unexpected end of json",
    re.IGNORECASE,
)
_STATUS_IN_MESSAGE = re.compile(
    r"\b(" + "|".join(str(code) for code in sorted(RETRYABLE_STATUS_CODES)) + r")\b"
)

_logger = structlog.get_logger(__name__)


class RetryExhaustedError(RuntimeError):
    """Raised after every allowed attempt failed with a retryable error."""

    def __init__(self, *, attempts: int, last_error: BaseException) -> None:
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"failed after {attempts} attempt{'' if attempts == 1 else 's'}: {last_error}. "
            "The provider appears overloaded or rate limited; wait a few minutes and try again."
        )


def is_retryable(error: BaseException) -> bool:
    """Classify ``error`` as transient (retry) or terminal (propagate)."""

    if isinstance(error, (OperationCancelledError, RetryExhaustedError)):
        return False
    retryable = getattr(error, "retryable", None)
    if isinstance(retryable, bool):
        return retryable
    if isinstance(error, TimeoutError):
        return True
    status_code = _read_status_code(error)
    if status_code is not None:
        return status_code in RETRYABLE_STATUS_CODES
    message = str(error)
    return message_signals_transient(message) or bool(_STATUS_IN_MESSAGE.search(message))


def message_signals_transient(message: str) -> bool:
    """True when an error message names a timeout, rate limit, overload, or network drop."""

    return bool(_TRANSIENT_MESSAGE_PATTERN.search(message))


def backoff_delay(attempt_index: int) -> float:
    """Delay in seconds after the 0-indexed failed attempt ``attempt_index``."""

    if attempt_index < 0:
        raise ValueError("attempt_index must be >= 0")
    return float(2 ** (attempt_index + 2))


@dataclass(frozen=True, slots=True)
class RetryOptions:
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    per_attempt_timeout: float | None = DEFAULT_ATTEMPT_TIMEOUT_SECONDS
    cancel_token: CancellationToken | None = field(default=None, compare=False)
    is_retryable: RetryPredicate = is_retryable
    on_retry: RetryCallback | None = None

    def __post_init__(self) -> None:
        if self.max_attempts <= 0:
            raise ValueError("max_attempts must be > 0")
        if self.per_attempt_timeout is not None and self.per_attempt_timeout <= 0:
            raise ValueError("per_attempt_timeout must be > 0")


async def execute_with_retry(
    operation: Callable[[], Awaitable[T]],
    options: RetryOptions | None = None,
    *,
    sleep: SleepFn = asyncio.sleep,
    logger: Any | None = None,
) -> T:
    """Run ``operation`` until it succeeds, fails terminally, or attempts run out.

    A single-attempt budget re-raises the operation's own error unwrapped.
    """

    opts = options if options is not None else RetryOptions()
    log = logger if logger is not None else _logger
    token = opts.cancel_token
    last_error: BaseException | None = None

    for attempt_index in range(opts.max_attempts):
        _checkpoint(token)
        try:
            return await run_with_timeout(operation(), opts.per_attempt_timeout, token)
        except OperationCancelledError:
            raise
        except Exception as exc:
            last_error = exc
            if opts.max_attempts == 1 or not opts.is_retryable(exc):
                raise
            if attempt_index == opts.max_attempts - 1:
                break

            delay_seconds = backoff_delay(attempt_index)
            log.warning(
                "retry_scheduled",
                attempt=attempt_index + 1,
                max_attempts=opts.max_attempts,
                delay_seconds=delay_seconds,
                error=str(exc),
            )
            _notify(opts.on_retry, attempt_index + 1, exc, delay_seconds, log)
            _checkpoint(token)
            await sleep(delay_seconds)
            _checkpoint(token)

    assert last_error is not None
    log.error("retry_exhausted", attempts=opts.max_attempts, error=str(last_error))
    raise RetryExhaustedError(attempts=opts.max_attempts, last_error=last_error) from last_error


def _checkpoint(token: CancellationToken | None) -> None:
    if token is not None:
        token.raise_if_cancelled()


def _notify(
    callback: RetryCallback | None,
    attempt: int,
    error: BaseException,
    delay_seconds: float,
    log: Any,
) -> None:
    if callback is None:
        return
    try:
        callback(attempt, error, delay_seconds)
    except Exception as exc:  # noqa: BLE001 - observers must not alter retry flow.
        log.warning("retry_observer_failed", attempt=attempt, error=str(exc))


def _read_status_code(exc: BaseException) -> int | None:
    for key in ("status_code", "status", "http_status"):
        value = getattr(exc, key, None)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    response = getattr(exc, "response", None)
    if response is not None:
        nested = getattr(response, "status_code", None)
        if isinstance(nested, int):
            return nested
    return None


__all__ = [
    "RetryCallback",
    "RetryExhaustedError",
    "RetryOptions",
    "RetryPredicate",
    "SleepFn",
    "backoff_delay",
    "execute_with_retry",
    "is_retryable",
    "message_signals_transient",
]
