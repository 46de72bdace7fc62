"""
draft-orchestrator — retry controller tests

File: tests/unit/synthesis_plane/test_retry.py

Purpose
- Validate attempt bounds, retryability, backoff, and cancellation of ``execute_with_retry``.

Functional requirements
- No real sleeping; the sleep function is a recorder.
"""

from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass, field

import pytest

from draft_orchestrator.synthesis_plane.providers.base import (
    ProviderAuthenticationError,
    ProviderRateLimitError,
)
from draft_orchestrator.synthesis_plane.retry import (
    RetryExhaustedError,
    RetryOptions,
    backoff_delay,
    execute_with_retry,
    is_retryable,
)
from draft_orchestrator.utils.concurrency import CancellationToken, OperationCancelledError


@dataclass(slots=True)
class SleepRecorder:
    calls: list[float] = field(default_factory=list)

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        await asyncio.sleep(0)


@dataclass(slots=True)
class ScriptedOperation:
    outcomes: deque[str | Exception]
    calls: int = 0

    async def __call__(self) -> str:
        self.calls += 1
        if not self.outcomes:
            raise RuntimeError("scripted outcomes exhausted")
        outcome = self.outcomes.popleft()
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class StatusError(Exception):
    def __init__(self, status_code: int) -> None:
        super().__init__(f"HTTP {status_code}")
        self.status_code = status_code


async def test_rate_limits_are_retried_until_success() -> None:
    sleep = SleepRecorder()
    operation = ScriptedOperation(deque([StatusError(429), StatusError(429), "ok"]))

    result = await execute_with_retry(operation, RetryOptions(max_attempts=3), sleep=sleep)

    assert result == "ok"
    assert operation.calls == 3
    assert sleep.calls == [4.0, 8.0]


async def test_client_error_is_not_retried() -> None:
    sleep = SleepRecorder()
    operation = ScriptedOperation(deque([StatusError(400), "never"]))

    with pytest.raises(StatusError):
        await execute_with_retry(operation, RetryOptions(max_attempts=3), sleep=sleep)

    assert operation.calls == 1
    assert sleep.calls == []


async def test_cancelled_token_prevents_any_attempt() -> None:
    token = CancellationToken()
    token.cancel()
    operation = ScriptedOperation(deque(["ok"]))

    with pytest.raises(OperationCancelledError):
        await execute_with_retry(
            operation,
            RetryOptions(max_attempts=3, cancel_token=token),
            sleep=SleepRecorder(),
        )

    assert operation.calls == 0


async def test_cancellation_during_backoff_stops_retrying() -> None:
    token = CancellationToken()
    operation = ScriptedOperation(deque([StatusError(503), "ok"]))

    async def cancelling_sleep(seconds: float) -> None:
        _ = seconds
        token.cancel()

    with pytest.raises(OperationCancelledError):
        await execute_with_retry(
            operation,
            RetryOptions(max_attempts=3, cancel_token=token),
            sleep=cancelling_sleep,
        )

    assert operation.calls == 1


async def test_exhaustion_reports_attempt_count_and_last_error() -> None:
    operation = ScriptedOperation(deque([StatusError(503)] * 3))

    with pytest.raises(RetryExhaustedError) as excinfo:
        await execute_with_retry(operation, RetryOptions(max_attempts=3), sleep=SleepRecorder())

    assert excinfo.value.attempts == 3
    assert "failed after 3 attempts" in str(excinfo.value)
    assert isinstance(excinfo.value.last_error, StatusError)
    assert operation.calls == 3


async def test_single_attempt_reraises_retryable_error_unwrapped() -> None:
    operation = ScriptedOperation(deque([ProviderRateLimitError("slow down", provider="claude")]))
    sleep = SleepRecorder()

    with pytest.raises(ProviderRateLimitError, match="slow down"):
        await execute_with_retry(operation, RetryOptions(max_attempts=1), sleep=sleep)

    assert operation.calls == 1
    assert sleep.calls == []


def test_exhaustion_message_uses_singular_for_one_attempt() -> None:
    error = RetryExhaustedError(attempts=1, last_error=StatusError(503))

    assert "failed after 1 attempt:" in str(error)


async def test_per_attempt_timeout_is_retryable() -> None:
    calls = 0

    async def slow_then_fast() -> str:
        nonlocal calls
        calls += 1
        if calls == 1:
            await asyncio.sleep(1)
        return "fast"

    result = await execute_with_retry(
        slow_then_fast,
        RetryOptions(max_attempts=2, per_attempt_timeout=0.01),
        sleep=SleepRecorder(),
    )

    assert result == "fast"
    assert calls == 2


async def test_on_retry_observer_failures_do_not_change_flow() -> None:
    seen: list[tuple[int, float]] = []

    def observer(attempt: int, error: BaseException, delay: float) -> None:
        _ = error
        seen.append((attempt, delay))
        raise RuntimeError("observer exploded")

    operation = ScriptedOperation(deque([StatusError(502), "ok"]))
    result = await execute_with_retry(
        operation,
        RetryOptions(max_attempts=2, on_retry=observer),
        sleep=SleepRecorder(),
    )

    assert result == "ok"
    assert seen == [(1, 4.0)]


def test_backoff_doubles_from_four_seconds() -> None:
    assert [backoff_delay(index) for index in range(4)] == [4.0, 8.0, 16.0, 32.0]
    with pytest.raises(ValueError):
        backoff_delay(-1)


@pytest.mark.parametrize(
    ("error", "expected"),
    [
        (StatusError(429), True),
        (StatusError(500), False),
        (StatusError(529), True),
        (StatusError(401), False),
        (TimeoutError("slow"), True),
        (RuntimeError("Rate limit reached for requests"), True),
        (RuntimeError("Failed to fetch"), True),
        (RuntimeError("upstream said 503"), True),
        (ValueError("prompt too long"), False),
        (OperationCancelledError(), False),
        (ProviderRateLimitError("slow down", provider="claude"), True),
        (ProviderAuthenticationError("bad key", provider="claude", http_status=401), False),
    ],
)
def test_is_retryable_classification(error: BaseException, expected: bool) -> None:
    assert is_retryable(error) is expected


def test_retry_options_validation() -> None:
    with pytest.raises(ValueError):
        RetryOptions(max_attempts=0)
    with pytest.raises(ValueError):
        RetryOptions(per_attempt_timeout=0)
