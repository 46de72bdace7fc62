"""Cooperative cancellation and bounded waiting for provider calls and batch runs."""

from __future__ import annotations

import asyncio
import inspect
from typing import TYPE_CHECKING, TypeVar

if TYPE_CHECKING:
    from collections.abc import Awaitable

T = TypeVar("T")

CANCELLED_BY_USER_MESSAGE = "operation cancelled by user"


class OperationCancelledError(Exception):
    """Raised when a run is stopped through its ``CancellationToken``.

    Not an ``asyncio.CancelledError``: the task observing it keeps running and can
    report the cancellation as an outcome instead of a failure.
    """

    def __init__(self, message: str = CANCELLED_BY_USER_MESSAGE) -> None:
        super().__init__(message)


class CancellationToken:
    """One-shot stop signal shared by every stage of a run."""

    __slots__ = ("_flag", "_reason")

    def __init__(self) -> None:
        self._flag = asyncio.Event()
        self._reason: str | None = None

    @property
    def is_cancelled(self) -> bool:
        return self._flag.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    def cancel(self, reason: str | None = None) -> None:
        """Signal cancellation; only the first reason is kept."""
        if self._flag.is_set():
            return
        self._reason = reason
        self._flag.set()

    def raise_if_cancelled(self) -> None:
        if self.is_cancelled:
            raise OperationCancelledError()

    async def wait(self) -> None:
        await self._flag.wait()


async def run_with_timeout(
    awaitable: Awaitable[T],
    timeout_seconds: float | None,
    cancel_token: CancellationToken | None = None,
) -> T:
    """Await ``awaitable`` until it finishes, times out, or the token fires.

    The inner task is cancelled in both failure cases so in-flight HTTP requests are
    abandoned. ``timeout_seconds=None`` waits without a deadline.
    """
    if timeout_seconds is not None and timeout_seconds <= 0:
        _discard(awaitable)
        raise ValueError("timeout_seconds must be > 0")
    if cancel_token is not None and cancel_token.is_cancelled:
        _discard(awaitable)
        raise OperationCancelledError()

    work: asyncio.Future[T] = asyncio.ensure_future(awaitable)
    watcher = asyncio.ensure_future(cancel_token.wait()) if cancel_token is not None else None
    racing = {work} if watcher is None else {work, watcher}

    try:
        finished, _ = await asyncio.wait(
            racing, timeout=timeout_seconds, return_when=asyncio.FIRST_COMPLETED
        )
        if work in finished:
            return work.result()
        await _stop(work)
        if watcher is not None and watcher in finished:
            raise OperationCancelledError()
        raise TimeoutError(f"Timeout: operation exceeded {timeout_seconds} seconds")
    except asyncio.CancelledError:
        await _stop(work)
        raise
    finally:
        if watcher is not None:
            await _stop(watcher)


async def _stop(future: asyncio.Future[object]) -> None:
    if not future.done():
        future.cancel()
    await asyncio.gather(future, return_exceptions=True)


def _discard(awaitable: Awaitable[object]) -> None:
    # An unscheduled coroutine must be closed or the interpreter warns at collection.
    if inspect.iscoroutine(awaitable):
        awaitable.close()


__all__ = [
    "CANCELLED_BY_USER_MESSAGE",
    "CancellationToken",
    "OperationCancelledError",
    "run_with_timeout",
]
