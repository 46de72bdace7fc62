"""
draft-orchestrator — batch orchestrator

File: src/draft_orchestrator/control_plane/batch.py

Purpose
- Fan a per-item operation out over many inputs in concurrency-bounded batches,
  publishing progress after every batch and honoring a shared cancellation token.

What should be included in this file
- ``BatchOptions``/``BatchJob``/``BatchRun`` state models.
- ``BatchOrchestrator.run`` with stagger offsets, inter-batch delay, and per-item
  failure isolation.
- Post-run similarity pre-check over generated payloads.

Functional requirements
- Batch N+1 starts only after every item of batch N has settled.
- One item's failure never aborts its siblings; cancellation is never an error.

Non-functional requirements
- Result lists are mutated only by the orchestrator, sequentially, after each gather.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Generic, TypeVar

import structlog

from draft_orchestrator.config.schema import BatchSettings
from draft_orchestrator.constants import (
    DEFAULT_PARALLEL_REQUESTS,
    DEFAULT_STAGGER_DELAY_SECONDS,
    INTER_BATCH_DELAY_SECONDS,
    SIMILARITY_THRESHOLD,
)
from draft_orchestrator.knowledge_plane.similarity import (
    CorpusEntry,
    SimilarityIndex,
    SimilarityMatch,
)
from draft_orchestrator.utils.concurrency import CancellationToken, OperationCancelledError

T = TypeVar("T")

SleepFn = Callable[[float], Awaitable[None]]
Clock = Callable[[], float]

_logger = structlog.get_logger(__name__)


class JobStatus(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    ERROR = "error"
    CANCELLED = "cancelled"


@dataclass(frozen=True, slots=True)
class GeneratedItem:
    """One payload produced by a per-item operation."""

    input_ref: str
    item_id: str
    content: str
    payload: dict[str, Any] = field(default_factory=dict)
    similarity: SimilarityMatch | None = None

    @property
    def flagged_similar(self) -> bool:
        return self.similarity is not None and self.similarity.has_similar


ItemOperation = Callable[[T, CancellationToken], Awaitable[Sequence[GeneratedItem]]]


@dataclass(slots=True)
class BatchJob:
    input_ref: str
    status: JobStatus = JobStatus.PENDING
    result: tuple[GeneratedItem, ...] = ()
    error_message: str | None = None
    duration_ms: int = 0


@dataclass(frozen=True, slots=True)
class BatchError:
    input_ref: str
    message: str


@dataclass(frozen=True, slots=True)
class BatchOptions:
    batch_size: int = DEFAULT_PARALLEL_REQUESTS
    stagger_delay: float = DEFAULT_STAGGER_DELAY_SECONDS
    inter_batch_delay: float = INTER_BATCH_DELAY_SECONDS
    similarity_threshold: float = SIMILARITY_THRESHOLD
    cancel_token: CancellationToken | None = field(default=None, compare=False)

    def __post_init__(self) -> None:
        if self.batch_size <= 0:
            raise ValueError("batch_size must be > 0")
        if self.stagger_delay < 0:
            raise ValueError("stagger_delay must be >= 0")
        if self.inter_batch_delay < 0:
            raise ValueError("inter_batch_delay must be >= 0")
        if not (0.0 < self.similarity_threshold <= 1.0):
            raise ValueError("similarity_threshold must be in (0.0, 1.0]")

    @classmethod
    def from_settings(
        cls, settings: BatchSettings, *, cancel_token: CancellationToken | None = None
    ) -> BatchOptions:
        return cls(
            batch_size=settings.parallel_requests,
            stagger_delay=settings.stagger_delay_seconds,
            inter_batch_delay=settings.inter_batch_delay_seconds,
            similarity_threshold=settings.similarity_threshold,
            cancel_token=cancel_token,
        )


@dataclass(frozen=True, slots=True)
class BatchProgress:
    """Snapshot handed to ``on_progress`` after each batch settles."""

    batch_index: int
    total_batches: int
    processed: int
    total: int
    generated: int
    errors: int


ProgressCallback = Callable[[BatchProgress], None]


@dataclass(slots=True)
class BatchRun(Generic[T]):
    items: tuple[T, ...]
    batch_size: int
    cancel_token: CancellationToken
    jobs: list[BatchJob] = field(default_factory=list)
    generated: list[GeneratedItem] = field(default_factory=list)
    errors: list[BatchError] = field(default_factory=list)
    current_batch_index: int = 0
    cancelled: bool = False

    @property
    def total_batches(self) -> int:
        return -(-len(self.items) // self.batch_size)

    @property
    def processed(self) -> list[BatchJob]:
        return [job for job in self.jobs if job.status is not JobStatus.PENDING]

    @property
    def similar(self) -> list[GeneratedItem]:
        return [item for item in self.generated if item.flagged_similar]

    def snapshot(self) -> BatchProgress:
        return BatchProgress(
            batch_index=self.current_batch_index,
            total_batches=self.total_batches,
            processed=len(self.processed),
            total=len(self.items),
            generated=len(self.generated),
            errors=len(self.errors),
        )


def default_item_ref(item: object) -> str:
    name = getattr(item, "name", None)
    if isinstance(name, str) and name:
        return name
    return str(item)


class BatchOrchestrator:
    """Runs an item operation over inputs in consecutive, staggered batches."""

    def __init__(
        self,
        *,
        similarity_index: SimilarityIndex | None = None,
        item_ref: Callable[[Any], str] = default_item_ref,
        sleep: SleepFn = asyncio.sleep,
        clock: Clock = time.monotonic,
        logger: Any | None = None,
    ) -> None:
        self._similarity_index = similarity_index
        self._item_ref = item_ref
        self._sleep = sleep
        self._clock = clock
        self._logger = logger if logger is not None else _logger

    async def run(
        self,
        items: Sequence[T],
        operation: ItemOperation[T],
        options: BatchOptions | None = None,
        on_progress: ProgressCallback | None = None,
        *,
        corpus: Sequence[CorpusEntry] = (),
    ) -> BatchRun[T]:
        opts = options if options is not None else BatchOptions()
        token = opts.cancel_token if opts.cancel_token is not None else CancellationToken()
        run: BatchRun[T] = BatchRun(
            items=tuple(items), batch_size=opts.batch_size, cancel_token=token
        )

        self._logger.info(
            "batch_run_started",
            items=len(run.items),
            batch_size=opts.batch_size,
            total_batches=run.total_batches,
        )

        for batch_index, start in enumerate(range(0, len(run.items), opts.batch_size)):
            if token.is_cancelled:
                run.cancelled = True
                break
            run.current_batch_index = batch_index
            batch = run.items[start : start + opts.batch_size]
            jobs = [BatchJob(input_ref=self._item_ref(item)) for item in batch]
            run.jobs.extend(jobs)

            outcomes = await asyncio.gather(
                *(
                    self._run_item(item, job, offset * opts.stagger_delay, operation, token)
                    for offset, (item, job) in enumerate(zip(batch, jobs, strict=True))
                ),
                return_exceptions=True,
            )
            for job, outcome in zip(jobs, outcomes, strict=True):
                self._apply_outcome(run, job, outcome)

            self._logger.info(
                "batch_completed",
                batch_index=batch_index,
                total_batches=run.total_batches,
                succeeded=sum(1 for job in jobs if job.status is JobStatus.SUCCESS),
                failed=sum(1 for job in jobs if job.status is JobStatus.ERROR),
            )
            self._publish(on_progress, run)

            if start + opts.batch_size < len(run.items):
                await self._sleep(opts.inter_batch_delay)
                if token.is_cancelled:
                    run.cancelled = True
                    break

        if run.cancelled:
            self._logger.info(
                "batch_run_cancelled",
                batch_index=run.current_batch_index,
                processed=len(run.processed),
                total=len(run.items),
            )

        self._similarity_precheck(run, corpus, opts.similarity_threshold)
        self._logger.info(
            "batch_run_finished",
            processed=len(run.processed),
            generated=len(run.generated),
            errors=len(run.errors),
            cancelled=run.cancelled,
        )
        return run

    async def _run_item(
        self,
        item: T,
        job: BatchJob,
        start_offset: float,
        operation: ItemOperation[T],
        token: CancellationToken,
    ) -> Sequence[GeneratedItem]:
        if start_offset > 0:
            await self._sleep(start_offset)
        started = self._clock()
        try:
            token.raise_if_cancelled()
            return await operation(item, token)
        finally:
            job.duration_ms = int((self._clock() - started) * 1000)

    def _apply_outcome(self, run: BatchRun[Any], job: BatchJob, outcome: object) -> None:
        if isinstance(outcome, OperationCancelledError):
            job.status = JobStatus.CANCELLED
            return
        if isinstance(outcome, BaseException):
            if not isinstance(outcome, Exception):
                raise outcome
            job.status = JobStatus.ERROR
            job.error_message = str(outcome) or type(outcome).__name__
            run.errors.append(BatchError(input_ref=job.input_ref, message=job.error_message))
            self._logger.warning(
                "batch_item_failed",
                input_ref=job.input_ref,
                error_type=type(outcome).__name__,
                error=job.error_message,
            )
            return
        generated = tuple(outcome) if isinstance(outcome, Sequence) else ()
        job.status = JobStatus.SUCCESS
        job.result = generated
        run.generated.extend(generated)

    def _publish(self, callback: ProgressCallback | None, run: BatchRun[Any]) -> None:
        if callback is None:
            return
        try:
            callback(run.snapshot())
        except Exception as exc:  # noqa: BLE001 - progress observers must not stop the run.
            self._logger.warning("batch_progress_observer_failed", error=str(exc))

    def _similarity_precheck(
        self,
        run: BatchRun[Any],
        corpus: Sequence[CorpusEntry],
        threshold: float,
    ) -> None:
        if self._similarity_index is None or not corpus or not run.generated:
            return
        annotated: list[GeneratedItem] = []
        for item in run.generated:
            match = self._similarity_index.find_similar(
                CorpusEntry(id=item.item_id, content=item.content), corpus, threshold
            )
            if match.has_similar:
                self._logger.info(
                    "similarity_precheck_flagged",
                    item_id=item.item_id,
                    input_ref=item.input_ref,
                    similarity=round(match.similarity, 4),
                    match_id=None if match.match is None else match.match.id,
                )
            annotated.append(replace(item, similarity=match))
        run.generated[:] = annotated


__all__ = [
    "BatchError",
    "BatchJob",
    "BatchOptions",
    "BatchOrchestrator",
    "BatchProgress",
    "BatchRun",
    "GeneratedItem",
    "ItemOperation",
    "JobStatus",
    "ProgressCallback",
    "default_item_ref",
]
