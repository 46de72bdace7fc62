"""
draft-orchestrator — double-check verification workflow

File: src/draft_orchestrator/verification_plane/workflow.py

Purpose
- Review a primary model result with a secondary call and hold the pipeline until a
  human accepts or rejects the proposed corrections.

What should be included in this file
- State machine ``idle -> requested -> awaiting_human_decision -> applied | discarded``
  with ``unchanged`` and ``failed`` terminal outcomes.
- ``ReviewRequest`` handoff over an ``asyncio.Queue`` and a one-shot future.
- ``ErrorReporter`` and ``DecisionSurface`` collaborator protocols.

Functional requirements
- A failed secondary call never fails the primary result: ``failed=True`` and the
  original text is returned.
- Empty corrections are a no-op.
- The human decision wait has no timeout.
"""

from __future__ import annotations

import asyncio
from collections.abc import Collection, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol

import structlog

from draft_orchestrator.config.schema import Settings
from draft_orchestrator.synthesis_plane.providers.base import (
    CallOptions,
    CanonicalMessage,
    ContentBlock,
    JSONObject,
)
from draft_orchestrator.utils.concurrency import CancellationToken, OperationCancelledError
from draft_orchestrator.verification_plane.corrections import (
    Correction,
    apply_selected,
    select_only,
    to_selectable,
)
from draft_orchestrator.verification_plane.prompts import PromptCatalog, default_prompt_catalog
from draft_orchestrator.verification_plane.schema import parse_double_check

_logger = structlog.get_logger(__name__)


class VerificationState(str, Enum):
    IDLE = "idle"
    REQUESTED = "requested"
    AWAITING_HUMAN_DECISION = "awaiting_human_decision"
    APPLIED = "applied"
    DISCARDED = "discarded"
    UNCHANGED = "unchanged"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class VerificationResult:
    verified_text: str
    corrections: tuple[Correction, ...] = ()
    summary: str = ""
    confidence: float = 0.0
    failed: bool = False
    state: VerificationState = VerificationState.IDLE
    error: str | None = None

    @property
    def changed(self) -> bool:
        return self.state is VerificationState.APPLIED


@dataclass(frozen=True, slots=True)
class CorrectionDecision:
    selected_ids: frozenset[str] = frozenset()

    @classmethod
    def keep(cls, ids: Collection[str]) -> CorrectionDecision:
        return cls(selected_ids=frozenset(ids))

    @classmethod
    def accept_all(cls, corrections: Sequence[Correction]) -> CorrectionDecision:
        return cls(selected_ids=frozenset(item.id for item in corrections))

    @classmethod
    def reject_all(cls) -> CorrectionDecision:
        return cls()


@dataclass(slots=True)
class ReviewRequest:
    """Everything a reviewer needs, plus the future that resumes the workflow."""

    operation: str
    original: str
    verified: str
    corrections: tuple[Correction, ...]
    summary: str
    confidence: float
    decision: asyncio.Future[CorrectionDecision] = field(repr=False)

    def resolve(self, decision: CorrectionDecision) -> bool:
        """Deliver the decision; later calls are ignored and return ``False``."""

        if self.decision.done():
            return False
        self.decision.set_result(decision)
        return True


class CallAI(Protocol):
    async def call_ai(
        self, messages: Sequence[CanonicalMessage], options: CallOptions | None = None
    ) -> str | JSONObject: ...


class ErrorReporter(Protocol):
    def report_error(self, message: str) -> None: ...


class DecisionSurface(Protocol):
    async def await_correction_decision(self, request: ReviewRequest) -> CorrectionDecision: ...


async def serve_decisions(
    review_queue: asyncio.Queue[ReviewRequest],
    surface: DecisionSurface,
) -> None:
    """Consume review requests forever, resolving each with the surface's decision."""

    while True:
        request = await review_queue.get()
        try:
            request.resolve(await surface.await_correction_decision(request))
        finally:
            review_queue.task_done()


class VerificationWorkflow:
    """Secondary review of primary results, suspended on a human decision."""

    def __init__(
        self,
        settings: Settings,
        caller: CallAI,
        *,
        review_queue: asyncio.Queue[ReviewRequest] | None = None,
        prompts: PromptCatalog | None = None,
        error_reporter: ErrorReporter | None = None,
        logger: Any | None = None,
    ) -> None:
        self._settings = settings
        self._caller = caller
        self.review_queue: asyncio.Queue[ReviewRequest] = (
            review_queue if review_queue is not None else asyncio.Queue()
        )
        self._prompts = prompts if prompts is not None else default_prompt_catalog()
        self._error_reporter = error_reporter
        self._logger = logger if logger is not None else _logger

    def is_enabled_for(self, operation: str) -> bool:
        return self._settings.verification.is_enabled_for(operation)

    async def verify(
        self,
        operation: str,
        original: str,
        *,
        context: str = "",
        attachments: Sequence[ContentBlock] = (),
        user_prompt: str | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> VerificationResult:
        if not self.is_enabled_for(operation):
            return VerificationResult(verified_text=original, state=VerificationState.IDLE)

        self._transition(operation, VerificationState.REQUESTED)
        prompt = self._prompts.build_double_check(
            operation, original_response=original, context=context, user_prompt=user_prompt
        )
        options = CallOptions(
            provider=self._settings.verification.provider,
            model=self._settings.verification.model,
            cancel_token=cancel_token,
        )

        try:
            message_in = CanonicalMessage.user(*attachments, prompt)
            reply = await self._caller.call_ai([message_in], options)
            response = parse_double_check(
                reply if isinstance(reply, str) else str(reply), operation=operation
            )
        except OperationCancelledError:
            raise
        except Exception as exc:  # noqa: BLE001 - degrade to unverified, never fail the caller.
            message = f"Double check failed for {self._prompts.label(operation)}: {exc}"
            self._transition(operation, VerificationState.FAILED, error=str(exc))
            if self._error_reporter is not None:
                self._error_reporter.report_error(message)
            return VerificationResult(
                verified_text=original,
                failed=True,
                state=VerificationState.FAILED,
                error=str(exc),
            )

        if not response.corrections:
            self._transition(operation, VerificationState.UNCHANGED)
            return VerificationResult(
                verified_text=original,
                summary=response.summary,
                confidence=response.confidence,
                state=VerificationState.UNCHANGED,
            )

        corrections = to_selectable(operation, response.corrections)
        verified = (
            response.verified
            if response.verified is not None
            else apply_selected(operation, original, None, corrections)
        )
        decision = await self._await_decision(
            operation, original, verified, corrections, response.summary, response.confidence
        )

        final_corrections = select_only(corrections, decision.selected_ids)
        text = apply_selected(operation, original, verified, final_corrections)
        kept = sum(1 for item in final_corrections if item.selected)
        state = VerificationState.APPLIED if kept else VerificationState.DISCARDED
        self._transition(operation, state, kept=kept, total=len(final_corrections))
        return VerificationResult(
            verified_text=text if kept else original,
            corrections=final_corrections,
            summary=response.summary,
            confidence=response.confidence,
            state=state,
        )

    async def _await_decision(
        self,
        operation: str,
        original: str,
        verified: str,
        corrections: tuple[Correction, ...],
        summary: str,
        confidence: float,
    ) -> CorrectionDecision:
        future: asyncio.Future[CorrectionDecision] = asyncio.get_running_loop().create_future()
        request = ReviewRequest(
            operation=operation,
            original=original,
            verified=verified,
            corrections=corrections,
            summary=summary,
            confidence=confidence,
            decision=future,
        )
        await self.review_queue.put(request)
        self._transition(
            operation, VerificationState.AWAITING_HUMAN_DECISION, corrections=len(corrections)
        )
        try:
            return await future
        finally:
            if not future.done():
                future.cancel()

    def _transition(self, operation: str, state: VerificationState, **fields: object) -> None:
        self._logger.info(
            f"verification_{state.value}", operation=operation, state=state.value, **fields
        )


__all__ = [
    "CallAI",
    "CorrectionDecision",
    "DecisionSurface",
    "ErrorReporter",
    "ReviewRequest",
    "VerificationResult",
    "VerificationState",
    "VerificationWorkflow",
    "serve_decisions",
]
