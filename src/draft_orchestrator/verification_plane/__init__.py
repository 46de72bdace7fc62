"""
draft-orchestrator — verification plane

File: src/draft_orchestrator/verification_plane/__init__.py

Purpose
- Double-check review of primary model output: response schemas, selectable
  corrections, prompt templates, and the human-in-the-loop workflow.
"""

from draft_orchestrator.verification_plane.corrections import (
    Correction,
    apply_selected,
    describe,
    select_only,
    to_selectable,
)
from draft_orchestrator.verification_plane.prompts import (
    PromptCatalog,
    PromptCatalogError,
    default_prompt_catalog,
    load_prompt_catalog,
)
from draft_orchestrator.verification_plane.schema import (
    BulkModel,
    DoubleCheckResponse,
    SchemaValidationError,
    extract_json,
    parse_bulk_models,
    parse_double_check,
)
from draft_orchestrator.verification_plane.workflow import (
    CorrectionDecision,
    DecisionSurface,
    ErrorReporter,
    ReviewRequest,
    VerificationResult,
    VerificationState,
    VerificationWorkflow,
    serve_decisions,
)

__all__ = [
    "BulkModel",
    "Correction",
    "CorrectionDecision",
    "DecisionSurface",
    "DoubleCheckResponse",
    "ErrorReporter",
    "PromptCatalog",
    "PromptCatalogError",
    "ReviewRequest",
    "SchemaValidationError",
    "VerificationResult",
    "VerificationState",
    "VerificationWorkflow",
    "apply_selected",
    "default_prompt_catalog",
    "describe",
    "extract_json",
    "load_prompt_catalog",
    "parse_bulk_models",
    "parse_double_check",
    "select_only",
    "serve_decisions",
    "to_selectable",
]
