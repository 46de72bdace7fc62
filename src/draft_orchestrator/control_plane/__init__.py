"""
draft-orchestrator — control plane

File: src/draft_orchestrator/control_plane/__init__.py

Purpose
- Batched fan-out of provider work: the generic batch orchestrator and the bulk
  per-file model generation pipeline built on it.
"""

from draft_orchestrator.control_plane.batch import (
    BatchError,
    BatchJob,
    BatchOptions,
    BatchOrchestrator,
    BatchProgress,
    BatchRun,
    GeneratedItem,
    JobStatus,
)
from draft_orchestrator.control_plane.bulk import (
    BulkInputError,
    BulkModelGenerator,
    PlainTextExtractor,
    TextExtractor,
    bulk_cache_key,
    discover_sources,
)

__all__ = [
    "BatchError",
    "BatchJob",
    "BatchOptions",
    "BatchOrchestrator",
    "BatchProgress",
    "BatchRun",
    "BulkInputError",
    "BulkModelGenerator",
    "GeneratedItem",
    "JobStatus",
    "PlainTextExtractor",
    "TextExtractor",
    "bulk_cache_key",
    "discover_sources",
]
