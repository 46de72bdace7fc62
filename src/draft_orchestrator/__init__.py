"""
draft-orchestrator — package root

File: src/draft_orchestrator/__init__.py

Purpose
- AI-request orchestration for a document-drafting tool: provider adapters, retry
  control, response caching, batched bulk processing, and double-check verification.

Functional requirements
- Must not have side effects at import time (no config loading, no logging init).
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
