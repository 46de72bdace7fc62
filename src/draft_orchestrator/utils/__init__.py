from draft_orchestrator.utils.concurrency import (
    CancellationToken,
    OperationCancelledError,
    run_with_timeout,
)
from draft_orchestrator.utils.hashing import (
    cache_key_hash,
    fnv1a_32,
)

__all__ = [
    "CancellationToken",
    "OperationCancelledError",
    "cache_key_hash",
    "fnv1a_32",
    "run_with_timeout",
]
