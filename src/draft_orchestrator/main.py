"""Process entrypoint: run the ``draft`` CLI and map its outcome to an exit status."""

from __future__ import annotations

import sys
import traceback
from enum import IntEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator, Sequence


class ExitCode(IntEnum):
    SUCCESS = 0
    PARTIAL_FAILURE = 1
    CONFIG_ERROR = 2
    PROVIDER_ERROR = 3
    INTERNAL_ERROR = 4
    CANCELLED = 130


def cli_entrypoint(argv: Sequence[str] | None = None) -> int:
    """Used by ``python -m draft_orchestrator`` and the ``draft`` console script."""

    from draft_orchestrator.ui import cli

    try:
        outcome: object = cli.run_cli(argv)
    except SystemExit as exc:
        outcome = exc.code
    except BaseException as exc:  # noqa: BLE001 - every failure becomes an exit status.
        code = _classify(exc)
        _report(exc, code)
        return int(code)
    return _coerce_status(outcome)


def _coerce_status(outcome: object) -> int:
    if outcome is None:
        return int(ExitCode.SUCCESS)
    if isinstance(outcome, int) and outcome in {member.value for member in ExitCode}:
        return outcome
    if isinstance(outcome, str) and outcome.strip():
        _stderr(outcome.strip())
    return int(ExitCode.INTERNAL_ERROR)


def _classify(exc: BaseException) -> ExitCode:
    from draft_orchestrator.config.loader import ConfigLoadError
    from draft_orchestrator.config.schema import ConfigValidationError
    from draft_orchestrator.synthesis_plane.providers.base import ProviderError
    from draft_orchestrator.synthesis_plane.retry import RetryExhaustedError
    from draft_orchestrator.utils.concurrency import OperationCancelledError

    routes: tuple[tuple[tuple[type[BaseException], ...], ExitCode], ...] = (
        ((KeyboardInterrupt, OperationCancelledError), ExitCode.CANCELLED),
        (
            (ConfigLoadError, ConfigValidationError, FileNotFoundError, NotADirectoryError),
            ExitCode.CONFIG_ERROR,
        ),
        ((PermissionError,), ExitCode.CONFIG_ERROR),
        ((ProviderError, RetryExhaustedError), ExitCode.PROVIDER_ERROR),
    )
    for link in _causes(exc):
        for kinds, code in routes:
            if isinstance(link, kinds):
                return code
    return ExitCode.INTERNAL_ERROR


def _causes(exc: BaseException) -> Iterator[BaseException]:
    """Walk the explicit cause chain, falling back to unsuppressed context."""

    visited: set[int] = set()
    node: BaseException | None = exc
    while node is not None and id(node) not in visited:
        visited.add(id(node))
        yield node
        if node.__cause__ is not None or node.__suppress_context__:
            node = node.__cause__
        else:
            node = node.__context__


def _report(exc: BaseException, code: ExitCode) -> None:
    if code is ExitCode.CANCELLED:
        _stderr("cancelled by user")
    elif code is ExitCode.INTERNAL_ERROR:
        traceback.print_exception(exc, file=sys.stderr)
    else:
        _stderr(str(exc).strip() or type(exc).__name__)


def _stderr(message: str) -> None:
    print(message.rstrip("\n"), file=sys.stderr)


__all__ = ["ExitCode", "cli_entrypoint"]
