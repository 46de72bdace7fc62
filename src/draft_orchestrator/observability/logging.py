"""Structured logging setup with JSON-lines output and redaction support.

Module code logs through ``structlog.get_logger(__name__)``. ``setup_structured_logging``
routes those events into the stdlib ``draft_orchestrator`` logger, whose records are
queued and rendered by a single listener thread so logging never blocks the event loop.
"""

from __future__ import annotations

import atexit
import contextvars
import json
import logging
import logging.handlers
import math
import queue
import re
import threading
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Final, Literal

import structlog

from draft_orchestrator.config.schema import ObservabilitySettings

JSONScalar = str | int | float | bool | None
JSONValue = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]
LogRedactor = Callable[[JSONValue], JSONValue]

REDACTED: Final[str] = "***REDACTED***"
ROOT_LOGGER_NAME: Final[str] = "draft_orchestrator"

# Correlation fields are rendered top-level; any other record extra goes under "fields".
CORRELATION_KEYS: Final[tuple[str, ...]] = ("run_id", "batch_index", "item_id", "operation")

_SECRET_KEY_FRAGMENTS: Final[tuple[str, ...]] = (
    "api_key",
    "apikey",
    "api-key",
    "authorization",
    "credential",
    "password",
    "secret",
    "token_value",
)

_INLINE_ASSIGNMENT: Final[re.Pattern[str]] = re.compile(
    r"(?i)\b(x-api-key|api[_-]?key|password|secret|authorization)\b\s*([:=])\s*([^\s,;]+)"
)
_BEARER: Final[re.Pattern[str]] = re.compile(r"(?i)\bbearer\s+[A-Za-z0-9._~+/-]+=*")
_KEY_SHAPES: Final[tuple[re.Pattern[str], ...]] = (
    re.compile(r"\bsk-ant-[A-Za-z0-9_-]{12,}"),
    re.compile(r"\bsk-[A-Za-z0-9_-]{12,}"),
    re.compile(r"\bxai-[A-Za-z0-9_-]{12,}"),
    re.compile(r"\bAIza[0-9A-Za-z_-]{20,}"),
)

_RESERVED_RECORD_ATTRS: Final[frozenset[str]] = frozenset(
    vars(logging.makeLogRecord({}))
) | {"message", "asctime", "correlation", "taskName"}

_correlation: contextvars.ContextVar[Mapping[str, str]] = contextvars.ContextVar(
    "draft_correlation", default={}
)

_state_lock = threading.Lock()
_active: StructuredLoggingHandle | None = None
_atexit_hooked = False


@dataclass(frozen=True, slots=True)
class LoggingConfig:
    level: int | str = "INFO"
    log_format: Literal["json", "text"] = "json"
    log_file: Path | str | None = None
    log_to_stderr: bool = True
    logger_name: str = ROOT_LOGGER_NAME
    queue_size: int = 4096
    redactor: LogRedactor | None = None


def setup_logging(settings: ObservabilitySettings) -> StructuredLoggingHandle:
    """Configure logging from the ``[observability]`` settings section."""

    return setup_structured_logging(
        LoggingConfig(
            level=settings.log_level,
            log_format="text" if settings.log_format == "text" else "json",
            log_file=settings.log_file,
            redactor=None if settings.redact_secrets else _keep,
        )
    )


class _CorrelatingQueueHandler(logging.handlers.QueueHandler):
    """Stamps the caller's correlation context on each record; counts overflow drops."""

    def __init__(self, log_queue: queue.Queue[object]) -> None:
        super().__init__(log_queue)
        self.dropped = 0

    def prepare(self, record: logging.LogRecord) -> logging.LogRecord:
        bound = _correlation.get()
        if bound:
            record.correlation = dict(bound)
        return super().prepare(record)

    def enqueue(self, record: logging.LogRecord) -> None:
        try:
            self.queue.put_nowait(record)
        except queue.Full:
            self.dropped += 1


class _RecordFormatter(logging.Formatter):
    def __init__(self, redactor: LogRedactor) -> None:
        super().__init__()
        self.redact = redactor

    def message(self, record: logging.LogRecord) -> str:
        return _as_text(self.redact(record.getMessage()))

    def traceback_text(self, record: logging.LogRecord) -> str | None:
        if record.exc_info is None:
            return None
        return _as_text(self.redact(self.formatException(record.exc_info)))


class _JsonLineFormatter(_RecordFormatter):
    def format(self, record: logging.LogRecord) -> str:
        line: dict[str, JSONValue] = {
            "timestamp": _utc_stamp(record.created),
            "level": record.levelname,
            "logger": record.name,
            "event": self.message(record),
        }
        line.update(_correlation_fields(record))
        extras = _extra_fields(record)
        if extras:
            line["fields"] = self.redact(extras)
        trace = self.traceback_text(record)
        if trace is not None:
            line["exception"] = trace
        return json.dumps(line, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


class _KeyValueFormatter(_RecordFormatter):
    """``timestamp LEVEL logger event key=value ...``"""

    def format(self, record: logging.LogRecord) -> str:
        merged: dict[str, JSONValue] = {**_correlation_fields(record), **_extra_fields(record)}
        scrubbed = self.redact(merged)
        pairs = [
            f"{key}={_as_text(value)}"
            for key, value in sorted(scrubbed.items() if isinstance(scrubbed, dict) else ())
        ]
        head = f"{_utc_stamp(record.created)} {record.levelname:<7} {record.name}"
        text = " ".join([head, self.message(record), *pairs])
        trace = self.traceback_text(record)
        return text if trace is None else f"{text}\n{trace}"


class StructuredLoggingHandle:
    """An installed logging pipeline; ``shutdown`` drains the queue and closes sinks."""

    def __init__(
        self,
        *,
        logger: logging.Logger,
        log_path: Path | None,
        queue_handler: _CorrelatingQueueHandler,
        sinks: tuple[logging.Handler, ...],
        listener: logging.handlers.QueueListener,
    ) -> None:
        self.logger = logger
        self.log_path = log_path
        self._queue_handler = queue_handler
        self._sinks = sinks
        self._listener = listener
        self._lock = threading.Lock()
        self._closed = False

    @property
    def dropped_records(self) -> int:
        return self._queue_handler.dropped

    @property
    def is_shutdown(self) -> bool:
        return self._closed

    def shutdown(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            # stop() processes every record still queued before the thread exits.
            self._listener.stop()
            self.logger.removeHandler(self._queue_handler)
            self._queue_handler.close()
            for sink in self._sinks:
                sink.flush()
                sink.close()


def setup_structured_logging(config: LoggingConfig) -> StructuredLoggingHandle:
    """Install queue-backed stdlib sinks and route structlog events into them.

    Any previously active pipeline is shut down first, so only one listener thread
    exists per process.
    """

    level = _level_number(config.level)
    if config.queue_size <= 0:
        raise ValueError("queue_size must be > 0")
    previous = get_active_logging_handle()
    if previous is not None:
        shutdown_logging(previous)

    redactor = config.redactor or default_log_redactor
    formatter = (
        _KeyValueFormatter(redactor) if config.log_format == "text" else _JsonLineFormatter(redactor)
    )
    log_path = Path(config.log_file).expanduser() if config.log_file else None
    sinks = _build_sinks(log_path, to_stderr=config.log_to_stderr)
    for sink in sinks:
        sink.setLevel(level)
        sink.setFormatter(formatter)

    logger = logging.getLogger(config.logger_name)
    logger.setLevel(level)
    logger.propagate = False
    for stale in list(logger.handlers):
        logger.removeHandler(stale)
        stale.close()

    log_queue: queue.Queue[object] = queue.Queue(maxsize=config.queue_size)
    queue_handler = _CorrelatingQueueHandler(log_queue)
    queue_handler.setLevel(level)
    listener = logging.handlers.QueueListener(log_queue, *sinks, respect_handler_level=True)
    listener.start()
    logger.addHandler(queue_handler)
    configure_structlog()

    handle = StructuredLoggingHandle(
        logger=logger,
        log_path=log_path,
        queue_handler=queue_handler,
        sinks=sinks,
        listener=listener,
    )
    _activate(handle)
    return handle


def configure_structlog() -> None:
    """Send ``structlog`` events to stdlib loggers, keeping keyword fields as extras."""

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.format_exc_info,
            structlog.stdlib.render_to_log_kwargs,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )


def shutdown_logging(handle: StructuredLoggingHandle | None = None) -> None:
    global _active
    target = handle or get_active_logging_handle()
    if target is None:
        return
    target.shutdown()
    with _state_lock:
        if _active is target:
            _active = None


def get_active_logging_handle() -> StructuredLoggingHandle | None:
    with _state_lock:
        return _active


def get_correlation_context() -> dict[str, str]:
    return dict(_correlation.get())


@contextmanager
def correlation_scope(**fields: str | None) -> Iterator[None]:
    """Bind correlation fields for records logged inside the block.

    Passing ``None`` for a key unbinds it for the duration of the block.
    """

    bound = dict(_correlation.get())
    for key, value in fields.items():
        if value is None:
            bound.pop(key, None)
            continue
        text = str(value).strip()
        if not text:
            raise ValueError(f"correlation value for {key!r} must not be empty")
        bound[key] = text
    token = _correlation.set(bound)
    try:
        yield
    finally:
        _correlation.reset(token)


def default_log_redactor(value: JSONValue) -> JSONValue:
    """Recursively mask values under credential-like keys and key-shaped strings."""

    if isinstance(value, dict):
        return {
            key: REDACTED if _is_secret_key(key) else default_log_redactor(item)
            for key, item in value.items()
        }
    if isinstance(value, list):
        return [default_log_redactor(item) for item in value]
    if isinstance(value, str):
        return redact_text(value)
    return value


def redact_text(text: str) -> str:
    masked = _INLINE_ASSIGNMENT.sub(lambda m: f"{m.group(1)}{m.group(2)}{REDACTED}", text)
    masked = _BEARER.sub(f"Bearer {REDACTED}", masked)
    for shape in _KEY_SHAPES:
        masked = shape.sub(REDACTED, masked)
    return masked


def _activate(handle: StructuredLoggingHandle) -> None:
    global _active, _atexit_hooked
    with _state_lock:
        _active = handle
        if not _atexit_hooked:
            atexit.register(shutdown_logging)
            _atexit_hooked = True


def _build_sinks(log_path: Path | None, *, to_stderr: bool) -> tuple[logging.Handler, ...]:
    sinks: list[logging.Handler] = []
    if log_path is not None:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        sinks.append(logging.FileHandler(log_path, encoding="utf-8"))
    if to_stderr:
        sinks.append(logging.StreamHandler())
    return tuple(sinks) or (logging.NullHandler(),)


def _level_number(level: int | str) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(level.strip().upper())
    if not isinstance(resolved, int):
        raise ValueError(f"unsupported logging level {level!r}")
    return resolved


def _utc_stamp(created: float) -> str:
    stamp = datetime.fromtimestamp(created, tz=UTC).isoformat(timespec="milliseconds")
    return stamp.replace("+00:00", "Z")


def _as_text(value: JSONValue) -> str:
    if isinstance(value, str):
        return value
    if value is None:
        return ""
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def _correlation_fields(record: logging.LogRecord) -> dict[str, str]:
    fields = {str(k): str(v) for k, v in getattr(record, "correlation", {}).items()}
    for key in CORRELATION_KEYS:
        value = record.__dict__.get(key)
        if value is not None and str(value).strip():
            fields[key] = str(value).strip()
    return fields


def _extra_fields(record: logging.LogRecord) -> dict[str, JSONValue]:
    return {
        key: _jsonable(value)
        for key, value in record.__dict__.items()
        if key not in _RESERVED_RECORD_ATTRS
        and key not in CORRELATION_KEYS
        and not key.startswith("_")
    }


def _jsonable(value: object) -> JSONValue:
    if isinstance(value, float) and not math.isfinite(value):
        return str(value)
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    if isinstance(value, Mapping):
        return {str(key): _jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_jsonable(item) for item in value]
    if isinstance(value, Path):
        return str(value)
    return repr(value)


def _is_secret_key(key: str) -> bool:
    lowered = key.lower()
    return any(fragment in lowered for fragment in _SECRET_KEY_FRAGMENTS)


def _keep(value: JSONValue) -> JSONValue:
    return value


__all__ = [
    "CORRELATION_KEYS",
    "JSONValue",
    "LogRedactor",
    "LoggingConfig",
    "REDACTED",
    "StructuredLoggingHandle",
    "configure_structlog",
    "correlation_scope",
    "default_log_redactor",
    "get_active_logging_handle",
    "get_correlation_context",
    "redact_text",
    "setup_logging",
    "setup_structured_logging",
    "shutdown_logging",
]
