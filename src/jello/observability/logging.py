"""Structured logging: structlog events rendered as JSON lines behind a queue.

Library modules log with ``structlog.get_logger(__name__)`` and never configure
anything themselves. An application calls :func:`setup_structured_logging` (or
:func:`setup_logging` with the ``[logging]`` config section) once; that routes
structlog through the stdlib ``jello`` logger, whose records are queued and
written by a background listener so callers never block on I/O.

Each line is one JSON object::

    {"event":"instance_created","fields":{"table":"person",...},
     "level":"INFO","logger":"jello.store","timestamp":"2026-01-01T00:00:00.000Z"}
"""

from __future__ import annotations

import atexit
import json
import logging
import logging.handlers
import math
import queue
import sys
import threading
import time
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Final

import structlog

JSONScalar = str | int | float | bool | None
JSONValue = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]

DEFAULT_LOGGER_NAME: Final[str] = "jello"
DEFAULT_QUEUE_SIZE: Final[int] = 4096

# Attributes every LogRecord carries; anything else arrived as an extra field.
_RECORD_ATTRIBUTES: Final[frozenset[str]] = frozenset(vars(logging.makeLogRecord({}))) | {
    "message",
    "asctime",
}


@dataclass(frozen=True, slots=True)
class LoggingConfig:
    """Where and how much to log.

    ``log_path=None`` disables the file sink and ``log_to_stdout`` adds a stdout
    sink. With neither, records are accepted and discarded.
    """

    log_path: Path | str | None = None
    logger_name: str = DEFAULT_LOGGER_NAME
    level: int | str = "INFO"
    queue_size: int = DEFAULT_QUEUE_SIZE
    log_to_stdout: bool = False
    rotating_file: bool = False
    max_bytes: int = 10_000_000
    backup_count: int = 5

    @classmethod
    def from_mapping(
        cls,
        section: Mapping[str, object] | None,
        *,
        logger_name: str = DEFAULT_LOGGER_NAME,
    ) -> LoggingConfig:
        """Build from a ``[logging]`` section as returned by ``jello.config.load_config``."""
        values = dict(section or {})
        level = values.get("level", "INFO")
        log_path = values.get("log_path")
        return cls(
            log_path=log_path if isinstance(log_path, (str, Path)) else None,
            logger_name=logger_name,
            level=level if isinstance(level, (int, str)) else "INFO",
            log_to_stdout=values.get("log_to_stdout") is True,
        )


class _DroppingQueueHandler(logging.handlers.QueueHandler):
    """Enqueues without blocking; records that do not fit are counted and dropped."""

    def __init__(self, log_queue: queue.Queue[logging.LogRecord]) -> None:
        super().__init__(log_queue)
        self._dropped = 0
        self._dropped_lock = threading.Lock()

    @property
    def dropped(self) -> int:
        with self._dropped_lock:
            return self._dropped

    def enqueue(self, record: logging.LogRecord) -> None:
        try:
            self.queue.put_nowait(record)
        except queue.Full:
            with self._dropped_lock:
                self._dropped += 1


class JsonLinesFormatter(logging.Formatter):
    """One sorted-key JSON object per record; extras are nested under ``fields``."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, JSONValue] = {
            "timestamp": _utc_timestamp(record.created),
            "level": record.levelname,
            "logger": record.name,
            "event": record.getMessage(),
        }
        fields = {
            key: _jsonable(value)
            for key, value in vars(record).items()
            if key not in _RECORD_ATTRIBUTES and not key.startswith("_")
        }
        if fields:
            payload["fields"] = fields
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        if record.stack_info:
            payload["stack"] = record.stack_info
        return json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


class StructuredLoggingHandle:
    """An installed logging setup; call :meth:`shutdown` to drain and close it."""

    def __init__(
        self,
        *,
        logger: logging.Logger,
        log_path: Path | None,
        queue_handler: _DroppingQueueHandler,
        listener: logging.handlers.QueueListener,
        sinks: tuple[logging.Handler, ...],
    ) -> None:
        self.logger = logger
        self.log_path = log_path
        self._queue_handler = queue_handler
        self._listener = listener
        self._sinks = sinks
        self._closed = False
        self._close_lock = threading.Lock()

    @property
    def dropped_records(self) -> int:
        return self._queue_handler.dropped

    @property
    def is_shutdown(self) -> bool:
        return self._closed

    def flush(self, *, timeout_seconds: float = 2.0) -> None:
        """Wait (bounded) for queued records to reach the sinks, then flush them."""
        pending = self._queue_handler.queue
        deadline = time.monotonic() + max(timeout_seconds, 0.0)
        while getattr(pending, "unfinished_tasks", 0) and time.monotonic() < deadline:
            time.sleep(0.01)
        for sink in self._sinks:
            sink.flush()

    def shutdown(self, *, timeout_seconds: float = 2.0) -> None:
        with self._close_lock:
            if self._closed:
                return
            self.flush(timeout_seconds=timeout_seconds)
            self._listener.stop()
            self.logger.removeHandler(self._queue_handler)
            self._queue_handler.close()
            for sink in self._sinks:
                sink.close()
            self._closed = True


_active_lock = threading.Lock()
_active: StructuredLoggingHandle | None = None
_atexit_registered = False


def configure_structlog() -> None:
    """Send structlog events to stdlib logging as ``msg`` plus ``extra`` fields."""

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.processors.format_exc_info,
            structlog.stdlib.render_to_log_kwargs,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )


def setup_structured_logging(config: LoggingConfig) -> StructuredLoggingHandle:
    """Install queue-backed JSON-lines sinks, replacing any earlier setup."""

    global _active, _atexit_registered

    level = _resolve_level(config.level)
    if isinstance(config.queue_size, bool) or not isinstance(config.queue_size, int):
        raise ValueError(f"queue_size must be an integer, got {type(config.queue_size).__name__}")
    if config.queue_size <= 0:
        raise ValueError("queue_size must be > 0")
    logger_name = config.logger_name.strip()
    if not logger_name:
        raise ValueError("logger_name must not be empty")

    shutdown_logging()

    log_path = None if config.log_path is None else Path(config.log_path)
    sinks = _open_sinks(config, log_path)
    formatter = JsonLinesFormatter()
    for sink in sinks:
        sink.setLevel(level)
        sink.setFormatter(formatter)

    logger = logging.getLogger(logger_name)
    for stale in list(logger.handlers):
        logger.removeHandler(stale)
        stale.close()
    logger.setLevel(level)
    logger.propagate = False

    log_queue: queue.Queue[logging.LogRecord] = queue.Queue(maxsize=config.queue_size)
    queue_handler = _DroppingQueueHandler(log_queue)
    queue_handler.setLevel(level)
    listener = logging.handlers.QueueListener(log_queue, *sinks, respect_handler_level=True)
    listener.start()
    logger.addHandler(queue_handler)

    configure_structlog()

    handle = StructuredLoggingHandle(
        logger=logger,
        log_path=log_path,
        queue_handler=queue_handler,
        listener=listener,
        sinks=tuple(sinks),
    )
    with _active_lock:
        _active = handle
        if not _atexit_registered:
            atexit.register(shutdown_logging)
            _atexit_registered = True
    return handle


def setup_logging(
    logging_config: Mapping[str, object] | None = None,
    *,
    logger_name: str = DEFAULT_LOGGER_NAME,
) -> logging.Logger:
    """Configure logging from a ``[logging]`` config section; returns the stdlib logger."""

    handle = setup_structured_logging(
        LoggingConfig.from_mapping(logging_config, logger_name=logger_name)
    )
    return handle.logger


def get_active_logging_handle() -> StructuredLoggingHandle | None:
    with _active_lock:
        return _active


def flush_logging(
    handle: StructuredLoggingHandle | None = None,
    *,
    timeout_seconds: float = 2.0,
) -> None:
    target = handle or get_active_logging_handle()
    if target is not None:
        target.flush(timeout_seconds=timeout_seconds)


def shutdown_logging(
    handle: StructuredLoggingHandle | None = None,
    *,
    timeout_seconds: float = 2.0,
) -> None:
    """Drain and close ``handle`` (default: the active setup). Safe to call twice."""

    global _active

    target = handle or get_active_logging_handle()
    if target is None:
        return
    target.shutdown(timeout_seconds=timeout_seconds)
    with _active_lock:
        if _active is target:
            _active = None


@contextmanager
def correlation_scope(**fields: str) -> Iterator[None]:
    """Attach ``fields`` to every structlog event emitted inside the block."""
    with structlog.contextvars.bound_contextvars(**fields):
        yield


def _open_sinks(config: LoggingConfig, log_path: Path | None) -> list[logging.Handler]:
    sinks: list[logging.Handler] = []
    if log_path is not None:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        if config.rotating_file:
            sinks.append(
                logging.handlers.RotatingFileHandler(
                    log_path,
                    maxBytes=max(1, config.max_bytes),
                    backupCount=max(1, config.backup_count),
                    encoding="utf-8",
                )
            )
        else:
            sinks.append(logging.FileHandler(log_path, encoding="utf-8"))
    if config.log_to_stdout:
        sinks.append(logging.StreamHandler(sys.stdout))
    return sinks or [logging.NullHandler()]


def _resolve_level(value: int | str) -> int:
    if isinstance(value, int):
        return value
    resolved = logging.getLevelName(str(value).strip().upper())
    if not isinstance(resolved, int):
        raise ValueError(f"unsupported logging level {value!r}")
    return resolved


def _utc_timestamp(epoch_seconds: float) -> str:
    moment = datetime.fromtimestamp(epoch_seconds, tz=UTC)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _jsonable(value: object) -> JSONValue:
    if value is None or isinstance(value, (bool, int, str)):
        return value
    if isinstance(value, float):
        return value if math.isfinite(value) else repr(value)
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    if isinstance(value, Mapping):
        return {str(key): _jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(item) for item in value]
    if isinstance(value, (set, frozenset)):
        return sorted((_jsonable(item) for item in value), key=repr)
    return str(value)


__all__ = [
    "DEFAULT_LOGGER_NAME",
    "DEFAULT_QUEUE_SIZE",
    "JSONScalar",
    "JSONValue",
    "JsonLinesFormatter",
    "LoggingConfig",
    "StructuredLoggingHandle",
    "configure_structlog",
    "correlation_scope",
    "flush_logging",
    "get_active_logging_handle",
    "setup_logging",
    "setup_structured_logging",
    "shutdown_logging",
]
