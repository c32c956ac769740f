"""
Presence Logging Subsystem

Purpose
-------
One logging stack for the whole service: every module calls `get_logger`
and passes structured fields with `extra={...}`; this module decides how
those records are rendered and where they go.

Responsibilities
----------------
- Stamp each record with the current event context (player, event kind,
  correlation ID, component, operation) held in a ContextVar, so records
  from concurrently running event handlers and queries never mix.
- Move record I/O off the event loop: records go through a bounded queue to
  a listener thread that owns the console and file handlers. When the queue
  is full the record is dropped and counted.
- Render JSON in production (and in the daily file), plain or colored text
  in development.

Public API
----------
- get_logger(name)
- LogContext: sync and async context manager scoping context fields
- set_log_context() / get_log_context() / clear_log_context()
- setup_logging() / shutdown_logging(): both idempotent
- get_logging_health(): queue depth and drop counters
"""

from __future__ import annotations

import json
import logging
import queue
import sys
import uuid
from contextvars import ContextVar, Token
from dataclasses import dataclass, field
from datetime import datetime, timezone
from logging import Logger
from logging.handlers import QueueHandler, QueueListener, TimedRotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from presence.core.config.config import Config

CONTEXT_FIELDS: Tuple[str, ...] = (
    "player_id",
    "event_kind",
    "correlation_id",
    "component",
    "operation",
)
UNSET = "-"

TEXT_FORMAT = "%(asctime)s %(levelname)-8s %(name)s [%(event_kind)s %(player_id)s] %(message)s"
TEXT_DATE_FORMAT = "%H:%M:%S"
DAILY_FILE_NAME = "presence.json.log"
QUEUE_CAPACITY = 10_000

# Loggers from libraries that are too chatty at DEBUG
QUIET_LOGGERS = ("sqlalchemy.engine", "aiosqlite", "asyncio", "redis", "testcontainers")

_context: ContextVar[Dict[str, Any]] = ContextVar("presence_log_context", default={})


# ============================================================================
# State
# ============================================================================


@dataclass(frozen=True, slots=True)
class LoggingHealth:
    initialized: bool
    queue_size: int
    queue_max_size: int
    records_enqueued: int
    records_dropped: int
    listener_errors: int


@dataclass(slots=True)
class _LoggingState:
    initialized: bool = False
    log_queue: Optional["queue.Queue[logging.LogRecord]"] = None
    listener: Optional[QueueListener] = None
    records_enqueued: int = 0
    records_dropped: int = 0
    listener_errors: int = 0
    handlers: list = field(default_factory=list)


_state = _LoggingState()


def _level() -> int:
    name = Config.LOG_LEVEL if isinstance(Config.LOG_LEVEL, str) else "INFO"
    level = logging.getLevelName(name.upper())
    return level if isinstance(level, int) else logging.INFO


def _json_console() -> bool:
    if Config.LOG_JSON is not None:
        return bool(Config.LOG_JSON)
    return Config.is_production()


# ============================================================================
# Filters & Formatters
# ============================================================================


class ContextFilter(logging.Filter):
    """Copy the active context onto the record; missing fields become "-"."""

    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        context = _context.get()
        for name in CONTEXT_FIELDS:
            setattr(record, name, context.get(name) or UNSET)
        if record.component == UNSET:
            record.component = record.name.rsplit(".", 1)[-1]
        return True


class ColoredFormatter(logging.Formatter):
    LEVEL_COLORS: Dict[int, str] = {
        logging.DEBUG: "\033[2m",
        logging.INFO: "\033[36m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[1;31m",
    }

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        line = super().format(record)
        color = self.LEVEL_COLORS.get(record.levelno)
        return f"{color}{line}\033[0m" if color else line


class JSONFormatter(logging.Formatter):
    """
    One JSON object per record.

    Keys: ts, level, logger, message, context (only fields that are set),
    extra (everything passed via `extra=`) and exception when present.
    """

    RESERVED = frozenset(logging.LogRecord("", 0, "", 0, "", (), None).__dict__) | {
        "message",
        "asctime",
        *CONTEXT_FIELDS,
    }

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        body: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        context = {
            name: getattr(record, name)
            for name in CONTEXT_FIELDS
            if getattr(record, name, UNSET) != UNSET
        }
        if context:
            body["context"] = context

        extra = {
            key: value
            for key, value in record.__dict__.items()
            if key not in self.RESERVED and not key.startswith("_")
        }
        if extra:
            body["extra"] = extra

        if record.exc_info:
            body["exception"] = self.formatException(record.exc_info)

        return json.dumps(body, ensure_ascii=False, default=str)


# ============================================================================
# Queue plumbing
# ============================================================================


class _DroppingQueueHandler(QueueHandler):
    def enqueue(self, record: logging.LogRecord) -> None:  # type: ignore[override]
        _state.records_enqueued += 1
        try:
            self.queue.put_nowait(record)
        except queue.Full:
            _state.records_dropped += 1


class _CountingQueueListener(QueueListener):
    def handleError(self, record: logging.LogRecord) -> None:  # type: ignore[override]
        _state.listener_errors += 1
        sys.stderr.write(f"presence logging: handler failed for record from {record.name}\n")


def _console_handler(level: int) -> logging.Handler:
    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    if _json_console():
        handler.setFormatter(JSONFormatter())
    elif sys.stdout.isatty():
        handler.setFormatter(ColoredFormatter(TEXT_FORMAT, TEXT_DATE_FORMAT))
    else:
        handler.setFormatter(logging.Formatter(TEXT_FORMAT, TEXT_DATE_FORMAT))
    return handler


def _daily_file_handler(level: int) -> logging.Handler:
    logs_dir = Path(Config.LOGS_DIR).resolve()
    logs_dir.mkdir(parents=True, exist_ok=True)
    handler = TimedRotatingFileHandler(
        logs_dir / DAILY_FILE_NAME,
        when="midnight",
        backupCount=1,
        encoding="utf-8",
        utc=True,
    )
    handler.setLevel(level)
    handler.setFormatter(JSONFormatter())
    return handler


# ============================================================================
# Setup / Shutdown
# ============================================================================


def setup_logging() -> None:
    if _state.initialized:
        return

    level = _level()
    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()

    _state.log_queue = queue.Queue(QUEUE_CAPACITY)
    _state.handlers = [_console_handler(level), _daily_file_handler(level)]
    _state.listener = _CountingQueueListener(
        _state.log_queue, *_state.handlers, respect_handler_level=True
    )
    _state.listener.start()

    # Filter on the handler: root logger filters skip records from child loggers
    intake = _DroppingQueueHandler(_state.log_queue)
    intake.setLevel(level)
    intake.addFilter(ContextFilter())
    root.addHandler(intake)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    _state.initialized = True
    logging.getLogger(__name__).info(
        "Logging initialized",
        extra={
            "environment": Config.ENVIRONMENT,
            "log_level": logging.getLevelName(level),
            "json_console": _json_console(),
            "logs_dir": str(Config.LOGS_DIR),
        },
    )


def shutdown_logging() -> None:
    if not _state.initialized:
        return

    logging.getLogger(__name__).info("Logging shutting down", extra=_health_fields())

    if _state.listener is not None:
        _state.listener.stop()
    root = logging.getLogger()
    for handler in list(root.handlers) + _state.handlers:
        handler.close()
        root.removeHandler(handler)

    _state.listener = None
    _state.log_queue = None
    _state.handlers = []
    _state.initialized = False


def _health_fields() -> Dict[str, int]:
    return {
        "records_enqueued": _state.records_enqueued,
        "records_dropped": _state.records_dropped,
        "listener_errors": _state.listener_errors,
    }


def get_logging_health() -> LoggingHealth:
    pending = _state.log_queue
    return LoggingHealth(
        initialized=_state.initialized,
        queue_size=pending.qsize() if pending is not None else 0,
        queue_max_size=pending.maxsize if pending is not None else 0,
        **_health_fields(),
    )


# ============================================================================
# Public API
# ============================================================================


def get_logger(name: str) -> Logger:
    return logging.getLogger(name)


class LogContext:
    """
    Scope context fields to a block.

    >>> async with LogContext(player_id=pid, event_kind="player_connect"):
    ...     await handler(event)

    A correlation ID is generated when none is given. Leaving the block
    restores whatever context was active before it.
    """

    def __init__(
        self,
        player_id: Optional[str] = None,
        event_kind: Optional[str] = None,
        component: Optional[str] = None,
        operation: Optional[str] = None,
        correlation_id: Optional[str] = None,
        **extra: Any,
    ) -> None:
        given = {
            **extra,
            "player_id": str(player_id) if player_id is not None else None,
            "event_kind": event_kind,
            "component": component,
            "operation": operation,
            "correlation_id": correlation_id,
        }
        # Unset fields inherit from the enclosing block
        self.context: Dict[str, Any] = dict(_context.get())
        self.context.update({key: value for key, value in given.items() if value is not None})
        self.context.setdefault("correlation_id", uuid.uuid4().hex[:8])
        self._token: Optional[Token[Dict[str, Any]]] = None

    def __enter__(self) -> "LogContext":
        self._token = _context.set(self.context)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._token is not None:
            _context.reset(self._token)
            self._token = None

    async def __aenter__(self) -> "LogContext":
        return self.__enter__()

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        self.__exit__(exc_type, exc_val, exc_tb)


def set_log_context(**fields: Any) -> None:
    """Merge fields into the current task's context; None values are ignored."""
    updated = dict(_context.get())
    updated.update({key: value for key, value in fields.items() if value is not None})
    _context.set(updated)


def get_log_context() -> Dict[str, Any]:
    return dict(_context.get())


def clear_log_context() -> None:
    _context.set({})


setup_logging()
