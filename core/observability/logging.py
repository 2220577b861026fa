"""
Structured Logging with Correlation IDs

Every record emitted through ``get_logger`` carries the correlation ids bound
by the innermost ``with_correlation`` block:
- job_id: Job whose line items are being saved
- operation: Engine operation in flight (sync, typed_create, ...)
- workflow_id / activity_name: Temporal execution, when run from the worker
- request_id: HTTP request, when run from the API

Usage:
    from core.observability.logging import get_logger, with_correlation

    logger = get_logger(__name__)

    with with_correlation(job_id="job-123", operation="sync"):
        logger.info("Saving line items", extra_fields={"inputs": 3})
"""

import json
import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, fields, replace
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, Optional, Union


# =============================================================================
# Correlation Context
# =============================================================================

@dataclass(frozen=True)
class CorrelationContext:
    """Correlation ids bound to the current task."""
    job_id: Optional[str] = None
    operation: Optional[str] = None
    workflow_id: Optional[str] = None
    activity_name: Optional[str] = None
    request_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Bound ids only."""
        values = ((f.name, getattr(self, f.name)) for f in fields(self))
        return {name: value for name, value in values if value is not None}

    def merge(self, **kwargs) -> "CorrelationContext":
        """Copy with ``kwargs`` bound on top. None never unbinds an id."""
        return replace(self, **{k: v for k, v in kwargs.items() if v is not None})


_current: ContextVar[CorrelationContext] = ContextVar("correlation_context", default=CorrelationContext())


def get_correlation_context() -> CorrelationContext:
    return _current.get()


@contextmanager
def with_correlation(**ids) -> Iterator[CorrelationContext]:
    """Bind correlation ids for the duration of the block.

    Blocks nest; leaving a block restores the ids bound outside it. The
    binding is per asyncio task, so concurrent saves do not see each other's ids.
    """
    token = _current.set(_current.get().merge(**ids))
    try:
        yield _current.get()
    finally:
        _current.reset(token)


# =============================================================================
# Formatters
# =============================================================================

class _CorrelatedFormatter(logging.Formatter):
    """Shared plumbing: correlation ids, per-call fields and tracebacks."""

    @staticmethod
    def extra_of(record: logging.LogRecord) -> Dict[str, Any]:
        return getattr(record, "extra_fields", None) or {}

    def traceback_of(self, record: logging.LogRecord) -> Optional[str]:
        return self.formatException(record.exc_info) if record.exc_info else None


class StructuredFormatter(_CorrelatedFormatter):
    """
    One JSON object per line.

    {"timestamp": "2024-01-09T12:00:00.000000Z", "level": "WARNING",
     "logger": "line_items.engine", "message": "...", "job_id": "job-123",
     "operation": "sync", "deleted": 2}
    """

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **get_correlation_context().to_dict(),
            **self.extra_of(record),
        }
        trace = self.traceback_of(record)
        if trace:
            payload["exception"] = trace
        return json.dumps(payload, default=str)


class HumanReadableFormatter(_CorrelatedFormatter):
    """
    Console format.

    2024-01-09 12:00:00 [INFO ] line_items.engine [job:job-123/sync]: Saved 3 line items deleted=2
    """

    ID_WIDTH = 12

    def _prefix(self, ctx: CorrelationContext) -> str:
        parts = []
        if ctx.job_id:
            parts.append("job:" + ctx.job_id[:self.ID_WIDTH])
        if ctx.operation:
            parts.append(ctx.operation)
        if ctx.workflow_id:
            parts.append(ctx.workflow_id[:self.ID_WIDTH])
        return "/".join(parts) or "-"

    def format(self, record: logging.LogRecord) -> str:
        stamp = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
        line = (
            f"{stamp} [{record.levelname:5}] {record.name} "
            f"[{self._prefix(get_correlation_context())}]: {record.getMessage()}"
        )
        extra = self.extra_of(record)
        if extra:
            line = " ".join([line] + [f"{key}={value}" for key, value in extra.items()])
        trace = self.traceback_of(record)
        return f"{line}\n{trace}" if trace else line


# =============================================================================
# Logger
# =============================================================================

class CorrelatedLogger:
    """
    Thin wrapper over a stdlib logger.

    Accepts ``extra_fields={...}`` on every call; the fields are attached to
    the record and rendered by both formatters.
    """

    def __init__(self, logger: logging.Logger):
        self._logger = logger

    @property
    def name(self) -> str:
        return self._logger.name

    def log(self, level: int, msg: str, *args, extra_fields: Optional[Dict[str, Any]] = None,
            exc_info: Any = None):
        if not self._logger.isEnabledFor(level):
            return
        if exc_info is True:
            exc_info = sys.exc_info()
        record = self._logger.makeRecord(
            self._logger.name, level, "(unknown file)", 0, msg, args, exc_info or None,
        )
        record.extra_fields = dict(extra_fields or {})
        self._logger.handle(record)

    def debug(self, msg: str, *args, **kwargs):
        self.log(logging.DEBUG, msg, *args, **kwargs)

    def info(self, msg: str, *args, **kwargs):
        self.log(logging.INFO, msg, *args, **kwargs)

    def warning(self, msg: str, *args, **kwargs):
        self.log(logging.WARNING, msg, *args, **kwargs)

    def error(self, msg: str, *args, **kwargs):
        self.log(logging.ERROR, msg, *args, **kwargs)

    def exception(self, msg: str, *args, **kwargs):
        kwargs["exc_info"] = True
        self.log(logging.ERROR, msg, *args, **kwargs)

    def setLevel(self, level):
        self._logger.setLevel(level)

    def isEnabledFor(self, level) -> bool:
        return self._logger.isEnabledFor(level)


# =============================================================================
# Setup
# =============================================================================

APP_LOGGERS = ("line_items", "activities", "workflows", "workers", "api", "core")
QUIET_LOGGERS = ("httpx", "uvicorn.access")

_loggers: Dict[str, CorrelatedLogger] = {}
_configured = False


def _resolve_level(level: Union[int, str]) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(str(level).upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def configure_logging(
    level: Union[int, str, None] = None,
    json_format: Optional[bool] = None,
    include_temporal: bool = True,
):
    """
    Install the stdout handler once per process.

    Args:
        level: Logging level (LOG_LEVEL when omitted)
        json_format: JSON lines instead of console format (LOG_JSON when omitted)
        include_temporal: Also set the temporalio SDK loggers to INFO
    """
    global _configured
    if _configured:
        return

    if level is None or json_format is None:
        from core.config import get_settings
        settings = get_settings()
        level = settings.log_level if level is None else level
        json_format = settings.log_json if json_format is None else json_format

    numeric = _resolve_level(level)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(numeric)
    handler.setFormatter(StructuredFormatter() if json_format else HumanReadableFormatter())

    root = logging.getLogger()
    root.setLevel(numeric)
    root.addHandler(handler)

    for name in APP_LOGGERS:
        logging.getLogger(name).setLevel(numeric)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    if include_temporal:
        logging.getLogger("temporalio").setLevel(logging.INFO)

    _configured = True


def get_logger(name: str) -> CorrelatedLogger:
    """Correlated logger for ``name`` (typically ``__name__``)."""
    logger = _loggers.get(name)
    if logger is None:
        configure_logging()
        logger = _loggers[name] = CorrelatedLogger(logging.getLogger(name))
    return logger
