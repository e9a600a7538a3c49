"""Structured JSON logging for the ingestion pipeline.

Every record carries a correlation id. While an upload is processed the id
is the upload id, so one pipeline run can be picked out of worker output.
"""

import json
import logging
import sys
import traceback
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Iterator, Optional

from pavilion.core.tracing import current_ids

_correlation_id: ContextVar[Optional[str]] = ContextVar("pavilion_correlation_id", default=None)

# Attributes every LogRecord has; anything else was passed as context
_RECORD_ATTRIBUTES = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {
    "message",
    "asctime",
    "correlation_id",
}

NOISY_LOGGERS = ("sqlalchemy.engine", "httpx", "httpcore", "botocore", "s3transfer")


def get_correlation_id() -> str:
    """Correlation id of the current context.

    Falls back to the active trace id, then to a fresh id that stays bound to
    the context.
    """
    cid = _correlation_id.get()
    if cid is None:
        trace_id, _ = current_ids()
        if trace_id:
            return trace_id
        cid = uuid.uuid4().hex
        _correlation_id.set(cid)
    return cid


def clear_correlation_id() -> None:
    _correlation_id.set(None)


@contextmanager
def correlation_scope(correlation_id: str) -> Iterator[None]:
    """Bind a correlation id for the duration of a block."""
    token = _correlation_id.set(correlation_id)
    try:
        yield
    finally:
        _correlation_id.reset(token)


def _jsonable(value: Any) -> Any:
    try:
        json.dumps(value)
    except (TypeError, ValueError):
        return str(value)
    return value


class JSONFormatter(logging.Formatter):
    """Renders a record as one JSON object per line."""

    def __init__(self, include_stack_trace: bool = True):
        super().__init__()
        self.include_stack_trace = include_stack_trace

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "correlation_id": getattr(record, "correlation_id", None) or get_correlation_id(),
            "source": {
                "file": record.pathname,
                "line": record.lineno,
                "function": record.funcName,
            },
        }

        trace_id, span_id = current_ids()
        if trace_id:
            payload["trace_id"] = trace_id
            payload["span_id"] = span_id

        if record.exc_info and self.include_stack_trace:
            exc_type, exc, tb = record.exc_info
            payload["exception"] = {
                "type": exc_type.__name__ if exc_type else None,
                "message": str(exc) if exc is not None else None,
                "stack_trace": traceback.format_exception(exc_type, exc, tb) if tb else None,
            }

        context = {
            key: _jsonable(value)
            for key, value in vars(record).items()
            if key not in _RECORD_ATTRIBUTES
        }
        if context:
            payload["extra"] = context

        return json.dumps(payload, default=str)


class CorrelationIdFilter(logging.Filter):
    """Stamps the current correlation id on every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = get_correlation_id()
        return True


def setup_logging(level: str = "INFO", json_format: bool = True) -> None:
    """Send all logging to stdout, as JSON unless json_format is False."""
    root = logging.getLogger()
    root.setLevel(level.upper())
    for handler in list(root.handlers):
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(CorrelationIdFilter())
    if json_format:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)s [%(correlation_id)s] %(name)s: %(message)s"
        ))
    root.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def _log(
    logger: logging.Logger,
    level: int,
    message: str,
    exception: Optional[BaseException] = None,
    **context: Any,
) -> None:
    context["correlation_id"] = get_correlation_id()
    # stacklevel points the record's source at the helper's caller
    logger.log(level, message, exc_info=exception, extra=context, stacklevel=3)


def log_info(logger: logging.Logger, message: str, **context: Any) -> None:
    _log(logger, logging.INFO, message, **context)


def log_warning(logger: logging.Logger, message: str, **context: Any) -> None:
    _log(logger, logging.WARNING, message, **context)


def log_error(
    logger: logging.Logger,
    message: str,
    exception: Optional[BaseException] = None,
    **context: Any,
) -> None:
    """Log an error, with the exception's traceback when one is given."""
    _log(logger, logging.ERROR, message, exception, **context)
