"""Logging utilities for traced services.

Provides structured JSON logging and log/trace correlation: with
``trace_context`` enabled every record carries the ids of the span that
was current when it was logged.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from opentelemetry import trace

__all__ = [
    "JSONFormatter",
    "TraceContextFilter",
    "setup_logging",
]

PLAIN_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
PLAIN_TRACE_FORMAT = (
    "%(asctime)s [%(levelname)s] %(name)s "
    "[trace_id=%(trace_id)s span_id=%(span_id)s]: %(message)s"
)

NO_TRACE_ID = "0"


class JSONFormatter(logging.Formatter):
    """Formatter that outputs log records as JSON.

    Example output:
        {"timestamp": "2025-01-15T10:30:00.123Z", "level": "INFO",
         "logger": "catalog.search", "message": "Indexed 1000 items",
         "extra": {"trace_id": "4bf92f3577b34da6a3ce929d0e0e4736"}}
    """

    def __init__(
        self,
        include_fields: Optional[list[str]] = None,
        exclude_fields: Optional[list[str]] = None,
    ):
        """Initialize JSON formatter.

        Args:
            include_fields: Extra fields to include (from record.__dict__)
            exclude_fields: Fields to exclude from output
        """
        super().__init__()
        self.include_fields = include_fields or []
        self.exclude_fields = exclude_fields or []

    def format(self, record: logging.LogRecord) -> str:
        """Format a log record as JSON."""
        log_data: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if record.pathname:
            log_data["source"] = {
                "file": record.pathname,
                "line": record.lineno,
                "function": record.funcName,
            }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        for field in self.include_fields:
            if hasattr(record, field):
                log_data[field] = getattr(record, field)

        # Anything set via extra= or by filters
        extra_attrs = {
            k: v
            for k, v in record.__dict__.items()
            if k not in logging.LogRecord("", 0, "", 0, "", (), None).__dict__
            and k not in ("message", "asctime")
            and k not in self.exclude_fields
            and k not in self.include_fields
        }
        if extra_attrs:
            log_data["extra"] = extra_attrs

        return json.dumps(log_data, default=str)


class TraceContextFilter(logging.Filter):
    """Stamp records with the current span's trace and span ids.

    Ids are lower-case hex (32 and 16 digits) as tracing backends display
    them; records logged outside a span get ``"0"``.
    """

    def __init__(self, service_name: Optional[str] = None) -> None:
        super().__init__()
        self.service_name = service_name

    def filter(self, record: logging.LogRecord) -> bool:
        span_context = trace.get_current_span().get_span_context()
        if span_context.is_valid:
            record.trace_id = format(span_context.trace_id, "032x")
            record.span_id = format(span_context.span_id, "016x")
        else:
            record.trace_id = NO_TRACE_ID
            record.span_id = NO_TRACE_ID
        if self.service_name:
            record.service_name = self.service_name
        return True


def setup_logging(
    verbose: bool = False,
    json_format: bool = False,
    log_file: Optional[str] = None,
    *,
    trace_context: bool = False,
    service_name: Optional[str] = None,
) -> None:
    """Configure root logging.

    Args:
        verbose: Enable debug-level logging
        json_format: Use JSON output format (for log aggregation)
        log_file: Optional file path to write logs to
        trace_context: Add trace_id/span_id to every record
        service_name: Added to every record when trace_context is set
    """
    level = logging.DEBUG if verbose else logging.INFO

    formatter: logging.Formatter
    if json_format:
        formatter = JSONFormatter()
    else:
        formatter = logging.Formatter(
            PLAIN_TRACE_FORMAT if trace_context else PLAIN_FORMAT,
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    # Remove existing handlers to avoid duplicates
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        # On the handler so records from every logger pass through it
        if trace_context:
            handler.addFilter(TraceContextFilter(service_name))
        root_logger.addHandler(handler)

    logging.getLogger("opentelemetry").setLevel(logging.WARNING)
