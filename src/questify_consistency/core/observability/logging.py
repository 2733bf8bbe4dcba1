"""
Structured Logging with Trace Correlation

One JSON object per line. Every line carries the service name and the
active trace/span ids so dispatcher, consumer and saga logs join up with
their spans. Fields passed through `extra=` (job_id, path, ...) are
copied onto the line.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

from .tracing import get_current_span

# Attributes every LogRecord has; anything else came in through extra=
_STANDARD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {
    "message", "asctime", "trace_id", "span_id",
}

_NOISY_LOGGERS = ("uvicorn.access", "httpx", "aiokafka", "botocore", "opentelemetry")


def _span_ids() -> Tuple[Optional[str], Optional[str]]:
    span = get_current_span()
    ctx = span.get_span_context() if span else None
    if ctx is None or not ctx.is_valid:
        return None, None
    return format(ctx.trace_id, "032x"), format(ctx.span_id, "016x")


def _extra_fields(record: logging.LogRecord) -> Dict[str, Any]:
    fields = {}
    for key, value in vars(record).items():
        if key in _STANDARD_ATTRS or key.startswith("_"):
            continue
        try:
            json.dumps(value)
        except (TypeError, ValueError):
            value = str(value)
        fields[key] = value
    return fields


class StructuredFormatter(logging.Formatter):
    """Renders a record as a JSON object."""

    def __init__(self, service_name: str):
        super().__init__()
        self.service_name = service_name

    def format(self, record: logging.LogRecord) -> str:
        trace_id, span_id = _span_ids()
        line = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc)
            .isoformat(timespec="milliseconds")
            .replace("+00:00", "Z"),
            "level": record.levelname,
            "service": self.service_name,
            "logger": record.name,
            "message": record.getMessage(),
            "trace_id": trace_id,
            "span_id": span_id,
        }
        line.update(_extra_fields(record))
        if record.exc_info:
            line["exception"] = self.formatException(record.exc_info)
        return json.dumps(line)


class TraceContextFilter(logging.Filter):
    """Stamps trace_id on records for the plain-text format."""

    def filter(self, record: logging.LogRecord) -> bool:
        trace_id, _ = _span_ids()
        record.trace_id = trace_id or "no-trace"
        return True


def configure_logging(level: str = "INFO", structured: bool = True, service_name: str = "user-service"):
    """
    Replace the root handlers with one stdout handler.

    Args:
        level: Log level name; unknown names fall back to INFO
        structured: JSON lines when True, plain text otherwise
        service_name: Stamped on every structured line
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)
    handler.addFilter(TraceContextFilter())
    if structured:
        handler.setFormatter(StructuredFormatter(service_name))
    else:
        handler.setFormatter(logging.Formatter(
            f"%(asctime)s {service_name} %(levelname)s %(name)s [%(trace_id)s] %(message)s"
        ))

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(log_level)
    root.addHandler(handler)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger(__name__).info(
        f"Logging configured: service={service_name} level={level} structured={structured}"
    )
