"""
Observability

Structured logs, OpenTelemetry spans and metrics for the outbox, the
consumers and the export saga. Processes call init_observability() once
at startup; until then spans are no-ops and metrics are dropped.
"""

import os

from ..config import ServiceSettings
from .logging import configure_logging
from .metrics import init_metrics, record_counter, record_histogram
from .tracing import create_span, get_trace_id, init_tracing, inject_trace_context


def init_observability(settings: ServiceSettings) -> None:
    """Configure logging, tracing and metrics from the service settings."""
    configure_logging(
        level=settings.log_level,
        structured=settings.structured_logs,
        service_name=settings.service_name,
    )

    console_export = os.getenv("OTEL_CONSOLE_EXPORT", "false").lower() == "true"
    init_tracing(
        service_name=settings.service_name,
        service_version=os.getenv("APP_VERSION", "1.0.0"),
        otlp_endpoint=settings.otlp_endpoint,
        console_export=console_export,
    )
    init_metrics(
        service_name=settings.service_name,
        otlp_endpoint=settings.otlp_endpoint,
        console_export=console_export,
    )


__all__ = [
    "init_observability",
    "configure_logging",
    "init_tracing",
    "init_metrics",
    "create_span",
    "get_trace_id",
    "inject_trace_context",
    "record_counter",
    "record_histogram",
]
