"""
Tracing

Spans for dispatch, consumption and saga steps. Trace context crosses
process boundaries as W3C traceparent headers on outbox messages and on
internal HTTP calls.
"""

import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Mapping, Optional

from opentelemetry import context as otel_context
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.propagate import extract, inject, set_global_textmap
from opentelemetry.sdk.resources import SERVICE_NAME, SERVICE_VERSION, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from opentelemetry.trace import Span, Status, StatusCode
from opentelemetry.trace.propagation.tracecontext import TraceContextTextMapPropagator

logger = logging.getLogger(__name__)

INSTRUMENTATION_NAME = "questify-consistency"


def init_tracing(
    service_name: str,
    service_version: str = "1.0.0",
    otlp_endpoint: Optional[str] = None,
    console_export: bool = False,
) -> None:
    """Install an SDK tracer provider exporting to OTLP and/or the console."""
    provider = TracerProvider(resource=Resource.create({
        SERVICE_NAME: service_name,
        SERVICE_VERSION: service_version,
    }))
    exporters = []
    if otlp_endpoint:
        exporters.append(OTLPSpanExporter(endpoint=otlp_endpoint, insecure=True))
    if console_export:
        exporters.append(ConsoleSpanExporter())
    for exporter in exporters:
        provider.add_span_processor(BatchSpanProcessor(exporter))

    trace.set_tracer_provider(provider)
    set_global_textmap(TraceContextTextMapPropagator())
    logger.info(
        f"Tracing initialized: service={service_name} "
        f"exporters={[type(e).__name__ for e in exporters] or 'none'}"
    )


def get_current_span() -> Span:
    return trace.get_current_span()


def get_trace_id() -> Optional[str]:
    """Hex trace id of the active span, or None when there is none."""
    ctx = get_current_span().get_span_context()
    return format(ctx.trace_id, "032x") if ctx.is_valid else None


@contextmanager
def create_span(
    name: str,
    attributes: Optional[Dict[str, Any]] = None,
    kind: trace.SpanKind = trace.SpanKind.INTERNAL,
    parent_headers: Optional[Mapping[str, str]] = None,
) -> Iterator[Span]:
    """
    Start a span and make it current.

    With `parent_headers` (message or request headers) the span joins
    the trace they carry. Exceptions mark the span as errored and
    propagate.
    """
    token = otel_context.attach(extract(dict(parent_headers))) if parent_headers else None
    tracer = trace.get_tracer(INSTRUMENTATION_NAME)
    try:
        with tracer.start_as_current_span(
            name,
            kind=kind,
            attributes=attributes or {},
            record_exception=False,
            set_status_on_exception=False,
        ) as span:
            try:
                yield span
            except Exception as e:
                span.record_exception(e)
                span.set_status(Status(StatusCode.ERROR, f"{type(e).__name__}: {e}"))
                raise
    finally:
        if token is not None:
            otel_context.detach(token)


def inject_trace_context(carrier: Dict[str, str]) -> Dict[str, str]:
    """Add traceparent (and tracestate) to `carrier` and return it."""
    inject(carrier)
    return carrier
