"""
Metrics

Instruments are declared once in INSTRUMENTS and created when
init_metrics() installs a meter provider. Recording a name that is not
declared, or recording before init, is a no-op.
"""

import logging
from typing import Any, Dict, Optional, Union

from opentelemetry import metrics
from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import ConsoleMetricExporter, PeriodicExportingMetricReader
from opentelemetry.sdk.resources import SERVICE_NAME, Resource

logger = logging.getLogger(__name__)

COUNTER = "counter"
HISTOGRAM = "histogram"

# name -> (kind, unit, description)
INSTRUMENTS = {
    "outbox_published_total": (COUNTER, "1", "Outbox records published to the transport"),
    "outbox_retried_total": (COUNTER, "1", "Outbox publish failures scheduled for retry"),
    "outbox_failed_total": (COUNTER, "1", "Outbox records that exhausted their attempts"),
    "outbox_dispatch_duration_seconds": (HISTOGRAM, "s", "Duration of one dispatcher tick"),
    "duplicate_events_total": (COUNTER, "1", "Deliveries skipped by the processed-event ledger"),
    "consumer_retries_total": (COUNTER, "1", "In-process consumer redeliveries"),
    "dlq_entries_total": (COUNTER, "1", "Deliveries routed to a dead-letter topic"),
    "export_jobs_created_total": (COUNTER, "1", "Export jobs created"),
    "export_parts_received_total": (COUNTER, "1", "Export parts stored"),
    "export_jobs_completed_total": (COUNTER, "1", "Export jobs assembled and completed"),
    "export_jobs_failed_total": (COUNTER, "1", "Export jobs that failed during assembly"),
    "export_jobs_expired_total": (COUNTER, "1", "Export jobs swept to EXPIRED"),
    "export_assembly_duration_seconds": (HISTOGRAM, "s", "Duration of export archive assembly"),
    "http_requests_total": (COUNTER, "1", "HTTP requests served"),
    "http_request_duration_seconds": (HISTOGRAM, "s", "HTTP request latency"),
}

_instruments: Dict[str, Union[metrics.Counter, metrics.Histogram]] = {}


def init_metrics(
    service_name: str,
    otlp_endpoint: Optional[str] = None,
    console_export: bool = False,
    export_interval_ms: int = 60000,
) -> None:
    """Install an SDK meter provider and create every declared instrument."""
    readers = []
    if otlp_endpoint:
        readers.append(PeriodicExportingMetricReader(
            OTLPMetricExporter(endpoint=otlp_endpoint, insecure=True),
            export_interval_millis=export_interval_ms,
        ))
    if console_export:
        readers.append(PeriodicExportingMetricReader(
            ConsoleMetricExporter(), export_interval_millis=export_interval_ms,
        ))

    metrics.set_meter_provider(MeterProvider(
        resource=Resource.create({SERVICE_NAME: service_name}),
        metric_readers=readers,
    ))
    meter = metrics.get_meter("questify-consistency")

    _instruments.clear()
    for name, (kind, unit, description) in INSTRUMENTS.items():
        create = meter.create_counter if kind == COUNTER else meter.create_histogram
        _instruments[name] = create(name, unit=unit, description=description)

    logger.info(f"Metrics initialized: service={service_name} readers={len(readers)} instruments={len(_instruments)}")


def record_counter(name: str, value: int = 1, attributes: Optional[Dict[str, Any]] = None):
    instrument = _instruments.get(name)
    if isinstance(instrument, metrics.Counter):
        instrument.add(value, attributes or {})


def record_histogram(name: str, value: float, attributes: Optional[Dict[str, Any]] = None):
    instrument = _instruments.get(name)
    if isinstance(instrument, metrics.Histogram):
        instrument.record(value, attributes or {})
