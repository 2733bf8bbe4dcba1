"""
Messaging Package

Transport adapters and the manual-ack consumer with retry and dead-lettering.
"""

from .transport import Delivery, InMemoryTransport, RecordMetadata, StoredRecord, Transport
from .consumer import (
    ConsumeOutcome,
    EventConsumer,
    Handler,
    HandlerOutcome,
    HandlerResult,
    RetryPolicy,
    classify_exception,
)


def create_transport(backend: str = "memory", **kwargs) -> Transport:
    """Build the transport named by TRANSPORT_BACKEND ("memory" or "kafka")."""
    if backend == "kafka":
        from .kafka import KafkaTransport
        return KafkaTransport(**kwargs)
    return InMemoryTransport(**kwargs)


__all__ = [
    "Delivery",
    "InMemoryTransport",
    "RecordMetadata",
    "StoredRecord",
    "Transport",
    "ConsumeOutcome",
    "EventConsumer",
    "Handler",
    "HandlerOutcome",
    "HandlerResult",
    "RetryPolicy",
    "classify_exception",
    "create_transport",
]
