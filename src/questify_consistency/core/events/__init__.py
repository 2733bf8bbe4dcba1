"""
Events Package

Envelope and versioned payload schemas shared by producers and consumers.
"""

from .envelope import EventEnvelope
from .taxonomy import (
    EventPayload,
    ExportEventType,
    UnknownPayload,
    UserExportCompletedV1,
    UserExportRequestedV1,
    get_payload_model,
    register_payload,
)

__all__ = [
    "EventEnvelope",
    "EventPayload",
    "ExportEventType",
    "UnknownPayload",
    "UserExportCompletedV1",
    "UserExportRequestedV1",
    "get_payload_model",
    "register_payload",
]
