"""
Questify Event Taxonomy

Event types exchanged between Questify services and the versioned
payload schema registered for each (event type, version) pair.

Event naming convention: PascalCase past-tense fact, e.g. UserExportRequested.
Consumers must tolerate unknown types and versions; those decode to
UnknownPayload with the raw body preserved.
"""

from enum import Enum
from typing import Any, Dict, Optional, Tuple, Type

from pydantic import BaseModel, ConfigDict, Field


class ExportEventType(str, Enum):
    """Export saga events."""
    USER_EXPORT_REQUESTED = "UserExportRequested"
    USER_EXPORT_COMPLETED = "UserExportCompleted"


class EventPayload(BaseModel):
    """Base class for registered payload schemas."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class UserExportRequestedV1(EventPayload):
    """Fan-out request asking every service for its slice of a user's data."""

    job_id: str = Field(alias="jobId")
    user_id: str = Field(alias="userId")


class UserExportCompletedV1(EventPayload):
    """Audit fact emitted once an export archive is available."""

    job_id: str = Field(alias="jobId")
    user_id: str = Field(alias="userId")
    zip_object_key: str = Field(alias="zipObjectKey")


class UnknownPayload(EventPayload):
    """Payload of an unregistered (type, version); keeps the raw body."""

    model_config = ConfigDict(extra="forbid")

    event_type: str
    event_version: int
    raw: Dict[str, Any] = Field(default_factory=dict)


PAYLOAD_REGISTRY: Dict[Tuple[str, int], Type[EventPayload]] = {
    (ExportEventType.USER_EXPORT_REQUESTED.value, 1): UserExportRequestedV1,
    (ExportEventType.USER_EXPORT_COMPLETED.value, 1): UserExportCompletedV1,
}


def register_payload(event_type: str, version: int, model: Type[EventPayload]) -> None:
    """Register a payload schema for an event type and version."""
    PAYLOAD_REGISTRY[(event_type, version)] = model


def get_payload_model(event_type: str, version: int) -> Optional[Type[EventPayload]]:
    """Look up the payload schema, or None if unregistered."""
    return PAYLOAD_REGISTRY.get((event_type, version))
