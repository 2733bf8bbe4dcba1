"""
Event Envelope

The wire-level wrapper every event travels in. The eventId is assigned
once at creation and is the deduplication key for all consumers; it is
never regenerated on republish or redelivery.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

from ..observability.tracing import get_trace_id
from .taxonomy import EventPayload, UnknownPayload, get_payload_model


def _utcnow() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(timezone.utc)


class EventEnvelope(BaseModel):
    """Transport envelope; serialized with camelCase keys."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    event_id: str = Field(default_factory=lambda: str(uuid4()), alias="eventId")
    event_type: str = Field(alias="eventType")
    event_version: int = Field(default=1, alias="eventVersion")
    occurred_at: datetime = Field(default_factory=_utcnow, alias="occurredAt")
    source: str
    trace_id: Optional[str] = Field(default=None, alias="traceId")
    partition_key: Optional[str] = Field(default=None, alias="partitionKey")
    payload: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def create(
        cls,
        event_type: str,
        source: str,
        payload: Union[Dict[str, Any], EventPayload],
        partition_key: Optional[str] = None,
        version: int = 1,
        trace_id: Optional[str] = None,
    ) -> "EventEnvelope":
        """Build a new envelope with a fresh eventId and the current trace."""
        if isinstance(payload, EventPayload):
            payload = payload.model_dump(mode="json", by_alias=True)
        return cls(
            event_type=event_type,
            event_version=version,
            source=source,
            trace_id=trace_id or get_trace_id() or uuid4().hex,
            partition_key=partition_key,
            payload=payload,
        )

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)

    @classmethod
    def from_json(cls, raw: Union[str, bytes]) -> "EventEnvelope":
        return cls.model_validate_json(raw)

    def decode_payload(self) -> EventPayload:
        """
        Decode the payload with the schema registered for this
        (eventType, eventVersion).

        Raises:
            pydantic.ValidationError: if a registered schema rejects the body
        """
        model = get_payload_model(self.event_type, self.event_version)
        if model is None:
            return UnknownPayload(
                event_type=self.event_type,
                event_version=self.event_version,
                raw=dict(self.payload),
            )
        return model.model_validate(self.payload)
