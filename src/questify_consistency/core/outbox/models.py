"""
Outbox Models
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel

from ..events.envelope import EventEnvelope

LAST_ERROR_MAX_LENGTH = 2000


def _utcnow() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(timezone.utc)


class OutboxStatus(str, Enum):
    """Status of an outbox record. SENT and FAILED are terminal."""
    NEW = "NEW"
    SENT = "SENT"
    FAILED = "FAILED"


class OutboxRecord(BaseModel):
    """A row of the outbox_events table."""

    id: str
    topic: str
    key: Optional[str] = None
    envelope_body: str
    status: OutboxStatus = OutboxStatus.NEW
    attempts: int = 0
    created_at: datetime
    next_attempt_at: datetime
    sent_at: Optional[datetime] = None
    last_error: Optional[str] = None

    @classmethod
    def new_event(
        cls,
        envelope: EventEnvelope,
        topic: str,
        key: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> "OutboxRecord":
        """A NEW record for an envelope, due immediately."""
        now = now or _utcnow()
        return cls(
            id=envelope.event_id,
            topic=topic,
            key=key if key is not None else envelope.partition_key,
            envelope_body=envelope.to_json(),
            created_at=now,
            next_attempt_at=now,
        )

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "OutboxRecord":
        return cls.model_validate({name: row.get(name) for name in cls.model_fields})

    def envelope(self) -> EventEnvelope:
        return EventEnvelope.from_json(self.envelope_body)

    def to_dict(self) -> Dict[str, Any]:
        """Operator view; the body is decoded when possible."""
        data = self.model_dump(mode="json")
        try:
            data["envelope"] = self.envelope().model_dump(mode="json", by_alias=True)
            del data["envelope_body"]
        except ValueError:
            pass
        return data


def format_error(exc: BaseException) -> str:
    """`<ExceptionClass>: <message>`, truncated for storage."""
    return f"{type(exc).__name__}: {exc}"[:LAST_ERROR_MAX_LENGTH]
