"""
Outbox Writer

Writes events to the outbox table within the same transaction
as the business change, so an event exists if and only if the
change committed.
"""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, Optional, Union

from ..config import OutboxSettings
from ..database.adapter import DatabaseAdapter, Transaction
from ..events.envelope import EventEnvelope
from ..events.taxonomy import EventPayload
from ..messaging.transport import Transport
from .models import OutboxRecord, OutboxStatus, _utcnow

logger = logging.getLogger(__name__)


class OutboxWriter:
    """
    Writes events to the outbox for reliable delivery.

    Usage:
        async with db.transaction() as tx:
            # Your business writes here...
            await writer.publish(
                topic="questify.users",
                key=user_id,
                event_type="UserExportRequested",
                version=1,
                source="user-service",
                payload={"jobId": job_id, "userId": user_id},
                tx=tx,
            )
        # Transaction commits, outbox record is persisted

    With the outbox disabled (OUTBOX_ENABLED=false) events are published
    straight to the transport instead. That path gives up the atomicity
    guarantee and is meant for local development only.
    """

    def __init__(
        self,
        db: DatabaseAdapter,
        transport: Optional[Transport] = None,
        settings: Optional[OutboxSettings] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._db = db
        self._transport = transport
        self._settings = settings or OutboxSettings()
        self._clock = clock

    @property
    def enabled(self) -> bool:
        return self._settings.enabled

    async def write(
        self,
        envelope: EventEnvelope,
        topic: str,
        *,
        key: Optional[str] = None,
        tx: Optional[Transaction] = None,
    ) -> OutboxRecord:
        """
        Write an envelope to the outbox.

        Args:
            envelope: The event to deliver
            topic: Destination topic
            key: Partition key (defaults to envelope.partition_key)
            tx: Caller's transaction; when omitted the write joins the
                transaction open in this context, or runs in its own

        Returns:
            The persisted OutboxRecord
        """
        record = OutboxRecord.new_event(envelope, topic, key, now=self._clock())

        if not self.enabled:
            if self._transport is None:
                raise RuntimeError("Outbox disabled and no transport configured")
            logger.debug("Outbox disabled, publishing directly")
            await self._transport.publish(topic, record.key, envelope)
            return record.model_copy(update={
                "status": OutboxStatus.SENT,
                "sent_at": self._clock(),
            })

        if tx is None:
            async with self._db.transaction() as own_tx:
                await self._insert(own_tx, record)
        else:
            await self._insert(tx, record)

        logger.debug(
            "Wrote event to outbox: id=%s type=%s topic=%s key=%s",
            record.id, envelope.event_type, topic, record.key
        )
        return record

    async def publish(
        self,
        topic: str,
        key: Optional[str],
        event_type: str,
        version: int,
        source: str,
        payload: Union[Dict[str, Any], EventPayload],
        *,
        tx: Optional[Transaction] = None,
    ) -> EventEnvelope:
        """Build an envelope keyed by `key` and write it to the outbox."""
        envelope = EventEnvelope.create(
            event_type=event_type,
            source=source,
            payload=payload,
            partition_key=key,
            version=version,
        )
        await self.write(envelope, topic, key=key, tx=tx)
        return envelope

    async def _insert(self, tx: Transaction, record: OutboxRecord) -> None:
        await tx.execute(
            """
            INSERT INTO outbox_events (
                id, topic, key, envelope_body, status, attempts,
                created_at, next_attempt_at
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
            """,
            record.id,
            record.topic,
            record.key,
            record.envelope_body,
            record.status.value,
            record.attempts,
            record.created_at,
            record.next_attempt_at,
        )
