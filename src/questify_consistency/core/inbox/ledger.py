"""
Processed-Event Ledger

Durable set of (consumer_group, event_id) pairs. The primary key on
that pair is the deduplication boundary: the insert either creates the
row (first delivery) or does nothing (duplicate). Rows are never updated.
"""

import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from ..database.adapter import DatabaseAdapter, Transaction

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(timezone.utc)


class ProcessedEventLedger:
    """Records which events each consumer group has already handled."""

    def __init__(self, db: DatabaseAdapter, clock: Callable[[], datetime] = _utcnow):
        self._db = db
        self._clock = clock

    async def mark_processed_if_new(
        self,
        consumer_group: str,
        event_id: Optional[str],
        *,
        tx: Optional[Transaction] = None,
    ) -> bool:
        """
        Record the event for the group.

        Must be the first statement of the transaction that applies the
        event's side effects, so a rollback also forgets the event.

        Args:
            consumer_group: The consumer group identifier
            event_id: The envelope's eventId

        Returns:
            True if this is the first time the group sees the event,
            False for a duplicate delivery. A blank event_id always
            returns True and is never recorded.
        """
        if event_id is None or not str(event_id).strip():
            logger.debug(f"Ledger: blank eventId for group {consumer_group}, not deduplicated")
            return True

        executor = tx if tx is not None else self._db
        inserted = await executor.execute(
            """
            INSERT INTO processed_events (consumer_group, event_id, processed_at)
            VALUES ($1, $2, $3)
            ON CONFLICT (consumer_group, event_id) DO NOTHING
            """,
            consumer_group,
            str(event_id),
            self._clock(),
        )

        if inserted:
            logger.debug(f"Ledger: event {event_id} recorded for {consumer_group}")
            return True

        logger.debug(f"Ledger: event {event_id} already processed by {consumer_group}")
        return False

    async def is_processed(self, consumer_group: str, event_id: str) -> bool:
        """Check whether the group has already handled the event."""
        row = await self._db.fetchrow(
            """
            SELECT 1 AS seen FROM processed_events
            WHERE consumer_group = $1 AND event_id = $2
            """,
            consumer_group,
            event_id,
        )
        return row is not None

    async def prune(self, older_than: datetime) -> int:
        """
        Retention: delete entries processed before `older_than`.

        Only safe once the transport can no longer redeliver events that old.
        """
        deleted = await self._db.execute(
            "DELETE FROM processed_events WHERE processed_at < $1",
            older_than,
        )
        if deleted:
            logger.info(f"Ledger: pruned {deleted} entries processed before {older_than.isoformat()}")
        return deleted
