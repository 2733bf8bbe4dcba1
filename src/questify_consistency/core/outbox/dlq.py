"""
Failed Outbox Records

Operator view over outbox records that exhausted their attempts.
FAILED is terminal for the dispatcher; the only way back to NEW is an
explicit operator retry through this manager.
"""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from ..database.adapter import DatabaseAdapter
from .models import OutboxRecord, OutboxStatus, _utcnow

logger = logging.getLogger(__name__)


class FailedOutboxManager:
    """
    Manages FAILED outbox records.

    Responsibilities:
    - List and count failed records
    - Report outbox counts by status and topic
    - Reset a single failed record for another round of attempts
    """

    def __init__(self, db: DatabaseAdapter, clock: Callable[[], datetime] = _utcnow):
        self._db = db
        self._clock = clock

    async def get_entries(
        self,
        limit: int = 100,
        offset: int = 0,
        topic: Optional[str] = None
    ) -> List[OutboxRecord]:
        """Failed records, newest first."""
        if topic:
            rows = await self._db.fetch(
                """
                SELECT * FROM outbox_events
                WHERE status = $1 AND topic = $2
                ORDER BY created_at DESC
                LIMIT $3 OFFSET $4
                """,
                OutboxStatus.FAILED.value, topic, limit, offset
            )
        else:
            rows = await self._db.fetch(
                """
                SELECT * FROM outbox_events
                WHERE status = $1
                ORDER BY created_at DESC
                LIMIT $2 OFFSET $3
                """,
                OutboxStatus.FAILED.value, limit, offset
            )
        return [OutboxRecord.from_row(row) for row in rows]

    async def get_count(self, topic: Optional[str] = None) -> int:
        """Total failed record count."""
        if topic:
            count = await self._db.fetchval(
                "SELECT COUNT(*) AS count FROM outbox_events WHERE status = $1 AND topic = $2",
                OutboxStatus.FAILED.value, topic
            )
        else:
            count = await self._db.fetchval(
                "SELECT COUNT(*) AS count FROM outbox_events WHERE status = $1",
                OutboxStatus.FAILED.value
            )
        return int(count or 0)

    async def get_stats(self) -> Dict[str, Any]:
        """Record counts by status, and failed counts by topic."""
        rows = await self._db.fetch(
            "SELECT status, COUNT(*) AS count FROM outbox_events GROUP BY status"
        )
        by_status = {status.value: 0 for status in OutboxStatus}
        for row in rows:
            by_status[row["status"]] = int(row["count"])

        topic_rows = await self._db.fetch(
            """
            SELECT topic, COUNT(*) AS count FROM outbox_events
            WHERE status = $1
            GROUP BY topic
            """,
            OutboxStatus.FAILED.value
        )

        return {
            "by_status": by_status,
            "failed_by_topic": {row["topic"]: int(row["count"]) for row in topic_rows},
        }

    async def retry_entry(self, entry_id: str, operator_id: Optional[str] = None) -> bool:
        """
        Reset a FAILED record to NEW with a fresh attempt budget.

        Returns:
            True if the record was FAILED and has been reset
        """
        updated = await self._db.execute(
            """
            UPDATE outbox_events
            SET status = $1, attempts = 0, next_attempt_at = $2
            WHERE id = $3 AND status = $4
            """,
            OutboxStatus.NEW.value,
            self._clock(),
            entry_id,
            OutboxStatus.FAILED.value
        )

        if updated:
            logger.info(f"Failed outbox record {entry_id} reset for retry by {operator_id}")
        return updated > 0
