"""
Idempotent Consumer Guard

Wraps a business handler so each event takes effect at most once per
consumer group, on top of at-least-once delivery.

The ledger insert and the handler's writes share one transaction:
- duplicate delivery: nothing runs, the delivery is acknowledged
- handler raises or returns RETRY/REJECT: the transaction, ledger row
  included, rolls back so a redelivery is processed again
"""

import logging
from typing import Awaitable, Callable, Optional

from ..database.adapter import DatabaseAdapter, Transaction
from ..events.envelope import EventEnvelope
from ..messaging.consumer import HandlerResult
from ..observability.metrics import record_counter
from .ledger import ProcessedEventLedger

logger = logging.getLogger(__name__)


BusinessHandler = Callable[[EventEnvelope, Transaction], Awaitable[Optional[HandlerResult]]]


class _HandlerDeclined(Exception):
    """Unwinds the transaction when the handler returns a non-ACK result."""

    def __init__(self, result: HandlerResult):
        super().__init__(result.reason)
        self.result = result


class IdempotentConsumer:
    """
    Deduplicating handler adapter.

    Usage:
        async def on_export_requested(envelope, tx):
            ...
            return HandlerResult.ack()

        handler = IdempotentConsumer(db, "quest-service", on_export_requested)
        consumer = EventConsumer(transport, "questify.users", "quest-service", handler)
    """

    def __init__(
        self,
        db: DatabaseAdapter,
        consumer_group: str,
        handler: BusinessHandler,
        ledger: Optional[ProcessedEventLedger] = None,
    ):
        self._db = db
        self.consumer_group = consumer_group
        self._handler = handler
        self._ledger = ledger or ProcessedEventLedger(db)

    async def __call__(self, envelope: EventEnvelope) -> HandlerResult:
        try:
            async with self._db.transaction() as tx:
                is_new = await self._ledger.mark_processed_if_new(
                    self.consumer_group, envelope.event_id, tx=tx
                )
                if not is_new:
                    record_counter(
                        "duplicate_events_total", 1,
                        {"group": self.consumer_group, "event_type": envelope.event_type}
                    )
                    logger.info(
                        f"Skipping duplicate event {envelope.event_id} "
                        f"({envelope.event_type}) for {self.consumer_group}"
                    )
                    return HandlerResult.ack()

                result = await self._handler(envelope, tx)
                if result is not None and not result.is_ack:
                    raise _HandlerDeclined(result)
        except _HandlerDeclined as declined:
            return declined.result

        return HandlerResult.ack()
