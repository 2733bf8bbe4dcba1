"""
Outbox Dispatcher

Drains the outbox table and publishes to the transport with linear
backoff and a terminal FAILED state.

`OutboxDispatcher.dispatch_once()` is a stateless tick; `OutboxProcessor`
runs it on a fixed interval.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from opentelemetry.trace import SpanKind

from ..config import OutboxSettings
from ..database.adapter import DatabaseAdapter
from ..database.schema import INSERT_ORDER_COLUMN
from ..messaging.transport import Transport
from ..observability.metrics import record_counter, record_histogram
from ..observability.tracing import create_span, inject_trace_context
from .models import OutboxRecord, OutboxStatus, _utcnow, format_error

logger = logging.getLogger(__name__)

# Added to the publish timeout while a record is claimed
CLAIM_MARGIN_SECONDS = 5.0


def retry_delay(attempts: int, base_retry_seconds: float) -> timedelta:
    """Linear backoff: the k-th failure waits k * base seconds."""
    return timedelta(seconds=attempts * base_retry_seconds)


@dataclass
class DispatchReport:
    """Counts for one dispatcher tick."""
    selected: int = 0
    sent: int = 0
    retried: int = 0
    failed: int = 0
    skipped: int = 0


class OutboxDispatcher:
    """
    Publishes due outbox records.

    Each tick selects up to `batch_size` records with status NEW and
    next_attempt_at <= now, oldest first. A record whose key has an older
    NEW record still waiting is held back so records sharing a key are
    published in creation order; equal created_at falls back to insertion
    order. Each record is claimed in a short transaction (FOR UPDATE SKIP
    LOCKED on PostgreSQL), published with no transaction open, and its
    outcome written by an update guarded on the claimed state.
    """

    def __init__(
        self,
        db: DatabaseAdapter,
        transport: Transport,
        settings: Optional[OutboxSettings] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.db = db
        self.transport = transport
        self.settings = settings or OutboxSettings()
        self._clock = clock

    async def dispatch_once(self) -> DispatchReport:
        """Run one dispatch pass over the due records."""
        started = time.monotonic()
        report = DispatchReport()
        order_col = INSERT_ORDER_COLUMN[self.db.backend]

        due = await self.db.fetch(
            f"""
            SELECT o.id, o.key
            FROM outbox_events o
            WHERE o.status = $1
              AND o.next_attempt_at <= $2
              AND NOT EXISTS (
                  SELECT 1 FROM outbox_events prior
                  WHERE prior.status = $1
                    AND prior.key = o.key
                    AND (
                        prior.created_at < o.created_at
                        OR (prior.created_at = o.created_at AND prior.{order_col} < o.{order_col})
                    )
              )
            ORDER BY o.created_at ASC, o.{order_col} ASC
            LIMIT $3
            """,
            OutboxStatus.NEW.value,
            self._clock(),
            self.settings.batch_size,
        )
        report.selected = len(due)

        blocked_keys = set()
        for row in due:
            if row["key"] is not None and row["key"] in blocked_keys:
                report.skipped += 1
                continue

            outcome = await self._dispatch_record(row["id"])
            if outcome is None:
                report.skipped += 1
                continue
            if outcome is OutboxStatus.SENT:
                report.sent += 1
                continue

            # Later records for this key wait for the failed one
            if row["key"] is not None:
                blocked_keys.add(row["key"])
            if outcome is OutboxStatus.FAILED:
                report.failed += 1
            else:
                report.retried += 1

        if report.selected:
            record_histogram("outbox_dispatch_duration_seconds", time.monotonic() - started)
            logger.debug(f"Outbox dispatch: {report}")
        return report

    def claim_duration(self) -> timedelta:
        return timedelta(seconds=self.settings.send_timeout_seconds + CLAIM_MARGIN_SECONDS)

    async def _claim(self, record_id: str) -> Optional[OutboxRecord]:
        """
        Take a due record for this dispatcher.

        The claim pushes next_attempt_at past the publish timeout, so other
        dispatchers skip the record while it is being published. If this
        process dies mid-publish the claim lapses and the record is
        published again.
        """
        now = self._clock()
        async with self.db.transaction() as tx:
            row = await tx.fetchrow(
                f"""
                SELECT * FROM outbox_events
                WHERE id = $1 AND status = $2 AND next_attempt_at <= $3
                {tx.for_update(skip_locked=True)}
                """,
                record_id,
                OutboxStatus.NEW.value,
                now,
            )
            if row is None:
                return None
            await tx.execute(
                "UPDATE outbox_events SET next_attempt_at = $1 WHERE id = $2",
                now + self.claim_duration(),
                record_id,
            )
        return OutboxRecord.from_row(row)

    async def _dispatch_record(self, record_id: str) -> Optional[OutboxStatus]:
        """
        Publish one record and persist the outcome.

        Returns the resulting status (NEW means rescheduled), or None when
        another dispatcher already took the record. No transaction is open
        while the transport publishes.
        """
        record = await self._claim(record_id)
        if record is None:
            return None

        with create_span(
            f"publish {record.topic}",
            {"outbox.id": record.id, "outbox.topic": record.topic, "outbox.attempts": record.attempts},
            kind=SpanKind.PRODUCER,
        ):
            try:
                await self._publish(record)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                return await self._record_failure(record, e)

        updated = await self.db.execute(
            """
            UPDATE outbox_events
            SET status = $1, sent_at = $2, last_error = NULL
            WHERE id = $3 AND status = $4 AND attempts = $5
            """,
            OutboxStatus.SENT.value,
            self._clock(),
            record.id,
            OutboxStatus.NEW.value,
            record.attempts,
        )
        if not updated:
            logger.warning(f"Outbox record {record.id} changed while publishing; SENT not recorded")
            return None

        record_counter("outbox_published_total", 1, {"topic": record.topic})
        logger.debug(f"Published outbox record {record.id} to {record.topic}")
        return OutboxStatus.SENT

    async def _publish(self, record: OutboxRecord) -> None:
        envelope = record.envelope()
        headers = inject_trace_context({
            "event-id": envelope.event_id,
            "event-type": envelope.event_type,
            "event-version": str(envelope.event_version),
        })
        timeout = self.settings.send_timeout_seconds
        try:
            await asyncio.wait_for(
                self.transport.publish(record.topic, record.key, envelope, headers=headers),
                timeout=timeout,
            )
        except asyncio.TimeoutError as e:
            raise TimeoutError(f"publish timed out after {timeout}s") from e

    async def _record_failure(self, record: OutboxRecord, error: Exception) -> Optional[OutboxStatus]:
        attempts = record.attempts + 1
        last_error = format_error(error)
        terminal = attempts >= self.settings.max_attempts
        next_attempt = self._clock() + retry_delay(attempts, self.settings.base_retry_seconds)

        updated = await self.db.execute(
            """
            UPDATE outbox_events
            SET status = $1, attempts = $2, next_attempt_at = $3, last_error = $4
            WHERE id = $5 AND status = $6 AND attempts = $7
            """,
            (OutboxStatus.FAILED if terminal else OutboxStatus.NEW).value,
            attempts,
            next_attempt,
            last_error,
            record.id,
            OutboxStatus.NEW.value,
            record.attempts,
        )
        if not updated:
            logger.warning(f"Outbox record {record.id} changed while publishing; failure not recorded")
            return None

        if terminal:
            record_counter("outbox_failed_total", 1, {"topic": record.topic})
            logger.error(
                f"Outbox record {record.id} FAILED after {attempts} attempts "
                f"(topic={record.topic}): {last_error}"
            )
            return OutboxStatus.FAILED

        record_counter("outbox_retried_total", 1, {"topic": record.topic})
        logger.warning(
            f"Outbox record {record.id} failed (attempt {attempts}), retry at "
            f"{next_attempt.isoformat()}: {last_error}"
        )
        return OutboxStatus.NEW


class OutboxProcessor:
    """
    Runs the dispatcher on a fixed interval until stopped.

    Errors from a tick are logged and the loop continues on the next
    interval; every state change is already persisted per record.
    """

    def __init__(self, dispatcher: OutboxDispatcher, interval: Optional[float] = None):
        self.dispatcher = dispatcher
        self.interval = interval or dispatcher.settings.dispatch_interval_seconds
        self._running = False
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._running

    async def start(self):
        """Start the processor."""
        if self._running:
            return

        self._running = True
        self._task = asyncio.create_task(self._run())
        logger.info(f"OutboxProcessor started (interval={self.interval}s)")

    async def stop(self):
        """Stop the processor."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("OutboxProcessor stopped")

    async def _run(self):
        while self._running:
            try:
                report = await self.dispatcher.dispatch_once()
                if report.sent >= self.dispatcher.settings.batch_size:
                    # Backlog: go again without waiting
                    continue
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"OutboxProcessor error: {e}", exc_info=True)
            await asyncio.sleep(self.interval)
