"""
Integration tests for the processed-event ledger and the idempotent
consumer guard against SQLite.
"""

from datetime import timedelta

import pytest

from questify_consistency.core.events import EventEnvelope
from questify_consistency.core.inbox import IdempotentConsumer, ProcessedEventLedger
from questify_consistency.core.messaging import ConsumeOutcome, EventConsumer, HandlerOutcome, HandlerResult

TOPIC = "questify.submissions"
GROUP = "quest-service-points"


@pytest.fixture
async def points_table(db):
    """A business table for the handler's side effects."""
    await db.execute(
        """
        CREATE TABLE quest_points (
            event_id TEXT NOT NULL,
            user_id TEXT NOT NULL,
            points INTEGER NOT NULL
        )
        """
    )
    return "quest_points"


def submission_approved(user_id: str = "u1") -> EventEnvelope:
    return EventEnvelope.create(
        "SubmissionApproved", "submission-service", {"userId": user_id, "points": 10}, partition_key=user_id
    )


def award_points(calls):
    async def handler(envelope, tx):
        calls.append(envelope.event_id)
        await tx.execute(
            "INSERT INTO quest_points (event_id, user_id, points) VALUES ($1, $2, $3)",
            envelope.event_id,
            envelope.payload["userId"],
            envelope.payload["points"],
        )
        return HandlerResult.ack()
    return handler


async def points_rows(db):
    return await db.fetchval("SELECT COUNT(*) FROM quest_points")


class TestProcessedEventLedger:
    """Tests for ProcessedEventLedger."""

    @pytest.mark.asyncio
    async def test_first_insert_wins(self, db, clock):
        ledger = ProcessedEventLedger(db, clock=clock)

        assert await ledger.mark_processed_if_new(GROUP, "e1") is True
        assert await ledger.mark_processed_if_new(GROUP, "e1") is False
        assert await ledger.is_processed(GROUP, "e1") is True

    @pytest.mark.asyncio
    async def test_groups_are_independent(self, db, clock):
        ledger = ProcessedEventLedger(db, clock=clock)

        assert await ledger.mark_processed_if_new("quest-service", "e1") is True
        assert await ledger.mark_processed_if_new("proof-service", "e1") is True
        assert await ledger.is_processed("submission-service", "e1") is False

    @pytest.mark.asyncio
    async def test_blank_event_id_is_never_recorded(self, db, clock):
        ledger = ProcessedEventLedger(db, clock=clock)

        assert await ledger.mark_processed_if_new(GROUP, "") is True
        assert await ledger.mark_processed_if_new(GROUP, "") is True
        assert await ledger.mark_processed_if_new(GROUP, None) is True
        assert await db.fetchval("SELECT COUNT(*) FROM processed_events") == 0

    @pytest.mark.asyncio
    async def test_prune(self, db, clock):
        ledger = ProcessedEventLedger(db, clock=clock)
        await ledger.mark_processed_if_new(GROUP, "old")
        clock.advance(days=8)
        await ledger.mark_processed_if_new(GROUP, "recent")

        pruned = await ledger.prune(clock.now - timedelta(days=7))

        assert pruned == 1
        assert await ledger.is_processed(GROUP, "old") is False
        assert await ledger.is_processed(GROUP, "recent") is True


class TestIdempotentConsumer:
    """Tests for IdempotentConsumer."""

    @pytest.mark.asyncio
    async def test_duplicate_deliveries_apply_once(self, db, clock, points_table):
        """The same eventId delivered N times has one side effect."""
        calls = []
        guard = IdempotentConsumer(db, GROUP, award_points(calls), ProcessedEventLedger(db, clock=clock))
        envelope = submission_approved()

        results = [await guard(envelope) for _ in range(5)]

        assert all(r.outcome == HandlerOutcome.ACK for r in results)
        assert calls == [envelope.event_id]
        assert await points_rows(db) == 1

    @pytest.mark.asyncio
    async def test_handler_exception_rolls_back_ledger(self, db, clock, points_table):
        """A failed handler leaves the event unprocessed so a redelivery runs it."""
        ledger = ProcessedEventLedger(db, clock=clock)
        envelope = submission_approved()

        async def broken(env, tx):
            await tx.execute(
                "INSERT INTO quest_points (event_id, user_id, points) VALUES ($1, $2, $3)",
                env.event_id, "u1", 10,
            )
            raise RuntimeError("quest db timeout")

        with pytest.raises(RuntimeError):
            await IdempotentConsumer(db, GROUP, broken, ledger)(envelope)

        assert await ledger.is_processed(GROUP, envelope.event_id) is False
        assert await points_rows(db) == 0

        calls = []
        result = await IdempotentConsumer(db, GROUP, award_points(calls), ledger)(envelope)

        assert result.outcome == HandlerOutcome.ACK
        assert calls == [envelope.event_id]
        assert await points_rows(db) == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("declined", [HandlerResult.retry("busy"), HandlerResult.reject("bad")])
    async def test_non_ack_result_rolls_back(self, db, clock, points_table, declined):
        ledger = ProcessedEventLedger(db, clock=clock)
        envelope = submission_approved()

        async def declining(env, tx):
            await tx.execute(
                "INSERT INTO quest_points (event_id, user_id, points) VALUES ($1, $2, $3)",
                env.event_id, "u1", 10,
            )
            return declined

        result = await IdempotentConsumer(db, GROUP, declining, ledger)(envelope)

        assert result == declined
        assert await ledger.is_processed(GROUP, envelope.event_id) is False
        assert await points_rows(db) == 0

    @pytest.mark.asyncio
    async def test_each_group_applies_once(self, db, clock, points_table):
        ledger = ProcessedEventLedger(db, clock=clock)
        envelope = submission_approved()
        quest_calls, proof_calls = [], []

        for _ in range(2):
            await IdempotentConsumer(db, "quest-service", award_points(quest_calls), ledger)(envelope)
            await IdempotentConsumer(db, "proof-service", award_points(proof_calls), ledger)(envelope)

        assert quest_calls == [envelope.event_id]
        assert proof_calls == [envelope.event_id]

    @pytest.mark.asyncio
    async def test_redelivered_record_through_consumer(self, db, transport, clock, points_table):
        """A record published twice with one eventId is acked twice and applied once."""
        calls = []
        guard = IdempotentConsumer(db, GROUP, award_points(calls), ProcessedEventLedger(db, clock=clock))
        consumer = EventConsumer(transport, TOPIC, GROUP, guard)
        envelope = submission_approved()

        await transport.publish(TOPIC, "u1", envelope)
        await transport.publish(TOPIC, "u1", envelope)

        outcomes = []
        deliveries = transport.subscribe(TOPIC, GROUP)
        try:
            for _ in range(2):
                outcomes.append(await consumer.process(await deliveries.__anext__()))
        finally:
            await deliveries.aclose()

        assert outcomes == [ConsumeOutcome.ACKED, ConsumeOutcome.ACKED]
        assert calls == [envelope.event_id]
        assert await points_rows(db) == 1
        assert transport.committed_offset(GROUP, TOPIC, transport.partition_for("u1")) == 2
