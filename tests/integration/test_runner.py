"""
Tests for the background worker runner.
"""

import asyncio

import pytest

from questify_consistency.core.exports import ExportJobStatus
from questify_consistency.core.outbox import OutboxStatus
from questify_consistency.workers.runner import PeriodicTask, build_tasks, run_workers


@pytest.fixture(autouse=True)
def processor_enabled(monkeypatch):
    monkeypatch.delenv("OUTBOX_PROCESSOR_ENABLED", raising=False)


class TestPeriodicTask:
    """Tests for PeriodicTask."""

    @pytest.mark.asyncio
    async def test_tick_errors_are_contained(self):
        async def boom():
            raise RuntimeError("broker down")

        task = PeriodicTask("boom", 1, boom)

        assert await task.run_once() is None
        assert task.runs == 1

    @pytest.mark.asyncio
    async def test_run_until_stopped(self):
        ticks = []

        async def tick():
            ticks.append(1)

        task = PeriodicTask("tick", 0.01, tick)
        stop = asyncio.Event()
        runner = asyncio.create_task(task.run(stop))
        await asyncio.sleep(0.05)
        stop.set()
        await asyncio.wait_for(runner, timeout=1)

        assert len(ticks) >= 2


class TestRunWorkers:
    """Tests for run_workers."""

    @pytest.mark.asyncio
    async def test_task_selection(self, container, monkeypatch):
        assert [t.name for t in build_tasks(container)] == ["outbox-dispatch", "export-expiry"]
        assert [t.name for t in build_tasks(container, ledger_retention_days=7)][-1] == "ledger-prune"

        monkeypatch.setenv("OUTBOX_PROCESSOR_ENABLED", "false")
        assert [t.name for t in build_tasks(container)] == ["export-expiry"]

    @pytest.mark.asyncio
    async def test_once_dispatches_and_expires(self, container, transport, clock):
        job = await container.coordinator.create_job("u1")
        clock.advance(hours=25)

        tasks = await run_workers(container, once=True)

        assert all(t.runs == 1 for t in tasks)
        status = await container.db.fetchval("SELECT status FROM outbox_events LIMIT 1")
        assert status == OutboxStatus.SENT.value
        assert len(transport.records("questify.users")) == 1
        assert (await container.coordinator.get_job(job.id)).status == ExportJobStatus.EXPIRED

    @pytest.mark.asyncio
    async def test_once_prunes_ledger(self, container, clock):
        await container.ledger.mark_processed_if_new("quest-service", "e-old")
        clock.advance(days=10)
        await container.ledger.mark_processed_if_new("quest-service", "e-new")

        await run_workers(container, once=True, ledger_retention_days=7)

        assert await container.ledger.is_processed("quest-service", "e-old") is False
        assert await container.ledger.is_processed("quest-service", "e-new") is True
