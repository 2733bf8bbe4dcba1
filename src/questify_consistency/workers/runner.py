#!/usr/bin/env python3
"""
Consistency Worker Runner

Responsibilities:
- Drain the outbox on a fixed interval (OutboxDispatcher.dispatch_once)
- Sweep expired export jobs (ExportJobCoordinator.expire_stale_jobs)
- Optionally prune old processed-event ledger entries

Each task is a stateless tick; an interrupted tick is simply repeated
on the next run because every state change is persisted first.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import signal
from datetime import timedelta
from typing import Any, Awaitable, Callable, List, Optional

from ..core.config import get_settings
from ..core.container import ServiceContainer
from ..core.observability import init_observability
from ..core.outbox.lifecycle import dispatch_disabled_reasons

logger = logging.getLogger(__name__)


class PeriodicTask:
    """Runs `tick` every `interval` seconds until stopped; errors are logged."""

    def __init__(self, name: str, interval: float, tick: Callable[[], Awaitable[Any]]):
        self.name = name
        self.interval = interval
        self._tick = tick
        self.runs = 0

    async def run_once(self) -> Any:
        self.runs += 1
        try:
            return await self._tick()
        except Exception as e:
            logger.error(f"{self.name} tick failed: {e}", exc_info=True)
            return None

    async def run(self, stop: asyncio.Event) -> None:
        logger.info(f"{self.name} started (interval={self.interval}s)")
        while not stop.is_set():
            await self.run_once()
            try:
                await asyncio.wait_for(stop.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass
        logger.info(f"{self.name} stopped")


def build_tasks(container: ServiceContainer, *, ledger_retention_days: float = 0) -> List[PeriodicTask]:
    """The periodic tasks this process should run."""
    settings = container.settings
    tasks = []

    if not dispatch_disabled_reasons(settings.outbox):
        tasks.append(PeriodicTask(
            "outbox-dispatch",
            settings.outbox.dispatch_interval_seconds,
            container.dispatcher.dispatch_once,
        ))

    tasks.append(PeriodicTask(
        "export-expiry",
        settings.export.cleanup_interval_seconds,
        container.coordinator.expire_stale_jobs,
    ))

    if ledger_retention_days > 0:
        async def prune_ledger() -> int:
            cutoff = container.clock() - timedelta(days=ledger_retention_days)
            return await container.ledger.prune(cutoff)

        tasks.append(PeriodicTask("ledger-prune", 3600, prune_ledger))

    return tasks


async def run_workers(
    container: ServiceContainer,
    *,
    once: bool = False,
    stop: Optional[asyncio.Event] = None,
    ledger_retention_days: float = 0,
) -> List[PeriodicTask]:
    """
    Run every periodic task until `stop` is set.

    With once=True each task ticks a single time and the call returns.
    """
    tasks = build_tasks(container, ledger_retention_days=ledger_retention_days)

    if once:
        for task in tasks:
            await task.run_once()
        return tasks

    stop = stop or asyncio.Event()
    await asyncio.gather(*(task.run(stop) for task in tasks))
    return tasks


async def _amain(args: argparse.Namespace) -> int:
    settings = get_settings()
    init_observability(settings)

    container = await ServiceContainer.create(settings)
    stop = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, stop.set)

    try:
        await run_workers(
            container,
            once=args.once,
            stop=stop,
            ledger_retention_days=args.ledger_retention_days,
        )
    finally:
        await container.close()
    return 0


def main() -> int:
    parser = argparse.ArgumentParser(description="Questify consistency worker")
    parser.add_argument("--once", action="store_true", help="Run every task once and exit")
    parser.add_argument(
        "--ledger-retention-days",
        type=float,
        default=float(os.getenv("LEDGER_RETENTION_DAYS", "0")),
        help="Prune processed-event entries older than this (0=keep forever)",
    )
    args = parser.parse_args()
    return asyncio.run(_amain(args))


if __name__ == "__main__":
    raise SystemExit(main())
