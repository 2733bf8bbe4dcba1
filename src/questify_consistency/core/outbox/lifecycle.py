"""
Running the outbox processor alongside the API.

OUTBOX_PROCESSOR_ENABLED=false keeps an API replica from dispatching,
for deployments that run dispatch only in the worker process. It is
read at call time so tests and operators can flip it without rebuilding
settings.
"""

import logging
import os
from contextlib import asynccontextmanager
from typing import AsyncIterator, List, Optional

from ..config import OutboxSettings
from .processor import OutboxDispatcher, OutboxProcessor

logger = logging.getLogger(__name__)


def dispatch_disabled_reasons(settings: OutboxSettings) -> List[str]:
    """Why this process must not dispatch; empty when it may."""
    reasons = []
    if not settings.enabled:
        reasons.append("OUTBOX_ENABLED=false")
    if os.getenv("OUTBOX_PROCESSOR_ENABLED", "true").lower() != "true":
        reasons.append("OUTBOX_PROCESSOR_ENABLED=false")
    return reasons


@asynccontextmanager
async def outbox_lifespan(dispatcher: OutboxDispatcher) -> AsyncIterator[Optional[OutboxProcessor]]:
    """Yield a started OutboxProcessor, or None when dispatch is disabled here."""
    reasons = dispatch_disabled_reasons(dispatcher.settings)
    if reasons:
        logger.info(f"Outbox processor not started: {', '.join(reasons)}")
        yield None
        return

    processor = OutboxProcessor(dispatcher)
    await processor.start()
    try:
        yield processor
    finally:
        await processor.stop()
