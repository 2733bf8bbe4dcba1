"""
Outbox Pattern Implementation

Provides guaranteed event delivery using the transactional outbox pattern.
Events are written to an outbox table in the same transaction as the
business change, then published by a background dispatcher.
"""

from .models import OutboxRecord, OutboxStatus
from .writer import OutboxWriter
from .processor import DispatchReport, OutboxDispatcher, OutboxProcessor, retry_delay
from .dlq import FailedOutboxManager
from .lifecycle import outbox_lifespan

__all__ = [
    "OutboxRecord",
    "OutboxStatus",
    "OutboxWriter",
    "DispatchReport",
    "OutboxDispatcher",
    "OutboxProcessor",
    "retry_delay",
    "FailedOutboxManager",
    "outbox_lifespan",
]
