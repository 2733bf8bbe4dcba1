"""
Inbox Package

Processed-event ledger and the idempotent consumer guard built on it.
"""

from .ledger import ProcessedEventLedger
from .guard import BusinessHandler, IdempotentConsumer

__all__ = [
    "ProcessedEventLedger",
    "BusinessHandler",
    "IdempotentConsumer",
]
