"""
Database Package

Async access to PostgreSQL or SQLite plus the consistency-layer schema.
"""

from .adapter import (
    DatabaseAdapter,
    DatabaseBackend,
    DatabaseConfig,
    DatabaseError,
    Transaction,
    UniqueViolation,
)
from .schema import INSERT_ORDER_COLUMN, ensure_schema

__all__ = [
    "DatabaseAdapter",
    "DatabaseBackend",
    "DatabaseConfig",
    "DatabaseError",
    "Transaction",
    "UniqueViolation",
    "INSERT_ORDER_COLUMN",
    "ensure_schema",
]
