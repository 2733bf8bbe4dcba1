"""
Consistency Layer Schema

Tables owned by the outbox, the processed-event ledger and the export
job coordinator. The DDL is portable between PostgreSQL and SQLite;
TIMESTAMPTZ and BOOLEAN columns are decoded by the adapter on SQLite.
"""

import logging
from typing import List

from .adapter import DatabaseAdapter, DatabaseBackend

logger = logging.getLogger(__name__)


# SQLite orders inserts by its implicit rowid; PostgreSQL needs an explicit sequence
INSERT_ORDER_COLUMN = {
    DatabaseBackend.SQLITE: "rowid",
    DatabaseBackend.POSTGRESQL: "seq",
}

_SEQUENCE_COLUMN = {
    DatabaseBackend.SQLITE: "",
    DatabaseBackend.POSTGRESQL: "seq BIGSERIAL NOT NULL,",
}

SCHEMA_STATEMENTS: List[str] = [
    """
    CREATE TABLE IF NOT EXISTS outbox_events (
        {sequence_column}
        id TEXT PRIMARY KEY,
        topic TEXT NOT NULL,
        key TEXT,
        envelope_body TEXT NOT NULL,
        status TEXT NOT NULL,
        attempts INTEGER NOT NULL DEFAULT 0,
        created_at TIMESTAMPTZ NOT NULL,
        next_attempt_at TIMESTAMPTZ NOT NULL,
        sent_at TIMESTAMPTZ,
        last_error TEXT
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_outbox_events_dispatch
        ON outbox_events (status, next_attempt_at, created_at)
    """,
    """
    CREATE TABLE IF NOT EXISTS processed_events (
        consumer_group TEXT NOT NULL,
        event_id TEXT NOT NULL,
        processed_at TIMESTAMPTZ NOT NULL,
        PRIMARY KEY (consumer_group, event_id)
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_processed_events_processed_at
        ON processed_events (processed_at)
    """,
    """
    CREATE TABLE IF NOT EXISTS export_jobs (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        status TEXT NOT NULL,
        created_at TIMESTAMPTZ NOT NULL,
        expires_at TIMESTAMPTZ NOT NULL,
        last_progress_at TIMESTAMPTZ,
        zip_object_key TEXT,
        assembly_claimed_at TIMESTAMPTZ,
        failure_reason TEXT
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_export_jobs_expiry
        ON export_jobs (status, expires_at)
    """,
    """
    CREATE TABLE IF NOT EXISTS export_job_parts (
        job_id TEXT NOT NULL REFERENCES export_jobs (id) ON DELETE CASCADE,
        service TEXT NOT NULL,
        received BOOLEAN NOT NULL DEFAULT FALSE,
        received_at TIMESTAMPTZ,
        PRIMARY KEY (job_id, service)
    )
    """,
]


async def ensure_schema(db: DatabaseAdapter) -> None:
    """Create all tables and indexes if they do not exist yet."""
    async with db.transaction() as tx:
        for statement in SCHEMA_STATEMENTS:
            await tx.execute(statement.replace("{sequence_column}", _SEQUENCE_COLUMN[db.backend]))
    logger.info("Consistency schema ensured")
