"""
Shared Test Fixtures

SQLite databases in a temp directory, the in-memory transport, a local
blob store and a controllable clock.
"""

from datetime import datetime, timedelta, timezone

import pytest

from questify_consistency.core.config import ExportSettings, OutboxSettings
from questify_consistency.core.database import DatabaseAdapter, DatabaseConfig, ensure_schema
from questify_consistency.core.messaging import InMemoryTransport
from questify_consistency.core.storage import LocalFilesystemBlobStore


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 1, 19, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
async def db(tmp_path):
    """Fresh SQLite database with the consistency schema."""
    adapter = DatabaseAdapter(DatabaseConfig(backend="sqlite", sqlite_path=str(tmp_path / "test.db")))
    await adapter.connect()
    await ensure_schema(adapter)
    yield adapter
    await adapter.disconnect()


@pytest.fixture
def transport():
    return InMemoryTransport(num_partitions=3)


@pytest.fixture
def blob_store(tmp_path):
    return LocalFilesystemBlobStore(base_path=tmp_path / "blobs")


@pytest.fixture
def outbox_settings():
    return OutboxSettings(batch_size=50, max_attempts=3, base_retry_seconds=5, send_timeout_seconds=1)


@pytest.fixture
def export_settings():
    return ExportSettings(audit_topic="questify.audit")
