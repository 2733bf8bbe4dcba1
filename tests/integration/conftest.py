"""
Integration Test Fixtures
"""

import pytest
from httpx import AsyncClient, ASGITransport

from questify_consistency.core.config import ExportSettings, OutboxSettings, ServiceSettings
from questify_consistency.core.container import ServiceContainer

INTERNAL_TOKEN = "test-internal-token"


@pytest.fixture
def service_settings():
    return ServiceSettings(
        internal_token=INTERNAL_TOKEN,
        outbox=OutboxSettings(max_attempts=3),
        export=ExportSettings(audit_topic="questify.audit"),
    )


@pytest.fixture
async def container(service_settings, db, transport, blob_store, clock):
    """Services wired against the test database, transport and store."""
    return await ServiceContainer.create(
        service_settings,
        db=db,
        transport=transport,
        store=blob_store,
        clock=clock,
    )


@pytest.fixture
async def client(container):
    """Create async test client."""
    from questify_consistency.api.main import create_app

    transport = ASGITransport(app=create_app(container))
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
