"""
Service Container

Builds and owns the long-lived collaborators of one service process
(database, transport, blob store, outbox and export coordinator). The
HTTP app and the background runner both start from here.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

import httpx

from .config import ServiceSettings, get_settings
from .database import DatabaseAdapter, ensure_schema
from .exports.client import ExportPartsClient
from .exports.coordinator import ExportJobCoordinator, LocalPartProducer
from .exports.responder import Exporter, ExportRequestResponder
from .inbox.guard import BusinessHandler, IdempotentConsumer
from .inbox.ledger import ProcessedEventLedger
from .messaging import EventConsumer, Handler, RetryPolicy, Transport, create_transport
from .outbox.dlq import FailedOutboxManager
from .outbox.models import _utcnow
from .outbox.processor import OutboxDispatcher
from .outbox.writer import OutboxWriter
from .storage import BlobStore, get_blob_store

logger = logging.getLogger(__name__)


async def profile_part(user_id: str) -> dict:
    """Minimal user-service export part: the requesting user's id."""
    return {"userId": user_id, "profile": None}


@dataclass
class ServiceContainer:
    settings: ServiceSettings
    db: DatabaseAdapter
    transport: Transport
    store: BlobStore
    writer: OutboxWriter
    dispatcher: OutboxDispatcher
    failed_outbox: FailedOutboxManager
    ledger: ProcessedEventLedger
    coordinator: ExportJobCoordinator
    clock: Callable[[], datetime] = _utcnow

    @classmethod
    async def create(
        cls,
        settings: Optional[ServiceSettings] = None,
        *,
        db: Optional[DatabaseAdapter] = None,
        transport: Optional[Transport] = None,
        store: Optional[BlobStore] = None,
        local_part_producer: Optional[LocalPartProducer] = profile_part,
        clock: Callable[[], datetime] = _utcnow,
    ) -> "ServiceContainer":
        """Connect, ensure the schema and wire every component."""
        settings = settings or get_settings()

        for issue in settings.validate_settings():
            logger.warning(f"Configuration: {issue}")

        db = db or DatabaseAdapter()
        await db.connect()
        await ensure_schema(db)

        if transport is None:
            if settings.transport_backend == "kafka":
                transport = create_transport(
                    "kafka",
                    bootstrap_servers=settings.kafka_bootstrap_servers,
                    client_id=settings.service_name,
                )
            else:
                transport = create_transport("memory")
        await transport.start()

        store = store or get_blob_store()
        writer = OutboxWriter(db, transport, settings.outbox, clock=clock)

        container = cls(
            settings=settings,
            db=db,
            transport=transport,
            store=store,
            writer=writer,
            dispatcher=OutboxDispatcher(db, transport, settings.outbox, clock=clock),
            failed_outbox=FailedOutboxManager(db, clock=clock),
            ledger=ProcessedEventLedger(db, clock=clock),
            coordinator=ExportJobCoordinator(
                db,
                store,
                writer,
                settings.export,
                local_part_producer=local_part_producer,
                clock=clock,
            ),
            clock=clock,
        )
        logger.info(
            f"Service container ready: service={settings.service_name} "
            f"db={db.backend.value} transport={type(transport).__name__} "
            f"storage={store.backend_type.value}"
        )
        return container

    async def close(self) -> None:
        await self.transport.stop()
        await self.db.disconnect()
        logger.info("Service container closed")

    # =========================================================================
    # Consumer wiring
    # =========================================================================

    def idempotent(self, consumer_group: str, handler: BusinessHandler) -> IdempotentConsumer:
        """Wrap a business handler with this service's processed-event ledger."""
        return IdempotentConsumer(self.db, consumer_group, handler, self.ledger)

    def consumer(self, topic: str, group_id: str, handler: Handler) -> EventConsumer:
        """An EventConsumer using the configured retry policy and DLQ suffix."""
        return EventConsumer(
            self.transport,
            topic,
            group_id,
            handler,
            retry_policy=RetryPolicy.from_settings(self.settings.consumer),
            dlq_suffix=self.settings.consumer.dlq_suffix,
        )

    def export_responder(
        self,
        service: str,
        exporter: Exporter,
        *,
        http_transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> EventConsumer:
        """
        Consumer that answers UserExportRequested with this service's part.

        Parts are delivered to the coordinator at USER_SERVICE_BASE. A
        redelivered request re-sends the part, which the coordinator
        overwrites or ignores.
        """
        group_id = f"{service}-gdpr-export"
        client = ExportPartsClient(
            self.settings.user_service_base,
            self.settings.internal_token,
            timeout=self.settings.export.part_timeout_seconds,
            transport=http_transport,
        )
        responder = ExportRequestResponder(service, exporter, client)
        return self.consumer(self.settings.export.requests_topic, group_id, responder)
