"""
End-to-end export saga: the coordinator's outbox publishes the request,
each service's responder consumes it and delivers its part over the
internal HTTP endpoint, and the job completes.
"""

import httpx
import pytest

from questify_consistency.api.main import create_app
from questify_consistency.core.exports import ExportJobStatus
from questify_consistency.core.messaging import ConsumeOutcome

USER = {"X-User-Id": "u1"}


def exporter_for(service):
    async def export(user_id):
        return {"service": service, "userId": user_id, "items": [f"{service}-1"]}
    return export


async def next_delivery(transport, topic, group_id):
    deliveries = transport.subscribe(topic, group_id)
    try:
        return await deliveries.__anext__()
    finally:
        await deliveries.aclose()


class TestExportSaga:
    """Request fan-out through the outbox and part collection over HTTP."""

    @pytest.mark.asyncio
    async def test_saga_completes(self, container, transport, client):
        app_transport = httpx.ASGITransport(app=create_app(container))
        consumers = [
            container.export_responder(service, exporter_for(service), http_transport=app_transport)
            for service in ("quest-service", "submission-service", "proof-service")
        ]

        created = await client.post("/users/me/export-jobs", headers=USER)
        job_id = created.json()["jobId"]

        report = await container.dispatcher.dispatch_once()
        assert report.sent == 1

        for consumer in consumers:
            delivery = await next_delivery(transport, consumer.topic, consumer.group_id)
            assert delivery.envelope.payload == {"jobId": job_id, "userId": "u1"}
            assert await consumer.process(delivery) == ConsumeOutcome.ACKED

        job = await container.coordinator.get_job(job_id)
        assert job.status == ExportJobStatus.COMPLETED

        download = await client.get(f"/users/me/export-jobs/{job_id}/download", headers=USER)
        assert download.status_code == 200

        # The completion audit event is queued for the next dispatch
        await container.dispatcher.dispatch_once()
        audit = transport.records("questify.audit")
        assert [r.envelope.event_type for r in audit] == ["UserExportCompleted"]

    @pytest.mark.asyncio
    async def test_redelivered_request_is_harmless(self, container, transport, client):
        app_transport = httpx.ASGITransport(app=create_app(container))
        consumer = container.export_responder(
            "quest-service", exporter_for("quest-service"), http_transport=app_transport
        )

        created = await client.post("/users/me/export-jobs", headers=USER)
        job_id = created.json()["jobId"]
        await container.dispatcher.dispatch_once()

        first = await next_delivery(transport, consumer.topic, consumer.group_id)
        await consumer.process(first)
        await consumer.process(first)

        job = await container.coordinator.get_job(job_id)
        assert job.status == ExportJobStatus.RUNNING
        assert job.missing_parts == ["proof-service", "submission-service"]
        assert transport.records(consumer.dlq_topic) == []

    @pytest.mark.asyncio
    async def test_unknown_service_is_dead_lettered(self, container, transport, client):
        """The coordinator refuses a part it does not expect; the request is not retried."""
        app_transport = httpx.ASGITransport(app=create_app(container))
        consumer = container.export_responder(
            "billing-service", exporter_for("billing-service"), http_transport=app_transport
        )

        await client.post("/users/me/export-jobs", headers=USER)
        await container.dispatcher.dispatch_once()

        delivery = await next_delivery(transport, consumer.topic, consumer.group_id)

        assert await consumer.process(delivery) == ConsumeOutcome.DEAD_LETTERED
        dead = transport.records(consumer.dlq_topic)
        assert dead[0].headers["x-failure-outcome"] == "reject"
        assert "422" in dead[0].headers["x-failure-reason"]
