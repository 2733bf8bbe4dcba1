"""
Export Request Responder

Handler run by every non-coordinating service: on UserExportRequested it
builds the service's slice of the user's data and delivers it to the
coordinator.
"""

import logging
from typing import Any, Awaitable, Callable, Optional

import httpx
from pydantic import ValidationError

from ..events.envelope import EventEnvelope
from ..events.taxonomy import ExportEventType, UserExportRequestedV1
from ..messaging.consumer import HandlerResult
from .client import ExportPartsClient

logger = logging.getLogger(__name__)

Exporter = Callable[[str], Awaitable[Any]]

# Client errors that can succeed on a later attempt
_RETRYABLE_STATUS = {408, 425, 429}


class ExportRequestResponder:
    """
    Business handler for UserExportRequested.

    Usage:
        responder = ExportRequestResponder("quest-service", export_quests, client)
        consumer = EventConsumer(transport, "questify.users",
                                 "quest-service-gdpr-export", responder)
    """

    def __init__(self, service: str, exporter: Exporter, client: ExportPartsClient):
        self.service = service
        self._exporter = exporter
        self._client = client

    async def __call__(self, envelope: EventEnvelope, *_: Any) -> Optional[HandlerResult]:
        if envelope.event_type != ExportEventType.USER_EXPORT_REQUESTED.value:
            return HandlerResult.ack()

        try:
            request = envelope.decode_payload()
        except ValidationError as e:
            return HandlerResult.reject(f"Malformed {envelope.event_type} payload: {e.error_count()} error(s)")
        if not isinstance(request, UserExportRequestedV1) or not request.job_id or not request.user_id:
            return HandlerResult.reject(f"{envelope.event_type} without jobId/userId")

        payload = await self._exporter(request.user_id)

        try:
            await self._client.upload_part(request.job_id, self.service, payload)
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            if status < 500 and status not in _RETRYABLE_STATUS:
                return HandlerResult.reject(f"Coordinator refused part ({status}) for job {request.job_id}")
            return HandlerResult.retry(f"Coordinator answered {status} for job {request.job_id}")
        except httpx.TransportError as e:
            logger.warning(f"Export part delivery failed for job {request.job_id}: {e}")
            return HandlerResult.retry(f"{type(e).__name__}: {e}")

        logger.info(f"{self.service} delivered export part for job={request.job_id} user={request.user_id}")
        return HandlerResult.ack()
