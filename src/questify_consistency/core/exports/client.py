"""
Export Parts Client

Delivers a service's export part to the coordinating service over the
internal HTTP endpoint.
"""

import logging
from typing import Any, Optional

import httpx

from ..observability.tracing import inject_trace_context

logger = logging.getLogger(__name__)

INTERNAL_TOKEN_HEADER = "X-Internal-Token"


class ExportPartsClient:
    """
    POSTs parts to `{base_url}/internal/export-jobs/{jobId}/parts/{service}`.

    The timeout is short on purpose: a failed delivery is retried by the
    consumer, it never blocks the requester.
    """

    def __init__(
        self,
        base_url: str,
        internal_token: str,
        *,
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._internal_token = internal_token
        self._timeout = timeout
        self._transport = transport

    async def upload_part(self, job_id: str, service: str, payload: Any) -> None:
        """
        Deliver one part.

        Raises:
            httpx.HTTPStatusError: non-2xx response
            httpx.TransportError: connection failure or timeout
        """
        headers = inject_trace_context({INTERNAL_TOKEN_HEADER: self._internal_token})
        async with httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self._timeout,
            transport=self._transport,
        ) as client:
            resp = await client.post(
                f"/internal/export-jobs/{job_id}/parts/{service}",
                json=payload,
                headers=headers,
            )
            resp.raise_for_status()

        logger.info(f"Delivered export part: job={job_id} service={service}")
