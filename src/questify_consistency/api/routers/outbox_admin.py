"""
Outbox Operator API

Inspect outbox records that exhausted their attempts and requeue them.
FAILED records are never retried automatically.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from ...core.container import ServiceContainer
from ..dependencies import get_container, require_internal_token
from ..shared.errors import NotFoundError

router = APIRouter(
    prefix="/internal/outbox",
    tags=["outbox"],
    dependencies=[Depends(require_internal_token)],
)


class RetryRequest(BaseModel):
    """Request to requeue a FAILED record."""
    operator_id: Optional[str] = None


@router.get("/stats")
async def outbox_stats(container: ServiceContainer = Depends(get_container)):
    """Record counts by status and FAILED counts by topic."""
    return await container.failed_outbox.get_stats()


@router.get("/failed")
async def list_failed(
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    topic: Optional[str] = None,
    container: ServiceContainer = Depends(get_container),
):
    """List FAILED records, newest first."""
    manager = container.failed_outbox
    entries = await manager.get_entries(limit=limit, offset=offset, topic=topic)
    total = await manager.get_count(topic)

    return {
        "entries": [e.to_dict() for e in entries],
        "total": total,
        "limit": limit,
        "offset": offset
    }


@router.post("/failed/{entry_id}/retry")
async def retry_failed(
    entry_id: str,
    body: Optional[RetryRequest] = None,
    container: ServiceContainer = Depends(get_container),
):
    """Reset one FAILED record to NEW so the dispatcher picks it up again."""
    operator_id = body.operator_id if body else None
    if not await container.failed_outbox.retry_entry(entry_id, operator_id):
        raise NotFoundError("Outbox record", entry_id)
    return {"id": entry_id, "status": "NEW", "requeued": True}
