"""
Internal Export Parts API

Service-to-service endpoint where each service delivers its export part.
"""

from typing import Any, Dict

from fastapi import APIRouter, Body, Depends

from ...core.container import ServiceContainer
from ..dependencies import get_container, require_internal_token

router = APIRouter(
    prefix="/internal/export-jobs",
    tags=["internal"],
    dependencies=[Depends(require_internal_token)],
)


@router.post("/{job_id}/parts/{service}")
async def upload_part(
    job_id: str,
    service: str,
    payload: Any = Body(...),
    container: ServiceContainer = Depends(get_container),
) -> Dict[str, bool]:
    """Store a service's part. Repeating a delivery is harmless."""
    await container.coordinator.receive_part(job_id, service, payload)
    return {"ok": True}
