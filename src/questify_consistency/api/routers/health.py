"""
Health Check Endpoints

Liveness and readiness for container orchestration.
"""

from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import APIRouter, Depends, Request, Response

from ...core.container import ServiceContainer
from ..dependencies import get_container

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check() -> Dict[str, Any]:
    """Returns 200 if the service is running."""
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/health/ready")
async def readiness_check(
    request: Request,
    response: Response,
    container: ServiceContainer = Depends(get_container),
) -> Dict[str, Any]:
    """
    Readiness probe.

    Checks database connectivity and reports whether this instance runs
    the outbox processor.
    """
    checks = {}
    all_healthy = True

    try:
        await container.db.fetchval("SELECT 1")
        checks["database"] = "healthy"
    except Exception as e:
        checks["database"] = f"unhealthy: {str(e)[:100]}"
        all_healthy = False

    processor = getattr(request.app.state, "outbox_processor", None)
    checks["outbox_processor"] = "running" if processor is not None and processor.running else "not running"

    if not all_healthy:
        response.status_code = 503

    return {
        "status": "ready" if all_healthy else "not_ready",
        "checks": checks,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
