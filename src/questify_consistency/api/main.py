"""
Questify Consistency API
========================

HTTP surface of the export saga and the outbox operator tools.

Run with:
    uvicorn questify_consistency.api.main:app --port 8081
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from ..core.config import get_settings
from ..core.container import ServiceContainer
from ..core.observability import init_observability
from ..core.outbox.lifecycle import outbox_lifespan
from .routers.export_jobs import router as export_jobs_router
from .routers.health import router as health_router
from .routers.internal_parts import router as internal_parts_router
from .routers.outbox_admin import router as outbox_admin_router
from .shared.middleware import TracingMiddleware, register_error_handlers

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the container (unless one was injected) and run the outbox processor."""
    owned = app.state.container is None
    if owned:
        settings = get_settings()
        init_observability(settings)
        app.state.container = await ServiceContainer.create(settings)

    container: ServiceContainer = app.state.container
    try:
        async with outbox_lifespan(container.dispatcher) as processor:
            app.state.outbox_processor = processor
            yield
    finally:
        app.state.outbox_processor = None
        if owned:
            await container.close()
            app.state.container = None


def create_app(container: Optional[ServiceContainer] = None) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        container: Pre-built services (tests); built at startup when omitted.
    """
    app = FastAPI(
        title="Questify Consistency API",
        description="User data export saga and transactional outbox operations",
        version="1.0.0",
        lifespan=lifespan
    )
    app.state.container = container
    app.state.outbox_processor = None

    register_error_handlers(app)
    app.add_middleware(TracingMiddleware)

    app.include_router(health_router)
    app.include_router(export_jobs_router)
    app.include_router(internal_parts_router)
    app.include_router(outbox_admin_router)

    return app


app = create_app()
