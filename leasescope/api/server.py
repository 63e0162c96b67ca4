"""FastAPI application factory for the LeaseScope API."""

from __future__ import annotations

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from leasescope.api.routes import create_routes
from leasescope.core.events import EventBus
from leasescope.core.query import QueryService
from leasescope.core.reload import ReloadCoordinator

logger = logging.getLogger(__name__)


def create_app(
    query: QueryService,
    coordinator: ReloadCoordinator | None = None,
    event_bus: EventBus | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="LeaseScope API",
        description="Live view of DHCP host mappings and leases",
        version="0.1.0",
    )

    # CORS: allow all origins for local use
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    if event_bus is None:
        event_bus = coordinator.event_bus if coordinator is not None else EventBus()

    app.include_router(create_routes(query, coordinator, event_bus))
    logger.debug("API routes registered")
    return app
