"""REST API route definitions."""

from __future__ import annotations

from contextlib import contextmanager
from ipaddress import AddressValueError, IPv4Address
from typing import Iterator, Literal

from fastapi import APIRouter, HTTPException, Query, Request

from leasescope.api.schemas import (
    DiagnosticResponse,
    EventResponse,
    HealthResponse,
    PaginatedRecords,
    RecordResponse,
    ReloadTriggerResponse,
)
from leasescope.core.events import EventBus
from leasescope.core.models import EventType, LeaseState
from leasescope.core.query import IndexNotReady, ListFilter, QueryService
from leasescope.core.reload import ReloadCoordinator


@contextmanager
def _query_errors() -> Iterator[None]:
    """Translate query-layer failures into HTTP errors."""
    try:
        yield
    except IndexNotReady as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    except ValueError as exc:
        # malformed hardware address, prefix or IP
        raise HTTPException(status_code=422, detail=str(exc)) from exc


def create_routes(
    query: QueryService,
    coordinator: ReloadCoordinator | None,
    event_bus: EventBus,
) -> APIRouter:
    """Create the API router with injected dependencies."""
    router = APIRouter(prefix="/api")

    @router.get("/devices", response_model=PaginatedRecords)
    async def list_devices(
        state: LeaseState | None = Query(None, description="Filter by lease state"),
        prefix: str | None = Query(None, description="Hardware address prefix, e.g. 00:1b:21"),
        source: Literal["host", "lease"] | None = Query(None, description="Only records with a host or a lease"),
        q: str | None = Query(None, description="Hostname or description substring"),
        page: int = Query(1, ge=1, description="Page number"),
        page_size: int = Query(50, ge=1, le=500, description="Items per page"),
    ) -> PaginatedRecords:
        with _query_errors():
            result = await query.list(
                ListFilter(state=state, prefix=prefix, source=source, q=q),
                page=page,
                page_size=page_size,
            )
        return PaginatedRecords(
            records=[RecordResponse.from_record(r) for r in result.items],
            total=result.total,
            page=result.page,
            page_size=result.page_size,
            version=result.version,
        )

    @router.get("/devices/{mac}", response_model=RecordResponse)
    async def get_device(mac: str) -> RecordResponse:
        with _query_errors():
            record = await query.get_by_mac(mac)
        if record is None:
            raise HTTPException(status_code=404, detail="Device not found")
        return RecordResponse.from_record(record)

    @router.get("/ip/{ip}", response_model=list[RecordResponse])
    async def get_by_ip(ip: str) -> list[RecordResponse]:
        with _query_errors():
            records = await query.get_by_ip(ip)
        return [RecordResponse.from_record(r) for r in records]

    @router.get("/prefix/{oui}", response_model=list[RecordResponse])
    async def get_by_prefix(oui: str) -> list[RecordResponse]:
        with _query_errors():
            records = await query.prefix_query(oui)
        return [RecordResponse.from_record(r) for r in records]

    @router.get("/whoami", response_model=list[RecordResponse])
    async def whoami(request: Request) -> list[RecordResponse]:
        host = request.client.host if request.client else None
        try:
            client_ip = IPv4Address(host or "")
        except AddressValueError:
            return []
        with _query_errors():
            records = await query.whoami(client_ip)
        return [RecordResponse.from_record(r) for r in records]

    @router.get("/vendors", response_model=list[str])
    async def list_vendors() -> list[str]:
        with _query_errors():
            return await query.vendors()

    @router.get("/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        status = query.health()
        return HealthResponse(**status.model_dump(), ready=status.version is not None)

    @router.get("/diagnostics", response_model=list[DiagnosticResponse])
    async def diagnostics(
        limit: int = Query(100, ge=1, le=1000),
    ) -> list[DiagnosticResponse]:
        with _query_errors():
            found = query.diagnostics()
        return [DiagnosticResponse.from_diagnostic(d) for d in found[:limit]]

    @router.get("/events", response_model=list[EventResponse])
    async def get_recent_events(
        limit: int = Query(100, ge=1, le=500),
        event_type: list[EventType] | None = Query(None, alias="type", description="Only these event types"),
    ) -> list[EventResponse]:
        events = event_bus.recent(limit, event_type)
        return [
            EventResponse(
                event_type=e.event_type.value,
                version=e.version,
                timestamp=e.timestamp.isoformat(),
                details=e.details,
            )
            for e in events
        ]

    @router.post("/reload", response_model=ReloadTriggerResponse)
    async def trigger_reload() -> ReloadTriggerResponse:
        if coordinator is None:
            raise HTTPException(status_code=503, detail="Reloading is not available")
        coordinator.request_reload()
        return ReloadTriggerResponse(status="ok", message="Reload queued")

    return router
