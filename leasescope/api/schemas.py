"""Pydantic schemas for API response models."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from leasescope.core.models import CoordinatorState, Diagnostic, LeaseState, ResolvedRecord


class RecordResponse(BaseModel):
    mac: str
    address: str
    hostname: str | None = None
    description: str | None = None
    display_name: str
    lease_state: LeaseState | None = None
    lease_start: datetime | None = None
    lease_end: datetime | None = None
    last_seen: datetime | None = None
    has_host: bool = False
    has_lease: bool = False
    vendor: str = "unknown"
    reachable: bool | Literal["unknown"] = "unknown"

    @classmethod
    def from_record(cls, record: ResolvedRecord) -> RecordResponse:
        return cls(
            **record.model_dump(exclude={"mac", "address"}),
            mac=str(record.mac),
            address=str(record.address),
            display_name=record.display_name,
        )


class PaginatedRecords(BaseModel):
    records: list[RecordResponse]
    total: int
    page: int
    page_size: int
    version: int


class DiagnosticResponse(BaseModel):
    source: str
    line: int
    column: int
    message: str
    excerpt: str | None = None

    @classmethod
    def from_diagnostic(cls, diagnostic: Diagnostic) -> DiagnosticResponse:
        return cls(**diagnostic.model_dump(exclude={"source"}), source=diagnostic.source.value)


class HealthResponse(BaseModel):
    state: CoordinatorState
    ready: bool
    stale: bool
    watching: bool
    version: int | None = None
    published_at: datetime | None = None
    last_update_hosts: datetime | None = None
    last_update_leases: datetime | None = None
    last_check: datetime | None = None
    last_error: str | None = None
    record_count: int = 0
    diagnostic_count: int = 0


class EventResponse(BaseModel):
    event_type: str
    version: int | None = None
    timestamp: str
    details: dict[str, str] = Field(default_factory=dict)


class ReloadTriggerResponse(BaseModel):
    status: str
    message: str
