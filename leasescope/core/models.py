"""Record models and enums for LeaseScope."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from ipaddress import IPv4Address
from typing import Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from leasescope.core.hwaddr import HardwareAddress

UNKNOWN = "unknown"
Unknown = Literal["unknown"]


class Grammar(str, Enum):
    """Which source file grammar a byte stream follows."""

    HOSTS = "hosts"
    LEASES = "leases"


class LeaseState(str, Enum):
    ACTIVE = "active"
    RESERVED = "reserved"
    EXPIRED = "expired"
    RELEASED = "released"

    @property
    def priority(self) -> int:
        """Tie-break rank between leases that started at the same instant."""
        return _STATE_PRIORITY[self]


_STATE_PRIORITY = {
    LeaseState.ACTIVE: 3,
    LeaseState.RESERVED: 2,
    LeaseState.EXPIRED: 1,
    LeaseState.RELEASED: 0,
}


class CoordinatorState(str, Enum):
    IDLE = "idle"
    DEBOUNCING = "debouncing"
    REBUILDING = "rebuilding"
    DEGRADED = "degraded"


class EventType(str, Enum):
    SNAPSHOT_PUBLISHED = "snapshot_published"
    REBUILD_FAILED = "rebuild_failed"
    DEGRADED = "degraded"
    RECOVERED = "recovered"
    WATCH_LOST = "watch_lost"
    WATCH_RESTORED = "watch_restored"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class HostRecord(BaseModel):
    """A static hardware-to-address mapping from the server configuration."""

    model_config = ConfigDict(frozen=True)

    mac: HardwareAddress
    address: IPv4Address
    hostname: str | None = None
    description: str | None = None
    label: str | None = None  # the name after the ``host`` keyword


class LeaseRecord(BaseModel):
    """One lease entry from the lease log. Later entries supersede earlier ones."""

    model_config = ConfigDict(frozen=True)

    mac: HardwareAddress
    address: IPv4Address
    state: LeaseState | None = None  # None: no binding state in the log
    starts: datetime | None = None
    ends: datetime | None = None
    last_seen: datetime | None = None  # cltt
    tstp: datetime | None = None
    tsfp: datetime | None = None
    atsfp: datetime | None = None
    client_hostname: str | None = None
    uid: str | None = None
    vendor_class: str | None = None


Record = Union[HostRecord, LeaseRecord]


class Diagnostic(BaseModel):
    """A block that was skipped while parsing, with where it started."""

    model_config = ConfigDict(frozen=True)

    source: Grammar
    line: int
    column: int
    message: str
    excerpt: str | None = None

    def __str__(self) -> str:
        return f"{self.source.value}:{self.line}:{self.column}: {self.message}"


class ResolvedRecord(BaseModel):
    """A host mapping merged with the authoritative lease for the same address."""

    model_config = ConfigDict(frozen=True)

    mac: HardwareAddress
    address: IPv4Address
    hostname: str | None = None
    description: str | None = None
    lease_state: LeaseState | None = None
    lease_start: datetime | None = None
    lease_end: datetime | None = None
    last_seen: datetime | None = None
    has_host: bool = False
    has_lease: bool = False
    vendor: str = UNKNOWN
    reachable: bool | Unknown = UNKNOWN

    @property
    def display_name(self) -> str:
        return self.hostname or str(self.mac)

    def as_of(self, now: datetime) -> ResolvedRecord:
        """Settle a lease state that the log left to the clock.

        Leases written without a binding state are active until ``lease_end``
        and expired after it.
        """
        if not self.has_lease or self.lease_state is not None:
            return self
        expired = self.lease_end is not None and self.lease_end < now
        return self.model_copy(update={"lease_state": LeaseState.EXPIRED if expired else LeaseState.ACTIVE})


class ReloadEvent(BaseModel):
    """Something the reload coordinator did that operators may care about."""

    event_type: EventType
    version: int | None = None
    timestamp: datetime = Field(default_factory=_utcnow)
    details: dict[str, str] = Field(default_factory=dict)


class HealthStatus(BaseModel):
    state: CoordinatorState
    version: int | None = None
    published_at: datetime | None = None
    last_update_hosts: datetime | None = None
    last_update_leases: datetime | None = None
    last_check: datetime | None = None
    watching: bool = False
    stale: bool = False
    last_error: str | None = None
    record_count: int = 0
    diagnostic_count: int = 0
