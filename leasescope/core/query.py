"""Read-only query surface over the published index snapshot."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from ipaddress import IPv4Address
from typing import Any, Awaitable, Callable, Iterable, Literal, NamedTuple, Protocol, Sequence

from pydantic import BaseModel, Field

from leasescope.core.hwaddr import HardwareAddress, MacPrefix
from leasescope.core.index import IndexSnapshot
from leasescope.core.models import (
    UNKNOWN,
    CoordinatorState,
    Diagnostic,
    HealthStatus,
    LeaseState,
    ResolvedRecord,
)
from leasescope.core.probe import LivenessProbe
from leasescope.core.vendor import VendorResolver

logger = logging.getLogger(__name__)


class IndexNotReady(RuntimeError):
    """No snapshot has been published yet."""

    def __init__(self, message: str = "index not yet available") -> None:
        super().__init__(message)


class SnapshotSource(Protocol):
    def current(self) -> IndexSnapshot | None:
        ...

    def health(self) -> HealthStatus:
        ...


class StaticSource:
    """A fixed snapshot, for one-shot commands that never reload."""

    def __init__(self, snapshot: IndexSnapshot | None) -> None:
        self._snapshot = snapshot

    def current(self) -> IndexSnapshot | None:
        return self._snapshot

    def health(self) -> HealthStatus:
        snapshot = self._snapshot
        if snapshot is None:
            return HealthStatus(state=CoordinatorState.DEGRADED, stale=True, last_error="no snapshot")
        return HealthStatus(
            state=CoordinatorState.IDLE,
            version=snapshot.version,
            published_at=snapshot.built_at,
            record_count=len(snapshot),
            diagnostic_count=len(snapshot.diagnostics),
        )


class ListFilter(BaseModel):
    state: LeaseState | None = None
    prefix: str | None = None
    source: Literal["host", "lease"] | None = None
    q: str | None = Field(None, description="Case-insensitive substring of hostname or description")

    def matches(self, record: ResolvedRecord) -> bool:
        if self.state is not None and record.lease_state is not self.state:
            return False
        if self.source == "host" and not record.has_host:
            return False
        if self.source == "lease" and not record.has_lease:
            return False
        if self.q:
            needle = self.q.lower()
            haystack = " ".join(filter(None, (record.hostname, record.description))).lower()
            if needle not in haystack:
                return False
        return True


class _Job(NamedTuple):
    kind: str
    timeout: float
    call: Callable[[], Awaitable[Any]]


class Page(BaseModel):
    items: list[ResolvedRecord]
    total: int
    page: int
    page_size: int
    version: int


class QueryService:
    """Answers lookups from whichever snapshot is current when the call starts.

    Each call reads the published snapshot reference exactly once, so a
    rebuild finishing mid-call never mixes two versions into one answer.
    Vendor and liveness enrichment run concurrently up to ``max_concurrency``
    calls per request, each bounded by its own timeout; a failure or timeout
    leaves the field as ``"unknown"``. Leases the log left without a binding
    state get their active or expired state from ``clock`` at call time.
    """

    def __init__(
        self,
        source: SnapshotSource,
        *,
        vendor_resolver: VendorResolver | None = None,
        probe: LivenessProbe | None = None,
        vendor_timeout: float = 1.0,
        probe_timeout: float = 1.0,
        max_concurrency: int = 20,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self._source = source
        self._vendor_resolver = vendor_resolver
        self._probe = probe
        self._vendor_timeout = vendor_timeout
        self._probe_timeout = probe_timeout
        self._max_concurrency = max_concurrency
        self._clock = clock

    def _snapshot(self) -> IndexSnapshot:
        snapshot = self._source.current()
        if snapshot is None:
            raise IndexNotReady()
        return snapshot

    def _settle(self, records: Iterable[ResolvedRecord]) -> list[ResolvedRecord]:
        now = self._clock()
        return [record.as_of(now) for record in records]

    # -- lookups ----------------------------------------------------------

    async def get_by_mac(self, address: HardwareAddress | str, *, enrich: bool = True) -> ResolvedRecord | None:
        """The record for ``address``, or None when it is not in the index."""
        mac = HardwareAddress.parse(address)
        record = self._snapshot().lookup_by_mac(mac)
        if record is None:
            return None
        record = record.as_of(self._clock())
        if enrich:
            (record,) = await self.enrich([record])
        return record

    async def get_by_ip(self, address: IPv4Address | str, *, enrich: bool = True) -> list[ResolvedRecord]:
        records = self._settle(self._snapshot().lookup_by_ip(IPv4Address(address)))
        return await self.enrich(records) if enrich else records

    async def whoami(self, client_ip: IPv4Address | str) -> list[ResolvedRecord]:
        """Records for the address a request came from."""
        return await self.get_by_ip(client_ip)

    async def prefix_query(self, prefix: MacPrefix | str, *, enrich: bool = True) -> list[ResolvedRecord]:
        records = self._settle(self._snapshot().prefix_query(MacPrefix.parse(prefix)))
        return await self.enrich(records) if enrich else records

    async def list(
        self,
        filter: ListFilter | None = None,
        page: int = 1,
        page_size: int = 50,
        *,
        enrich: bool = True,
    ) -> Page:
        if page < 1 or page_size < 1:
            raise ValueError("page and page_size must be positive")
        filter = filter or ListFilter()
        snapshot = self._snapshot()

        candidates: Iterable[ResolvedRecord]
        if filter.prefix:
            candidates = snapshot.prefix_query(MacPrefix.parse(filter.prefix))
        else:
            candidates = snapshot
        matched = [r for r in self._settle(candidates) if filter.matches(r)]

        start = (page - 1) * page_size
        items = matched[start:start + page_size]
        if enrich:
            items = await self.enrich(items)
        return Page(items=items, total=len(matched), page=page, page_size=page_size, version=snapshot.version)

    async def vendors(self) -> list[str]:
        """Distinct known vendor names across every record, sorted."""
        if self._vendor_resolver is None:
            return []
        records = list(self._snapshot())
        names = await self._bounded_all([self._vendor_job(r) for r in records])
        return sorted({n for n in names if isinstance(n, str) and n != UNKNOWN})

    def health(self) -> HealthStatus:
        return self._source.health()

    def diagnostics(self) -> tuple[Diagnostic, ...]:
        return self._snapshot().diagnostics

    def version(self) -> int | None:
        snapshot = self._source.current()
        return snapshot.version if snapshot else None

    # -- enrichment -------------------------------------------------------

    def _vendor_job(self, record: ResolvedRecord) -> _Job:
        resolver = self._vendor_resolver
        assert resolver is not None
        return _Job("vendor", self._vendor_timeout, lambda: resolver.resolve(MacPrefix.from_address(record.mac)))

    def _probe_job(self, record: ResolvedRecord) -> _Job:
        probe = self._probe
        assert probe is not None
        return _Job("probe", self._probe_timeout, lambda: probe.check(record.address))

    async def _bounded_all(self, jobs: Sequence[_Job]) -> list[Any]:
        """Run every job under one concurrency cap; a failed or slow job yields ``"unknown"``."""
        semaphore = asyncio.Semaphore(self._max_concurrency)

        async def _one(job: _Job) -> Any:
            async with semaphore:
                try:
                    return await asyncio.wait_for(job.call(), timeout=job.timeout)
                except asyncio.TimeoutError:
                    logger.debug("%s lookup timed out after %.1fs", job.kind, job.timeout)
                except Exception as exc:
                    logger.debug("%s lookup failed: %s", job.kind, exc)
                return UNKNOWN

        return list(await asyncio.gather(*(_one(job) for job in jobs)))

    async def enrich(self, records: Sequence[ResolvedRecord]) -> list[ResolvedRecord]:
        """Fill ``vendor`` and ``reachable``; anything that cannot be determined stays unknown."""
        records = list(records)
        if not records or (self._vendor_resolver is None and self._probe is None):
            return records

        n = len(records)
        jobs: list[_Job] = []
        if self._vendor_resolver is not None:
            jobs.extend(self._vendor_job(r) for r in records)
        if self._probe is not None:
            jobs.extend(self._probe_job(r) for r in records)
        results = await self._bounded_all(jobs)

        vendors = results[:n] if self._vendor_resolver is not None else [UNKNOWN] * n
        reachable = results[-n:] if self._probe is not None else [UNKNOWN] * n

        enriched = []
        for record, vendor, alive in zip(records, vendors, reachable):
            enriched.append(
                record.model_copy(
                    update={
                        "vendor": vendor if isinstance(vendor, str) and vendor else UNKNOWN,
                        "reachable": alive if isinstance(alive, bool) else UNKNOWN,
                    }
                )
            )
        return enriched
