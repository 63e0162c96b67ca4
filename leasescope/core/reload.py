"""Reload coordinator: watch sources, debounce, rebuild, publish.

The coordinator is the only writer of the published snapshot. Publication
is a single attribute assignment, so a reader that grabbed the previous
snapshot keeps using it undisturbed.

States::

    IDLE -> DEBOUNCING -> REBUILDING -> IDLE
                                   \\-> DEGRADED  (last good snapshot kept)
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable

from leasescope.core import index, parser
from leasescope.core.events import EventBus
from leasescope.core.index import IndexSnapshot
from leasescope.core.models import (
    CoordinatorState,
    Diagnostic,
    EventType,
    Grammar,
    HealthStatus,
    Record,
    ReloadEvent,
)
from leasescope.core.watcher import ChangeEvent, FileWatcher, Watcher, WatcherError

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RebuildError(Exception):
    """A rebuild could not produce a snapshot worth publishing."""


class ReloadCoordinator:
    """Keeps an :class:`IndexSnapshot` in step with the dhcpd source files."""

    def __init__(
        self,
        hosts_path: Path | None,
        leases_path: Path | None,
        *,
        watcher: Watcher | None = None,
        debounce: float = 0.3,
        retry_initial: float = 0.5,
        retry_max: float = 30.0,
        retry_attempts: int = 8,
        event_bus: EventBus | None = None,
        reader: Callable[[Path], bytes] | None = None,
    ) -> None:
        self._sources: list[tuple[Grammar, Path]] = [
            (grammar, Path(path))
            for grammar, path in ((Grammar.HOSTS, hosts_path), (Grammar.LEASES, leases_path))
            if path is not None
        ]
        if not self._sources:
            raise ValueError("at least one of hosts_path or leases_path is required")

        self._watcher: Watcher = watcher or FileWatcher()
        self._debounce = debounce
        self._retry_initial = retry_initial
        self._retry_max = retry_max
        self._retry_attempts = retry_attempts
        self._event_bus = event_bus or EventBus()
        self._read = reader or (lambda path: path.read_bytes())

        self._snapshot: IndexSnapshot | None = None
        self._state = CoordinatorState.IDLE
        self._degraded = False
        self._seen_records = False
        self._watching = False
        self._last_error: str | None = None
        self._last_check: datetime | None = None
        self._last_update: dict[Grammar, datetime] = {}

        self._events: asyncio.Queue[ChangeEvent] = asyncio.Queue()
        self._tasks: list[asyncio.Task[None]] = []
        self.rebuild_count = 0

    # -- read side --------------------------------------------------------

    def current(self) -> IndexSnapshot | None:
        """The published snapshot, or None if no rebuild has succeeded yet."""
        return self._snapshot

    @property
    def state(self) -> CoordinatorState:
        return self._state

    @property
    def event_bus(self) -> EventBus:
        return self._event_bus

    def health(self) -> HealthStatus:
        snapshot = self._snapshot
        return HealthStatus(
            state=self._state,
            version=snapshot.version if snapshot else None,
            published_at=snapshot.built_at if snapshot else None,
            last_update_hosts=self._last_update.get(Grammar.HOSTS),
            last_update_leases=self._last_update.get(Grammar.LEASES),
            last_check=self._last_check,
            watching=self._watching,
            stale=self._degraded or not self._watching,
            last_error=self._last_error,
            record_count=len(snapshot) if snapshot else 0,
            diagnostic_count=len(snapshot.diagnostics) if snapshot else 0,
        )

    # -- lifecycle --------------------------------------------------------

    async def start(self) -> None:
        """Do the initial rebuild, then start watching in the background."""
        await self.rebuild()
        loop = asyncio.get_running_loop()
        self._tasks = [
            loop.create_task(self._watch_loop(), name="leasescope-watch"),
            loop.create_task(self._coordinate(), name="leasescope-reload"),
        ]

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks = []
        self._watching = False

    def request_reload(self) -> None:
        """Queue a rebuild as if the files had changed."""
        self._events.put_nowait(ChangeEvent(None, "manual"))

    # -- state machine ----------------------------------------------------

    def _set_state(self, state: CoordinatorState) -> None:
        if state is not self._state:
            logger.debug("Reload state %s -> %s", self._state.value, state.value)
            self._state = state

    async def _coordinate(self) -> None:
        loop = asyncio.get_running_loop()
        while True:
            event = await self._events.get()
            self._set_state(CoordinatorState.DEBOUNCING)
            logger.debug("Change detected (%s %s); debouncing", event.kind, event.path)

            deadline = loop.time() + self._debounce
            while (remaining := deadline - loop.time()) > 0:
                try:
                    await asyncio.wait_for(self._events.get(), timeout=remaining)
                except asyncio.TimeoutError:
                    break
                deadline = loop.time() + self._debounce

            await self.rebuild()

    def _build(self, version: int) -> tuple[IndexSnapshot, dict[Grammar, datetime]]:
        """Read and parse every source and build a snapshot. Runs in a worker thread."""
        records: list[Record] = []
        diagnostics: list[Diagnostic] = []
        read_at: dict[Grammar, datetime] = {}
        for grammar, path in self._sources:
            data = self._read(path)
            read_at[grammar] = _utcnow()
            outcome = parser.parse(data, grammar)
            records.extend(outcome.records)
            diagnostics.extend(outcome.diagnostics)
            if outcome.diagnostics:
                logger.warning(
                    "%s: skipped %d malformed block(s): %s",
                    path, len(outcome.diagnostics), parser.summarize(outcome.diagnostics),
                )
        return index.build(records, version=version, diagnostics=diagnostics), read_at

    async def rebuild(self) -> bool:
        """Rebuild now and publish on success. Returns whether a snapshot was published."""
        self._set_state(CoordinatorState.REBUILDING)
        self.rebuild_count += 1
        self._last_check = _utcnow()
        previous = self._snapshot
        version = (previous.version if previous else 0) + 1
        started = time.monotonic()

        try:
            snapshot, read_at = await asyncio.to_thread(self._build, version)
            if len(snapshot) == 0 and self._seen_records:
                raise RebuildError("rebuild produced no records; previous snapshot kept")
        except OSError as exc:
            await self._fail(f"cannot read source file: {exc}")
            return False
        except RebuildError as exc:
            await self._fail(str(exc))
            return False
        except Exception as exc:
            logger.exception("Unexpected rebuild failure")
            await self._fail(f"rebuild failed: {exc}")
            return False

        self._snapshot = snapshot
        self._last_update.update(read_at)
        self._seen_records = self._seen_records or len(snapshot) > 0
        self._last_error = None
        recovered = self._degraded
        self._degraded = False
        self._set_state(CoordinatorState.IDLE)

        logger.info(
            "Published snapshot v%d: %d records, %d diagnostics in %.2fs",
            snapshot.version, len(snapshot), len(snapshot.diagnostics), time.monotonic() - started,
        )
        await self._event_bus.publish(
            ReloadEvent(
                event_type=EventType.SNAPSHOT_PUBLISHED,
                version=snapshot.version,
                details={"records": str(len(snapshot)), "diagnostics": str(len(snapshot.diagnostics))},
            )
        )
        if recovered:
            await self._event_bus.publish(ReloadEvent(event_type=EventType.RECOVERED, version=snapshot.version))
        return True

    async def _fail(self, message: str) -> None:
        entering = not self._degraded
        self._last_error = message
        self._degraded = True
        self._set_state(CoordinatorState.DEGRADED)
        current = self._snapshot
        version = current.version if current else None
        if current is None:
            logger.error("Initial rebuild failed, nothing to serve yet: %s", message)
        else:
            logger.warning("Serving stale snapshot v%d: %s", current.version, message)

        await self._event_bus.publish(
            ReloadEvent(event_type=EventType.REBUILD_FAILED, version=version, details={"error": message})
        )
        if entering:
            await self._event_bus.publish(
                ReloadEvent(event_type=EventType.DEGRADED, version=version, details={"error": message})
            )

    # -- watching ---------------------------------------------------------

    async def _watch_loop(self) -> None:
        paths = [path for _, path in self._sources]
        delay = self._retry_initial
        failures = 0
        while True:
            try:
                self._watching = True
                async for event in self._watcher.watch(paths):
                    failures, delay = 0, self._retry_initial
                    self._events.put_nowait(event)
                raise WatcherError("watch stream ended")
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                self._watching = False
                failures += 1
                if failures > self._retry_attempts:
                    logger.error("Giving up on file watching after %d attempts: %s", failures - 1, exc)
                    self._last_error = f"file watching unavailable: {exc}"
                    await self._event_bus.publish(
                        ReloadEvent(event_type=EventType.WATCH_LOST, details={"error": str(exc)})
                    )
                    return
                logger.warning("File watch failed (%s); retrying in %.1fs", exc, delay)
                await asyncio.sleep(delay)
                delay = min(delay * 2, self._retry_max)
                # changes may have been missed while the watch was down
                self._events.put_nowait(ChangeEvent(None, "rewatch"))
                await self._event_bus.publish(ReloadEvent(event_type=EventType.WATCH_RESTORED))
