"""Filesystem change notifications for the watched source files.

watchdog runs its observer on a thread; events are handed over to the
asyncio loop with ``call_soon_threadsafe`` and consumed as an async stream.
Parent directories are watched rather than the files themselves so that a
file replaced by rename (the way dhcpd rewrites its lease log) keeps
producing events.
"""

from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path
from typing import AsyncIterator, Callable, Iterable, NamedTuple, Protocol, Sequence

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer
from watchdog.observers.api import BaseObserver
from watchdog.observers.polling import PollingObserver

logger = logging.getLogger(__name__)

# Many writers save via create+rename, so those count as writes too.
_WRITE_EVENTS = frozenset({"modified", "created", "moved", "deleted", "closed"})


class ChangeEvent(NamedTuple):
    path: Path | None
    kind: str


class WatcherError(RuntimeError):
    """The underlying observer could not be started or has died."""


class Watcher(Protocol):
    def watch(self, paths: Sequence[Path]) -> AsyncIterator[ChangeEvent]:
        ...


class _Handler(FileSystemEventHandler):
    """Forwards events that touch one of the watched files."""

    def __init__(self, watched: Iterable[Path], emit: Callable[[ChangeEvent], None]) -> None:
        super().__init__()
        self._watched = frozenset(watched)
        self._emit = emit

    def _match(self, raw: str | bytes | None) -> Path | None:
        if not raw:
            return None
        path = Path(os.fsdecode(raw)).resolve()
        return path if path in self._watched else None

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.is_directory or event.event_type not in _WRITE_EVENTS:
            return
        for raw in (event.src_path, getattr(event, "dest_path", None)):
            path = self._match(raw)
            if path is not None:
                self._emit(ChangeEvent(path, event.event_type))
                return


class FileWatcher:
    """Streams change events for a set of files.

    ``poll_interval`` > 0 selects watchdog's stat-polling observer, for
    filesystems without native notifications.
    """

    def __init__(
        self,
        poll_interval: float = 0.0,
        liveness_interval: float = 1.0,
        stop_timeout: float = 2.0,
    ) -> None:
        self._poll_interval = poll_interval
        self._liveness_interval = liveness_interval
        self._stop_timeout = stop_timeout

    def _observer(self) -> BaseObserver:
        if self._poll_interval > 0:
            return PollingObserver(timeout=self._poll_interval)
        return Observer()

    async def watch(self, paths: Sequence[Path]) -> AsyncIterator[ChangeEvent]:
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue[ChangeEvent] = asyncio.Queue()
        watched = [Path(p).expanduser().resolve() for p in paths]

        def _emit(event: ChangeEvent) -> None:
            loop.call_soon_threadsafe(queue.put_nowait, event)

        handler = _Handler(watched, _emit)
        observer = self._observer()
        for directory in sorted({p.parent for p in watched}):
            try:
                observer.schedule(handler, str(directory), recursive=False)
            except OSError as exc:
                raise WatcherError(f"cannot watch {directory}: {exc}") from exc
            logger.debug("Watching %s", directory)

        observer.daemon = True
        try:
            observer.start()
        except OSError as exc:
            raise WatcherError(f"cannot start file observer: {exc}") from exc
        logger.info("File watcher started for %s", ", ".join(str(p) for p in watched))
        try:
            while True:
                try:
                    event = await asyncio.wait_for(queue.get(), timeout=self._liveness_interval)
                except asyncio.TimeoutError:
                    if not observer.is_alive():
                        raise WatcherError("file observer thread stopped")
                    continue
                yield event
        finally:
            observer.stop()
            observer.join(timeout=self._stop_timeout)
            if observer.is_alive():
                logger.warning("File observer did not stop within %.1fs", self._stop_timeout)
