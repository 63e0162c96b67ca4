"""Tests for the watchdog-backed file watcher."""

from __future__ import annotations

import asyncio
from pathlib import Path
from unittest.mock import MagicMock

import pytest
from watchdog.events import FileModifiedEvent, FileMovedEvent
from watchdog.observers.api import BaseObserver

from leasescope.core.watcher import ChangeEvent, FileWatcher, _Handler


class TestHandler:
    """Event filtering on the observer thread."""

    def _handler(self, tmp_path: Path) -> tuple[_Handler, MagicMock]:
        emit = MagicMock()
        return _Handler([(tmp_path / "dhcpd.leases").resolve()], emit), emit

    def test_forwards_watched_file(self, tmp_path: Path) -> None:
        handler, emit = self._handler(tmp_path)
        handler.on_any_event(FileModifiedEvent(str(tmp_path / "dhcpd.leases")))
        emit.assert_called_once_with(ChangeEvent((tmp_path / "dhcpd.leases").resolve(), "modified"))

    def test_ignores_other_files(self, tmp_path: Path) -> None:
        handler, emit = self._handler(tmp_path)
        handler.on_any_event(FileModifiedEvent(str(tmp_path / "dhcpd.leases~")))
        emit.assert_not_called()

    def test_rename_onto_watched_file(self, tmp_path: Path) -> None:
        """dhcpd writes a new file and renames it over the old one."""
        handler, emit = self._handler(tmp_path)
        handler.on_any_event(FileMovedEvent(str(tmp_path / "dhcpd.leases.new"), str(tmp_path / "dhcpd.leases")))
        emit.assert_called_once()
        assert emit.call_args.args[0].kind == "moved"


class TestFileWatcher:
    @pytest.mark.asyncio
    async def test_reports_write(self, tmp_path: Path) -> None:
        target = tmp_path / "dhcpd.leases"
        target.write_text("")
        watcher = FileWatcher(poll_interval=0.05, liveness_interval=0.1)
        stream = watcher.watch([target])
        first = asyncio.ensure_future(stream.__anext__())
        try:
            # give the polling observer time to take its first snapshot
            await asyncio.sleep(0.3)
            (tmp_path / "unrelated").write_text("x")
            target.write_text("lease 192.0.2.1 { }\n")
            event = await asyncio.wait_for(first, timeout=5)
            assert event.path == target.resolve()
        finally:
            first.cancel()
            await asyncio.gather(first, return_exceptions=True)
            await stream.aclose()

    @pytest.mark.asyncio
    async def test_observer_thread_is_gone_after_close(self, tmp_path: Path) -> None:
        """Closing the stream waits for the observer thread, so retries never pile up threads."""
        target = tmp_path / "dhcpd.conf"
        target.write_text("")
        observers: list[BaseObserver] = []

        class Recording(FileWatcher):
            def _observer(self) -> BaseObserver:
                observer = super()._observer()
                observers.append(observer)
                return observer

        watcher = Recording(poll_interval=0.05, liveness_interval=0.1)
        for _ in range(3):
            stream = watcher.watch([target])
            pending = asyncio.ensure_future(stream.__anext__())
            await asyncio.sleep(0.1)
            pending.cancel()
            await asyncio.gather(pending, return_exceptions=True)
            await stream.aclose()

        assert len(observers) == 3
        assert not any(observer.is_alive() for observer in observers)
