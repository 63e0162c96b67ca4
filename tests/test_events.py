"""Tests for the reload event history."""

from __future__ import annotations

import pytest

from leasescope.core.events import EventBus
from leasescope.core.models import EventType, ReloadEvent


class TestEventBus:
    @pytest.mark.asyncio
    async def test_history_is_bounded_and_newest_first(self) -> None:
        bus = EventBus(max_history=3)
        for version in range(5):
            await bus.publish(ReloadEvent(event_type=EventType.SNAPSHOT_PUBLISHED, version=version))
        assert [e.version for e in bus.recent_events] == [4, 3, 2]

    @pytest.mark.asyncio
    async def test_recent_filters_by_type(self) -> None:
        bus = EventBus()
        await bus.publish(ReloadEvent(event_type=EventType.SNAPSHOT_PUBLISHED, version=1))
        await bus.publish(ReloadEvent(event_type=EventType.REBUILD_FAILED))
        await bus.publish(ReloadEvent(event_type=EventType.SNAPSHOT_PUBLISHED, version=2))
        published = bus.recent(types=[EventType.SNAPSHOT_PUBLISHED])
        assert [e.version for e in published] == [2, 1]
        assert [e.event_type for e in bus.recent(limit=1)] == [EventType.SNAPSHOT_PUBLISHED]

    def test_empty(self) -> None:
        assert EventBus().recent(limit=10) == []
