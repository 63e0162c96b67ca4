"""Bounded history of reload and health notifications."""

from __future__ import annotations

import logging
from collections import deque
from typing import Iterable

from leasescope.core.models import EventType, ReloadEvent

logger = logging.getLogger(__name__)


class EventBus:
    """Records the ReloadEvents the coordinator publishes, keeping the newest ``max_history``."""

    def __init__(self, max_history: int = 200) -> None:
        self._history: deque[ReloadEvent] = deque(maxlen=max_history)

    async def publish(self, event: ReloadEvent) -> None:
        self._history.append(event)
        logger.debug("Event %s (version=%s)", event.event_type.value, event.version)

    def recent(self, limit: int | None = None, types: Iterable[EventType] | None = None) -> list[ReloadEvent]:
        """Newest first, optionally restricted to some event types."""
        wanted = frozenset(types) if types else None
        found: list[ReloadEvent] = []
        for event in reversed(self._history):
            if wanted is not None and event.event_type not in wanted:
                continue
            found.append(event)
            if limit is not None and len(found) >= limit:
                break
        return found

    @property
    def recent_events(self) -> list[ReloadEvent]:
        return self.recent()
