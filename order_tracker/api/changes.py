"""In-process fan-out of row-level change events to stream subscribers."""

from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator, Optional

from ..schemas import ChangeEvent

logger = logging.getLogger("order-tracker.api")


class ChangeFeed:
    def __init__(self, max_queue: int = 100) -> None:
        self.max_queue = max_queue
        self._subscribers: set[asyncio.Queue] = set()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def publish(self, table: str, type_: str, record_id: str | None = None) -> ChangeEvent:
        event = ChangeEvent(table=table, type=type_, record_id=record_id)
        for queue in list(self._subscribers):
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning("Dropping change event for a slow subscriber")
        return event

    async def subscribe(self, heartbeat: float | None = None) -> AsyncIterator[Optional[ChangeEvent]]:
        """Yield events as they are published; ``None`` every idle ``heartbeat`` seconds."""

        queue: asyncio.Queue = asyncio.Queue(maxsize=self.max_queue)
        self._subscribers.add(queue)
        try:
            while True:
                try:
                    yield await asyncio.wait_for(queue.get(), timeout=heartbeat)
                except asyncio.TimeoutError:
                    yield None
        finally:
            self._subscribers.discard(queue)


feed = ChangeFeed()
