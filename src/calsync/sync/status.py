"""Status feed for observers of binding runs (UI, metrics, logs)."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from datetime import UTC, datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field

from calsync.sync.models import SyncResult

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_SIZE = 100


class SyncStatusKind(StrEnum):
    started = "started"
    completed = "completed"
    failed = "failed"
    declined = "declined"


class SyncStatusUpdate(BaseModel):
    """One message on the status feed."""

    model_config = ConfigDict(frozen=True)

    binding_id: str
    kind: SyncStatusKind
    trigger: str = "manual"
    result: SyncResult | None = None
    error: str | None = None
    at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class ScheduledBindingStatus(BaseModel):
    """Snapshot row describing one scheduled binding."""

    model_config = ConfigDict(frozen=True)

    binding_id: str
    name: str
    state: str
    is_running: bool
    next_sync_at: datetime | None = None
    last_sync_at: datetime | None = None
    last_sync_event_count: int = 0
    last_sync_error: str | None = None


class StatusFeed:
    """Fan-out of :class:`SyncStatusUpdate` messages to bounded queues.

    Publishing never blocks: a subscriber whose queue is full loses its
    oldest message.
    """

    def __init__(self, max_queue_size: int = DEFAULT_QUEUE_SIZE) -> None:
        if max_queue_size < 1:
            raise ValueError("max_queue_size must be >= 1")
        self._max_queue_size = max_queue_size
        self._subscribers: list[asyncio.Queue[SyncStatusUpdate]] = []

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self) -> asyncio.Queue[SyncStatusUpdate]:
        queue: asyncio.Queue[SyncStatusUpdate] = asyncio.Queue(maxsize=self._max_queue_size)
        self._subscribers.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue[SyncStatusUpdate]) -> None:
        try:
            self._subscribers.remove(queue)
        except ValueError:
            pass

    def publish(self, update: SyncStatusUpdate) -> None:
        for queue in list(self._subscribers):
            if queue.full():
                queue.get_nowait()
                logger.debug("Status subscriber queue full; dropped oldest update")
            queue.put_nowait(update)

    async def stream(self) -> AsyncIterator[SyncStatusUpdate]:
        """Yield updates as they are published until the consumer stops."""
        queue = self.subscribe()
        try:
            while True:
                yield await queue.get()
        finally:
            self.unsubscribe(queue)
