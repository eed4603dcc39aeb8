"""Item-normalized event channel between the scraper and the enrichment pipeline.

Delivery is at-least-once: a handler that raises gets the same event again,
so every consumer has to be idempotent.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict, dataclass
from typing import Any, Awaitable, Callable, Protocol

logger = logging.getLogger(__name__)

TOPIC = "scraper.item.normalized"


@dataclass(frozen=True)
class ItemNormalized:
    item_id: int
    title: str
    url: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


Handler = Callable[[ItemNormalized], Awaitable[Any]]


class EventChannel(Protocol):
    def publish(self, event: ItemNormalized) -> None:
        """Fire-and-forget from the producer's side."""
        ...

    def subscribe(self, handler: Handler) -> None:
        ...


class InMemoryEventChannel:
    """asyncio.Queue transport with redelivery on handler failure."""

    def __init__(self, max_deliveries: int = 3):
        self.max_deliveries = max_deliveries
        self._queue: asyncio.Queue[tuple[ItemNormalized, int]] = asyncio.Queue()
        self._handlers: list[Handler] = []
        self.dropped: list[ItemNormalized] = []

    def publish(self, event: ItemNormalized) -> None:
        self._queue.put_nowait((event, 1))

    def subscribe(self, handler: Handler) -> None:
        self._handlers.append(handler)

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    async def _deliver(self, event: ItemNormalized, delivery: int) -> None:
        for handler in self._handlers:
            try:
                await handler(event)
            except Exception as e:
                if delivery >= self.max_deliveries:
                    logger.error(
                        "Dropping %s for item %d after %d deliveries: %s",
                        TOPIC, event.item_id, delivery, e,
                    )
                    self.dropped.append(event)
                else:
                    logger.warning(
                        "Handler failed for item %d (delivery %d), redelivering: %s",
                        event.item_id, delivery, e,
                    )
                    self._queue.put_nowait((event, delivery + 1))
                return

    async def drain(self) -> int:
        """Deliver everything pending, including redeliveries. Returns deliveries made."""
        delivered = 0
        while not self._queue.empty():
            event, delivery = self._queue.get_nowait()
            try:
                await self._deliver(event, delivery)
            finally:
                self._queue.task_done()
            delivered += 1
        return delivered

    async def run(self) -> None:
        """Consume forever. Cancel the task to stop."""
        while True:
            event, delivery = await self._queue.get()
            try:
                await self._deliver(event, delivery)
            finally:
                self._queue.task_done()
