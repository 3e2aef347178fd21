"""Bounded price update channel between the WebSocket producer and the cache.

The producer calls ``publish`` which never blocks: when the channel is full
the oldest pending update is dropped. A single consumer task drains the
channel and applies updates to the PriceCache, so ingestion rate and
processing rate are decoupled.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from polystrat.websocket.price_cache import PriceCache

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PriceUpdate:
    token_id: str
    best_bid: Optional[float] = None
    best_ask: Optional[float] = None
    bid_size: float = 0.0
    ask_size: float = 0.0


class PriceUpdateChannel:
    """Bounded FIFO of PriceUpdate.

    Args:
        maxsize: 최대 대기 업데이트 수.
    """

    def __init__(self, maxsize: int = 1000):
        self._queue: asyncio.Queue[PriceUpdate] = asyncio.Queue(maxsize=maxsize)
        self.published = 0
        self.dropped = 0

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def publish(self, update: PriceUpdate) -> None:
        """Non-blocking put. Drops the oldest update when full."""
        if self._queue.full():
            try:
                self._queue.get_nowait()
                self._queue.task_done()
                self.dropped += 1
            except asyncio.QueueEmpty:
                pass
        self._queue.put_nowait(update)
        self.published += 1

    async def get(self) -> PriceUpdate:
        return await self._queue.get()

    def task_done(self) -> None:
        self._queue.task_done()

    async def join(self) -> None:
        """Wait until every published update has been applied."""
        await self._queue.join()


class PriceFeedConsumer:
    """Single consumer: channel → PriceCache."""

    def __init__(self, channel: PriceUpdateChannel, cache: PriceCache):
        self.channel = channel
        self.cache = cache
        self.applied = 0
        self._task: Optional[asyncio.Task] = None

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run(), name="price-feed-consumer")

    async def stop(self) -> None:
        task = self._task
        self._task = None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def _run(self) -> None:
        while True:
            update = await self.channel.get()
            try:
                self.cache.update(
                    update.token_id,
                    best_bid=update.best_bid,
                    best_ask=update.best_ask,
                    bid_size=update.bid_size,
                    ask_size=update.ask_size,
                )
                self.applied += 1
            except Exception:
                logger.exception("Failed to apply price update for %s", update.token_id)
            finally:
                self.channel.task_done()
