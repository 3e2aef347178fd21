"""ScheduledTask - periodic async job with start/stop and an overlap guard."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional, Union

logger = logging.getLogger(__name__)

IntervalSource = Union[float, Callable[[], float]]


class ScheduledTask:
    """Run ``func`` every ``interval`` seconds until stopped.

    A run that is triggered (by the timer or by ``run_once``) while another
    run is still in progress is skipped and logged. Exceptions raised by
    ``func`` are logged and never stop the loop.

    Args:
        name: label used in logs.
        interval: seconds between runs, or a callable read before each
            sleep (lets hot-reloaded configs change the cadence).
        func: async callable with no arguments.
        run_immediately: first run at start instead of after one interval.
    """

    def __init__(
        self,
        name: str,
        interval: IntervalSource,
        func: Callable[[], Awaitable[object]],
        run_immediately: bool = True,
    ):
        self.name = name
        self._interval = interval
        self._func = func
        self.run_immediately = run_immediately
        self._task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()
        self._in_progress = False
        self.last_run_at: Optional[datetime] = None
        self.run_count = 0
        self.skip_count = 0
        self.error_count = 0

    @property
    def interval(self) -> float:
        value = self._interval() if callable(self._interval) else self._interval
        return max(0.0, float(value))

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def in_progress(self) -> bool:
        return self._in_progress

    def start(self) -> None:
        if self.is_running:
            logger.debug("[TASK] %s already started", self.name)
            return
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._loop(), name=f"scheduled:{self.name}")
        logger.info("[TASK] %s started (every %.1fs)", self.name, self.interval)

    async def stop(self) -> None:
        """Stop the timer. A run in progress finishes first; an idle wait is cancelled."""
        self._stop_event.set()
        task = self._task
        self._task = None
        if task is not None and not task.done():
            if self._in_progress:
                await task
            else:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        logger.info("[TASK] %s stopped", self.name)

    async def run_once(self) -> bool:
        """Run now unless a run is in progress.

        Returns:
            True if the function ran, False if skipped by the overlap guard.
        """
        if self._in_progress:
            self.skip_count += 1
            logger.info("[TASK] %s still running, skipping trigger", self.name)
            return False

        self._in_progress = True
        try:
            await self._func()
            self.run_count += 1
        except asyncio.CancelledError:
            raise
        except Exception:
            self.error_count += 1
            logger.exception("[TASK] %s run failed", self.name)
        finally:
            self._in_progress = False
            self.last_run_at = datetime.now(tz=timezone.utc)
        return True

    async def _loop(self) -> None:
        if not self.run_immediately:
            if await self._wait_interval():
                return
        while not self._stop_event.is_set():
            await self.run_once()
            if await self._wait_interval():
                return

    async def _wait_interval(self) -> bool:
        """Sleep one interval. True if stop was requested meanwhile."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval)
            return True
        except asyncio.TimeoutError:
            return False
