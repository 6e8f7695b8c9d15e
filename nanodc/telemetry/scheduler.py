"""Periodic scheduler driving the monitor pipeline."""

import asyncio
import logging
from typing import Optional

from .config import DEFAULT_REFRESH_INTERVAL_MS
from .pipeline import MonitorPipeline
from .settings_store import DeviceSettingsStore

logger = logging.getLogger(__name__)


class PeriodicScheduler:
    """
    Ticks every ``refresh_interval_ms`` and starts one pipeline cycle per tick.

    The cycle runs in its own task so a slow fetch never delays the ticker;
    a tick that arrives while the previous cycle is still running is skipped.
    The interval is re-read from the settings store after every tick.
    """

    def __init__(self, pipeline: MonitorPipeline, settings_store: DeviceSettingsStore):
        self.pipeline = pipeline
        self.settings_store = settings_store
        self.ticker_task: Optional[asyncio.Task] = None
        self.cycle_task: Optional[asyncio.Task] = None
        self.ticks = 0
        self.skipped_ticks = 0
        self.interval_ms: Optional[int] = None

    @property
    def is_running(self) -> bool:
        return self.ticker_task is not None and not self.ticker_task.done()

    @property
    def cycle_in_progress(self) -> bool:
        return self.cycle_task is not None and not self.cycle_task.done()

    def tick(self) -> bool:
        """Start a cycle unless one is in flight. Returns whether one was started."""
        self.ticks += 1
        if self.cycle_in_progress:
            self.skipped_ticks += 1
            logger.warning(f"Previous fetch cycle still running, skipping tick ({self.skipped_ticks} skipped)")
            return False
        self.cycle_task = asyncio.create_task(self._run_cycle())
        return True

    async def _run_cycle(self):
        try:
            await self.pipeline.run_cycle()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Unexpected error in fetch cycle: {str(e)}")

    async def _tick_forever(self):
        logger.info("Starting periodic fetch scheduler")
        while True:
            self.tick()
            await asyncio.sleep(await self._next_interval_ms() / 1000.0)

    async def _next_interval_ms(self) -> int:
        """Current refresh interval; the last known one if the store cannot be read."""
        try:
            self.interval_ms = await asyncio.to_thread(self.settings_store.get_refresh_interval_ms)
        except Exception as e:
            logger.error(f"Could not read refresh interval, keeping the previous one: {str(e)}")
            if self.interval_ms is None:
                self.interval_ms = DEFAULT_REFRESH_INTERVAL_MS
        return self.interval_ms

    def start(self):
        """Start ticking; the first cycle starts immediately."""
        if not self.is_running:
            self.ticker_task = asyncio.create_task(self._tick_forever())
            logger.info("Fetch scheduler started")

    async def stop(self):
        """Cancel the ticker and any cycle in flight, and wait for both to finish."""
        for task in (self.ticker_task, self.cycle_task):
            if task is not None and not task.done():
                task.cancel()
        for task in (self.ticker_task, self.cycle_task):
            if task is not None:
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self.ticker_task = None
        self.cycle_task = None
        logger.info("Fetch scheduler stopped")
