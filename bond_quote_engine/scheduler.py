from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from .engine import QuoteEngine

logger = logging.getLogger(__name__)

REFRESH_JOB_ID = "quote_refresh"


class QuoteScheduler:
    """
    Periodic refresh of every instrument.

    One job, max_instances=1 and coalesced, on top of the engine's own
    skip-if-running guard, so passes never overlap. Must be started from
    inside a running event loop.
    """

    def __init__(self, engine: QuoteEngine, interval_seconds: Optional[float] = None):
        self.engine = engine
        self.interval_seconds = float(engine.settings.refresh_interval if interval_seconds is None else interval_seconds)
        if self.interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self._scheduler: Optional[AsyncIOScheduler] = None

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    async def _tick(self) -> None:
        await self.engine.refresh_if_idle()

    def start(self, run_immediately: bool = True) -> None:
        if self.running:
            return

        # next_run_time=None would add the job paused, so only pass it to fire now.
        extra = {"next_run_time": datetime.now(timezone.utc)} if run_immediately else {}

        scheduler = AsyncIOScheduler(timezone=timezone.utc)
        scheduler.add_job(
            self._tick,
            IntervalTrigger(seconds=self.interval_seconds, timezone=timezone.utc),
            id=REFRESH_JOB_ID,
            name="Refresh all instrument quotes",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
            **extra,
        )
        scheduler.start()
        self._scheduler = scheduler
        logger.info("Quote refresh scheduled every %.1fs", self.interval_seconds)

    def shutdown(self) -> None:
        if self._scheduler is None:
            return
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        self._scheduler = None
        logger.info("Quote refresh stopped")
