"""Scheduler loop.

A recurring tick that compares the current minute with the configured
morning/evening times and fires each target at most once per day.
每个 tick 都重新读取最新配置；run key 持久化后，同一分钟内不会重复触发。

The tick is driven by an APScheduler ``AsyncIOScheduler`` interval job with
``max_instances=1``, so ticks never overlap.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from .models import ReportKind, ScheduleConfig
from .orchestrator import GenerationOrchestrator
from .store import ReportStore
from .timekeys import minute_key, run_key

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL = 2.0
TICK_JOB_ID = "market_flow_tick"


def start_interval_job(
    func: Callable[[], Awaitable[object]],
    interval: float,
    job_id: str,
    name: str,
) -> AsyncIOScheduler:
    """Start an AsyncIOScheduler on the running loop with one interval job."""
    scheduler = AsyncIOScheduler()
    scheduler.add_job(
        func=func,
        trigger=IntervalTrigger(seconds=interval),
        id=job_id,
        name=name,
        replace_existing=True,
        max_instances=1,  # Prevent overlapping executions
        coalesce=True,
    )
    scheduler.start()
    return scheduler


class SchedulerLoop:
    """Fires scheduled generations from an interval job.

    Only one job scheduler exists at a time; ``apply_config`` shuts the old
    one down before arming a new one.
    """

    def __init__(
        self,
        orchestrator: GenerationOrchestrator,
        store: ReportStore,
        config_source: Callable[[], ScheduleConfig],
        clock: Callable[[], datetime] = datetime.now,
        interval: float = DEFAULT_INTERVAL,
    ) -> None:
        if not 0 < interval < 60:
            raise ValueError("interval must be between 0 and 60 seconds")
        self.orchestrator = orchestrator
        self.store = store
        self.config_source = config_source
        self.clock = clock
        self.interval = interval
        self._scheduler: AsyncIOScheduler | None = None
        self._runs: set[asyncio.Task] = set()

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    # -- tick ---------------------------------------------------------------

    async def tick(self, now: datetime | None = None) -> ReportKind | None:
        """Check the clock once; return the kind fired, if any."""
        config = self.config_source()
        if not config.active:
            return None
        if self.orchestrator.in_flight:
            logger.debug("Tick skipped: generation in flight")
            return None

        now = now or self.clock()
        current = minute_key(now)
        key = run_key(now)
        if key == self.store.get_last_run_key():
            return None

        # Morning is checked first, so it wins when both times are equal
        if current == config.morning_time:
            kind = ReportKind.MORNING
        elif current == config.evening_time:
            kind = ReportKind.EVENING
        else:
            return None

        self.store.set_last_run_key(key)
        logger.info("Scheduled %s run fired (run key %s)", kind.value, key)
        self._spawn(kind)
        return kind

    def _spawn(self, kind: ReportKind) -> None:
        task = asyncio.create_task(self.orchestrator.run(kind, manual=False))
        self._runs.add(task)
        task.add_done_callback(self._on_run_done)

    def _on_run_done(self, task: asyncio.Task) -> None:
        self._runs.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error("Scheduled run crashed", exc_info=error)

    async def drain(self) -> None:
        """Wait for generations fired by previous ticks to finish."""
        while self._runs:
            await asyncio.gather(*list(self._runs), return_exceptions=True)

    # -- lifecycle ----------------------------------------------------------

    def start(self) -> None:
        if self.running:
            return
        self._scheduler = start_interval_job(
            self.tick, self.interval, TICK_JOB_ID, "Report schedule tick"
        )
        logger.info("Scheduler armed (interval %.1fs)", self.interval)

    async def stop(self) -> None:
        scheduler, self._scheduler = self._scheduler, None
        if scheduler is None:
            return
        if scheduler.running:
            scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")

    async def apply_config(self, config: ScheduleConfig) -> None:
        """Re-arm the timer for a new config."""
        if config.has_time_conflict:
            logger.warning(
                "Morning and evening are both set to %s; only the morning report will fire",
                config.morning_time,
            )
        await self.stop()
        if config.active:
            self.start()
