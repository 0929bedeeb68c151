"""Dashboard facade.

The surface a UI (here, the CLI) talks to: manual triggers, config updates
and read access to the current report, the report feed and the activity log.

The schedule config lives in the store, which other processes (one-shot CLI
commands) may change at any time. It is re-read on every access, and a
watcher job re-arms the scheduler when ``active`` or a target time changes.
"""

import logging
from collections.abc import Callable
from datetime import datetime

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from .config import AppConfig, Settings
from .delivery import EmailDelivery
from .generator import ReportGenerator
from .ledger import ActivityLog
from .models import LogEntry, Report, ReportKind, ScheduleConfig, Severity
from .orchestrator import GenerationOrchestrator
from .scheduler import SchedulerLoop, start_interval_job
from .store import JsonFileStore, MemoryStore, ReportStore
from .timekeys import date_key

logger = logging.getLogger(__name__)

# 05:00 - 14:00 → morning (yesterday's recap), otherwise evening (today's news)
MORNING_WINDOW = (5, 14)

WATCH_JOB_ID = "market_flow_config_watch"


def default_kind(now: datetime) -> ReportKind:
    """Pick the briefing that fits the time of day."""
    start, end = MORNING_WINDOW
    return ReportKind.MORNING if start <= now.hour < end else ReportKind.EVENING


def _arming_key(config: ScheduleConfig) -> tuple[bool, str, str]:
    return config.active, config.morning_time, config.evening_time


class Dashboard:
    """Wires scheduler and orchestrator around a shared store."""

    def __init__(
        self,
        store: ReportStore,
        generator: ReportGenerator,
        mailer: EmailDelivery | None = None,
        schedule: ScheduleConfig | None = None,
        clock: Callable[[], datetime] = datetime.now,
        interval: float = 2.0,
        log_capacity: int = 500,
        feed_capacity: int = 50,
    ) -> None:
        self.store = store
        self.clock = clock
        self.interval = interval
        self.log = ActivityLog(capacity=log_capacity)
        # Used until a config is saved to the store (config.yaml's schedule)
        self._default_schedule = schedule or ScheduleConfig()
        self._applied: ScheduleConfig | None = None
        self._watcher: AsyncIOScheduler | None = None
        self.orchestrator = GenerationOrchestrator(
            generator=generator,
            store=store,
            log=self.log,
            config_source=self.read_config,
            mailer=mailer,
            clock=clock,
            feed_capacity=feed_capacity,
        )
        self.scheduler = SchedulerLoop(
            orchestrator=self.orchestrator,
            store=store,
            config_source=self.read_config,
            clock=clock,
            interval=interval,
        )

    @classmethod
    def from_config(
        cls,
        app_config: AppConfig,
        settings: Settings,
        persist: bool = True,
    ) -> "Dashboard":
        backend = JsonFileStore(app_config.storage.path) if persist else MemoryStore()
        return cls(
            store=ReportStore(backend),
            generator=ReportGenerator(app_config.llm, settings.openrouter_api_key),
            mailer=EmailDelivery(app_config.email, settings),
            schedule=app_config.schedule,
            interval=app_config.scheduler.interval,
            log_capacity=app_config.scheduler.log_capacity,
            feed_capacity=app_config.scheduler.feed_capacity,
        )

    # -- lifecycle ----------------------------------------------------------

    async def start(self) -> None:
        """Arm the scheduler and watch the store for config changes."""
        config = self.read_config()
        self._applied = config
        await self.scheduler.apply_config(config)
        if self._watcher is None:
            self._watcher = start_interval_job(
                self.refresh_config, self.interval, WATCH_JOB_ID, "Schedule config watch"
            )

    async def stop(self) -> None:
        watcher, self._watcher = self._watcher, None
        if watcher is not None and watcher.running:
            watcher.shutdown(wait=False)
        await self.scheduler.stop()
        await self.scheduler.drain()

    async def refresh_config(self) -> bool:
        """Re-arm the scheduler if the stored config changed since last applied.

        Returns True when the scheduler was re-armed.
        """
        config = self.read_config()
        previous = self._applied
        if previous is not None and _arming_key(previous) == _arming_key(config):
            return False
        logger.info("Schedule config changed, re-arming scheduler")
        await self._apply(config, previous)
        return True

    async def _apply(self, config: ScheduleConfig, previous: ScheduleConfig | None) -> None:
        if previous is not None and previous.active != config.active:
            state = "activated" if config.active else "paused"
            self.log.append(f"Automation {state}", Severity.INFO)
        self._applied = config
        await self.scheduler.apply_config(config)

    # -- inbound intents ----------------------------------------------------

    async def trigger_manual(self, kind: ReportKind) -> Report | None:
        """Run one generation now; None when another run is in flight."""
        return await self.orchestrator.run(kind, manual=True)

    async def update_config(self, config: ScheduleConfig) -> None:
        previous = self.read_config()
        self.store.save_schedule_config(config)
        await self._apply(config, previous)

    def load_saved_report(self, kind: ReportKind, day: str | None = None) -> Report | None:
        """Show the stored report for a kind (today by default).

        While a generation is in flight the current slot belongs to that run,
        so the switch is refused and None is returned.
        """
        if self.orchestrator.in_flight:
            logger.info("Generation in flight, not switching to the saved %s report", kind.value)
            return None
        report = self.store.get(kind, day or date_key(self.clock()))
        self.orchestrator.set_current_report(report)
        return report

    # -- reads --------------------------------------------------------------

    def read_config(self) -> ScheduleConfig:
        """Latest schedule: the stored copy wins over config.yaml's."""
        return self.store.load_schedule_config(default=self._default_schedule)

    def read_current_report(self) -> Report | None:
        return self.orchestrator.current_report

    def read_report_feed(self) -> list[Report]:
        return self.orchestrator.feed()

    def read_log(self) -> list[LogEntry]:
        return self.log.entries()
