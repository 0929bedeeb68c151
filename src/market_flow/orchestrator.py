"""Generation orchestrator.

Ties the generator, report store, activity log and delivery together for a
single run:
  1. Guard → 2. Placeholder report → 3. Generate → 4. Persist + log → 5. Deliver

同一时间只允许一个生成任务在执行（单槽锁），重入调用直接返回、不产生任何副作用。
"""

import asyncio
import logging
from collections import deque
from collections.abc import Callable
from datetime import datetime

from .delivery import EmailDelivery
from .errors import DeliveryError, GenerationError
from .generator import MSG_FAILED, ReportGenerator
from .ledger import ActivityLog
from .models import Report, ReportKind, ScheduleConfig, Severity
from .output import render_markdown, report_title
from .store import ReportStore

logger = logging.getLogger(__name__)

KIND_LABELS = {
    ReportKind.MORNING: "morning",
    ReportKind.EVENING: "evening",
}


class GenerationOrchestrator:
    """Runs report generations, at most one at a time."""

    def __init__(
        self,
        generator: ReportGenerator,
        store: ReportStore,
        log: ActivityLog,
        config_source: Callable[[], ScheduleConfig],
        mailer: EmailDelivery | None = None,
        clock: Callable[[], datetime] = datetime.now,
        feed_capacity: int = 50,
    ) -> None:
        self.generator = generator
        self.store = store
        self.log = log
        self.config_source = config_source
        self.mailer = mailer
        self.clock = clock
        self._lock = asyncio.Lock()
        self._current: Report | None = None
        self._feed: deque[Report] = deque(maxlen=feed_capacity)

    # -- accessors ----------------------------------------------------------

    @property
    def in_flight(self) -> bool:
        return self._lock.locked()

    @property
    def current_report(self) -> Report | None:
        return self._current

    def set_current_report(self, report: Report | None) -> None:
        """Replace the displayed report (used when switching kinds)."""
        self._current = report

    def feed(self) -> list[Report]:
        """Reports created by this process, newest first."""
        return list(self._feed)

    # -- run ----------------------------------------------------------------

    async def run(self, kind: ReportKind, manual: bool = False) -> Report | None:
        """Generate one report.

        Returns the report in its terminal state, or None when another
        generation is already in flight (nothing is touched in that case).
        """
        if self._lock.locked():
            logger.info("Generation already in flight, ignoring %s request", kind.value)
            return None

        async with self._lock:
            label = KIND_LABELS[kind]
            report = Report(kind=kind, created_at=self._now())
            self._current = report
            self._feed.appendleft(report)
            self.log.append(
                f"Starting {label} report generation ({'manual' if manual else 'scheduled'})",
                Severity.INFO,
            )

            try:
                result = await self.generator.generate(kind)
            except GenerationError as e:
                report.fail(e.message)
                self.log.append(f"{label.capitalize()} report failed: {e.message}", Severity.ERROR)
                return report
            except Exception as e:
                logger.exception("Unexpected error while generating %s report", label)
                report.fail(MSG_FAILED.format(detail=str(e) or e.__class__.__name__))
                self.log.append(f"{label.capitalize()} report failed: {report.content}", Severity.ERROR)
                return report

            report.complete(result.content, result.sources)
            if self._persist(report):
                self.log.append(
                    f"{label.capitalize()} report generated ({len(report.sources)} sources)",
                    Severity.SUCCESS,
                )
            else:
                self.log.append(
                    f"{label.capitalize()} report generated but could not be saved",
                    Severity.ERROR,
                )

            await self._deliver(report, manual)
            return report

    async def _deliver(self, report: Report, manual: bool) -> None:
        email = self.config_source().delivery_email
        if not email:
            if not manual:
                self.log.append("No delivery email configured, delivery skipped", Severity.INFO)
            return
        if self.mailer is None:
            self.log.append(f"Delivery to {email} skipped: no mailer available", Severity.INFO)
            return

        try:
            result = await self.mailer.send(email, report_title(report), render_markdown(report))
        except DeliveryError as e:
            self.log.append(f"Email delivery to {email} failed: {e}", Severity.ERROR)
            return
        except Exception as e:
            logger.exception("Unexpected error while emailing report %s", report.id)
            self.log.append(f"Email delivery to {email} failed: {e}", Severity.ERROR)
            return

        report.mark_sent()
        if not self._persist(report):
            self.log.append(f"Sent status of report {report.id} could not be saved", Severity.ERROR)
        if result.simulated:
            self.log.append(f"Simulated email delivery to {email} (EmailJS not configured)", Severity.INFO)
        else:
            self.log.append(f"Report emailed to {email}", Severity.INFO)

    def _persist(self, report: Report) -> bool:
        try:
            self.store.put(report.kind, report.date_key, report)
        except Exception:
            logger.exception("Failed to store %s report %s", report.kind.value, report.id)
            return False
        return True

    def _now(self) -> datetime:
        now = self.clock()
        # Reports carry aware timestamps so they serialize unambiguously
        return now if now.tzinfo is not None else now.astimezone()
