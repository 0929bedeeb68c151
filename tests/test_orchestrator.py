"""Tests for the generation orchestrator.

测试单次生成流程：占位报告 → 生成 → 持久化 / 失败处理 → 投递，以及重入保护。
"""

import asyncio
import logging
from datetime import datetime

from conftest import FakeMailer

from market_flow.errors import RateLimitError, TransportError
from market_flow.generator import MSG_RATE_LIMIT
from market_flow.models import Report, ReportKind, ReportStatus, ScheduleConfig, Severity, Source
from market_flow.scheduler import SchedulerLoop


def _severities(orchestrator):
    return [e.severity for e in orchestrator.log.entries()]


class TestSuccessfulRun:
    def test_morning_report_completed_and_stored(self, orchestrator, store):
        """2024-01-01 08:00 早报成功：COMPLETED、一个来源、可从存储读取"""
        report = asyncio.run(orchestrator.run(ReportKind.MORNING))

        assert report.status is ReportStatus.COMPLETED
        assert len(report.sources) == 1
        assert report.date_key == "2024-01-01"
        stored = store.get(ReportKind.MORNING, "2024-01-01")
        assert stored is not None
        assert stored.status is ReportStatus.COMPLETED
        assert stored.sources == [Source(title="Reuters", url="https://www.reuters.com/markets/")]

    def test_report_surfaced_before_generation_finishes(self, orchestrator, generator):
        async def scenario():
            generator.gate = asyncio.Event()
            task = asyncio.create_task(orchestrator.run(ReportKind.EVENING, manual=True))
            await asyncio.sleep(0)
            current = orchestrator.current_report
            assert current is not None
            assert current.status is ReportStatus.GENERATING
            assert current.content == ""
            assert orchestrator.feed() == [current]
            assert orchestrator.in_flight
            generator.gate.set()
            return current, await task

        current, report = asyncio.run(scenario())
        assert report is current
        assert report.status is ReportStatus.COMPLETED
        assert not orchestrator.in_flight

    def test_log_entries(self, orchestrator):
        asyncio.run(orchestrator.run(ReportKind.MORNING))
        entries = orchestrator.log.entries()
        # newest first: delivery skipped, success, start
        assert [e.severity for e in entries] == [Severity.INFO, Severity.SUCCESS, Severity.INFO]
        assert entries[-1].message.startswith("Starting morning report generation")
        assert "delivery skipped" in entries[0].message

    def test_manual_run_without_email_does_not_log_skip(self, orchestrator):
        asyncio.run(orchestrator.run(ReportKind.MORNING, manual=True))
        assert _severities(orchestrator) == [Severity.SUCCESS, Severity.INFO]

    def test_feed_newest_first(self, orchestrator):
        async def scenario():
            await orchestrator.run(ReportKind.MORNING)
            await orchestrator.run(ReportKind.EVENING)

        asyncio.run(scenario())
        assert [r.kind for r in orchestrator.feed()] == [ReportKind.EVENING, ReportKind.MORNING]
        assert orchestrator.current_report.kind is ReportKind.EVENING


class TestFailedRun:
    def test_rate_limit_failure(self, orchestrator, generator, store):
        """限流失败：FAILED + 用户提示，一条 ERROR 日志，已有的 COMPLETED 报告不被覆盖"""
        previous = Report(kind=ReportKind.MORNING, created_at=datetime(2024, 1, 1, 7, 0).astimezone())
        previous.complete("earlier table", [])
        store.put(ReportKind.MORNING, "2024-01-01", previous)
        generator.error = RateLimitError(MSG_RATE_LIMIT)

        report = asyncio.run(orchestrator.run(ReportKind.MORNING))

        assert report.status is ReportStatus.FAILED
        assert report.content == MSG_RATE_LIMIT
        assert _severities(orchestrator).count(Severity.ERROR) == 1
        stored = store.get(ReportKind.MORNING, "2024-01-01")
        assert stored.id == previous.id
        assert stored.content == "earlier table"
        assert stored.status is ReportStatus.COMPLETED

    def test_failure_not_persisted(self, orchestrator, generator, store):
        generator.error = TransportError("生成報告失敗: boom")
        asyncio.run(orchestrator.run(ReportKind.EVENING))
        assert store.get(ReportKind.EVENING, "2024-01-01") is None

    def test_unexpected_exception_becomes_failed(self, orchestrator, generator):
        generator.error = KeyError("weird")
        report = asyncio.run(orchestrator.run(ReportKind.EVENING))
        assert report.status is ReportStatus.FAILED
        assert "weird" in report.content
        assert not orchestrator.in_flight

    def test_guard_released_after_failure(self, orchestrator, generator):
        generator.error = RateLimitError(MSG_RATE_LIMIT)

        async def scenario():
            await orchestrator.run(ReportKind.MORNING)
            generator.error = None
            return await orchestrator.run(ReportKind.MORNING)

        second = asyncio.run(scenario())
        assert second is not None
        assert second.status is ReportStatus.COMPLETED


class TestReentrancy:
    def test_concurrent_run_is_noop(self, orchestrator, generator, store, backend):
        """生成进行中时，第二次调用不修改存储和日志"""

        async def scenario():
            generator.gate = asyncio.Event()
            first = asyncio.create_task(orchestrator.run(ReportKind.MORNING))
            await asyncio.sleep(0)
            log_before = orchestrator.log.entries()
            writes_before = backend.writes
            current_before = orchestrator.current_report

            second = await orchestrator.run(ReportKind.EVENING, manual=True)

            assert second is None
            assert orchestrator.log.entries() == log_before
            assert backend.writes == writes_before
            assert orchestrator.current_report is current_before
            generator.gate.set()
            await first

        asyncio.run(scenario())
        assert generator.calls == [ReportKind.MORNING]


class TestDelivery:
    def _with_email(self, orchestrator, schedule, mailer):
        schedule["config"] = ScheduleConfig(delivery_email="me@example.com", active=True)
        orchestrator.mailer = mailer

    def test_sent(self, orchestrator, schedule, store):
        mailer = FakeMailer()
        self._with_email(orchestrator, schedule, mailer)

        report = asyncio.run(orchestrator.run(ReportKind.MORNING))

        assert report.status is ReportStatus.SENT
        assert store.get(ReportKind.MORNING, "2024-01-01").status is ReportStatus.SENT
        to, subject, body = mailer.sent[0]
        assert to == "me@example.com"
        assert subject == "☀️ 美股早報 2024-01-01"
        assert "| Stock | Price | Change % |" in body
        assert orchestrator.log.entries()[0].message == "Report emailed to me@example.com"

    def test_simulated(self, orchestrator, schedule):
        self._with_email(orchestrator, schedule, FakeMailer(simulated=True))
        report = asyncio.run(orchestrator.run(ReportKind.EVENING))
        assert report.status is ReportStatus.SENT
        assert "Simulated" in orchestrator.log.entries()[0].message

    def test_delivery_failure_keeps_completed(self, orchestrator, schedule, store):
        self._with_email(orchestrator, schedule, FakeMailer(fail=True))
        report = asyncio.run(orchestrator.run(ReportKind.MORNING))
        assert report.status is ReportStatus.COMPLETED
        assert orchestrator.log.entries()[0].severity is Severity.ERROR
        assert store.get(ReportKind.MORNING, "2024-01-01").status is ReportStatus.COMPLETED

    def test_failed_generation_not_delivered(self, orchestrator, schedule, generator):
        mailer = FakeMailer()
        self._with_email(orchestrator, schedule, mailer)
        generator.error = RateLimitError(MSG_RATE_LIMIT)
        asyncio.run(orchestrator.run(ReportKind.MORNING))
        assert mailer.sent == []


class TestPersistenceFailure:
    def test_store_error_does_not_escape(self, orchestrator, backend, caplog):
        """存储写入失败（磁盘满）：run 不抛异常，记一条 ERROR，锁被释放"""
        backend.broken_prefix = "report:"

        with caplog.at_level(logging.ERROR, logger="market_flow.orchestrator"):
            report = asyncio.run(orchestrator.run(ReportKind.MORNING))

        assert report.status is ReportStatus.COMPLETED
        assert not orchestrator.in_flight
        assert Severity.ERROR in _severities(orchestrator)
        assert Severity.SUCCESS not in _severities(orchestrator)
        assert "could not be saved" in orchestrator.log.entries()[1].message
        assert any(r.exc_info for r in caplog.records)

    def test_sent_status_store_error_logged(self, orchestrator, schedule, backend):
        schedule["config"] = ScheduleConfig(delivery_email="me@example.com", active=True)
        orchestrator.mailer = FakeMailer()
        backend.broken_prefix = "report:"

        report = asyncio.run(orchestrator.run(ReportKind.EVENING))

        assert report.status is ReportStatus.SENT
        messages = [e.message for e in orchestrator.log.entries()]
        assert messages[0] == "Report emailed to me@example.com"
        assert messages[1].startswith("Sent status of report")

    def test_scheduled_run_with_store_error(self, orchestrator, store, schedule, clock, backend):
        """定时触发的任务遇到存储错误：ERROR 写入活动日志，任务本身不抛异常"""
        loop = SchedulerLoop(
            orchestrator=orchestrator,
            store=store,
            config_source=lambda: schedule["config"],
            clock=clock,
            interval=0.01,
        )
        backend.broken_prefix = "report:"

        async def scenario():
            fired = await loop.tick(datetime(2024, 1, 1, 8, 0))
            tasks = list(loop._runs)
            await loop.drain()
            return fired, tasks

        fired, tasks = asyncio.run(scenario())
        assert fired is ReportKind.MORNING
        assert all(t.exception() is None for t in tasks)
        assert Severity.ERROR in _severities(orchestrator)
        assert store.get_last_run_key() == "2024-01-01-08:00"
