"""Shared fakes for generator, mailer and clock."""

import asyncio
from datetime import datetime

import pytest

from market_flow.delivery import DeliveryResult
from market_flow.errors import DeliveryError
from market_flow.generator import GenerationResult
from market_flow.ledger import ActivityLog
from market_flow.models import ReportKind, ScheduleConfig, Source
from market_flow.orchestrator import GenerationOrchestrator
from market_flow.store import MemoryStore, ReportStore


class FakeGenerator:
    """Stands in for ReportGenerator.

    ``gate`` (an asyncio.Event) keeps a call suspended until set, which
    holds the orchestrator in flight.
    """

    def __init__(self, result=None, error=None):
        self.result = result or GenerationResult(
            content="| Stock | Price | Change % |",
            sources=[Source(title="Reuters", url="https://www.reuters.com/markets/")],
        )
        self.error = error
        self.calls: list[ReportKind] = []
        self.gate: asyncio.Event | None = None

    async def generate(self, kind):
        self.calls.append(kind)
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return self.result


class FakeMailer:
    def __init__(self, simulated=False, fail=False):
        self.simulated = simulated
        self.fail = fail
        self.sent: list[tuple[str, str, str]] = []

    async def send(self, to, subject, body):
        if self.fail:
            raise DeliveryError("EmailJS error 400: bad template")
        self.sent.append((to, subject, body))
        return DeliveryResult(to=to, subject=subject, simulated=self.simulated)


class Clock:
    """Settable clock."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class CountingStore(MemoryStore):
    """MemoryStore that counts writes; keys under ``broken_prefix`` fail like a full disk."""

    def __init__(self):
        super().__init__()
        self.writes = 0
        self.broken_prefix: str | None = None

    def set_item(self, key, value):
        if self.broken_prefix is not None and key.startswith(self.broken_prefix):
            raise OSError(28, "No space left on device")
        self.writes += 1
        super().set_item(key, value)


@pytest.fixture
def clock():
    return Clock(datetime(2024, 1, 1, 8, 0, 0))


@pytest.fixture
def backend():
    return CountingStore()


@pytest.fixture
def store(backend):
    return ReportStore(backend)


@pytest.fixture
def generator():
    return FakeGenerator()


@pytest.fixture
def schedule():
    # Mutable holder so tests can swap the config seen by config_source
    return {"config": ScheduleConfig(morning_time="08:00", evening_time="22:00", active=True)}


@pytest.fixture
def orchestrator(generator, store, clock, schedule):
    return GenerationOrchestrator(
        generator=generator,
        store=store,
        log=ActivityLog(),
        config_source=lambda: schedule["config"],
        mailer=None,
        clock=clock,
    )
