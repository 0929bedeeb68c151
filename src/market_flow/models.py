"""Data models for MarketFlow."""

import uuid
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .errors import ReportStateError
from .timekeys import date_key, parse_minute_key


class ReportKind(str, Enum):
    """Briefing type / 报告类型."""

    MORNING = "MORNING"  # 早报：前一交易日七巨头回顾
    EVENING = "EVENING"  # 晚报：当日市场重点新闻


class ReportStatus(str, Enum):
    GENERATING = "generating"
    COMPLETED = "completed"
    FAILED = "failed"
    SENT = "sent"


TERMINAL_STATUSES = frozenset({ReportStatus.COMPLETED, ReportStatus.FAILED, ReportStatus.SENT})


class Severity(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    ERROR = "error"


class Source(BaseModel):
    """A citation returned alongside the generated content."""

    title: str
    url: str


def _new_id() -> str:
    return uuid.uuid4().hex


def _now() -> datetime:
    return datetime.now().astimezone()


class Report(BaseModel):
    """One generation attempt and its result.

    Created as GENERATING with empty content, then moved exactly once to a
    terminal status. COMPLETED may still advance to SENT after delivery.
    """

    id: str = Field(default_factory=_new_id)
    kind: ReportKind
    created_at: datetime = Field(default_factory=_now)
    date_key: str = ""
    content: str = ""
    sources: list[Source] = []
    status: ReportStatus = ReportStatus.GENERATING

    def model_post_init(self, __context) -> None:
        if not self.date_key:
            self.date_key = date_key(self.created_at)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def complete(self, content: str, sources: list[Source]) -> None:
        self._require(ReportStatus.GENERATING, "complete")
        self.content = content
        self.sources = list(sources)
        self.status = ReportStatus.COMPLETED

    def fail(self, message: str) -> None:
        self._require(ReportStatus.GENERATING, "fail")
        self.content = message
        self.sources = []
        self.status = ReportStatus.FAILED

    def mark_sent(self) -> None:
        self._require(ReportStatus.COMPLETED, "mark as sent")
        self.status = ReportStatus.SENT

    def _require(self, expected: ReportStatus, action: str) -> None:
        if self.status is not expected:
            raise ReportStateError(
                f"Cannot {action} report {self.id}: status is {self.status.value}"
            )


class ScheduleConfig(BaseModel):
    """Automation settings owned by the UI / 自动化设置."""

    morning_time: str = "08:00"
    evening_time: str = "22:00"
    delivery_email: str | None = None
    active: bool = False

    @field_validator("morning_time", "evening_time")
    @classmethod
    def _normalize_time(cls, value: str) -> str:
        return parse_minute_key(value)

    @field_validator("delivery_email")
    @classmethod
    def _blank_email_is_none(cls, value: str | None) -> str | None:
        if value is None:
            return None
        value = value.strip()
        return value or None

    @property
    def has_time_conflict(self) -> bool:
        return self.morning_time == self.evening_time


class LogEntry(BaseModel):
    """Immutable activity log entry."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=_new_id)
    timestamp: datetime = Field(default_factory=_now)
    message: str
    severity: Severity = Severity.INFO
