"""Persisted key/value storage and the report store on top of it.

本地持久化层：一个 JSON 文件模拟浏览器 localStorage（字符串 key → 字符串 value）。
ReportStore 负责报告、上次自动运行 key 以及 ScheduleConfig 的序列化。

Layout:
    report:<dateKey>:<kind>   serialized Report
    lastAutoRunKey            run key of the last scheduled run
    scheduleConfig            serialized ScheduleConfig
"""

import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path

from pydantic import ValidationError

from .models import Report, ReportKind, ScheduleConfig

logger = logging.getLogger(__name__)

LAST_RUN_KEY = "lastAutoRunKey"
SCHEDULE_CONFIG_KEY = "scheduleConfig"


def report_key(kind: ReportKind, date_key: str) -> str:
    return f"report:{date_key}:{kind.value}"


# ── Backends / 存储后端 ───────────────────────────────────────────────────


class BaseStore(ABC):
    """String key/value interface, modelled on browser localStorage."""

    @abstractmethod
    def get_item(self, key: str) -> str | None:
        ...

    @abstractmethod
    def set_item(self, key: str, value: str) -> None:
        ...

    @abstractmethod
    def remove_item(self, key: str) -> None:
        ...

    @abstractmethod
    def keys(self) -> list[str]:
        ...


class MemoryStore(BaseStore):
    """In-process store, lost on exit."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    def get_item(self, key: str) -> str | None:
        return self._data.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove_item(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._data)


class JsonFileStore(BaseStore):
    """String key/value store persisted to a single JSON file.

    The file is shared by the scheduler process and one-shot CLI commands,
    so nothing is cached: every read loads the file and every write merges
    one key into the current file content before replacing it atomically
    (temp file + replace).
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def _load(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            logger.exception("Failed to read store %s, starting fresh", self.path)
            return {}
        if not isinstance(data, dict):
            logger.warning("Store %s is not a JSON object, starting fresh", self.path)
            return {}
        # Values must be strings, like localStorage
        return {str(k): v for k, v in data.items() if isinstance(v, str)}

    def _write(self, data: dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix=".store-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, ensure_ascii=False, sort_keys=True)
            os.replace(tmp, self.path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise

    def get_item(self, key: str) -> str | None:
        return self._load().get(key)

    def set_item(self, key: str, value: str) -> None:
        data = self._load()
        data[key] = value
        self._write(data)

    def remove_item(self, key: str) -> None:
        data = self._load()
        if key in data:
            del data[key]
            self._write(data)

    def keys(self) -> list[str]:
        return list(self._load())


# ── Report store / 报告存储 ───────────────────────────────────────────────


class ReportStore:
    """Reports keyed by (day, kind) plus scheduler bookkeeping."""

    def __init__(self, backend: BaseStore) -> None:
        self.backend = backend

    def put(self, kind: ReportKind, date_key: str, report: Report) -> None:
        """Store a report, replacing any previous one for the same key."""
        key = report_key(kind, date_key)
        self.backend.set_item(key, report.model_dump_json())
        logger.debug("Stored %s (status=%s)", key, report.status.value)

    def get(self, kind: ReportKind, date_key: str) -> Report | None:
        """Load a report; corrupt entries are removed and reported as absent."""
        key = report_key(kind, date_key)
        raw = self.backend.get_item(key)
        if raw is None:
            return None
        try:
            return Report.model_validate_json(raw)
        except ValidationError:
            logger.warning("Discarding corrupt report entry %s", key)
            self.backend.remove_item(key)
            return None

    def get_last_run_key(self) -> str | None:
        return self.backend.get_item(LAST_RUN_KEY)

    def set_last_run_key(self, run_key: str) -> None:
        self.backend.set_item(LAST_RUN_KEY, run_key)

    def load_schedule_config(self, default: ScheduleConfig | None = None) -> ScheduleConfig:
        """Return the saved schedule config, or ``default`` when none/corrupt."""
        fallback = default if default is not None else ScheduleConfig()
        raw = self.backend.get_item(SCHEDULE_CONFIG_KEY)
        if raw is None:
            return fallback
        try:
            return ScheduleConfig.model_validate_json(raw)
        except ValidationError:
            logger.warning("Discarding corrupt schedule config")
            self.backend.remove_item(SCHEDULE_CONFIG_KEY)
            return fallback

    def save_schedule_config(self, config: ScheduleConfig) -> None:
        self.backend.set_item(SCHEDULE_CONFIG_KEY, config.model_dump_json())
