"""Time-key helpers.

Derives stable string keys from a moment in local wall-clock time.
日期 key 用于存储，分钟 key 用于与用户配置的 "HH:mm" 比较，二者组合成去重 token。
"""

import re
from datetime import datetime

_MINUTE_RE = re.compile(r"^\s*(\d{1,2}):(\d{2})\s*$")


def _local(moment: datetime) -> datetime:
    # Naive datetimes are already local wall-clock time
    if moment.tzinfo is not None:
        return moment.astimezone()
    return moment


def date_key(moment: datetime) -> str:
    """Calendar-day key, e.g. ``2024-01-01``."""
    local = _local(moment)
    return f"{local.year:04d}-{local.month:02d}-{local.day:02d}"


def minute_key(moment: datetime) -> str:
    """24h ``HH:mm`` key, zero padded and locale independent."""
    local = _local(moment)
    return f"{local.hour:02d}:{local.minute:02d}"


def run_key(moment: datetime) -> str:
    """De-duplication token for a scheduled run: ``<date>-<HH:mm>``."""
    return f"{date_key(moment)}-{minute_key(moment)}"


def parse_minute_key(text: str) -> str:
    """Validate a user-entered time and normalize it to ``HH:mm``.

    ``"8:00"`` → ``"08:00"``. Raises ValueError for anything else.
    """
    match = _MINUTE_RE.match(text or "")
    if not match:
        raise ValueError(f"Invalid time {text!r}, expected HH:mm")
    hour, minute = int(match.group(1)), int(match.group(2))
    if hour > 23 or minute > 59:
        raise ValueError(f"Invalid time {text!r}, out of range")
    return f"{hour:02d}:{minute:02d}"
