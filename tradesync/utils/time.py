from __future__ import annotations

from datetime import datetime
from zoneinfo import ZoneInfo

UTC_TZ = ZoneInfo("UTC")

# MT4 TimeToString(TIME_DATE|TIME_SECONDS) layout
TERMINAL_TIME_FMT = "%Y.%m.%d %H:%M:%S"


def now_utc() -> datetime:
    return datetime.now(tz=UTC_TZ)


def to_utc(dt: datetime) -> datetime:
    """
    Convert datetime to UTC.

    Contract:
    - If dt is naive, treat it as UTC (SQLite hands back naive datetimes).
    """
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC_TZ)
    return dt.astimezone(UTC_TZ)


def epoch_millis(dt: datetime | None = None) -> int:
    dt = to_utc(dt) if dt is not None else now_utc()
    return int(dt.timestamp() * 1000)


def terminal_time_str(dt: datetime | None = None) -> str:
    dt = to_utc(dt) if dt is not None else now_utc()
    return dt.strftime(TERMINAL_TIME_FMT)


def iso_or_none(dt: datetime | None) -> str | None:
    return to_utc(dt).isoformat() if dt is not None else None
