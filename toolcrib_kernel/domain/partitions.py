"""
Partition keys for the history ledgers.

Pure functions, zero I/O.  The key formats are part of the persisted layout
and must not change:

    per-item ledger   MM-YYYY      e.g. "10-2025"
    global ledger     YYYY/MM/DD   e.g. "2025/10/20"

All keys are computed in UTC.  Naive datetimes are treated as UTC.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone


def _as_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def month_key(moment: datetime) -> str:
    """Per-item partition key for ``moment``."""
    utc = _as_utc(moment)
    return f"{utc.month:02d}-{utc.year}"


def day_key(moment: datetime) -> str:
    """Global partition key for ``moment``."""
    utc = _as_utc(moment)
    return f"{utc.year}/{utc.month:02d}/{utc.day:02d}"


def parse_month_key(key: str) -> date:
    """First day of the month named by ``key``.

    Raises:
        ValueError: if ``key`` is not ``MM-YYYY``.
    """
    month_str, _, year_str = key.partition("-")
    if len(month_str) != 2 or len(year_str) != 4:
        raise ValueError(f"Invalid month key: {key!r}")
    return date(int(year_str), int(month_str), 1)


def parse_day_key(key: str) -> date:
    """Calendar day named by ``key``.

    Raises:
        ValueError: if ``key`` is not ``YYYY/MM/DD``.
    """
    parts = key.split("/")
    if len(parts) != 3 or len(parts[0]) != 4:
        raise ValueError(f"Invalid day key: {key!r}")
    return date(int(parts[0]), int(parts[1]), int(parts[2]))


def month_keys_between(start: datetime, end: datetime) -> list[str]:
    """Month keys overlapping ``[start, end]``, oldest first."""
    first = _as_utc(start)
    last = _as_utc(end)
    year, month = first.year, first.month
    keys: list[str] = []
    while (year, month) <= (last.year, last.month):
        keys.append(f"{month:02d}-{year}")
        month += 1
        if month > 12:
            month = 1
            year += 1
    return keys


def day_keys_between(start: datetime, end: datetime) -> list[str]:
    """Day keys overlapping ``[start, end]``, oldest first."""
    current = _as_utc(start).date()
    last = _as_utc(end).date()
    keys: list[str] = []
    while current <= last:
        keys.append(f"{current.year}/{current.month:02d}/{current.day:02d}")
        current += timedelta(days=1)
    return keys
