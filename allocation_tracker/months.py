from __future__ import annotations

import re
from datetime import date
from typing import Collection, Iterable, List, Optional, Tuple

from dateutil.relativedelta import relativedelta

from .models import DEFAULT_FISCAL_YEAR_START_MONTH, MonthKey, ScheduleEntry

MONTH_FMT = "%Y-%m"

_MONTH_KEY_RE = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")


def is_month_key(value: object) -> bool:
    return isinstance(value, str) and bool(_MONTH_KEY_RE.match(value))


def parse_month_key(key: MonthKey) -> Tuple[int, int]:
    if not is_month_key(key):
        raise ValueError(f"invalid month key '{key}' (expected YYYY-MM)")
    return int(key[:4]), int(key[5:7])


def month_key_of(value: date) -> MonthKey:
    return value.strftime(MONTH_FMT)


def _first_of_month(key: MonthKey) -> date:
    year, month = parse_month_key(key)
    return date(year, month, 1)


def month_sequence(start_key: MonthKey, end_key: MonthKey) -> List[MonthKey]:
    """Every month from start to end inclusive; empty when end precedes start."""
    current = _first_of_month(start_key)
    end = _first_of_month(end_key)
    months: List[MonthKey] = []
    while current <= end:
        months.append(month_key_of(current))
        current += relativedelta(months=1)
    return months


def fiscal_months(
    fiscal_year: int, start_month: int = DEFAULT_FISCAL_YEAR_START_MONTH
) -> List[MonthKey]:
    """The twelve month keys of a fiscal year, start month first.

    Fiscal year 2025 starting in April runs 2025-04 .. 2026-03.
    """
    if not 1 <= start_month <= 12:
        raise ValueError(f"start_month must be in 1..12, got {start_month}")
    months: List[MonthKey] = []
    for offset in range(12):
        calendar_month = (offset + start_month - 1) % 12 + 1
        year = fiscal_year if calendar_month >= start_month else fiscal_year + 1
        months.append(f"{year:04d}-{calendar_month:02d}")
    return months


def fiscal_year_bounds(
    fiscal_year: int, start_month: int = DEFAULT_FISCAL_YEAR_START_MONTH
) -> Tuple[MonthKey, MonthKey]:
    months = fiscal_months(fiscal_year, start_month)
    return months[0], months[-1]


def range_from_schedules(entries: Iterable[ScheduleEntry]) -> List[MonthKey]:
    """Month keys covering the min start .. max end envelope of the entries.

    Dates are zero-padded ISO strings, so string comparison orders them.
    """
    entries = list(entries)
    if not entries:
        return []
    min_start = min(entry.start_date for entry in entries)
    max_end = max(entry.end_date for entry in entries)
    return month_sequence(min_start[:7], max_end[:7])


def project_schedule_months(
    entries: Iterable[ScheduleEntry],
    project_ids: Collection[str],
    enabled_phase_keys: Optional[Collection[str]] = None,
) -> List[MonthKey]:
    selected = [
        entry
        for entry in entries
        if entry.project_id in project_ids
        and (enabled_phase_keys is None or entry.phase_key in enabled_phase_keys)
    ]
    return range_from_schedules(selected)


def month_label(key: MonthKey) -> str:
    _, month = parse_month_key(key)
    return f"{month}月"


def month_label_with_year(key: MonthKey) -> str:
    year, month = parse_month_key(key)
    return f"{year % 100}/{month}月"
