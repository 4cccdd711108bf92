"""
Budget cycle windows.

A cycle runs from the user's start day in one month up to the instant
before the start day of the next month. Start days past the end of a
short month fall on that month's last day (a cycle starting on the 31st
starts on Feb 28/29 in February).
"""

import calendar
from datetime import date, datetime, timedelta
from typing import Union

from finance_tracker.models.report import CycleRange


def _cycle_start(year: int, month: int, start_day: int) -> datetime:
    last_day = calendar.monthrange(year, month)[1]
    return datetime(year, month, min(start_day, last_day))


def _add_months(year: int, month: int, delta: int) -> tuple[int, int]:
    index = year * 12 + (month - 1) + delta
    return index // 12, index % 12 + 1


def get_cycle_range(reference: Union[date, datetime], start_day: int) -> CycleRange:
    """
    The cycle containing `reference`.

    Args:
        reference: Any moment inside the wanted cycle
        start_day: Day of month cycles start on (1-31)

    Returns:
        CycleRange with start at midnight of the start day and end at the
        last microsecond before the next cycle starts
    """
    if not 1 <= start_day <= 31:
        raise ValueError(f"Cycle start day must be between 1 and 31, got {start_day}")

    if isinstance(reference, datetime):
        reference = reference.date()

    start = _cycle_start(reference.year, reference.month, start_day)
    if reference < start.date():
        year, month = _add_months(reference.year, reference.month, -1)
        start = _cycle_start(year, month, start_day)

    year, month = _add_months(start.year, start.month, 1)
    next_start = _cycle_start(year, month, start_day)

    return CycleRange(start=start, end=next_start - timedelta(microseconds=1))
