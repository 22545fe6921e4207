"""
Market Window - Rolling-window selection for the headline stat cards.

The dashboard's "current" figures (avg psf, median rent, ...) are computed over
the shortest trailing window that holds enough records to be meaningful:

    3M → 6M → 12M → latest year present → all records

A window of m months anchored on `now` keeps every record whose month key is
on or after the first day of month (now.month - (m - 1)); the current month
counts as one of the m months.

The same selection applies to sale and rental records.
"""

import logging
from datetime import datetime
from typing import Callable, NamedTuple, Optional, Sequence, TypeVar

from dateutil.relativedelta import relativedelta

from constants import MIN_WINDOW_RECORDS, ROLLING_WINDOW_MONTHS

logger = logging.getLogger(__name__)

T = TypeVar('T')

__all__ = [
    'WindowSelection',
    'window_cutoff',
    'select_window',
]

ALL_RECORDS_LABEL = 'all'


class WindowSelection(NamedTuple):
    records: list
    label: str

    def __len__(self) -> int:
        return len(self.records)


def window_cutoff(now: datetime, months: int) -> str:
    """
    First month key inside an m-month window ending at now.

    Example:
        window_cutoff(datetime(2024, 5, 17), 3) → '2024-03'
    """
    start = now.replace(day=1) - relativedelta(months=months - 1)
    return f"{start.year}-{start.month:02d}"


def select_window(
    records: Sequence[T],
    now: datetime,
    windows: Sequence[int] = ROLLING_WINDOW_MONTHS,
    min_records: int = MIN_WINDOW_RECORDS,
    key: Callable[[T], str] = lambda r: r.month_key,
) -> WindowSelection:
    """
    Pick the first rolling window with at least min_records records.

    Falls back to the records of the latest year present, then to every
    record.

    Returns:
        WindowSelection(records, label) where label is '3M' / '6M' / '12M',
        the fallback year, or 'all'
    """
    for months in sorted(windows):
        cutoff = window_cutoff(now, months)
        selected = [r for r in records if key(r) >= cutoff]
        if len(selected) >= min_records:
            return WindowSelection(selected, f"{months}M")

    latest_year = _latest_year(records, key)
    if latest_year is not None:
        selected = [r for r in records if key(r).startswith(latest_year)]
        if selected:
            logger.debug(f"No rolling window reached {min_records} records, using {latest_year}")
            return WindowSelection(selected, latest_year)

    return WindowSelection(list(records), ALL_RECORDS_LABEL)


def _latest_year(records: Sequence[T], key: Callable[[T], str]) -> Optional[str]:
    latest: Optional[str] = None
    for r in records:
        year = key(r)[:4]
        if latest is None or year > latest:
            latest = year
    return latest
