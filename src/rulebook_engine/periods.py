"""Period expansion for recurring obligations."""

from __future__ import annotations

import calendar
from collections.abc import Iterator
from datetime import date

from rulebook_engine.errors import PeriodConfigurationError
from rulebook_engine.models import (
    AnnualRecurrence,
    MonthlyRecurrence,
    PeriodWindow,
    QuarterlyRecurrence,
    Recurrence,
    SemiMonthlyRecurrence,
)


def days_in_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def add_months(year: int, month: int, offset: int) -> tuple[int, int]:
    """Shift a (year, month) pair by ``offset`` months."""
    index = year * 12 + (month - 1) + offset
    return index // 12, index % 12 + 1


def quarter_of(month: int) -> int:
    return (month - 1) // 3 + 1


def _monthly(range_start: date, range_end: date) -> Iterator[PeriodWindow]:
    year, month = range_start.year, range_start.month
    while date(year, month, 1) <= range_end:
        yield PeriodWindow(
            period_key=f"{year:04d}-{month:02d}",
            period_start=date(year, month, 1),
            period_end=date(year, month, days_in_month(year, month)),
        )
        if (year, month) == (date.max.year, 12):
            return
        year, month = add_months(year, month, 1)


def _quarterly(range_start: date, range_end: date) -> Iterator[PeriodWindow]:
    year = range_start.year
    quarter = quarter_of(range_start.month)
    while True:
        start_month = (quarter - 1) * 3 + 1
        start = date(year, start_month, 1)
        if start > range_end:
            return
        end_month = start_month + 2
        yield PeriodWindow(
            period_key=f"{year:04d}-Q{quarter}",
            period_start=start,
            period_end=date(year, end_month, days_in_month(year, end_month)),
        )
        quarter += 1
        if quarter > 4:
            if year == date.max.year:
                return
            quarter = 1
            year += 1


def _annual(range_start: date, range_end: date) -> Iterator[PeriodWindow]:
    for year in range(range_start.year, range_end.year + 1):
        yield PeriodWindow(
            period_key=f"{year:04d}",
            period_start=date(year, 1, 1),
            period_end=date(year, 12, 31),
        )


def _semi_monthly(
    range_start: date,
    range_end: date,
    halves: tuple[str, ...],
    split_day: int,
) -> Iterator[PeriodWindow]:
    for month_window in _monthly(range_start, range_end):
        year, month = month_window.period_start.year, month_window.period_start.month
        last_day = month_window.period_end.day
        split = min(split_day, last_day - 1)
        windows = {
            "A": PeriodWindow(
                period_key=f"{year:04d}-{month:02d}-A",
                period_start=month_window.period_start,
                period_end=date(year, month, split),
            ),
            "B": PeriodWindow(
                period_key=f"{year:04d}-{month:02d}-B",
                period_start=date(year, month, split + 1),
                period_end=month_window.period_end,
            ),
        }
        for half in halves:
            window = windows[half]
            if window.overlaps(range_start, range_end):
                yield window


class PeriodSequence:
    """Lazy, restartable sequence of period windows.

    Every call to ``iter()`` starts a fresh walk, so the same sequence can be
    consumed more than once.
    """

    def __init__(
        self,
        recurrence: Recurrence,
        range_start: date,
        range_end: date,
        split_day: int | None = None,
    ):
        if isinstance(recurrence, SemiMonthlyRecurrence) and (
            split_day is None or not 1 <= split_day <= 31
        ):
            raise PeriodConfigurationError(
                f"semi_monthly periods need a payroll split day in 1..31, got {split_day!r}"
            )
        self.recurrence = recurrence
        self.range_start = range_start
        self.range_end = range_end
        self.split_day = split_day

    def __iter__(self) -> Iterator[PeriodWindow]:
        if self.range_end < self.range_start:
            return iter(())

        recurrence = self.recurrence
        if isinstance(recurrence, MonthlyRecurrence):
            return _monthly(self.range_start, self.range_end)
        if isinstance(recurrence, QuarterlyRecurrence):
            return _quarterly(self.range_start, self.range_end)
        if isinstance(recurrence, AnnualRecurrence):
            return _annual(self.range_start, self.range_end)
        if isinstance(recurrence, SemiMonthlyRecurrence):
            if self.split_day is None:
                raise PeriodConfigurationError("semi_monthly periods need a payroll split day")
            return _semi_monthly(
                self.range_start, self.range_end, recurrence.halves, self.split_day
            )
        raise PeriodConfigurationError(f"unsupported recurrence {recurrence!r}")

    def __repr__(self) -> str:
        return (
            f"PeriodSequence({self.recurrence.kind}, "
            f"{self.range_start.isoformat()}..{self.range_end.isoformat()})"
        )


def expand_periods(
    recurrence: Recurrence,
    range_start: date,
    range_end: date,
    split_day: int | None = None,
) -> PeriodSequence:
    """Expand a recurrence into the period windows covering a date range.

    Windows are whole calendar periods, ordered chronologically; every
    window intersecting ``[range_start, range_end]`` is included.

    Args:
        recurrence: Validated recurrence configuration.
        range_start: First day of the requested range.
        range_end: Last day of the requested range (inclusive).
        split_day: Last day of half A for semi-monthly recurrences
            (the client's advance payday).

    Raises:
        PeriodConfigurationError: Semi-monthly recurrence without a usable split day.
    """
    return PeriodSequence(recurrence, range_start, range_end, split_day)
