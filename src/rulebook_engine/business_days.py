"""Business-day calendar: weekends plus a caller-supplied holiday list."""

from __future__ import annotations

import calendar
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date, timedelta

from rulebook_engine.models import BusinessDayShift


@dataclass(frozen=True)
class BusinessCalendar:
    """Weekends are never business days, whatever the holiday list says."""

    holidays: frozenset[date] = field(default_factory=frozenset)

    @classmethod
    def from_iso_dates(cls, values: Iterable[str | date] | None) -> BusinessCalendar:
        """Build a calendar from ISO date strings.

        Raises:
            ValueError: If a value is not an ISO date.
        """
        parsed: set[date] = set()
        for value in values or ():
            parsed.add(value if isinstance(value, date) else date.fromisoformat(value.strip()))
        return cls(holidays=frozenset(parsed))

    def is_business_day(self, day: date) -> bool:
        return day.weekday() < 5 and day not in self.holidays

    def shift(self, day: date, strategy: BusinessDayShift) -> date:
        """Roll a date onto a business day according to the shift policy."""
        if strategy == "none" or self.is_business_day(day):
            return day

        step = timedelta(days=-1 if strategy == "prev_business_day" else 1)
        cursor = day
        while not self.is_business_day(cursor):
            cursor += step
        return cursor

    def business_days_in_month(self, year: int, month: int) -> list[date]:
        last_day = calendar.monthrange(year, month)[1]
        return [
            date(year, month, day)
            for day in range(1, last_day + 1)
            if self.is_business_day(date(year, month, day))
        ]

    def nth_business_day(self, year: int, month: int, nth: int) -> date | None:
        """Return the nth (1-based) business day of a month, if it exists."""
        if nth < 1:
            return None
        days = self.business_days_in_month(year, month)
        if nth > len(days):
            return None
        return days[nth - 1]
