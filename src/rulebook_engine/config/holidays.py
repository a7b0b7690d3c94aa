"""Holiday calendar loader for business-day arithmetic."""

from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import date
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal

import yaml  # type: ignore[import-untyped]

DEFAULT_HOLIDAYS_PATH = Path(__file__).resolve().parent / "holidays.yaml"

MONTH_NAME_TO_INDEX = {
    "january": 1,
    "february": 2,
    "march": 3,
    "april": 4,
    "may": 5,
    "june": 6,
    "july": 7,
    "august": 8,
    "september": 9,
    "october": 10,
    "november": 11,
    "december": 12,
}

WEEKDAY_NAME_TO_INDEX = {
    "monday": 0,
    "mon": 0,
    "tuesday": 1,
    "tue": 1,
    "wednesday": 2,
    "wed": 2,
    "thursday": 3,
    "thu": 3,
    "friday": 4,
    "fri": 4,
    "saturday": 5,
    "sat": 5,
    "sunday": 6,
    "sun": 6,
}

ORDINAL_NAME_TO_INDEX = {
    "first": 1,
    "second": 2,
    "third": 3,
    "fourth": 4,
    "fifth": 5,
}

RuleType = Literal["fixed", "nth_weekday", "last_weekday", "date"]


@dataclass(frozen=True)
class HolidayRule:
    """Date rule for a single holiday."""

    rule_type: RuleType
    month: int | None = None
    day: int | None = None
    weekday: int | None = None
    nth: int | None = None
    on: date | None = None

    def date_in_year(self, year: int) -> date | None:
        """Return the holiday date for the given year, if it falls in it."""
        if self.rule_type == "fixed":
            if self.month is None or self.day is None:
                return None
            last_day = calendar.monthrange(year, self.month)[1]
            if self.day > last_day:
                return None
            return date(year, self.month, self.day)

        if self.rule_type == "nth_weekday":
            if self.month is None or self.weekday is None or self.nth is None:
                return None
            day = _nth_weekday_of_month(year, self.month, self.weekday, self.nth)
            return date(year, self.month, day) if day else None

        if self.rule_type == "last_weekday":
            if self.month is None or self.weekday is None:
                return None
            day = _last_weekday_of_month(year, self.month, self.weekday)
            return date(year, self.month, day) if day else None

        if self.rule_type == "date":
            if self.on is not None and self.on.year == year:
                return self.on
            return None

        return None


@dataclass(frozen=True)
class HolidayDefinition:
    """Named holiday."""

    name: str
    rule: HolidayRule

    def date_in_year(self, year: int) -> date | None:
        return self.rule.date_in_year(year)


def _nth_weekday_of_month(year: int, month: int, weekday: int, nth: int) -> int | None:
    month_weeks = calendar.monthcalendar(year, month)
    weekday_days = [week[weekday] for week in month_weeks if week[weekday] != 0]
    if nth < 1 or nth > len(weekday_days):
        return None
    return weekday_days[nth - 1]


def _last_weekday_of_month(year: int, month: int, weekday: int) -> int | None:
    month_weeks = calendar.monthcalendar(year, month)
    weekday_days = [week[weekday] for week in month_weeks if week[weekday] != 0]
    if not weekday_days:
        return None
    return weekday_days[-1]


def _parse_month(value: Any) -> int | None:
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        stripped = value.strip().lower()
        if stripped.isdigit():
            return int(stripped)
        return MONTH_NAME_TO_INDEX.get(stripped)
    return None


def _parse_weekday(value: Any) -> int | None:
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        return WEEKDAY_NAME_TO_INDEX.get(value.strip().lower())
    return None


def _parse_rule_from_string(rule: str) -> HolidayRule:
    normalized = rule.strip().lower()

    parts = normalized.split("-")
    if len(parts) == 3 and all(part.isdigit() for part in parts):
        return HolidayRule(rule_type="date", on=date.fromisoformat(normalized))
    if len(parts) == 2 and all(part.isdigit() for part in parts):
        return HolidayRule(rule_type="fixed", month=int(parts[0]), day=int(parts[1]))

    parts = normalized.split("_")
    if len(parts) == 3:
        ordinal, weekday_name, month_name = parts
        weekday = _parse_weekday(weekday_name)
        month_value = _parse_month(month_name)
        if weekday is None or month_value is None:
            raise ValueError(f"Invalid date_rule {rule!r}")
        if ordinal == "last":
            return HolidayRule(
                rule_type="last_weekday", month=month_value, weekday=weekday
            )
        nth = ORDINAL_NAME_TO_INDEX.get(ordinal)
        if nth is None:
            raise ValueError(f"Invalid date_rule {rule!r}")
        return HolidayRule(
            rule_type="nth_weekday", month=month_value, weekday=weekday, nth=nth
        )

    raise ValueError(f"Invalid date_rule {rule!r}")


def _parse_rule(item: dict[str, Any]) -> HolidayRule:
    rule_value = item.get("date_rule")
    if not rule_value:
        raise ValueError("holiday missing date_rule")
    if not isinstance(rule_value, str):
        raise ValueError("holiday date_rule must be a string")

    if rule_value.strip().lower() == "fixed":
        month = _parse_month(item.get("month"))
        day = item.get("day")
        if month is None or not isinstance(day, int):
            raise ValueError("fixed date_rule requires month (1-12) and day (1-31)")
        if not (1 <= month <= 12) or not (1 <= day <= 31):
            raise ValueError("fixed date_rule month/day out of range")
        return HolidayRule(rule_type="fixed", month=month, day=day)

    try:
        return _parse_rule_from_string(rule_value)
    except ValueError as exc:
        raise ValueError(f"Invalid date_rule {rule_value!r}") from exc


@lru_cache
def load_holiday_calendar(path: str | None = None) -> tuple[HolidayDefinition, ...]:
    """Load holiday definitions from YAML.

    Args:
        path: YAML file to read. Defaults to the bundled calendar.

    Returns:
        Parsed holiday definitions, empty when the file does not exist.
    """
    holidays_path = Path(path) if path else DEFAULT_HOLIDAYS_PATH
    if not holidays_path.exists():
        return ()

    raw = holidays_path.read_text(encoding="utf-8")
    data = yaml.safe_load(raw)
    if data is None:
        return ()

    if isinstance(data, list):
        items = data
    elif isinstance(data, dict):
        items = data.get("holidays") or []
    else:
        raise ValueError(f"{holidays_path.name} must be a list or mapping with 'holidays'")

    if not isinstance(items, list):
        raise ValueError("holidays must be a list")

    results: list[HolidayDefinition] = []
    for idx, item in enumerate(items):
        if not isinstance(item, dict):
            raise ValueError(f"holidays[{idx}] must be a mapping")
        name = item.get("name")
        if not name:
            raise ValueError(f"holidays[{idx}] missing name")
        results.append(HolidayDefinition(name=str(name), rule=_parse_rule(item)))

    return tuple(results)


def holiday_dates(
    definitions: tuple[HolidayDefinition, ...] | list[HolidayDefinition],
    start_year: int,
    end_year: int,
) -> list[str]:
    """Expand holiday definitions into sorted ISO dates for a year range."""
    dates: set[date] = set()
    for year in range(start_year, end_year + 1):
        for definition in definitions:
            resolved = definition.date_in_year(year)
            if resolved is not None:
                dates.add(resolved)
    return [value.isoformat() for value in sorted(dates)]
