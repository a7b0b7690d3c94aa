"""Due-date resolution for a rule's period.

``month_offset`` counts months after the month in which the period ends, so
a monthly VAT rule with ``day_of_month {day: 20}`` lands on the 20th of the
following month. Days past the end of the target month are clamped to its
last day.
"""

from __future__ import annotations

from datetime import date, timedelta

from rulebook_engine.business_days import BusinessCalendar
from rulebook_engine.errors import DueDateResolutionError
from rulebook_engine.models import (
    BusinessDayOfMonthDueRule,
    ClientRuntimeProfile,
    DayOfMonthDueRule,
    DaysAfterPeriodEndDueRule,
    DueRule,
    FixedDateDueRule,
    PeriodWindow,
    ProfileDayOfMonthDueRule,
)
from rulebook_engine.periods import add_months, days_in_month


def clamped_date(year: int, month: int, day: int) -> date:
    return date(year, month, max(1, min(day, days_in_month(year, month))))


def _target_month(period: PeriodWindow, month_offset: int) -> tuple[int, int]:
    return add_months(period.period_end.year, period.period_end.month, month_offset)


def _unshifted_due_date(
    due_rule: DueRule,
    period: PeriodWindow,
    profile: ClientRuntimeProfile | None,
    business_calendar: BusinessCalendar,
) -> date:
    if isinstance(due_rule, DayOfMonthDueRule):
        year, month = _target_month(period, due_rule.month_offset)
        return clamped_date(year, month, due_rule.day)

    if isinstance(due_rule, ProfileDayOfMonthDueRule):
        day = getattr(profile, due_rule.profile_field, None) if profile else None
        if not day or not 1 <= day <= 31:
            raise DueDateResolutionError(
                f"client profile has no usable {due_rule.profile_field} (got {day!r})"
            )
        year, month = _target_month(period, due_rule.month_offset)
        return clamped_date(year, month, day)

    if isinstance(due_rule, BusinessDayOfMonthDueRule):
        year, month = _target_month(period, due_rule.month_offset)
        resolved = business_calendar.nth_business_day(year, month, due_rule.day)
        if resolved is None:
            raise DueDateResolutionError(
                f"{year:04d}-{month:02d} has fewer than {due_rule.day} business days"
            )
        return resolved

    if isinstance(due_rule, DaysAfterPeriodEndDueRule):
        return period.period_end + timedelta(days=due_rule.days)

    if isinstance(due_rule, FixedDateDueRule):
        return clamped_date(period.period_end.year, due_rule.month, due_rule.day)

    raise DueDateResolutionError(f"unsupported due rule {due_rule!r}")


def resolve_due_date(
    due_rule: DueRule,
    period: PeriodWindow,
    profile: ClientRuntimeProfile | None = None,
    holidays: BusinessCalendar | list[str] | None = None,
) -> date:
    """Compute the concrete due date for a period.

    Args:
        due_rule: Validated due-rule configuration.
        period: The obligation period.
        profile: Client profile, required by ``profile_day_of_month``.
        holidays: Business calendar or a list of ISO holiday dates.

    Returns:
        The due date after applying ``shift_if_non_business_day``.

    Raises:
        DueDateResolutionError: If the rule cannot produce a date for this
            period and client.
    """
    business_calendar = (
        holidays
        if isinstance(holidays, BusinessCalendar)
        else BusinessCalendar.from_iso_dates(holidays)
    )
    try:
        unshifted = _unshifted_due_date(due_rule, period, profile, business_calendar)
    except (ValueError, OverflowError) as exc:
        raise DueDateResolutionError(f"{due_rule.kind}: {exc}") from exc
    return business_calendar.shift(unshifted, due_rule.shift_if_non_business_day)
