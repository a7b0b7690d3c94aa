"""Tests for due-date resolution and the business calendar."""

from datetime import date

import pytest

from rulebook_engine.business_days import BusinessCalendar
from rulebook_engine.due_dates import resolve_due_date
from rulebook_engine.errors import DueDateResolutionError
from rulebook_engine.models import ClientRuntimeProfile, PeriodWindow, parse_due_rule


def month(year: int, month_number: int, last_day: int) -> PeriodWindow:
    return PeriodWindow(
        period_key=f"{year:04d}-{month_number:02d}",
        period_start=date(year, month_number, 1),
        period_end=date(year, month_number, last_day),
    )


VAT_DUE = {"kind": "day_of_month", "day": 20, "shift_if_non_business_day": "next_business_day"}


class TestDayOfMonth:
    """Tests for day_of_month rules."""

    def test_day_twenty_of_following_month(self):
        """February VAT is due 2026-03-20, a Friday, so no shift."""
        due = resolve_due_date(parse_due_rule(VAT_DUE), month(2026, 2, 28))

        assert due == date(2026, 3, 20)

    def test_saturday_shifts_to_monday(self):
        """2027-03-20 is a Saturday and rolls to Monday 2027-03-22."""
        due = resolve_due_date(parse_due_rule(VAT_DUE), month(2027, 2, 28))

        assert due == date(2027, 3, 22)

    def test_holiday_monday_shifts_further(self):
        due = resolve_due_date(parse_due_rule(VAT_DUE), month(2027, 2, 28), holidays=["2027-03-22"])

        assert due == date(2027, 3, 23)

    def test_no_shift_by_default(self):
        rule = parse_due_rule({"kind": "day_of_month", "day": 20})

        assert resolve_due_date(rule, month(2027, 2, 28)) == date(2027, 3, 20)

    def test_day_clamped_to_month_end(self):
        rule = parse_due_rule({"kind": "day_of_month", "day": 31})

        assert resolve_due_date(rule, month(2026, 3, 31)) == date(2026, 4, 30)

    def test_month_offset_zero_uses_period_month(self):
        rule = parse_due_rule({"kind": "day_of_month", "day": 20, "month_offset": 0})

        assert resolve_due_date(rule, month(2026, 3, 31)) == date(2026, 3, 20)

    def test_quarterly_offset_counts_from_period_end(self):
        rule = parse_due_rule({"kind": "day_of_month", "day": 20, "month_offset": 1})
        quarter = PeriodWindow("2026-Q1", date(2026, 1, 1), date(2026, 3, 31))

        assert resolve_due_date(rule, quarter) == date(2026, 4, 20)


class TestOtherShapes:
    """Tests for the remaining due-rule kinds."""

    def test_profile_day_with_prev_shift(self):
        """Advance payday on Sunday 2026-03-15 moves back to Friday 2026-03-13."""
        rule = parse_due_rule(
            {
                "kind": "profile_day_of_month",
                "profile_field": "payroll_advance_day",
                "shift_if_non_business_day": "prev_business_day",
            }
        )
        profile = ClientRuntimeProfile.from_client_row({"id": "c1", "payroll_advance_day": 15})
        half = PeriodWindow("2026-03-A", date(2026, 3, 1), date(2026, 3, 15))

        assert resolve_due_date(rule, half, profile) == date(2026, 3, 13)

    @pytest.mark.parametrize("advance_day", [None, 0])
    def test_profile_day_unset_raises(self, advance_day):
        rule = parse_due_rule({"kind": "profile_day_of_month", "profile_field": "payroll_advance_day"})
        profile = ClientRuntimeProfile.from_client_row({"id": "c1", "payroll_advance_day": advance_day})

        with pytest.raises(DueDateResolutionError):
            resolve_due_date(rule, month(2026, 3, 31), profile)

    def test_nth_business_day(self):
        """2026-03-01 is a Sunday, so the first business day is Monday 2026-03-02."""
        rule = parse_due_rule({"kind": "business_day_of_month", "day": 1})

        assert resolve_due_date(rule, month(2026, 2, 28)) == date(2026, 3, 2)
        assert resolve_due_date(rule, month(2026, 2, 28), holidays=["2026-03-02"]) == date(2026, 3, 3)

    def test_nth_business_day_missing_raises(self):
        rule = parse_due_rule({"kind": "business_day_of_month", "day": 23, "month_offset": 0})

        with pytest.raises(DueDateResolutionError):
            resolve_due_date(rule, month(2026, 2, 28))

    def test_days_after_period_end(self):
        """Q1 + 40 days is Sunday 2026-05-10, shifted to Monday."""
        rule = parse_due_rule(
            {"kind": "days_after_period_end", "days": 40, "shift_if_non_business_day": "next_business_day"}
        )
        quarter = PeriodWindow("2026-Q1", date(2026, 1, 1), date(2026, 3, 31))

        assert resolve_due_date(rule, quarter) == date(2026, 5, 11)

    def test_fixed_date_uses_period_year(self):
        rule = parse_due_rule({"kind": "fixed_date", "month": 2, "day": 20})
        year = PeriodWindow("2026", date(2026, 1, 1), date(2026, 12, 31))

        assert resolve_due_date(rule, year) == date(2026, 2, 20)

    def test_fixed_leap_day_in_common_year(self):
        rule = parse_due_rule({"kind": "fixed_date", "month": 2, "day": 29})
        year = PeriodWindow("2027", date(2027, 1, 1), date(2027, 12, 31))

        assert resolve_due_date(rule, year) == date(2027, 2, 28)

    def test_resolution_is_deterministic(self):
        rule = parse_due_rule(VAT_DUE)
        period = month(2027, 2, 28)

        assert resolve_due_date(rule, period) == resolve_due_date(rule, period)


class TestBusinessCalendar:
    """Tests for weekend and holiday handling."""

    def test_weekends_never_business_days(self):
        calendar = BusinessCalendar.from_iso_dates([])

        assert calendar.is_business_day(date(2026, 3, 20)) is True
        assert calendar.is_business_day(date(2026, 3, 21)) is False
        assert calendar.is_business_day(date(2026, 3, 22)) is False

    def test_holiday_is_not_business_day(self):
        calendar = BusinessCalendar.from_iso_dates(["2026-03-20"])

        assert calendar.is_business_day(date(2026, 3, 20)) is False
        assert calendar.shift(date(2026, 3, 20), "prev_business_day") == date(2026, 3, 19)
        assert calendar.shift(date(2026, 3, 20), "next_business_day") == date(2026, 3, 23)

    def test_invalid_holiday_rejected(self):
        with pytest.raises(ValueError):
            BusinessCalendar.from_iso_dates(["not-a-date"])

    def test_business_days_in_month(self):
        calendar = BusinessCalendar.from_iso_dates([])

        assert len(calendar.business_days_in_month(2026, 2)) == 20
        assert calendar.nth_business_day(2026, 2, 21) is None
