"""
Tests for the working-time calendar.
"""
import logging
from datetime import date

import pytest

from errors import ValidationError
from work_calendar import Calendar, CalendarException, ExceptionType, Holiday, WorkingHours


class TestClassification:
    """Working-day rules: weekdays, holidays and exceptions."""

    def test_weekend_is_not_working(self, plain_calendar):
        assert plain_calendar.is_working_day(date(2024, 1, 5))        # Fri
        assert not plain_calendar.is_working_day(date(2024, 1, 6))    # Sat
        assert not plain_calendar.is_working_day(date(2024, 1, 7))    # Sun

    def test_recurring_holiday_matches_every_year(self):
        cal = Calendar.standard()
        assert cal.is_holiday(date(2031, 12, 25))
        assert not cal.is_working_day(date(2025, 7, 4))               # Fri

    def test_one_time_holiday_only_matches_its_date(self, plain_calendar):
        plain_calendar.add_holiday(Holiday(date(2024, 3, 4), "Plant shutdown"))
        assert not plain_calendar.is_working_day(date(2024, 3, 4))
        assert plain_calendar.is_working_day(date(2025, 3, 4))

    def test_exception_overrides_holiday_and_weekend(self):
        cal = Calendar.standard()
        cal.add_exception(CalendarException(date(2024, 12, 25), ExceptionType.WORKING))
        cal.add_exception(CalendarException(date(2024, 1, 6), ExceptionType.WORKING))
        assert cal.is_working_day(date(2024, 12, 25))
        assert cal.is_working_day(date(2024, 1, 6))

    def test_non_working_exception_closes_a_weekday(self, plain_calendar):
        plain_calendar.add_exception(CalendarException(date(2024, 1, 3), ExceptionType.NON_WORKING))
        assert not plain_calendar.is_working_day(date(2024, 1, 3))
        assert plain_calendar.working_hours_on(date(2024, 1, 3)) == 0.0

    def test_half_day_has_half_hours(self, plain_calendar):
        plain_calendar.add_exception(CalendarException(date(2024, 1, 3), ExceptionType.HALF_DAY))
        assert plain_calendar.is_working_day(date(2024, 1, 3))
        assert plain_calendar.working_hours_on(date(2024, 1, 3)) == 4.0


class TestArithmetic:
    """advance / retreat / working_days_between."""

    def test_advance_skips_weekend(self, plain_calendar):
        # Fri + 1 working day = Mon
        assert plain_calendar.advance(date(2024, 1, 5), 1) == date(2024, 1, 8)

    def test_advance_skips_holiday(self):
        cal = Calendar.standard()
        # Fri 2023-12-29 + 1 → Tue 2024-01-02 (Mon is New Year's Day)
        assert cal.advance(date(2023, 12, 29), 1) == date(2024, 1, 2)

    def test_advance_zero_returns_origin(self, plain_calendar):
        assert plain_calendar.advance(date(2024, 1, 6), 0) == date(2024, 1, 6)

    def test_half_day_consumes_half(self, plain_calendar):
        plain_calendar.add_exception(CalendarException(date(2024, 1, 2), ExceptionType.HALF_DAY))
        # Tue is half, so one full day needs Wed as well
        assert plain_calendar.advance(date(2024, 1, 1), 1) == date(2024, 1, 3)
        assert plain_calendar.advance(date(2024, 1, 1), 0.5) == date(2024, 1, 2)

    def test_retreat_skips_weekend(self, plain_calendar):
        assert plain_calendar.retreat(date(2024, 1, 8), 1) == date(2024, 1, 5)

    def test_next_and_previous_working_day(self, plain_calendar):
        assert plain_calendar.next_working_day(date(2024, 1, 5)) == date(2024, 1, 8)
        assert plain_calendar.previous_working_day(date(2024, 1, 8)) == date(2024, 1, 5)

    def test_working_days_between_is_inclusive(self, plain_calendar):
        assert plain_calendar.working_days_between(date(2024, 1, 1), date(2024, 1, 5)) == 5.0
        assert plain_calendar.working_days_between(date(2024, 1, 1), date(2024, 1, 14)) == 10.0

    def test_working_days_between_counts_half_days(self, plain_calendar):
        plain_calendar.add_exception(CalendarException(date(2024, 1, 3), ExceptionType.HALF_DAY))
        assert plain_calendar.working_days_between(date(2024, 1, 1), date(2024, 1, 5)) == 4.5

    def test_inverted_range_counts_zero(self, plain_calendar):
        assert plain_calendar.working_days_between(date(2024, 1, 5), date(2024, 1, 1)) == 0.0

    def test_calendar_without_working_days_returns_origin(self, caplog):
        cal = Calendar(name="Closed", working_weekdays=frozenset())
        with caplog.at_level(logging.WARNING):
            assert cal.advance(date(2024, 1, 1), 3) == date(2024, 1, 1)
        assert "returning original date" in caplog.text

    def test_advance_past_date_max_returns_origin(self, plain_calendar):
        origin = date(9999, 12, 30)
        assert plain_calendar.advance(origin, 5) == origin


class TestWorkingHours:

    def test_start_must_precede_end(self):
        with pytest.raises(ValidationError):
            WorkingHours(start_hour=17, end_hour=9).validate()

    def test_calendar_validates_hours_on_construction(self):
        with pytest.raises(ValidationError):
            Calendar(working_hours=WorkingHours(daily_hours=0.0))
