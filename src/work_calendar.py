"""
work_calendar.py

Working-time calendar for the project scheduler.

A Calendar classifies civil dates as working or non-working and performs
working-day arithmetic. Classification precedence is fixed:

  1. a date-specific exception (Working / NonWorking / HalfDay) wins;
  2. otherwise a holiday (one-time, or recurring by month and day) makes the
     date non-working;
  3. otherwise the weekday is checked against the working-weekday set.

Fractional working days accrue in the hours domain: a HalfDay contributes
H/2 hours, i.e. half a working day. All stepping is in whole days and every
loop is bounded; when a bound is hit the operation degrades to returning the
original date and logs a warning.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from enum import Enum
from typing import Dict, FrozenSet, List, Optional

from errors import ErrorKind, ValidationError

logger = logging.getLogger(__name__)

EPSILON = 1e-3
MAX_SEARCH_DAYS = 3650

MONDAY, TUESDAY, WEDNESDAY, THURSDAY, FRIDAY, SATURDAY, SUNDAY = range(7)
WEEKDAYS: FrozenSet[int] = frozenset({MONDAY, TUESDAY, WEDNESDAY, THURSDAY, FRIDAY})


class ExceptionType(str, Enum):
    WORKING = "working"
    NON_WORKING = "non_working"
    HALF_DAY = "half_day"


@dataclass
class Holiday:
    """A non-working date. Recurring holidays match on month and day only."""
    date: date
    name: str = ""
    recurring: bool = False

    def matches(self, d: date) -> bool:
        if self.recurring:
            return (d.month, d.day) == (self.date.month, self.date.day)
        return d == self.date


@dataclass
class CalendarException:
    date: date
    exception_type: ExceptionType = ExceptionType.NON_WORKING
    note: str = ""


@dataclass
class WorkingHours:
    start_hour: int = 9
    end_hour: int = 17
    daily_hours: float = 8.0

    def validate(self) -> "WorkingHours":
        if not (0 <= self.start_hour <= 23) or not (0 <= self.end_hour <= 23):
            raise ValidationError("Working hours must be between 0 and 23.")
        if self.start_hour >= self.end_hour:
            raise ValidationError("Start-of-day hour must be before end-of-day hour.")
        if not (0.0 < self.daily_hours <= 24.0):
            raise ValidationError("Daily working hours must be in (0, 24].")
        return self


@dataclass
class Calendar:
    name: str = "Standard"
    working_weekdays: FrozenSet[int] = WEEKDAYS
    working_hours: WorkingHours = field(default_factory=WorkingHours)
    holidays: List[Holiday] = field(default_factory=list)
    exceptions: Dict[date, CalendarException] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.working_weekdays = frozenset(self.working_weekdays)
        self.working_hours.validate()

    @classmethod
    def standard(cls, year: Optional[int] = None) -> "Calendar":
        """Mon–Fri, 8 h days, with the recurring US federal fixed-date holidays."""
        anchor = year or 2000
        return cls(
            name="Standard",
            holidays=[
                Holiday(date(anchor, 1, 1), "New Year's Day", recurring=True),
                Holiday(date(anchor, 7, 4), "Independence Day", recurring=True),
                Holiday(date(anchor, 12, 25), "Christmas Day", recurring=True),
            ],
        )

    @property
    def hours_per_day(self) -> float:
        return self.working_hours.daily_hours

    # --- Configuration -----------------------------------------------------

    def add_holiday(self, holiday: Holiday) -> None:
        self.holidays.append(holiday)

    def add_exception(self, exception: CalendarException) -> None:
        self.exceptions[exception.date] = exception

    # --- Classification ----------------------------------------------------

    def is_holiday(self, d: date) -> bool:
        return any(h.matches(d) for h in self.holidays)

    def is_working_day(self, d: date) -> bool:
        exc = self.exceptions.get(d)
        if exc is not None:
            return exc.exception_type != ExceptionType.NON_WORKING
        if self.is_holiday(d):
            return False
        return d.weekday() in self.working_weekdays

    def working_hours_on(self, d: date) -> float:
        if not self.is_working_day(d):
            return 0.0
        exc = self.exceptions.get(d)
        if exc is not None and exc.exception_type == ExceptionType.HALF_DAY:
            return self.hours_per_day / 2.0
        return self.hours_per_day

    # --- Arithmetic --------------------------------------------------------

    def advance(self, d: date, working_days: float) -> date:
        """
        Step forward from the day after `d` until `working_days` working days
        have been consumed; a HalfDay consumes half a day.
        """
        return self._walk(d, working_days, step=1)

    def retreat(self, d: date, working_days: float) -> date:
        return self._walk(d, working_days, step=-1)

    def next_working_day(self, d: date) -> date:
        return self._seek(d, step=1)

    def previous_working_day(self, d: date) -> date:
        return self._seek(d, step=-1)

    def working_days_between(self, start: date, end: date) -> float:
        """Inclusive count of working days in [start, end], in units of H."""
        if end < start:
            return 0.0
        total_hours = 0.0
        current = start
        while current <= end:
            total_hours += self.working_hours_on(current)
            if current == date.max:
                break
            current += timedelta(days=1)
        return total_hours / self.hours_per_day

    def _walk(self, origin: date, working_days: float, step: int) -> date:
        if working_days <= 0:
            return origin
        remaining = float(working_days)
        max_iterations = int(working_days * 10) + 365
        current = origin
        try:
            for _ in range(max_iterations):
                current += timedelta(days=step)
                hours = self.working_hours_on(current)
                if hours > 0:
                    remaining -= hours / self.hours_per_day
                    if remaining <= EPSILON:
                        return current
        except OverflowError:
            logger.warning(
                "Calendar '%s': %s stepping %s working days from %s left the date range (%s)",
                self.name, "forward" if step > 0 else "backward",
                working_days, origin, ErrorKind.OVERFLOW.value,
            )
            return origin
        logger.warning(
            "Calendar '%s': no result within %d iterations from %s; returning original date (%s)",
            self.name, max_iterations, origin, ErrorKind.OVERFLOW.value,
        )
        return origin

    def _seek(self, origin: date, step: int) -> date:
        current = origin
        try:
            for _ in range(MAX_SEARCH_DAYS):
                current += timedelta(days=step)
                if self.is_working_day(current):
                    return current
        except OverflowError:
            pass
        logger.warning(
            "Calendar '%s': no working day within %d days of %s (%s)",
            self.name, MAX_SEARCH_DAYS, origin, ErrorKind.OVERFLOW.value,
        )
        return origin
