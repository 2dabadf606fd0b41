"""
Due Date Calculator
===================

Walks calendar time from a start instant, accruing SLA minutes only inside
a department's business windows and skipping holidays.

All arithmetic happens on UTC instants; local dates are only used to pick
which windows and holidays apply. Results are aware UTC datetimes.
"""

from datetime import datetime, timedelta, timezone
from typing import Iterator, Optional, Tuple

from src.core import InvalidDuration, NoBusinessWindowFound
from src.sla.domain.calendar import BusinessHoursCalendar, HolidayRegistry
from src.sla.domain.value_objects import BusinessWindow, DueDateResult, as_utc

DEFAULT_MAX_LOOKAHEAD_DAYS = 3650


class DueDateCalculator:
    """
    Pure due date computation over loaded reference data.

    Safe to share between threads and tasks: holds no mutable state.
    """

    def __init__(
        self,
        calendar: BusinessHoursCalendar,
        holidays: HolidayRegistry,
        max_lookahead_days: int = DEFAULT_MAX_LOOKAHEAD_DAYS
    ):
        self._calendar = calendar
        self._holidays = holidays
        self._max_lookahead_days = max_lookahead_days

    @property
    def calendar(self) -> BusinessHoursCalendar:
        return self._calendar

    @property
    def holidays(self) -> HolidayRegistry:
        return self._holidays

    def due_date(
        self,
        start: datetime,
        duration_minutes: int,
        department_id: Optional[int],
        business_hours_only: bool,
        unit_id: Optional[int] = None
    ) -> DueDateResult:
        """
        Calculate the SLA due date for a clock starting at ``start``.

        Args:
            start: Instant the SLA clock starts
            duration_minutes: Required SLA minutes, must be > 0
            department_id: Department whose business hours apply
            business_hours_only: False for 24/7 policies
            unit_id: Unit for unit-scoped holidays

        Raises:
            InvalidDuration: duration_minutes <= 0
            NoBusinessWindowFound: no business time within the lookahead
        """
        if isinstance(duration_minutes, bool) or duration_minutes is None or duration_minutes <= 0:
            raise InvalidDuration(duration_minutes)

        start_utc = as_utc(start)
        required = timedelta(minutes=duration_minutes)

        if not business_hours_only:
            return DueDateResult(
                due_date=start_utc + required,
                is_currently_in_business_hours=True,
                holidays_skipped=0,
            )

        if not self._calendar.has_department(department_id):
            raise NoBusinessWindowFound(department_id, self._max_lookahead_days)

        remaining = required
        holidays_skipped = 0
        in_business_hours = False

        for offset, windows in self._days_from(start_utc, department_id, unit_id):
            if windows is None:
                holidays_skipped += 1
                continue

            for window in windows:
                lower = window.start_utc
                if offset == 0:
                    if window.contains(start_utc):
                        in_business_hours = True
                    if start_utc >= window.end_utc:
                        continue
                    lower = max(start_utc, lower)

                available = window.end_utc - lower
                if remaining <= available:
                    return DueDateResult(
                        due_date=lower + remaining,
                        is_currently_in_business_hours=in_business_hours,
                        holidays_skipped=holidays_skipped,
                    )
                remaining -= available

        raise NoBusinessWindowFound(department_id, self._max_lookahead_days)

    def business_minutes_between(
        self,
        start: datetime,
        end: datetime,
        department_id: Optional[int],
        business_hours_only: bool,
        unit_id: Optional[int] = None
    ) -> float:
        """SLA minutes accrued between two instants."""
        start_utc, end_utc = as_utc(start), as_utc(end)
        if end_utc <= start_utc:
            return 0.0

        if not business_hours_only:
            return (end_utc - start_utc).total_seconds() / 60

        tz = self._calendar.timezone_for(department_id)
        if tz is None:
            return 0.0

        last_day = end_utc.astimezone(tz).date()
        total = timedelta(0)
        for offset, windows in self._days_from(start_utc, department_id, unit_id):
            day = start_utc.astimezone(tz).date() + timedelta(days=offset)
            if day > last_day:
                break
            for window in windows or ():
                total += window.overlap(start_utc, end_utc)

        return total.total_seconds() / 60

    def is_in_business_hours(
        self,
        instant: datetime,
        department_id: Optional[int],
        unit_id: Optional[int] = None
    ) -> bool:
        """Whether an instant falls inside a non-holiday business window."""
        tz = self._calendar.timezone_for(department_id)
        if tz is None:
            return False
        day = as_utc(instant).astimezone(tz).date()
        if self._holidays.is_holiday(department_id, day, unit_id):
            return False
        return any(w.contains(instant) for w in self._calendar.windows_for(department_id, day))

    def next_business_start(
        self,
        instant: datetime,
        department_id: Optional[int],
        unit_id: Optional[int] = None
    ) -> Optional[datetime]:
        """Start of the next business window after ``instant``, if any."""
        instant_utc = as_utc(instant)
        if not self._calendar.has_department(department_id):
            return None
        for _, windows in self._days_from(instant_utc, department_id, unit_id):
            for window in windows or ():
                if window.start_utc > instant_utc:
                    return window.start_utc
        return None

    def _days_from(
        self,
        start_utc: datetime,
        department_id: Optional[int],
        unit_id: Optional[int]
    ) -> Iterator[Tuple[int, Optional[list[BusinessWindow]]]]:
        """
        Yield (day offset, windows) for each local day from the start date.

        Windows are None on holidays and empty on closed days. Iteration is
        bounded by the lookahead.
        """
        tz = self._calendar.timezone_for(department_id) or timezone.utc
        first_day = start_utc.astimezone(tz).date()
        for offset in range(self._max_lookahead_days):
            day = first_day + timedelta(days=offset)
            if self._holidays.is_holiday(department_id, day, unit_id):
                yield offset, None
                continue
            yield offset, self._calendar.windows_for(department_id, day)
