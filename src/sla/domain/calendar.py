"""
Business Calendar
=================

Per-department business hours and holiday exclusions.

Both classes are built once from already-loaded reference data and are
read-only afterwards, so they can be shared freely between tasks.
"""

from collections import defaultdict
from datetime import date, datetime, time, timedelta
from typing import Dict, Iterable, List, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from src.core import ConfigurationException
from src.sla.domain.entities import END_OF_DAY, BusinessHoursConfig, Holiday
from src.sla.domain.value_objects import BusinessWindow


def day_of_week(day: date) -> int:
    """Sunday-based weekday index (0 = Sunday ... 6 = Saturday)."""
    return (day.weekday() + 1) % 7


def _clock(value: time) -> str:
    return "24:00" if value == END_OF_DAY else f"{value:%H:%M}"


def _local(day: date, value: time, tz: ZoneInfo) -> datetime:
    if value == END_OF_DAY:
        return datetime.combine(day + timedelta(days=1), time(0), tzinfo=tz)
    return datetime.combine(day, value, tzinfo=tz)


class BusinessHoursCalendar:
    """
    Weekly business windows keyed by department.

    Loading rejects overlapping active windows on the same weekday and
    departments whose windows disagree on timezone.
    """

    def __init__(self, configs: Iterable[BusinessHoursConfig]):
        self._windows: Dict[Optional[int], Dict[int, List[BusinessHoursConfig]]] = defaultdict(
            lambda: defaultdict(list)
        )
        self._timezones: Dict[Optional[int], ZoneInfo] = {}

        for config in configs:
            if not config.is_active:
                continue
            self._register(config)

        for department_id, days in self._windows.items():
            for weekday, windows in days.items():
                windows.sort(key=lambda c: c.start_time)
                self._validate_no_overlap(department_id, weekday, windows)

    def _register(self, config: BusinessHoursConfig) -> None:
        try:
            tz = ZoneInfo(config.timezone)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ConfigurationException(
                f"Unknown timezone '{config.timezone}' for department {config.department_id}",
                {"department_id": config.department_id, "timezone": config.timezone}
            ) from e

        known = self._timezones.setdefault(config.department_id, tz)
        if known.key != tz.key:
            raise ConfigurationException(
                f"Department {config.department_id} mixes timezones {known.key} and {tz.key}",
                {"department_id": config.department_id}
            )
        self._windows[config.department_id][config.day_of_week].append(config)

    @staticmethod
    def _validate_no_overlap(
        department_id: Optional[int],
        weekday: int,
        windows: List[BusinessHoursConfig]
    ) -> None:
        for previous, current in zip(windows, windows[1:]):
            if current.start_time < previous.end_time:
                raise ConfigurationException(
                    f"Overlapping business hours for department {department_id} on day {weekday}: "
                    f"{_clock(previous.start_time)}-{_clock(previous.end_time)} and "
                    f"{_clock(current.start_time)}-{_clock(current.end_time)}",
                    {"department_id": department_id, "day_of_week": weekday}
                )

    @property
    def departments(self) -> List[Optional[int]]:
        return list(self._windows.keys())

    def has_department(self, department_id: Optional[int]) -> bool:
        return department_id in self._timezones

    def timezone_for(self, department_id: Optional[int]) -> Optional[ZoneInfo]:
        return self._timezones.get(department_id)

    def windows_for(self, department_id: Optional[int], day: date) -> List[BusinessWindow]:
        """All open intervals of a department on a calendar day, ordered by start."""
        tz = self._timezones.get(department_id)
        if tz is None:
            return []
        configs = self._windows.get(department_id, {}).get(day_of_week(day), [])
        return [
            BusinessWindow(
                start=_local(day, config.start_time, tz),
                end=_local(day, config.end_time, tz),
            )
            for config in configs
        ]

    def window_for(self, department_id: Optional[int], day: date) -> Optional[BusinessWindow]:
        """First open interval of the day, or None when the department is closed."""
        windows = self.windows_for(department_id, day)
        return windows[0] if windows else None


class HolidayRegistry:
    """
    Holiday lookup for global, department and unit scoped exclusions.

    Recurring holidays are indexed by (month, day) and match every year.
    """

    def __init__(self, holidays: Iterable[Holiday]):
        self._exact: Dict[date, List[Holiday]] = defaultdict(list)
        self._recurring: Dict[Tuple[int, int], List[Holiday]] = defaultdict(list)

        for holiday in holidays:
            if not holiday.is_active:
                continue
            if holiday.is_recurring:
                self._recurring[(holiday.date.month, holiday.date.day)].append(holiday)
            else:
                self._exact[holiday.date].append(holiday)

    def __len__(self) -> int:
        return sum(len(v) for v in self._exact.values()) + sum(len(v) for v in self._recurring.values())

    def holidays_on(
        self,
        department_id: Optional[int],
        day: date,
        unit_id: Optional[int] = None
    ) -> List[Holiday]:
        candidates = self._exact.get(day, []) + self._recurring.get((day.month, day.day), [])
        return [h for h in candidates if h.applies_to(department_id, unit_id)]

    def is_holiday(
        self,
        department_id: Optional[int],
        day: date,
        unit_id: Optional[int] = None
    ) -> bool:
        return bool(self.holidays_on(department_id, day, unit_id))
