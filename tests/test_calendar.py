"""Tests for business hours calendars."""

from __future__ import annotations

from datetime import date, time, timedelta

import pytest

from src.core import ConfigurationException
from src.sla.domain import END_OF_DAY, BusinessHoursCalendar, BusinessHoursConfig, day_of_week
from tests.fakes import JAKARTA, jkt, weekday_hours


def _window(day: int, start: str, end: str, department_id: int | None = 2, **kwargs) -> BusinessHoursConfig:
    sh, sm = map(int, start.split(":"))
    eh, em = map(int, end.split(":"))
    return BusinessHoursConfig(department_id, day, time(sh, sm), time(eh, em), **kwargs)


def test_day_of_week_is_sunday_based():
    assert day_of_week(date(2026, 10, 18)) == 0  # Sunday
    assert day_of_week(date(2026, 10, 19)) == 1  # Monday
    assert day_of_week(date(2026, 10, 24)) == 6  # Saturday


def test_window_for_returns_local_interval(calendar):
    window = calendar.window_for(1, date(2026, 10, 19))

    assert window.start == jkt(2026, 10, 19, 9)
    assert window.end == jkt(2026, 10, 19, 17)
    assert window.start.tzinfo == JAKARTA
    assert window.end - window.start == timedelta(hours=8)


def test_window_for_closed_day_and_unknown_department(calendar):
    assert calendar.window_for(1, date(2026, 10, 24)) is None
    assert calendar.window_for(99, date(2026, 10, 19)) is None
    assert calendar.windows_for(99, date(2026, 10, 19)) == []


def test_multiple_windows_are_ordered():
    calendar = BusinessHoursCalendar([
        _window(1, "13:00", "16:00"),
        _window(1, "08:00", "12:00"),
    ])

    windows = calendar.windows_for(2, date(2026, 10, 19))

    assert [w.start.hour for w in windows] == [8, 13]
    assert calendar.window_for(2, date(2026, 10, 19)).start == jkt(2026, 10, 19, 8)


def test_overlapping_windows_rejected_at_load():
    with pytest.raises(ConfigurationException) as exc:
        BusinessHoursCalendar([_window(1, "09:00", "12:00"), _window(1, "11:00", "14:00")])

    assert exc.value.details["day_of_week"] == 1


def test_adjacent_windows_allowed():
    calendar = BusinessHoursCalendar([_window(1, "09:00", "12:00"), _window(1, "12:00", "14:00")])
    assert len(calendar.windows_for(2, date(2026, 10, 19))) == 2


def test_inactive_windows_ignored():
    calendar = BusinessHoursCalendar([
        _window(1, "09:00", "12:00"),
        _window(1, "10:00", "14:00", is_active=False),
    ])
    assert len(calendar.windows_for(2, date(2026, 10, 19))) == 1


def test_mixed_timezones_rejected():
    configs = weekday_hours(department_id=3, days=(1,)) + weekday_hours(
        department_id=3, days=(2,), timezone="Asia/Makassar"
    )
    with pytest.raises(ConfigurationException):
        BusinessHoursCalendar(configs)


def test_unknown_timezone_rejected():
    with pytest.raises(ConfigurationException):
        BusinessHoursCalendar(weekday_hours(timezone="Mars/Olympus_Mons"))


def test_departments_are_independent():
    calendar = BusinessHoursCalendar(
        weekday_hours(department_id=1) + weekday_hours(department_id=2, days=(6,))
    )

    assert calendar.window_for(1, date(2026, 10, 24)) is None
    assert calendar.window_for(2, date(2026, 10, 24)) is not None
    assert set(calendar.departments) == {1, 2}


def test_end_of_day_window_closes_at_next_midnight():
    calendar = BusinessHoursCalendar([
        BusinessHoursConfig(2, 1, time(0), END_OF_DAY),
        BusinessHoursConfig(2, 2, time(0), END_OF_DAY),
    ])

    monday, tuesday = (calendar.window_for(2, date(2026, 10, d)) for d in (19, 20))

    assert monday.end == jkt(2026, 10, 20)
    assert monday.end - monday.start == timedelta(hours=24)
    assert monday.end == tuesday.start


def test_end_of_day_overlap_reported_as_midnight():
    with pytest.raises(ConfigurationException) as exc:
        BusinessHoursCalendar([_window(1, "18:00", "20:00"), BusinessHoursConfig(2, 1, time(12), END_OF_DAY)])

    assert "12:00-24:00" in exc.value.message


@pytest.mark.parametrize("kwargs", [
    {"day_of_week": 7},
    {"day_of_week": -1},
    {"start_time": time(17, 0), "end_time": time(9, 0)},
    {"start_time": time(9, 0), "end_time": time(9, 0)},
])
def test_invalid_config_rejected(kwargs):
    values = dict(department_id=1, day_of_week=1, start_time=time(9), end_time=time(17))
    values.update(kwargs)
    with pytest.raises(ValueError):
        BusinessHoursConfig(**values)
