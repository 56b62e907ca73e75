from datetime import datetime, timedelta

import pytest

from pomolog.focus import timekeeping

T0 = datetime(2026, 3, 2, 9, 0, 0)


def test_elapsed_floors_and_never_goes_negative():
    assert timekeeping.elapsed_seconds(T0, T0 + timedelta(seconds=10.9)) == 10
    assert timekeeping.elapsed_seconds(T0, T0 - timedelta(seconds=5)) == 0


def test_remaining_and_overtime():
    assert timekeeping.remaining_seconds(100, 1500) == 1400
    assert timekeeping.remaining_seconds(1600, 1500) == 0
    assert not timekeeping.is_overtime(1500, 1500)
    assert timekeeping.is_overtime(1501, 1500)
    assert timekeeping.overtime_seconds(1560, 1500) == 60


def test_overtime_allowance():
    assert not timekeeping.exceeds_overtime_allowance(1500 + 30 * 60, 1500, 30)
    assert timekeeping.exceeds_overtime_allowance(1500 + 30 * 60 + 1, 1500, 30)


def test_progress_percent_is_clamped():
    assert timekeeping.progress_percent(750, 1500) == 50.0
    assert timekeeping.progress_percent(3000, 1500) == 100.0
    assert timekeeping.progress_percent(10, 0) == 0.0


def test_minute_conversions():
    assert timekeeping.minutes_to_seconds(25) == 1500
    assert timekeeping.minutes_to_seconds(0.5) == 30
    assert timekeeping.seconds_to_minutes(90) == 1.5


def test_validate_time_input():
    assert timekeeping.validate_time_input(25)
    assert timekeeping.validate_time_input(180)
    assert not timekeeping.validate_time_input(0)
    assert not timekeeping.validate_time_input(181)
    assert not timekeeping.validate_time_input(float("nan"))
    assert not timekeeping.validate_time_input(True)
    assert not timekeeping.validate_time_input("25")  # type: ignore[arg-type]


def test_format_time_styles():
    assert timekeeping.format_time(1500) == "25:00"
    assert timekeeping.format_time(5405) == "90:05"
    assert timekeeping.format_time(5405, "hh:mm:ss") == "01:30:05"
    assert timekeeping.format_time(5405, "minimal") == "1h 30m"
    assert timekeeping.format_time(245, "minimal") == "4m 5s"
    assert timekeeping.format_time(3660, "verbose") == "1 hour, 1 minute"
    assert timekeeping.format_time(0, "verbose") == "0 seconds"


def test_format_time_rejects_unknown_style():
    with pytest.raises(ValueError):
        timekeeping.format_time(10, "fortnights")


def test_parse_time_string():
    assert timekeeping.parse_time_string("25:30") == 1530
    assert timekeeping.parse_time_string("1:02:03") == 3723
    assert timekeeping.parse_time_string("15") == 900
    assert timekeeping.parse_time_string("ab:10") == 10
