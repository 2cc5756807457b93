import pytest

from screencast.playback.formatting import format_date, format_duration, format_size, format_time


@pytest.mark.parametrize(
    "seconds,expected",
    [(0, "0:00"), (7, "0:07"), (7.9, "0:07"), (10, "0:10"), (754, "12:34"), (None, "0:00"), (float("nan"), "0:00")],
)
def test_format_time(seconds, expected):
    assert format_time(seconds) == expected


def test_format_duration_pads_minutes():
    assert format_duration(5) == "00:05"
    assert format_duration(65) == "01:05"


def test_format_size():
    assert format_size(2048) == "2.0 KB"
    assert format_size(5 * 1024 * 1024) == "5.0 MB"


def test_format_date():
    assert format_date("2026-03-05T10:00:00+00:00") == "Mar 5, 2026"
    assert format_date("2026-03-05T10:00:00Z") == "Mar 5, 2026"
    assert format_date("not a date") == ""
    assert format_date(None) == ""
