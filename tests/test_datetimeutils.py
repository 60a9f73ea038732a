from datetime import datetime, timedelta, timezone

import pytest

from phmisp.datetimeutils import get_difference


@pytest.mark.parametrize(
    "start, delta",
    [
        (datetime(2020, 4, 27, 23, 35, 0), timedelta(days=3, hours=4, minutes=5, seconds=6)),
        (datetime(2023, 12, 31, 23, 59, 59), timedelta(seconds=2)),
        (datetime(2024, 2, 28, 12, 0, 0), timedelta(days=2)),
        (datetime(2023, 2, 28, 12, 0, 0), timedelta(days=1, hours=23)),
        (datetime(2019, 6, 15, 10, 0, 50), timedelta(hours=1, seconds=20)),
        (datetime(2000, 1, 1, 0, 0, 0), timedelta(days=366, minutes=59)),
        (datetime(1999, 3, 1, 5, 30, 0), timedelta(days=400, hours=20, minutes=45, seconds=30)),
    ],
)
def test_difference_matches_added_delta(start, delta):
    end = start + delta
    hours, rest = divmod(delta.seconds, 3600)
    minutes, seconds = divmod(rest, 60)
    assert get_difference(start, end) == (delta.days, hours, minutes, seconds)


def test_difference_is_symmetric():
    a = datetime(2021, 5, 17, 8, 15, 42)
    b = datetime(2024, 3, 2, 1, 3, 9)
    assert get_difference(a, b) == get_difference(b, a)


def test_same_moment_gives_zero_everywhere():
    moment = datetime(2022, 7, 9, 14, 0, 0)
    result = get_difference(moment, moment)
    assert result == (0, 0, 0, 0)


def test_components_stay_within_clock_ranges():
    a = datetime(2010, 1, 31, 23, 59, 59)
    for step in range(0, 5000, 137):
        b = a + timedelta(hours=step, minutes=step % 61, seconds=step % 59)
        days, hours, minutes, seconds = get_difference(a, b)
        assert days >= 0
        assert 0 <= hours < 24
        assert 0 <= minutes < 60
        assert 0 <= seconds < 60


def test_aware_datetimes_in_same_zone():
    zone = timezone(timedelta(hours=3))
    a = datetime(2024, 6, 26, 9, 47, 46, tzinfo=zone)
    delta = timedelta(days=10, hours=2, minutes=13, seconds=14)
    hours, rest = divmod(delta.seconds, 3600)
    minutes, seconds = divmod(rest, 60)
    assert get_difference(a + delta, a) == (delta.days, hours, minutes, seconds)