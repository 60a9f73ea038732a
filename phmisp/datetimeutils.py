"""Calendar difference between two moments in time."""

from __future__ import annotations

from datetime import datetime

_MONTH_DAYS = (31, 28, 31, 30, 31, 30, 31, 31, 30, 31, 30, 31)


def _leap_years(moment: datetime) -> int:
    """Count leap years from the start of the era up to ``moment``."""
    year = moment.year
    if moment.month <= 2:
        year -= 1
    return year // 4 + year // 400 - year // 100


def _day_number(moment: datetime) -> int:
    """Return a running day count for the calendar date of ``moment``."""
    return (
        moment.year * 365
        + moment.day
        + sum(_MONTH_DAYS[: moment.month - 1])
        + _leap_years(moment)
    )


def get_difference(a: datetime, b: datetime) -> tuple[int, int, int, int]:
    """Return ``(days, hours, minutes, seconds)`` between two moments.

    The order of the arguments does not matter; the earlier moment is
    always subtracted from the later one.
    """
    if a > b:
        a, b = b, a

    days = _day_number(b) - _day_number(a)
    hours = b.hour - a.hour
    minutes = b.minute - a.minute
    seconds = b.second - a.second

    if seconds < 0:
        seconds += 60
        minutes -= 1
    if minutes < 0:
        minutes += 60
        hours -= 1
    if hours < 0:
        hours += 24
        days -= 1

    return days, hours, minutes, seconds