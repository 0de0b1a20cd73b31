"""
Working-day and calendar-day arithmetic.

Every date computation in the engine goes through these functions so the same
algorithms work whether or not a project counts weekends as working time.
"""

from datetime import date, timedelta
from typing import Iterator

WEEKEND_DAYS = (5, 6)  # Saturday, Sunday

_ONE_DAY = timedelta(days=1)


def is_valid_day(day: date, include_weekends: bool) -> bool:
    """True when work may be scheduled on this day."""
    return include_weekends or day.weekday() not in WEEKEND_DAYS


def add_days(start: date, days: int, include_weekends: bool) -> date:
    """
    Move `days` valid days from `start`; negative values move backwards.

    With weekends excluded only weekdays are counted, so adding one day to a
    Friday lands on the following Monday.
    """
    if include_weekends:
        return start + timedelta(days=days)

    step = _ONE_DAY if days >= 0 else -_ONE_DAY
    remaining = abs(days)
    result = start
    while remaining > 0:
        result += step
        if result.weekday() not in WEEKEND_DAYS:
            remaining -= 1
    return result


def diff_days(start: date, end: date, include_weekends: bool) -> int:
    """
    Count the valid days passed through going from `start` to `end`.

    The result is negative when `end` precedes `start`. It is the inverse of
    add_days for any start that is itself a valid day.
    """
    if include_weekends:
        return (end - start).days

    direction = 1 if end >= start else -1
    step = timedelta(days=direction)
    count = 0
    current = start
    while current != end:
        current += step
        if current.weekday() not in WEEKEND_DAYS:
            count += direction
    return count


def next_valid_day(day: date, include_weekends: bool) -> date:
    """Return `day` itself if valid, else the first valid day after it."""
    while not is_valid_day(day, include_weekends):
        day += _ONE_DAY
    return day


def valid_days_between(start: date, end: date, include_weekends: bool) -> Iterator[date]:
    """Yield every valid day from start to end, both inclusive."""
    current = start
    while current <= end:
        if is_valid_day(current, include_weekends):
            yield current
        current += _ONE_DAY
