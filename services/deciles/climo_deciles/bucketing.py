"""
Bucket key derivation.

Buckets are (day_of_year, hour_of_day) pairs computed from a record's
local date parts. The UTC valid_time is never consulted, so a station's
buckets follow its local clock.
"""
from datetime import date, datetime, timedelta
from typing import Optional, Tuple

from .errors import InvalidDate


def day_of_year(year: int, month: int, day: int) -> int:
    """
    Calendar ordinal of a local date.

    Args:
        year: Local year
        month: Local month (1-12)
        day: Local day of month

    Returns:
        Day of year in 1-366 (366 only for 31 December of a leap year)

    Raises:
        InvalidDate: If the parts do not form a real date
    """
    try:
        return date(year, month, day).timetuple().tm_yday
    except (TypeError, ValueError) as e:
        raise InvalidDate(f"Invalid local date {year}-{month}-{day}: {e}") from e


def hour_of_day(hour: int) -> int:
    """Validate a local hour."""
    if not isinstance(hour, int) or isinstance(hour, bool) or not 0 <= hour <= 23:
        raise InvalidDate(f"Invalid local hour: {hour!r}")
    return hour


def bucket_for(record) -> Tuple[int, int]:
    """(day_of_year, hour_of_day) bucket of a climate record."""
    return (
        day_of_year(record.year_lcl, record.month_lcl, record.day_lcl),
        hour_of_day(record.hour_lcl),
    )


def bucket_datetime(year: int, doy: int, hour: int) -> Optional[datetime]:
    """
    Map a bucket back onto a calendar hour of a given year.

    Returns None when the ordinal does not exist in that year, i.e. day
    366 of a common year.
    """
    start = date(year, 1, 1)
    target = start + timedelta(days=doy - 1)
    if target.year != year:
        return None
    return datetime(target.year, target.month, target.day, hour)
