"""UTC-everywhere time handling. Billing dates are UTC calendar dates."""

from datetime import date, datetime, time, timedelta, timezone


def now_utc() -> datetime:
    """
    Current time in UTC.

    Use this instead of datetime.now() everywhere.
    """
    return datetime.now(timezone.utc)


def start_of_day_utc(d: date) -> datetime:
    """Midnight UTC at the start of a calendar date."""
    return datetime.combine(d, time.min, tzinfo=timezone.utc)


def hours_after(d: date, hours: int) -> datetime:
    """UTC instant `hours` after the start of date `d`."""
    return start_of_day_utc(d) + timedelta(hours=hours)
