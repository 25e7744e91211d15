"""
Timezone utilities for the booking engine.

Session windows are stored as naive wall-clock datetimes in the booking
timezone. Every "today" and "now" decision goes through these helpers so
tests can pin the clock in one place.
"""

from datetime import date, datetime, timezone

import pytz

from .config import settings


def get_booking_timezone() -> pytz.BaseTzInfo:
    """Return the configured booking timezone."""
    return pytz.timezone(settings.booking_timezone)


def get_local_now() -> datetime:
    """Current wall-clock time in the booking timezone, without tzinfo."""
    return datetime.now(get_booking_timezone()).replace(tzinfo=None)


def get_local_today() -> date:
    """Today's date in the booking timezone."""
    return get_local_now().date()


def utc_now() -> datetime:
    """Timezone-aware UTC timestamp for audit columns."""
    return datetime.now(timezone.utc)


def to_local_naive(value: datetime) -> datetime:
    """
    Normalize an incoming datetime to naive booking-timezone wall-clock.

    Aware values are converted; naive values are assumed to already be
    wall-clock in the booking timezone.
    """
    if value.tzinfo is None:
        return value
    return value.astimezone(get_booking_timezone()).replace(tzinfo=None)
