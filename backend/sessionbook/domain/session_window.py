# backend/sessionbook/domain/session_window.py
"""
Window-legality rules shared by request, direct scheduling and reschedule.
"""

from __future__ import annotations

from datetime import date, datetime, time
from typing import Optional

from ..core.config import settings
from ..core.exceptions import SessionWindowException
from .time_window import TimeWindow

SUNDAY = 6


def validate_session_date(day: date, today: date) -> None:
    """Reject today, past days and Sundays."""
    if day == today:
        raise SessionWindowException(
            "Sessions must be scheduled at least one day in advance",
            details={"date": day.isoformat()},
        )
    if day < today:
        raise SessionWindowException(
            "Cannot schedule sessions for past dates",
            details={"date": day.isoformat()},
        )
    if day.weekday() == SUNDAY:
        raise SessionWindowException(
            "Sessions cannot be scheduled on Sundays",
            details={"date": day.isoformat()},
        )


def validate_session_window(
    start: datetime,
    end: datetime,
    today: date,
    *,
    opening: Optional[time] = None,
    closing: Optional[time] = None,
    latest_start: Optional[time] = None,
) -> TimeWindow:
    """
    Check a candidate window against the working-day rules.

    Returns the validated ``TimeWindow``. Raises ``SessionWindowException``
    with a human readable message on the first rule broken.
    """
    opening = opening or settings.working_day_start
    closing = closing or settings.working_day_end
    latest_start = latest_start or settings.latest_session_start

    if end <= start:
        raise SessionWindowException(
            "End time must be after start time",
            details={"start": start.isoformat(), "end": end.isoformat()},
        )
    if start.date() != end.date():
        raise SessionWindowException(
            "Session must start and end on the same day",
            details={"start": start.isoformat(), "end": end.isoformat()},
        )

    validate_session_date(start.date(), today)

    start_clock = start.time()
    end_clock = end.time()
    if start_clock < opening or start_clock > latest_start:
        raise SessionWindowException(
            f"Session must start between {opening:%H:%M} and {latest_start:%H:%M}",
            details={"start": start.isoformat()},
        )
    if end_clock <= opening or end_clock > closing:
        raise SessionWindowException(
            f"Session must end after {opening:%H:%M} and no later than {closing:%H:%M}",
            details={"end": end.isoformat()},
        )
    return TimeWindow(start, end)
