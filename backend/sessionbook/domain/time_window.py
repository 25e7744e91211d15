# backend/sessionbook/domain/time_window.py
"""
Immutable half-open time interval used throughout the scheduling engine.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Any, Dict


@dataclass(frozen=True, order=True)
class TimeWindow:
    """A ``[start, end)`` interval of naive wall-clock datetimes."""

    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        if self.end <= self.start:
            raise ValueError("TimeWindow end must be after start")

    @classmethod
    def from_start(cls, start: datetime, minutes: int) -> "TimeWindow":
        return cls(start, start + timedelta(minutes=minutes))

    @classmethod
    def on_day(cls, day: date, start: time, end: time) -> "TimeWindow":
        """Build a window on ``day`` from two wall-clock times."""
        return cls(datetime.combine(day, start), datetime.combine(day, end))

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    @property
    def duration_minutes(self) -> int:
        return int(self.duration.total_seconds() // 60)

    @property
    def day(self) -> date:
        return self.start.date()

    def overlaps(self, other: "TimeWindow") -> bool:
        return self.start < other.end and self.end > other.start

    def expanded(self, buffer: timedelta) -> "TimeWindow":
        """Return a new window padded by ``buffer`` on both sides."""
        return TimeWindow(self.start - buffer, self.end + buffer)

    def contains(self, other: "TimeWindow") -> bool:
        return self.start <= other.start and other.end <= self.end

    def to_dict(self) -> Dict[str, Any]:
        return {"start": self.start.isoformat(), "end": self.end.isoformat()}


def day_bounds(day: date) -> TimeWindow:
    """Whole calendar day ``[00:00, next 00:00)``."""
    start = datetime.combine(day, time.min)
    return TimeWindow(start, start + timedelta(days=1))
