"""Pure scheduling value types and rules with no persistence dependencies."""

from .session_window import validate_session_date, validate_session_window
from .time_window import TimeWindow, day_bounds

__all__ = ["TimeWindow", "day_bounds", "validate_session_date", "validate_session_window"]
