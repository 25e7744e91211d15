from .session import (
    SessionAccept,
    SessionDirectCreate,
    SessionReasonRequest,
    SessionRequestCreate,
    SessionReschedule,
    SessionUpdate,
    TeacherScheduleCreate,
)
from .session_responses import (
    AvailableSlotsResponse,
    SessionDetailResponse,
    SessionHistoryResponse,
    SessionListResponse,
    SessionResponse,
    TimeSlotResponse,
)

__all__ = [
    "AvailableSlotsResponse",
    "SessionAccept",
    "SessionDetailResponse",
    "SessionDirectCreate",
    "SessionHistoryResponse",
    "SessionListResponse",
    "SessionReasonRequest",
    "SessionRequestCreate",
    "SessionReschedule",
    "SessionResponse",
    "SessionUpdate",
    "TeacherScheduleCreate",
    "TimeSlotResponse",
]
