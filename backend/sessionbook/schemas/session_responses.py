# backend/sessionbook/schemas/session_responses.py
"""Response schemas for the session booking API."""

import datetime as dt
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import Field

from .base import StandardizedModel


class SessionHistoryResponse(StandardizedModel):
    id: str
    action: str
    performed_by: Optional[str] = None
    performed_at: datetime
    previous_status: Optional[str] = None
    new_status: Optional[str] = None
    notes: Optional[str] = None
    changed_fields: Optional[Dict[str, Any]] = None


class SessionResponse(StandardizedModel):
    id: str
    title: str
    description: Optional[str] = None
    start_time: datetime
    end_time: datetime
    focus_one_id: Optional[str] = None
    cohort_id: Optional[str] = None
    subject_id: Optional[str] = None
    subject_name: Optional[str] = None
    teacher_id: Optional[str] = None
    status: str
    version: int
    meeting_link: Optional[str] = None
    meeting_platform: Optional[str] = None
    created_by: Optional[str] = None
    requested_by: Optional[str] = None
    requested_at: Optional[datetime] = None
    accepted_by: Optional[str] = None
    accepted_at: Optional[datetime] = None
    rejected_by: Optional[str] = None
    rejected_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    cancelled_by: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    deleted_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class SessionDetailResponse(SessionResponse):
    history: List[SessionHistoryResponse] = Field(default_factory=list)


class SessionListResponse(StandardizedModel):
    items: List[SessionResponse]
    total: int
    page: int
    limit: int
    pages: int


class TimeSlotResponse(StandardizedModel):
    start: datetime
    end: datetime


class AvailableSlotsResponse(StandardizedModel):
    date: dt.date
    slot_duration_minutes: int
    slots: List[TimeSlotResponse]
    total_slots: int
