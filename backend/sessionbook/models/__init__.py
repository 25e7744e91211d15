"""
Database models for the session booking engine.

- Users and roles (identity provider data)
- Programs with teacher/subject assignments and cohort members
- Tutoring sessions and their append-only history
- Notification outbox
"""

from .event_outbox import EventOutbox, EventOutboxStatus, SessionEventType
from .program import Program, ProgramMember, ProgramTeacherAssignment
from .session import (
    ACTIVE_STATUSES,
    COMMITTED_STATUSES,
    EDITABLE_STATUSES,
    FROZEN_STATUSES,
    SessionHistory,
    SessionStatus,
    TutoringSession,
)
from .user import User, UserRole

__all__ = [
    "ACTIVE_STATUSES",
    "COMMITTED_STATUSES",
    "EDITABLE_STATUSES",
    "FROZEN_STATUSES",
    "EventOutbox",
    "EventOutboxStatus",
    "Program",
    "ProgramMember",
    "ProgramTeacherAssignment",
    "SessionEventType",
    "SessionHistory",
    "SessionStatus",
    "TutoringSession",
    "User",
    "UserRole",
]
