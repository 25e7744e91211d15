# backend/sessionbook/core/enums.py
"""
Core enums for the session booking engine.
"""

from enum import Enum


class RoleName(str, Enum):
    """Roles the booking workflow distinguishes between."""

    ADMIN = "admin"
    TEACHER = "teacher"
    STUDENT = "student"


class ProgramKind(str, Enum):
    FOCUS_ONE = "focus_one"
    COHORT = "cohort"


class ProgramStatus(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    CANCELLED = "cancelled"


class HistoryAction(str, Enum):
    """Actions recorded in a session's audit trail."""

    CREATED = "created"
    REQUESTED = "requested"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    AUTO_REJECTED = "auto_rejected"
    CANCELLED = "cancelled"
    RESCHEDULED = "rescheduled"
    STARTED = "started"
    COMPLETED = "completed"
    UPDATED = "updated"
    DELETED = "deleted"
    RESTORED = "restored"
