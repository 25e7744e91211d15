# backend/sessionbook/models/session.py
"""
Tutoring session model and its append-only history.

A session binds a window on one calendar day to exactly one program
(a FocusOne or a Cohort), an optional subject and, once assigned, a
teacher. Windows are stored as naive wall-clock datetimes in the booking
timezone. Status changes never happen by direct attribute writes; the
booking workflow drives them through conditional updates in
``SessionRepository.transition`` so concurrent writers cannot both win.
"""

from datetime import datetime
from enum import Enum
import logging
from typing import Any, Dict, Optional

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from sqlalchemy.types import JSON
import ulid

from ..database import Base
from ..domain.time_window import TimeWindow

logger = logging.getLogger(__name__)


class SessionStatus(str, Enum):
    """Session lifecycle statuses."""

    REQUESTED = "requested"  # Student request awaiting a teacher
    SCHEDULED = "scheduled"  # Teacher assigned, occupies capacity
    REJECTED = "rejected"
    ONGOING = "ongoing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


ACTIVE_STATUSES = (
    SessionStatus.REQUESTED.value,
    SessionStatus.SCHEDULED.value,
    SessionStatus.ONGOING.value,
)
COMMITTED_STATUSES = (SessionStatus.SCHEDULED.value, SessionStatus.ONGOING.value)
# Details and window never change once a session reaches one of these.
FROZEN_STATUSES = (SessionStatus.COMPLETED.value, SessionStatus.CANCELLED.value)
EDITABLE_STATUSES = ACTIVE_STATUSES + (SessionStatus.REJECTED.value,)


class TutoringSession(Base):
    """A single tutoring session scoped to one program."""

    __tablename__ = "tutoring_sessions"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)

    start_time = Column(DateTime, nullable=False, index=True)
    end_time = Column(DateTime, nullable=False)

    focus_one_id = Column(String(26), ForeignKey("programs.id"), nullable=True, index=True)
    cohort_id = Column(String(26), ForeignKey("programs.id"), nullable=True, index=True)
    subject_id = Column(String(26), nullable=True, index=True)
    subject_name = Column(String(200), nullable=True)
    teacher_id = Column(String(26), ForeignKey("users.id"), nullable=True, index=True)

    status = Column(String(20), nullable=False, default=SessionStatus.REQUESTED.value, index=True)
    version = Column(Integer, nullable=False, default=1)

    meeting_link = Column(String(500), nullable=True)
    meeting_platform = Column(String(50), nullable=True)

    created_by = Column(String(26), ForeignKey("users.id"), nullable=True)
    requested_by = Column(String(26), ForeignKey("users.id"), nullable=True)
    requested_at = Column(DateTime(timezone=True), nullable=True)
    accepted_by = Column(String(26), ForeignKey("users.id"), nullable=True)
    accepted_at = Column(DateTime(timezone=True), nullable=True)
    rejected_by = Column(String(26), ForeignKey("users.id"), nullable=True)
    rejected_at = Column(DateTime(timezone=True), nullable=True)
    rejection_reason = Column(Text, nullable=True)
    cancelled_by = Column(String(26), ForeignKey("users.id"), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    cancellation_reason = Column(Text, nullable=True)

    deleted_at = Column(DateTime(timezone=True), nullable=True, index=True)
    deleted_by = Column(String(26), ForeignKey("users.id"), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    teacher = relationship("User", foreign_keys=[teacher_id], lazy="joined")
    focus_one = relationship("Program", foreign_keys=[focus_one_id])
    cohort = relationship("Program", foreign_keys=[cohort_id])
    history = relationship(
        "SessionHistory",
        back_populates="session",
        order_by=lambda: [SessionHistory.performed_at, SessionHistory.id],
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    __table_args__ = (
        CheckConstraint("end_time > start_time", name="ck_tutoring_sessions_window"),
        CheckConstraint(
            "(focus_one_id IS NULL) <> (cohort_id IS NULL)",
            name="ck_tutoring_sessions_single_program",
        ),
        CheckConstraint(
            "status IN ('requested', 'scheduled', 'rejected', 'ongoing', 'completed', 'cancelled')",
            name="ck_tutoring_sessions_status",
        ),
        CheckConstraint(
            "status NOT IN ('scheduled', 'ongoing') OR teacher_id IS NOT NULL",
            name="ck_tutoring_sessions_committed_teacher",
        ),
        Index("ix_tutoring_sessions_teacher_start", "teacher_id", "start_time"),
    )

    @property
    def program_id(self) -> str:
        return self.focus_one_id or self.cohort_id

    @property
    def window(self) -> TimeWindow:
        return TimeWindow(self.start_time, self.end_time)

    @property
    def is_frozen(self) -> bool:
        return self.status in FROZEN_STATUSES

    @property
    def is_committed(self) -> bool:
        return self.status in COMMITTED_STATUSES

    def __repr__(self) -> str:
        return (
            f"<TutoringSession {self.id} {self.status} teacher={self.teacher_id} "
            f"{self.start_time}-{self.end_time}>"
        )


class SessionHistory(Base):
    """Append-only audit entry for a session."""

    __tablename__ = "tutoring_session_history"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    session_id = Column(
        String(26),
        ForeignKey("tutoring_sessions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    action = Column(String(30), nullable=False)
    performed_by = Column(String(26), ForeignKey("users.id"), nullable=True)
    performed_at = Column(DateTime(timezone=True), nullable=False)
    previous_status = Column(String(20), nullable=True)
    new_status = Column(String(20), nullable=True)
    notes = Column(Text, nullable=True)
    changed_fields = Column(
        JSONB(astext_type=Text()).with_variant(JSON(), "sqlite"),
        nullable=True,
    )

    session = relationship("TutoringSession", back_populates="history")

    def to_dict(self) -> Dict[str, Any]:
        performed_at: Optional[datetime] = self.performed_at
        return {
            "action": self.action,
            "performed_by": self.performed_by,
            "performed_at": performed_at.isoformat() if performed_at else None,
            "previous_status": self.previous_status,
            "new_status": self.new_status,
            "notes": self.notes,
            "changed_fields": self.changed_fields,
        }
