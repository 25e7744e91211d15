# backend/sessionbook/models/program.py
"""
Enrollment programs a session can be scoped to.

A FocusOne program belongs to a single student; a Cohort groups many
students through ``ProgramMember``. Either kind carries the
teacher-to-subject mapping that decides who may serve its sessions.
"""

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import ulid

from ..core.enums import ProgramKind, ProgramStatus
from ..database import Base


class Program(Base):
    __tablename__ = "programs"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    kind = Column(String(20), nullable=False, default=ProgramKind.FOCUS_ONE.value)
    name = Column(String(200), nullable=False)
    student_id = Column(String(26), ForeignKey("users.id"), nullable=True, index=True)
    status = Column(String(20), nullable=False, default=ProgramStatus.ACTIVE.value)
    is_active = Column(Boolean, nullable=False, default=True)
    started_at = Column(DateTime(timezone=True), nullable=True)
    deleted_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    student = relationship("User", foreign_keys=[student_id])
    assignments = relationship(
        "ProgramTeacherAssignment",
        back_populates="program",
        lazy="selectin",
        cascade="all, delete-orphan",
    )
    members = relationship(
        "ProgramMember",
        back_populates="program",
        lazy="selectin",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        CheckConstraint("kind IN ('focus_one', 'cohort')", name="ck_programs_kind"),
        CheckConstraint(
            "status IN ('active', 'paused', 'cancelled')", name="ck_programs_status"
        ),
    )

    @property
    def is_focus_one(self) -> bool:
        return self.kind == ProgramKind.FOCUS_ONE.value

    @property
    def is_bookable(self) -> bool:
        return (
            self.status == ProgramStatus.ACTIVE.value
            and bool(self.is_active)
            and self.deleted_at is None
        )

    def teacher_ids_for_subject(self, subject_id: str) -> list[str]:
        """Unique teachers mapped to ``subject_id``, in assignment order."""
        seen: dict[str, None] = {}
        for assignment in self.assignments:
            if assignment.subject_id == subject_id:
                seen.setdefault(assignment.teacher_id, None)
        return list(seen)

    def student_ids(self) -> list[str]:
        if self.is_focus_one:
            return [self.student_id] if self.student_id else []
        return [member.student_id for member in self.members]


class ProgramTeacherAssignment(Base):
    """A (teacher, subject) pair mapped onto a program."""

    __tablename__ = "program_teacher_assignments"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    program_id = Column(
        String(26), ForeignKey("programs.id", ondelete="CASCADE"), nullable=False, index=True
    )
    teacher_id = Column(String(26), ForeignKey("users.id"), nullable=False, index=True)
    subject_id = Column(String(26), nullable=False, index=True)

    program = relationship("Program", back_populates="assignments")

    __table_args__ = (
        UniqueConstraint(
            "program_id", "teacher_id", "subject_id", name="uq_program_teacher_subject"
        ),
    )


class ProgramMember(Base):
    __tablename__ = "program_members"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    program_id = Column(
        String(26), ForeignKey("programs.id", ondelete="CASCADE"), nullable=False, index=True
    )
    student_id = Column(String(26), ForeignKey("users.id"), nullable=False, index=True)

    program = relationship("Program", back_populates="members")

    __table_args__ = (
        UniqueConstraint("program_id", "student_id", name="uq_program_members_student"),
    )
