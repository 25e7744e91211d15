# backend/sessionbook/services/directory_service.py
"""
Identity, role and program lookups consumed by the booking workflow.

Lookups are read-only: who is a teacher, which programs a teacher serves
and for which subjects, and which students a program belongs to.
``lock_teachers`` is the one write-path helper; it serializes booking writes
per teacher inside the caller's transaction.
"""

from typing import Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from ..core.enums import ProgramKind, RoleName
from ..core.exceptions import NotFoundException
from ..models.program import Program
from ..models.user import User
from ..repositories.factory import RepositoryFactory
from ..repositories.program_repository import ProgramRepository
from ..repositories.user_repository import UserRepository
from .base import BaseService


class DirectoryService(BaseService):
    def __init__(
        self,
        db: Session,
        user_repository: Optional[UserRepository] = None,
        program_repository: Optional[ProgramRepository] = None,
    ):
        super().__init__(db)
        self.user_repository = user_repository or RepositoryFactory.create_user_repository(db)
        self.program_repository = (
            program_repository or RepositoryFactory.create_program_repository(db)
        )

    # Identity / role provider

    def get_user(self, user_id: str) -> User:
        user = self.user_repository.get_active(user_id)
        if user is None:
            raise NotFoundException(f"User {user_id} not found", code="USER_NOT_FOUND")
        return user

    def is_teacher(self, user_id: str) -> bool:
        user = self.user_repository.get_active(user_id)
        return bool(user and user.has_role(RoleName.TEACHER))

    def is_assigned_to_program(self, user_id: str, program_id: str) -> bool:
        return self.program_repository.is_teacher_assigned(user_id, program_id)

    def is_assigned_to_subject_in_program(
        self, user_id: str, program_id: str, subject_id: str
    ) -> bool:
        return self.program_repository.is_teacher_assigned(user_id, program_id, subject_id)

    def emails_for(self, user_ids: Iterable[Optional[str]]) -> Dict[str, str]:
        return self.user_repository.get_emails(uid for uid in user_ids if uid)

    def lock_teachers(self, teacher_ids: Iterable[str]) -> None:
        self.user_repository.lock_for_scheduling(teacher_ids)

    # Program provider

    def get_program(self, program_id: str, kind: Optional[ProgramKind] = None) -> Program:
        program = self.program_repository.get_live(program_id)
        if program is None or (kind is not None and program.kind != kind.value):
            label = "Focus One" if kind == ProgramKind.FOCUS_ONE else "Program"
            raise NotFoundException(f"{label} {program_id} not found", code="PROGRAM_NOT_FOUND")
        return program

    def is_program_student(self, user_id: str, program: Program) -> bool:
        return user_id in program.student_ids()

    def can_view_program(self, user: User, program: Program) -> bool:
        if user.is_admin or self.is_program_student(user.id, program):
            return True
        return self.is_assigned_to_program(user.id, program.id)

    def teacher_pool(self, program: Program, subject_id: str) -> List[str]:
        """Teachers mapped to ``subject_id`` in ``program``."""
        return program.teacher_ids_for_subject(subject_id)

    def visible_program_ids(self, user: User) -> List[str]:
        """Programs whose sessions a non-admin user may list."""
        program_ids = self.program_repository.get_program_ids_for_student(user.id)
        if user.is_teacher:
            program_ids += self.program_repository.get_program_ids_for_teacher(user.id)
        return list(dict.fromkeys(program_ids))
