# backend/sessionbook/repositories/program_repository.py
"""
Program Repository: enrollment programs and their teacher/subject mappings.
"""

import logging
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.program import Program, ProgramMember, ProgramTeacherAssignment
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class ProgramRepository(BaseRepository[Program]):
    def __init__(self, db: Session):
        super().__init__(db, Program)

    def get_live(self, program_id: str) -> Optional[Program]:
        try:
            return (
                self.db.query(Program)
                .filter(Program.id == program_id, Program.deleted_at.is_(None))
                .first()
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error getting program {program_id}: {str(e)}")
            raise RepositoryException(f"Failed to get program: {str(e)}")

    def is_teacher_assigned(
        self, teacher_id: str, program_id: str, subject_id: Optional[str] = None
    ) -> bool:
        query = self.db.query(ProgramTeacherAssignment.id).filter(
            ProgramTeacherAssignment.teacher_id == teacher_id,
            ProgramTeacherAssignment.program_id == program_id,
        )
        if subject_id:
            query = query.filter(ProgramTeacherAssignment.subject_id == subject_id)
        try:
            return query.first() is not None
        except SQLAlchemyError as e:
            self.logger.error(f"Error checking teacher assignment: {str(e)}")
            raise RepositoryException(f"Failed to check teacher assignment: {str(e)}")

    def get_program_ids_for_student(self, student_id: str) -> List[str]:
        """FocusOne programs owned by the student plus cohorts they belong to."""
        try:
            owned = [
                row.id
                for row in self.db.query(Program.id)
                .filter(Program.student_id == student_id, Program.deleted_at.is_(None))
                .all()
            ]
            cohorts = [
                row.program_id
                for row in self.db.query(ProgramMember.program_id)
                .filter(ProgramMember.student_id == student_id)
                .all()
            ]
        except SQLAlchemyError as e:
            self.logger.error(f"Error getting student programs: {str(e)}")
            raise RepositoryException(f"Failed to get student programs: {str(e)}")
        return list(dict.fromkeys(owned + cohorts))

    def get_program_ids_for_teacher(self, teacher_id: str) -> List[str]:
        try:
            rows = (
                self.db.query(ProgramTeacherAssignment.program_id)
                .filter(ProgramTeacherAssignment.teacher_id == teacher_id)
                .distinct()
                .all()
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error getting teacher programs: {str(e)}")
            raise RepositoryException(f"Failed to get teacher programs: {str(e)}")
        return [row.program_id for row in rows]
