# backend/sessionbook/services/capacity_service.py
"""
Daily capacity enforcement for teachers.

The committed count is recomputed from the session store on every call.
Cancelling, rescheduling or deleting a session frees capacity simply by
moving it out of the query, so there is no counter to keep in sync.
"""

from datetime import date
from typing import Optional

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.exceptions import TeacherCapacityException
from ..repositories.factory import RepositoryFactory
from ..repositories.session_repository import SessionRepository
from .base import BaseService


class CapacityService(BaseService):
    def __init__(self, db: Session, repository: Optional[SessionRepository] = None):
        super().__init__(db)
        self.repository = repository or RepositoryFactory.create_session_repository(db)

    @property
    def daily_maximum(self) -> int:
        return settings.max_sessions_per_teacher_per_day

    def committed_count(
        self, teacher_id: str, day: date, exclude_session_id: Optional[str] = None
    ) -> int:
        """Scheduled plus ongoing sessions the teacher holds on ``day``."""
        return self.repository.count_committed(teacher_id, day, exclude_session_id)

    def is_saturated(self, teacher_id: str, day: date) -> bool:
        return self.committed_count(teacher_id, day) >= self.daily_maximum

    def ensure_capacity(
        self, teacher_id: str, day: date, exclude_session_id: Optional[str] = None
    ) -> int:
        """
        Raise ``TeacherCapacityException`` unless one more session fits.

        Returns the current committed count.
        """
        committed = self.committed_count(teacher_id, day, exclude_session_id)
        if committed >= self.daily_maximum:
            raise TeacherCapacityException(
                teacher_id=teacher_id,
                day=day.isoformat(),
                committed=committed,
                maximum=self.daily_maximum,
            )
        return committed
