# backend/sessionbook/repositories/session_repository.py
"""
Session Repository for the booking engine.

Owns every query the scheduling engine runs against tutoring sessions:

- teacher commitments and claimable requests for a calendar day
- committed-session counts (capacity is always recomputed, never stored)
- pending requests affected by a teacher reaching capacity
- per-program duplicate and daily-limit checks
- filtered, paginated listings
- conditional status transitions and the append-only history

Soft-deleted sessions are invisible to all engine queries.
"""

from datetime import date, datetime, time, timedelta
import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import and_, exists, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Query, Session

from ..core.exceptions import RepositoryException
from ..models.program import ProgramTeacherAssignment
from ..models.session import (
    ACTIVE_STATUSES,
    COMMITTED_STATUSES,
    SessionHistory,
    SessionStatus,
    TutoringSession,
)
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


def _day_range(day: date) -> Tuple[datetime, datetime]:
    start = datetime.combine(day, time.min)
    return start, start + timedelta(days=1)


class SessionRepository(BaseRepository[TutoringSession]):
    """Repository for tutoring session data access."""

    def __init__(self, db: Session):
        super().__init__(db, TutoringSession)

    # ------------------------------------------------------------------ helpers
    def _live(self) -> Query:
        return self.db.query(TutoringSession).filter(TutoringSession.deleted_at.is_(None))

    def _on_day(self, query: Query, day: date) -> Query:
        start, end = _day_range(day)
        return query.filter(TutoringSession.start_time >= start, TutoringSession.start_time < end)

    @staticmethod
    def _exclude(query: Query, session_id: Optional[str]) -> Query:
        if session_id:
            query = query.filter(TutoringSession.id != session_id)
        return query

    @staticmethod
    def _in_program(program_ids: Any):
        return or_(
            TutoringSession.focus_one_id.in_(program_ids),
            TutoringSession.cohort_id.in_(program_ids),
        )

    # ------------------------------------------------------------------ lookups
    def get_live(self, session_id: str) -> Optional[TutoringSession]:
        """Fetch a session unless it has been soft-deleted."""
        try:
            return self._live().filter(TutoringSession.id == session_id).first()
        except SQLAlchemyError as e:
            self.logger.error(f"Error getting session {session_id}: {str(e)}")
            raise RepositoryException(f"Failed to get session: {str(e)}")

    def get_deleted(self, session_id: str) -> Optional[TutoringSession]:
        try:
            return (
                self.db.query(TutoringSession)
                .filter(TutoringSession.id == session_id, TutoringSession.deleted_at.isnot(None))
                .first()
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error getting deleted session {session_id}: {str(e)}")
            raise RepositoryException(f"Failed to get deleted session: {str(e)}")

    # ------------------------------------------------------- teacher day queries
    def get_teacher_commitments(
        self,
        teacher_id: str,
        day: date,
        exclude_session_id: Optional[str] = None,
    ) -> List[TutoringSession]:
        """
        Sessions assigned to the teacher on ``day`` that still hold the slot.

        Cancelled, rejected and completed sessions are left out, which is what
        frees their slots for future availability queries.
        """
        query = self._on_day(self._live(), day).filter(
            TutoringSession.teacher_id == teacher_id,
            TutoringSession.status.in_(ACTIVE_STATUSES),
        )
        query = self._exclude(query, exclude_session_id).order_by(TutoringSession.start_time)
        return self._execute_query(query, "get teacher commitments")

    def get_claimable_requests(
        self,
        teacher_id: str,
        day: date,
        subject_id: str,
        exclude_session_id: Optional[str] = None,
    ) -> List[TutoringSession]:
        """
        Unassigned same-subject requests on ``day`` the teacher could still claim.

        Only programs where the teacher is mapped to ``subject_id`` count.
        """
        mapped_programs = select(ProgramTeacherAssignment.program_id).where(
            ProgramTeacherAssignment.teacher_id == teacher_id,
            ProgramTeacherAssignment.subject_id == subject_id,
        )
        query = self._on_day(self._live(), day).filter(
            TutoringSession.teacher_id.is_(None),
            TutoringSession.status == SessionStatus.REQUESTED.value,
            TutoringSession.subject_id == subject_id,
            self._in_program(mapped_programs),
        )
        query = self._exclude(query, exclude_session_id).order_by(TutoringSession.start_time)
        return self._execute_query(query, "get claimable requests")

    def count_committed(
        self,
        teacher_id: str,
        day: date,
        exclude_session_id: Optional[str] = None,
    ) -> int:
        """Number of scheduled/ongoing sessions the teacher holds on ``day``."""
        try:
            query = self._on_day(self._live(), day).filter(
                TutoringSession.teacher_id == teacher_id,
                TutoringSession.status.in_(COMMITTED_STATUSES),
            )
            return self._exclude(query, exclude_session_id).count()
        except SQLAlchemyError as e:
            self.logger.error(f"Error counting committed sessions: {str(e)}")
            raise RepositoryException(f"Failed to count committed sessions: {str(e)}")

    def find_pending_for_teacher_day(
        self,
        teacher_id: str,
        day: date,
        exclude_session_id: Optional[str] = None,
    ) -> List[TutoringSession]:
        """
        Still-requested, unassigned sessions on ``day`` the teacher could serve.

        A session qualifies when its program maps the teacher to the session's
        subject, or to any subject when the session has none.
        """
        assignment_matches = exists().where(
            and_(
                ProgramTeacherAssignment.teacher_id == teacher_id,
                or_(
                    ProgramTeacherAssignment.program_id == TutoringSession.focus_one_id,
                    ProgramTeacherAssignment.program_id == TutoringSession.cohort_id,
                ),
                or_(
                    TutoringSession.subject_id.is_(None),
                    ProgramTeacherAssignment.subject_id == TutoringSession.subject_id,
                ),
            )
        )
        query = self._on_day(self._live(), day).filter(
            TutoringSession.teacher_id.is_(None),
            TutoringSession.status == SessionStatus.REQUESTED.value,
            assignment_matches,
        )
        query = self._exclude(query, exclude_session_id).order_by(TutoringSession.start_time)
        return self._execute_query(query, "find pending sessions for teacher day")

    # ------------------------------------------------------ program day checks
    def has_active_subject_session(
        self,
        program_id: str,
        subject_id: str,
        day: date,
        exclude_session_id: Optional[str] = None,
    ) -> bool:
        try:
            query = self._on_day(self._live(), day).filter(
                self._in_program([program_id]),
                TutoringSession.subject_id == subject_id,
                TutoringSession.status.in_(ACTIVE_STATUSES),
            )
            return self._exclude(query, exclude_session_id).first() is not None
        except SQLAlchemyError as e:
            self.logger.error(f"Error checking subject sessions: {str(e)}")
            raise RepositoryException(f"Failed to check subject sessions: {str(e)}")

    def count_program_sessions_for_day(
        self,
        program_id: str,
        day: date,
        exclude_session_id: Optional[str] = None,
    ) -> int:
        try:
            query = self._on_day(self._live(), day).filter(
                self._in_program([program_id]),
                TutoringSession.status.in_(ACTIVE_STATUSES),
            )
            return self._exclude(query, exclude_session_id).count()
        except SQLAlchemyError as e:
            self.logger.error(f"Error counting program sessions: {str(e)}")
            raise RepositoryException(f"Failed to count program sessions: {str(e)}")

    # ------------------------------------------------------------------ listing
    def list_sessions(
        self,
        *,
        focus_one_id: Optional[str] = None,
        cohort_id: Optional[str] = None,
        teacher_id: Optional[str] = None,
        status: Optional[str] = None,
        subject_id: Optional[str] = None,
        day: Optional[date] = None,
        search: Optional[str] = None,
        scope_program_ids: Optional[Sequence[str]] = None,
        scope_teacher_id: Optional[str] = None,
        offset: int = 0,
        limit: int = 20,
    ) -> Tuple[List[TutoringSession], int]:
        """
        Filtered listing ordered by start time, newest first.

        ``scope_program_ids``/``scope_teacher_id`` restrict visibility: a row is
        visible when it belongs to one of the programs or to the teacher.
        """
        query = self._live()
        if focus_one_id:
            query = query.filter(TutoringSession.focus_one_id == focus_one_id)
        if cohort_id:
            query = query.filter(TutoringSession.cohort_id == cohort_id)
        if teacher_id:
            query = query.filter(TutoringSession.teacher_id == teacher_id)
        if status:
            query = query.filter(TutoringSession.status == status)
        if subject_id:
            query = query.filter(TutoringSession.subject_id == subject_id)
        if day:
            query = self._on_day(query, day)
        if search:
            query = query.filter(TutoringSession.title.ilike(f"%{search}%"))
        if scope_program_ids is not None or scope_teacher_id is not None:
            clauses = []
            if scope_program_ids:
                clauses.append(self._in_program(list(scope_program_ids)))
            if scope_teacher_id:
                clauses.append(TutoringSession.teacher_id == scope_teacher_id)
            if not clauses:
                return [], 0
            query = query.filter(or_(*clauses))
        return self._paginate(query, offset, limit)

    def list_teacher_requests(
        self,
        teacher_id: str,
        *,
        status: Optional[str] = SessionStatus.REQUESTED.value,
        subject_id: Optional[str] = None,
        day: Optional[date] = None,
        search: Optional[str] = None,
        offset: int = 0,
        limit: int = 20,
    ) -> Tuple[List[TutoringSession], int]:
        """Sessions in programs where the teacher holds any subject mapping."""
        mapped_programs = select(ProgramTeacherAssignment.program_id).where(
            ProgramTeacherAssignment.teacher_id == teacher_id
        )
        query = self._live().filter(self._in_program(mapped_programs))
        if status:
            query = query.filter(TutoringSession.status == status)
        if subject_id:
            query = query.filter(TutoringSession.subject_id == subject_id)
        if day:
            query = self._on_day(query, day)
        if search:
            query = query.filter(TutoringSession.title.ilike(f"%{search}%"))
        return self._paginate(query, offset, limit)

    def list_deleted(self, offset: int = 0, limit: int = 20) -> Tuple[List[TutoringSession], int]:
        query = self.db.query(TutoringSession).filter(TutoringSession.deleted_at.isnot(None))
        try:
            total = query.count()
            items = (
                query.order_by(TutoringSession.deleted_at.desc()).offset(offset).limit(limit).all()
            )
            return items, total
        except SQLAlchemyError as e:
            self.logger.error(f"Error listing deleted sessions: {str(e)}")
            raise RepositoryException(f"Failed to list deleted sessions: {str(e)}")

    def _paginate(
        self, query: Query, offset: int, limit: int
    ) -> Tuple[List[TutoringSession], int]:
        try:
            total = query.count()
            items = (
                query.order_by(TutoringSession.start_time.desc(), TutoringSession.id.desc())
                .offset(offset)
                .limit(limit)
                .all()
            )
            return items, total
        except SQLAlchemyError as e:
            self.logger.error(f"Error listing sessions: {str(e)}")
            raise RepositoryException(f"Failed to list sessions: {str(e)}")

    # -------------------------------------------------------------- mutations
    def transition(
        self,
        session_id: str,
        expected_statuses: Sequence[str],
        expected_version: int,
        **values: Any,
    ) -> Optional[TutoringSession]:
        """
        Conditionally update a session.

        The UPDATE only matches while the row still has one of
        ``expected_statuses`` and ``expected_version``; the version is bumped
        in the same statement. Returns the refreshed session, or ``None`` when
        another writer got there first.
        """
        try:
            self.db.flush()
            stmt = (
                update(TutoringSession)
                .where(
                    TutoringSession.id == session_id,
                    TutoringSession.status.in_(list(expected_statuses)),
                    TutoringSession.version == expected_version,
                    TutoringSession.deleted_at.is_(None),
                )
                .values(version=TutoringSession.version + 1, **values)
                .execution_options(synchronize_session=False)
            )
            result = self.db.execute(stmt)
            if result.rowcount != 1:
                return None
            entity = self.db.get(TutoringSession, session_id)
            if entity is not None:
                self.db.refresh(entity)
            return entity
        except SQLAlchemyError as e:
            self.logger.error(f"Error transitioning session {session_id}: {str(e)}")
            raise RepositoryException(f"Failed to update session: {str(e)}")

    def set_deleted(
        self, entity: TutoringSession, deleted_at: Optional[datetime], deleted_by: Optional[str]
    ) -> TutoringSession:
        try:
            entity.deleted_at = deleted_at
            entity.deleted_by = deleted_by
            self.db.flush()
            return entity
        except SQLAlchemyError as e:
            self.logger.error(f"Error updating deletion marker for {entity.id}: {str(e)}")
            raise RepositoryException(f"Failed to update session: {str(e)}")

    def append_history(
        self,
        entity: TutoringSession,
        *,
        action: str,
        performed_by: Optional[str],
        performed_at: datetime,
        previous_status: Optional[str] = None,
        new_status: Optional[str] = None,
        notes: Optional[str] = None,
        changed_fields: Optional[Dict[str, Any]] = None,
    ) -> SessionHistory:
        """Append an audit entry; history rows are never updated afterwards."""
        try:
            entry = SessionHistory(
                session_id=entity.id,
                action=action,
                performed_by=performed_by,
                performed_at=performed_at,
                previous_status=previous_status,
                new_status=new_status,
                notes=notes,
                changed_fields=changed_fields,
            )
            entity.history.append(entry)
            self.db.flush()
            return entry
        except SQLAlchemyError as e:
            self.logger.error(f"Error appending history for {entity.id}: {str(e)}")
            raise RepositoryException(f"Failed to append session history: {str(e)}")

    def get_history(self, session_id: str) -> List[SessionHistory]:
        query = (
            self.db.query(SessionHistory)
            .filter(SessionHistory.session_id == session_id)
            .order_by(SessionHistory.performed_at, SessionHistory.id)
        )
        try:
            return query.all()
        except SQLAlchemyError as e:
            self.logger.error(f"Error loading history for {session_id}: {str(e)}")
            raise RepositoryException(f"Failed to load session history: {str(e)}")

