# backend/sessionbook/services/booking_service.py
"""
Booking Workflow for tutoring sessions.

Owns the session lifecycle:

    requested -> scheduled (accept) | rejected (reject, auto-reject)
    scheduled -> ongoing -> completed
    requested | scheduled | ongoing -> cancelled

Every transition is a conditional update on (status, version) so two
concurrent writers can never both win; the loser gets
``SessionStatusConflictException``. Rules that depend on other sessions
(capacity, conflicts, per-program limits) are re-checked inside the
writing transaction after the affected teacher rows are locked
(``SELECT ... FOR UPDATE``), with the Redis schedule lock in front as a
fast-fail guard. History entries and notification intents commit
together with the transition.

When a transition leaves a teacher at daily capacity, the cascade in
``AutoRejectionService`` runs afterwards as its own batch; it never rolls
back the transition that triggered it.
"""

from datetime import date, datetime
import math
from typing import Any, Dict, Iterable, List, Optional, Sequence

from sqlalchemy.orm import Session

from ..core import timezone_utils
from ..core.config import settings
from ..core.enums import HistoryAction, ProgramStatus
from ..core.exceptions import (
    DuplicateSessionException,
    ForbiddenException,
    NotFoundException,
    ProgramInactiveException,
    SessionStatusConflictException,
    StudentDailyLimitException,
    TimeConflictException,
    ValidationException,
)
from ..core.schedule_lock import program_day_key, schedule_lock, schedule_locks, teacher_day_key
from ..domain.session_window import validate_session_window
from ..domain.time_window import TimeWindow
from ..models.event_outbox import SessionEventType
from ..models.program import Program
from ..models.session import (
    ACTIVE_STATUSES,
    EDITABLE_STATUSES,
    SessionStatus,
    TutoringSession,
)
from ..models.user import User
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.factory import RepositoryFactory
from ..repositories.session_repository import SessionRepository
from ..schemas.session import (
    SessionAccept,
    SessionDirectCreate,
    SessionRequestCreate,
    SessionReschedule,
    SessionUpdate,
    TeacherScheduleCreate,
)
from .auto_rejection_service import AutoRejectionService
from .availability_service import AvailabilityService
from .base import BaseService
from .capacity_service import CapacityService
from .conflict_checker import ConflictChecker
from .directory_service import DirectoryService
from .meeting_link_service import MeetingLinkService
from .notification_service import NotificationService, student_recipient_ids

MAX_PAGE_SIZE = 100


class SessionBookingService(BaseService):
    """
    Service layer for session booking operations.

    Handles the business rules for requests, direct scheduling,
    acceptance, rejection, cancellation, rescheduling and the session
    administration endpoints.
    """

    def __init__(
        self,
        db: Session,
        repository: Optional[SessionRepository] = None,
        directory: Optional[DirectoryService] = None,
        availability_service: Optional[AvailabilityService] = None,
        notification_service: Optional[NotificationService] = None,
        meeting_link_service: Optional[MeetingLinkService] = None,
        auto_rejection_service: Optional[AutoRejectionService] = None,
    ):
        super().__init__(db)
        self.repository = repository or RepositoryFactory.create_session_repository(db)
        self.directory = directory or DirectoryService(db)
        self.conflict_checker = ConflictChecker(db, self.repository)
        self.capacity_service = CapacityService(db, self.repository)
        self.availability_service = availability_service or AvailabilityService(
            db,
            self.repository,
            conflict_checker=self.conflict_checker,
            capacity_service=self.capacity_service,
            directory=self.directory,
        )
        self.notification_service = notification_service or NotificationService(
            db, directory=self.directory
        )
        self.meeting_link_service = meeting_link_service or MeetingLinkService()
        self.auto_rejection_service = auto_rejection_service or AutoRejectionService(
            db,
            self.repository,
            capacity_service=self.capacity_service,
            notification_service=self.notification_service,
        )

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    @BaseService.measure_operation("create_direct")
    def create_direct(self, actor: User, data: SessionDirectCreate) -> TutoringSession:
        """Admin books a teacher directly; the session starts out scheduled."""
        self._require_admin(actor)
        if not data.title:
            raise ValidationException("Title is required", code="TITLE_REQUIRED")

        teacher = self.directory.get_user(data.teacher_id)
        if not teacher.is_teacher:
            raise ValidationException(
                "Selected user is not a teacher",
                code="NOT_A_TEACHER",
                details={"teacher_id": data.teacher_id},
            )
        program = self.directory.get_program(data.program_id, data.program_kind)
        window = self._validate_window(data.start_time, data.end_time)

        with schedule_lock(teacher_day_key(teacher.id, window.day)):
            with self.transaction():
                self._ensure_teacher_can_take(teacher.id, window)
                meeting_link = data.meeting_link or self.meeting_link_service.try_create_link(
                    data.title, window, self._participant_emails(program, teacher.id)
                )
                session = self._create_scheduled(
                    actor=actor,
                    teacher_id=teacher.id,
                    program=program,
                    window=window,
                    title=data.title,
                    description=data.description,
                    subject_id=data.subject_id,
                    subject_name=data.subject_name,
                    meeting_link=meeting_link,
                )

        self._after_commit("create_direct", session)
        self._run_cascade(teacher.id, window.day, session.id)
        return session

    @BaseService.measure_operation("teacher_schedule")
    def teacher_schedule(self, actor: User, data: TeacherScheduleCreate) -> TutoringSession:
        """A teacher books themselves into one of their programs."""
        self._require_teacher(actor)
        if not data.title:
            raise ValidationException("Title is required", code="TITLE_REQUIRED")
        if not data.description:
            raise ValidationException("Description is required", code="DESCRIPTION_REQUIRED")

        program = self.directory.get_program(data.program_id, data.program_kind)
        self._ensure_program_bookable(program)
        if not self.directory.is_assigned_to_program(actor.id, program.id):
            raise ForbiddenException("You are not assigned to this program")
        if data.subject_id and not self.directory.is_assigned_to_subject_in_program(
            actor.id, program.id, data.subject_id
        ):
            raise ForbiddenException("You are not assigned to this subject in this program")

        window = self._validate_window(data.start_time, data.end_time)

        with schedule_lock(teacher_day_key(actor.id, window.day)):
            with self.transaction():
                self._ensure_teacher_can_take(actor.id, window)
                meeting_link = self.meeting_link_service.try_create_link(
                    data.title, window, self._participant_emails(program, actor.id)
                )
                session = self._create_scheduled(
                    actor=actor,
                    teacher_id=actor.id,
                    program=program,
                    window=window,
                    title=data.title,
                    description=data.description,
                    subject_id=data.subject_id,
                    subject_name=data.subject_name,
                    meeting_link=meeting_link,
                )

        self._after_commit("teacher_schedule", session)
        self._run_cascade(actor.id, window.day, session.id)
        return session

    @BaseService.measure_operation("request_session")
    def request_session(self, actor: User, data: SessionRequestCreate) -> TutoringSession:
        """
        Student request against the program's teacher pool.

        Checks run in this order: ownership, program state, teacher pool,
        window, then (under the program-day and pool teacher-day locks) the
        per-subject duplicate rule, the per-program daily limit and pool
        availability. The pool's rows stay locked until commit so a
        concurrent accept cannot fill the slot in between.
        """
        program = self.directory.get_program(data.program_id, data.program_kind)
        if not self.directory.is_program_student(actor.id, program):
            raise ForbiddenException("You can only request sessions for your own programs")
        self._ensure_program_bookable(program)

        teacher_ids = self.directory.teacher_pool(program, data.subject_id)
        if not teacher_ids:
            raise ValidationException(
                "No teachers assigned to this subject for this program",
                code="NO_TEACHERS_FOR_SUBJECT",
                details={"program_id": program.id, "subject_id": data.subject_id},
            )

        window = self._validate_window(data.start_time, data.end_time)

        with schedule_locks(self._pool_lock_keys(program.id, teacher_ids, window.day)):
            with self.transaction():
                self.directory.lock_teachers(teacher_ids)
                self._ensure_program_day_allows(program.id, data.subject_id, window.day)
                pool = self.availability_service.check_pool_availability(
                    teacher_ids, window, data.subject_id
                )
                if not pool.available:
                    raise TimeConflictException(
                        "No teacher is available for the selected time slot",
                        details={"teachers": [r.to_dict() for r in pool.reports]},
                    )

                now = timezone_utils.utc_now()
                session = self.repository.create(
                    title=data.title or self._default_title(data.subject_name, window),
                    description=data.description,
                    start_time=window.start,
                    end_time=window.end,
                    focus_one_id=program.id if program.is_focus_one else None,
                    cohort_id=None if program.is_focus_one else program.id,
                    subject_id=data.subject_id,
                    subject_name=data.subject_name,
                    status=SessionStatus.REQUESTED.value,
                    created_by=actor.id,
                    requested_by=actor.id,
                    requested_at=now,
                )
                self._append_history(
                    session,
                    HistoryAction.REQUESTED,
                    actor,
                    now,
                    previous_status=None,
                    new_status=SessionStatus.REQUESTED.value,
                )
                self.notification_service.notify_session_event(
                    session,
                    SessionEventType.REQUESTED,
                    teacher_ids,
                    "teacher_session_requested",
                    {"student_name": actor.full_name},
                )

        self._after_commit("request", session, available_teachers=len(pool.available_teacher_ids))
        return session

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    @BaseService.measure_operation("accept_session")
    def accept_session(
        self, actor: User, session_id: str, data: Optional[SessionAccept] = None
    ) -> TutoringSession:
        """
        Teacher claims a requested session.

        Conflicts and capacity are checked against the teacher's own
        sessions only, excluding this one. A meeting link is required; a
        provider failure aborts the accept with nothing committed.
        """
        self._require_teacher(actor)
        session = self._get_live(session_id)
        self._expect_status(session, SessionStatus.REQUESTED)
        self._ensure_can_serve(actor, session)

        window = session.window
        title = (data.title if data and data.title else None) or session.title
        description = (data.description if data and data.description else None) or (
            session.description
        )

        with schedule_lock(teacher_day_key(actor.id, window.day)):
            with self.transaction():
                self._ensure_teacher_can_take(actor.id, window, exclude_session_id=session.id)
                program = self._program_of(session)
                meeting_link = self.meeting_link_service.create_link(
                    title, window, self._participant_emails(program, actor.id)
                )
                now = timezone_utils.utc_now()
                updated = self._transition(
                    session,
                    [SessionStatus.REQUESTED.value],
                    teacher_id=actor.id,
                    status=SessionStatus.SCHEDULED.value,
                    accepted_by=actor.id,
                    accepted_at=now,
                    title=title,
                    description=description,
                    meeting_link=meeting_link,
                    meeting_platform=self.meeting_link_service.platform,
                )
                self._append_history(
                    updated,
                    HistoryAction.ACCEPTED,
                    actor,
                    now,
                    previous_status=SessionStatus.REQUESTED.value,
                    new_status=SessionStatus.SCHEDULED.value,
                )
                self.notification_service.notify_session_event(
                    updated,
                    SessionEventType.ACCEPTED,
                    student_recipient_ids(updated),
                    "student_session_accepted",
                    {"teacher_name": actor.full_name},
                )

        self._after_commit("accept", updated)
        self._run_cascade(actor.id, window.day, updated.id)
        return updated

    @BaseService.measure_operation("reject_session")
    def reject_session(self, actor: User, session_id: str, reason: str) -> TutoringSession:
        self._require_teacher(actor)
        reason = self._require_reason(reason, "Rejection reason is required")
        session = self._get_live(session_id)
        self._expect_status(session, SessionStatus.REQUESTED)
        self._ensure_can_serve(actor, session)

        with self.transaction():
            now = timezone_utils.utc_now()
            updated = self._transition(
                session,
                [SessionStatus.REQUESTED.value],
                status=SessionStatus.REJECTED.value,
                rejected_by=actor.id,
                rejected_at=now,
                rejection_reason=reason,
            )
            self._append_history(
                updated,
                HistoryAction.REJECTED,
                actor,
                now,
                previous_status=SessionStatus.REQUESTED.value,
                new_status=SessionStatus.REJECTED.value,
                notes=reason,
            )
            self.notification_service.notify_session_event(
                updated,
                SessionEventType.REJECTED,
                student_recipient_ids(updated),
                "student_session_rejected",
                {"reason": reason},
            )

        self._after_commit("reject", updated)
        return updated

    @BaseService.measure_operation("cancel_session")
    def cancel_session(self, actor: User, session_id: str, reason: str) -> TutoringSession:
        """
        Cancel a requested, scheduled or ongoing session.

        Allowed for admins, the program's students, the assigned teacher and,
        for an unassigned request, any teacher eligible to serve it.
        """
        reason = self._require_reason(reason, "Cancellation reason is required")
        session = self._get_live(session_id)
        if session.status not in ACTIVE_STATUSES:
            raise SessionStatusConflictException(
                session.id, session.status, "requested, scheduled or ongoing"
            )
        self._ensure_can_cancel(actor, session)

        previous_status = session.status
        with self.transaction():
            now = timezone_utils.utc_now()
            updated = self._transition(
                session,
                list(ACTIVE_STATUSES),
                status=SessionStatus.CANCELLED.value,
                cancelled_by=actor.id,
                cancelled_at=now,
                cancellation_reason=reason,
            )
            self._append_history(
                updated,
                HistoryAction.CANCELLED,
                actor,
                now,
                previous_status=previous_status,
                new_status=SessionStatus.CANCELLED.value,
                notes=reason,
            )
            self.notification_service.notify_session_event(
                updated,
                SessionEventType.CANCELLED,
                self._other_parties(updated, actor),
                "session_cancelled",
                {"reason": reason, "cancelled_by_name": actor.full_name},
            )

        self._after_commit("cancel", updated)
        return updated

    @BaseService.measure_operation("reschedule_session")
    def reschedule_session(
        self, actor: User, session_id: str, data: SessionReschedule
    ) -> TutoringSession:
        """
        Move a requested or scheduled session to a new window.

        The session is excluded from its own conflict, capacity and program
        checks. Moving to another day is evaluated against the new day only.
        """
        session = self._get_live(session_id)
        if session.status not in (SessionStatus.REQUESTED.value, SessionStatus.SCHEDULED.value):
            raise SessionStatusConflictException(
                session.id, session.status, "requested or scheduled"
            )
        self._ensure_can_reschedule(actor, session)

        window = self._validate_window(data.start_time, data.end_time)
        old_window = session.window
        if window == old_window:
            raise ValidationException(
                "New time must differ from the current time", code="RESCHEDULE_NO_CHANGE"
            )

        teacher_id = session.teacher_id
        program = self._require_program(session)
        teacher_ids = [teacher_id] if teacher_id else self._pool_of(program, session.subject_id)

        with schedule_locks(self._pool_lock_keys(program.id, teacher_ids, window.day)):
            with self.transaction():
                if teacher_id:
                    self._ensure_teacher_can_take(
                        teacher_id,
                        window,
                        exclude_session_id=session.id,
                        subject_id=session.subject_id,
                    )
                    self._ensure_program_day_allows(
                        program.id, session.subject_id, window.day, exclude_session_id=session.id
                    )
                else:
                    self._ensure_pool_can_take(session, program, teacher_ids, window)

                now = timezone_utils.utc_now()
                updated = self._transition(
                    session,
                    [session.status],
                    start_time=window.start,
                    end_time=window.end,
                )
                self._append_history(
                    updated,
                    HistoryAction.RESCHEDULED,
                    actor,
                    now,
                    previous_status=updated.status,
                    new_status=updated.status,
                    notes=data.reason,
                    changed_fields={
                        "start_time": {
                            "from": old_window.start.isoformat(),
                            "to": window.start.isoformat(),
                        },
                        "end_time": {
                            "from": old_window.end.isoformat(),
                            "to": window.end.isoformat(),
                        },
                    },
                )
                self.notification_service.notify_session_event(
                    updated,
                    SessionEventType.RESCHEDULED,
                    self._other_parties(updated, actor),
                    "session_rescheduled",
                    {
                        "previous_date": old_window.day.isoformat(),
                        "previous_start": old_window.start.strftime("%H:%M"),
                    },
                )

        self._after_commit("reschedule", updated)
        if teacher_id and updated.is_committed:
            self._run_cascade(teacher_id, window.day, updated.id)
        return updated

    @BaseService.measure_operation("start_session")
    def start_session(self, actor: User, session_id: str) -> TutoringSession:
        return self._progress(
            actor, session_id, SessionStatus.SCHEDULED, SessionStatus.ONGOING, HistoryAction.STARTED
        )

    @BaseService.measure_operation("complete_session")
    def complete_session(self, actor: User, session_id: str) -> TutoringSession:
        return self._progress(
            actor,
            session_id,
            SessionStatus.ONGOING,
            SessionStatus.COMPLETED,
            HistoryAction.COMPLETED,
        )

    def _progress(
        self,
        actor: User,
        session_id: str,
        current: SessionStatus,
        target: SessionStatus,
        action: HistoryAction,
    ) -> TutoringSession:
        session = self._get_live(session_id)
        if not actor.is_admin and session.teacher_id != actor.id:
            raise ForbiddenException("Only the assigned teacher can update this session")
        self._expect_status(session, current)

        with self.transaction():
            now = timezone_utils.utc_now()
            updated = self._transition(session, [current.value], status=target.value)
            self._append_history(
                updated,
                action,
                actor,
                now,
                previous_status=current.value,
                new_status=target.value,
            )

        self._after_commit(action.value, updated)
        return updated

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @BaseService.measure_operation("get_session")
    def get_session(self, actor: User, session_id: str) -> TutoringSession:
        session = self._get_live(session_id)
        if actor.is_admin or session.teacher_id == actor.id:
            return session
        program = self._program_of(session)
        if program is None or not self.directory.can_view_program(actor, program):
            raise ForbiddenException("You do not have access to this session")
        return session

    @BaseService.measure_operation("list_sessions")
    def list_sessions(
        self,
        actor: User,
        *,
        focus_one_id: Optional[str] = None,
        cohort_id: Optional[str] = None,
        teacher_id: Optional[str] = None,
        status: Optional[str] = None,
        subject_id: Optional[str] = None,
        day: Optional[date] = None,
        search: Optional[str] = None,
        page: int = 1,
        limit: int = 20,
    ) -> Dict[str, Any]:
        """
        Filtered listing visible to ``actor``.

        Admins see everything; students the sessions of their programs;
        teachers additionally the sessions assigned to them or in programs
        they serve.
        """
        offset = self._page_offset(page, limit)
        status = self._check_status_filter(status)
        scope_program_ids: Optional[List[str]] = None
        scope_teacher_id: Optional[str] = None
        if not actor.is_admin:
            scope_program_ids = self.directory.visible_program_ids(actor)
            scope_teacher_id = actor.id if actor.is_teacher else None

        items, total = self.repository.list_sessions(
            focus_one_id=focus_one_id,
            cohort_id=cohort_id,
            teacher_id=teacher_id,
            status=status,
            subject_id=subject_id,
            day=day,
            search=search,
            scope_program_ids=scope_program_ids,
            scope_teacher_id=scope_teacher_id,
            offset=offset,
            limit=limit,
        )
        return self._page(items, total, page, limit)

    @BaseService.measure_operation("list_teacher_requests")
    def list_teacher_requests(
        self,
        actor: User,
        *,
        status: Optional[str] = SessionStatus.REQUESTED.value,
        subject_id: Optional[str] = None,
        day: Optional[date] = None,
        search: Optional[str] = None,
        page: int = 1,
        limit: int = 20,
    ) -> Dict[str, Any]:
        self._require_teacher(actor)
        offset = self._page_offset(page, limit)
        items, total = self.repository.list_teacher_requests(
            actor.id,
            status=self._check_status_filter(status),
            subject_id=subject_id,
            day=day,
            search=search,
            offset=offset,
            limit=limit,
        )
        return self._page(items, total, page, limit)

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    @BaseService.measure_operation("update_session")
    def update_details(self, actor: User, session_id: str, data: SessionUpdate) -> TutoringSession:
        """Completed and cancelled sessions are frozen and cannot be edited."""
        self._require_admin(actor)
        session = self._get_live(session_id)
        if session.is_frozen:
            raise SessionStatusConflictException(
                session.id, session.status, " or ".join(EDITABLE_STATUSES)
            )

        changes: Dict[str, Dict[str, Any]] = {}
        values: Dict[str, Any] = {}
        for field_name, value in data.model_dump(exclude_unset=True).items():
            current = getattr(session, field_name)
            if value != current:
                changes[field_name] = {"from": current, "to": value}
                values[field_name] = value
        if not values:
            return session

        with self.transaction():
            updated = self._transition(session, list(EDITABLE_STATUSES), **values)
            self._append_history(
                updated,
                HistoryAction.UPDATED,
                actor,
                timezone_utils.utc_now(),
                previous_status=updated.status,
                new_status=updated.status,
                changed_fields=changes,
            )

        self.log_operation("update_session", session_id=session_id, fields=sorted(values))
        return updated

    @BaseService.measure_operation("delete_session")
    def delete_session(self, actor: User, session_id: str) -> TutoringSession:
        """Soft delete; the row disappears from every engine query."""
        self._require_admin(actor)
        session = self._get_live(session_id)
        with self.transaction():
            now = timezone_utils.utc_now()
            self.repository.set_deleted(session, now, actor.id)
            self._append_history(
                session,
                HistoryAction.DELETED,
                actor,
                now,
                previous_status=session.status,
                new_status=session.status,
            )
        self.log_operation("delete_session", session_id=session_id)
        return session

    @BaseService.measure_operation("restore_session")
    def restore_session(self, actor: User, session_id: str) -> TutoringSession:
        """
        Undo a soft delete.

        A committed session only comes back if its teacher can still take it,
        and an active one only if its program day still has room for it.
        """
        self._require_admin(actor)
        session = self.repository.get_deleted(session_id)
        if session is None:
            raise NotFoundException(
                f"Deleted session {session_id} not found", code="SESSION_NOT_FOUND"
            )

        day = session.window.day
        teacher_ids = [session.teacher_id] if session.teacher_id else []
        with schedule_locks(self._pool_lock_keys(session.program_id, teacher_ids, day)):
            with self.transaction():
                if session.is_committed and session.teacher_id:
                    self._ensure_teacher_can_take(
                        session.teacher_id, session.window, exclude_session_id=session.id
                    )
                if session.status in ACTIVE_STATUSES:
                    self._ensure_program_day_allows(
                        session.program_id, session.subject_id, day, exclude_session_id=session.id
                    )
                self.repository.set_deleted(session, None, None)
                self._append_history(
                    session,
                    HistoryAction.RESTORED,
                    actor,
                    timezone_utils.utc_now(),
                    previous_status=session.status,
                    new_status=session.status,
                )
        self.log_operation("restore_session", session_id=session_id)
        return session

    @BaseService.measure_operation("list_deleted_sessions")
    def list_deleted(self, actor: User, page: int = 1, limit: int = 20) -> Dict[str, Any]:
        self._require_admin(actor)
        items, total = self.repository.list_deleted(self._page_offset(page, limit), limit)
        return self._page(items, total, page, limit)

    # ------------------------------------------------------------------
    # Rule helpers
    # ------------------------------------------------------------------

    def _validate_window(self, start: datetime, end: datetime) -> TimeWindow:
        return validate_session_window(
            timezone_utils.to_local_naive(start),
            timezone_utils.to_local_naive(end),
            timezone_utils.get_local_today(),
        )

    def _ensure_teacher_can_take(
        self,
        teacher_id: str,
        window: TimeWindow,
        exclude_session_id: Optional[str] = None,
        subject_id: Optional[str] = None,
    ) -> None:
        """
        Capacity first, then buffer and rest-period conflicts.

        The teacher row is locked before counting so two writers for the same
        teacher cannot both see room for one more session.
        """
        self.directory.lock_teachers([teacher_id])
        self.capacity_service.ensure_capacity(teacher_id, window.day, exclude_session_id)
        report = self.conflict_checker.check_conflict(
            teacher_id, window, subject_id, exclude_session_id
        )
        if not report.available:
            raise TimeConflictException(report.reason, details=report.to_dict())

    def _ensure_pool_can_take(
        self,
        session: TutoringSession,
        program: Program,
        teacher_ids: List[str],
        window: TimeWindow,
    ) -> None:
        """Re-validate an unassigned request against its program and pool."""
        self.directory.lock_teachers(teacher_ids)
        self._ensure_program_day_allows(
            program.id, session.subject_id, window.day, exclude_session_id=session.id
        )
        pool = self.availability_service.check_pool_availability(
            teacher_ids, window, session.subject_id, exclude_session_id=session.id
        )
        if not pool.available:
            raise TimeConflictException(
                "No teacher is available for the selected time slot",
                details={"teachers": [r.to_dict() for r in pool.reports]},
            )

    def _ensure_program_day_allows(
        self,
        program_id: str,
        subject_id: Optional[str],
        day: date,
        exclude_session_id: Optional[str] = None,
    ) -> None:
        """One active session per subject and day, and the per-program daily limit."""
        if subject_id and self.repository.has_active_subject_session(
            program_id, subject_id, day, exclude_session_id
        ):
            raise DuplicateSessionException(program_id, subject_id, day.isoformat())
        maximum = settings.max_sessions_per_student_per_day
        if (
            self.repository.count_program_sessions_for_day(program_id, day, exclude_session_id)
            >= maximum
        ):
            raise StudentDailyLimitException(program_id, day.isoformat(), maximum)

    def _ensure_program_bookable(self, program: Program) -> None:
        if not program.is_bookable:
            label = program.status if program.status != ProgramStatus.ACTIVE.value else "inactive"
            raise ProgramInactiveException(program.id, label)

    def _ensure_can_serve(self, actor: User, session: TutoringSession) -> None:
        if not self.directory.is_assigned_to_program(actor.id, session.program_id):
            raise ForbiddenException("You are not assigned to this program")
        if session.subject_id and not self.directory.is_assigned_to_subject_in_program(
            actor.id, session.program_id, session.subject_id
        ):
            raise ForbiddenException("You are not assigned to this subject in this program")

    def _is_student_party(self, actor: User, session: TutoringSession) -> bool:
        if session.requested_by == actor.id:
            return True
        program = self._program_of(session)
        return program is not None and self.directory.is_program_student(actor.id, program)

    def _ensure_can_cancel(self, actor: User, session: TutoringSession) -> None:
        if actor.is_admin or session.teacher_id == actor.id:
            return
        if self._is_student_party(actor, session):
            return
        if (
            session.teacher_id is None
            and actor.is_teacher
            and self.directory.is_assigned_to_program(actor.id, session.program_id)
            and (
                not session.subject_id
                or self.directory.is_assigned_to_subject_in_program(
                    actor.id, session.program_id, session.subject_id
                )
            )
        ):
            return
        raise ForbiddenException("You are not allowed to cancel this session")

    def _ensure_can_reschedule(self, actor: User, session: TutoringSession) -> None:
        if actor.is_admin or session.teacher_id == actor.id:
            return
        if self._is_student_party(actor, session):
            return
        raise ForbiddenException("You are not allowed to reschedule this session")

    # ------------------------------------------------------------------
    # Persistence helpers
    # ------------------------------------------------------------------

    def _get_live(self, session_id: str) -> TutoringSession:
        session = self.repository.get_live(session_id)
        if session is None:
            raise NotFoundException(f"Session {session_id} not found", code="SESSION_NOT_FOUND")
        return session

    def _transition(
        self, session: TutoringSession, expected: Sequence[str], **values: Any
    ) -> TutoringSession:
        updated = self.repository.transition(session.id, expected, session.version, **values)
        if updated is None:
            self.db.expire(session)
            current = self.repository.get_by_id(session.id)
            raise SessionStatusConflictException(
                session.id,
                current.status if current is not None else None,
                " or ".join(expected),
            )
        return updated

    def _create_scheduled(
        self,
        *,
        actor: User,
        teacher_id: str,
        program: Program,
        window: TimeWindow,
        title: str,
        description: Optional[str],
        subject_id: Optional[str],
        subject_name: Optional[str],
        meeting_link: Optional[str],
    ) -> TutoringSession:
        now = timezone_utils.utc_now()
        session = self.repository.create(
            title=title,
            description=description,
            start_time=window.start,
            end_time=window.end,
            focus_one_id=program.id if program.is_focus_one else None,
            cohort_id=None if program.is_focus_one else program.id,
            subject_id=subject_id,
            subject_name=subject_name,
            teacher_id=teacher_id,
            status=SessionStatus.SCHEDULED.value,
            meeting_link=meeting_link,
            meeting_platform=self.meeting_link_service.platform if meeting_link else None,
            created_by=actor.id,
        )
        self._append_history(
            session,
            HistoryAction.CREATED,
            actor,
            now,
            previous_status=None,
            new_status=SessionStatus.SCHEDULED.value,
        )
        self.notification_service.notify_session_event(
            session,
            SessionEventType.SCHEDULED,
            student_recipient_ids(session),
            "student_session_scheduled",
        )
        return session

    def _append_history(
        self,
        session: TutoringSession,
        action: HistoryAction,
        actor: Optional[User],
        performed_at: datetime,
        *,
        previous_status: Optional[str],
        new_status: Optional[str],
        notes: Optional[str] = None,
        changed_fields: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.repository.append_history(
            session,
            action=action.value,
            performed_by=actor.id if actor is not None else None,
            performed_at=performed_at,
            previous_status=previous_status,
            new_status=new_status,
            notes=notes,
            changed_fields=changed_fields,
        )

    def _run_cascade(self, teacher_id: str, day: date, trigger_session_id: str) -> int:
        try:
            return self.auto_rejection_service.run(
                teacher_id, day, trigger_session_id=trigger_session_id
            )
        except Exception as exc:
            self.logger.error(
                "Auto-rejection batch failed for teacher %s on %s: %s",
                teacher_id,
                day.isoformat(),
                exc,
            )
            self._queue_cascade_retry(teacher_id, day)
            return 0

    def _queue_cascade_retry(self, teacher_id: str, day: date) -> None:
        try:
            from ..tasks.booking_tasks import auto_reject_pending

            auto_reject_pending.delay(teacher_id, day.isoformat())
        except Exception as exc:
            self.logger.warning(
                "Could not queue auto-rejection retry for teacher %s on %s: %s",
                teacher_id,
                day.isoformat(),
                exc,
            )

    def _after_commit(self, action: str, session: TutoringSession, **context: Any) -> None:
        prometheus_metrics.record_transition(action, session.status)
        self.log_operation(action, session_id=session.id, status=session.status, **context)

    # ------------------------------------------------------------------
    # Small utilities
    # ------------------------------------------------------------------

    @staticmethod
    def _require_admin(actor: User) -> None:
        if not actor.is_admin:
            raise ForbiddenException("Admin access required")

    @staticmethod
    def _require_teacher(actor: User) -> None:
        if not actor.is_teacher:
            raise ForbiddenException("Only teachers can perform this action")

    @staticmethod
    def _require_reason(reason: Optional[str], message: str) -> str:
        cleaned = (reason or "").strip()
        if not cleaned:
            raise ValidationException(message, code="REASON_REQUIRED")
        return cleaned

    @staticmethod
    def _expect_status(session: TutoringSession, expected: SessionStatus) -> None:
        if session.status != expected.value:
            raise SessionStatusConflictException(session.id, session.status, expected.value)

    @staticmethod
    def _check_status_filter(status: Optional[str]) -> Optional[str]:
        if status is None:
            return None
        valid = {s.value for s in SessionStatus}
        if status not in valid:
            raise ValidationException(
                f"Invalid status filter: {status}",
                code="INVALID_STATUS",
                details={"allowed": sorted(valid)},
            )
        return status

    @staticmethod
    def _page_offset(page: int, limit: int) -> int:
        if page < 1:
            raise ValidationException("Page must be at least 1", code="INVALID_PAGE")
        if not 1 <= limit <= MAX_PAGE_SIZE:
            raise ValidationException(
                f"Limit must be between 1 and {MAX_PAGE_SIZE}", code="INVALID_LIMIT"
            )
        return (page - 1) * limit

    @staticmethod
    def _page(items: List[TutoringSession], total: int, page: int, limit: int) -> Dict[str, Any]:
        return {
            "items": items,
            "total": total,
            "page": page,
            "limit": limit,
            "pages": math.ceil(total / limit) if total else 0,
        }

    @staticmethod
    def _program_of(session: TutoringSession) -> Optional[Program]:
        return session.focus_one or session.cohort

    def _require_program(self, session: TutoringSession) -> Program:
        program = self._program_of(session)
        if program is None:
            raise NotFoundException("Program not found", code="PROGRAM_NOT_FOUND")
        return program

    def _pool_of(self, program: Program, subject_id: Optional[str]) -> List[str]:
        """Teachers who could claim a request; any program teacher when no subject is set."""
        if subject_id:
            return self.directory.teacher_pool(program, subject_id)
        return list(dict.fromkeys(a.teacher_id for a in program.assignments))

    @staticmethod
    def _pool_lock_keys(program_id: str, teacher_ids: Iterable[str], day: date) -> List[str]:
        return [program_day_key(program_id, day)] + [
            teacher_day_key(teacher_id, day) for teacher_id in teacher_ids
        ]

    def _participant_emails(self, program: Optional[Program], teacher_id: str) -> List[str]:
        student_ids: Iterable[str] = program.student_ids() if program is not None else []
        return list(self.directory.emails_for([teacher_id, *student_ids]).values())

    def _other_parties(self, session: TutoringSession, actor: User) -> List[str]:
        recipients = student_recipient_ids(session)
        if session.teacher_id:
            recipients.append(session.teacher_id)
        return [user_id for user_id in dict.fromkeys(recipients) if user_id != actor.id]

    @staticmethod
    def _default_title(subject_name: Optional[str], window: TimeWindow) -> str:
        label = subject_name or "Tutoring"
        return f"{label} Session - {window.start:%Y-%m-%d} at {window.start:%H:%M}"
