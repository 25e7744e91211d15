"""
Accept, reject, cancel, reschedule, start and complete.
"""

from unittest.mock import Mock, patch

import pytest
from sqlalchemy import update

from conftest import BOOKING_DAY, CHEMISTRY, MATH, NEXT_DAY, PHYSICS, SUNDAY, at
from sessionbook.core.enums import RoleName
from sessionbook.core.exceptions import (
    DependencyException,
    DuplicateSessionException,
    ForbiddenException,
    SessionStatusConflictException,
    SessionWindowException,
    StudentDailyLimitException,
    TeacherCapacityException,
    TimeConflictException,
    ValidationException,
)
from sessionbook.models.event_outbox import EventOutbox, SessionEventType
from sessionbook.models.session import SessionStatus, TutoringSession
from sessionbook.schemas.session import SessionAccept, SessionRequestCreate, SessionReschedule
from sessionbook.services.booking_service import SessionBookingService
from sessionbook.services.meeting_link_service import MeetingLinkService

REQUESTED = SessionStatus.REQUESTED
AUTO_REASON = (
    "Number of classes exceeded for this teacher on this day. "
    "Maximum of 4 sessions per day allowed."
)


@pytest.fixture
def booking(db):
    return SessionBookingService(db)


@pytest.fixture
def requested(booking, student, focus_one):
    """Sam's Math request for Tuesday 10:00-11:00."""
    return booking.request_session(
        student,
        SessionRequestCreate(
            focus_one_id=focus_one.id,
            subject_id=MATH,
            subject_name="Mathematics",
            start_time=at(BOOKING_DAY, "10:00"),
            end_time=at(BOOKING_DAY, "11:00"),
        ),
    )


@pytest.fixture
def scheduled(make_session, focus_one, teacher, student):
    return make_session(focus_one, at(BOOKING_DAY, "10:00"), teacher=teacher)


def events(db, session_id, event_type):
    return (
        db.query(EventOutbox)
        .filter(
            EventOutbox.aggregate_id == session_id,
            EventOutbox.event_type == event_type.value,
        )
        .all()
    )


def move(start, end, reason=None):
    return SessionReschedule(start_time=start, end_time=end, reason=reason)


class TestAcceptSession:
    def test_accept_assigns_teacher_and_link(self, db, booking, requested, teacher, student):
        accepted = booking.accept_session(teacher, requested.id)

        assert accepted.status == SessionStatus.SCHEDULED.value
        assert accepted.teacher_id == teacher.id
        assert accepted.accepted_by == teacher.id
        assert accepted.accepted_at is not None
        assert accepted.version == 2
        assert accepted.meeting_link.startswith("https://meet.jit.si/sessionbook-")
        assert accepted.meeting_platform == "jitsi-meet"
        assert [h.action for h in booking.repository.get_history(accepted.id)] == [
            "requested",
            "accepted",
        ]

        rows = events(db, accepted.id, SessionEventType.ACCEPTED)
        assert [row.payload["recipient_id"] for row in rows] == [student.id]
        assert rows[0].payload["context"]["teacher_name"] == "Tara Teacher"

    def test_accept_may_override_title(self, booking, requested, teacher):
        accepted = booking.accept_session(
            teacher, requested.id, SessionAccept(title="Quadratics", description="Bring notes")
        )
        assert accepted.title == "Quadratics"
        assert accepted.description == "Bring notes"

    def test_students_cannot_accept(self, booking, requested, student):
        with pytest.raises(ForbiddenException):
            booking.accept_session(student, requested.id)

    def test_teacher_outside_program_cannot_accept(self, booking, requested, outside_teacher):
        with pytest.raises(ForbiddenException):
            booking.accept_session(outside_teacher, requested.id)

    def test_teacher_needs_subject_mapping(self, booking, student, focus_one, second_teacher):
        physics = booking.request_session(
            student,
            SessionRequestCreate(
                focus_one_id=focus_one.id,
                subject_id=PHYSICS,
                start_time=at(BOOKING_DAY, "14:00"),
                end_time=at(BOOKING_DAY, "15:00"),
            ),
        )
        with pytest.raises(ForbiddenException):
            booking.accept_session(second_teacher, physics.id)

    def test_second_accept_loses(self, booking, requested, teacher, second_teacher):
        booking.accept_session(teacher, requested.id)

        with pytest.raises(SessionStatusConflictException) as exc_info:
            booking.accept_session(second_teacher, requested.id)

        assert exc_info.value.details["current_status"] == "scheduled"
        assert exc_info.value.to_http_exception().status_code == 409

    def test_concurrent_accept_is_detected_by_version(
        self, db, booking, requested, teacher, second_teacher
    ):
        # Another writer claims the row after this process loaded it.
        db.execute(
            update(TutoringSession)
            .where(TutoringSession.id == requested.id)
            .values(
                status=SessionStatus.SCHEDULED.value,
                teacher_id=second_teacher.id,
                version=TutoringSession.version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        db.commit()

        with pytest.raises(SessionStatusConflictException) as exc_info:
            booking.accept_session(teacher, requested.id)

        assert exc_info.value.details["current_status"] == "scheduled"
        db.refresh(requested)
        assert requested.teacher_id == second_teacher.id
        assert requested.version == 2
        assert events(db, requested.id, SessionEventType.ACCEPTED) == []

    def test_accept_respects_capacity(
        self, db, booking, make_session, focus_one, teacher, student
    ):
        for clock in ("09:00", "11:00", "13:00", "15:00"):
            make_session(focus_one, at(BOOKING_DAY, clock), teacher=teacher, subject_id=PHYSICS)
        pending = make_session(
            focus_one, at(BOOKING_DAY, "17:00"), status=REQUESTED, requested_by=student
        )

        with pytest.raises(TeacherCapacityException):
            booking.accept_session(teacher, pending.id)

        db.refresh(pending)
        assert pending.status == SessionStatus.REQUESTED.value

    def test_teacher_row_is_locked_before_counting(self, booking, requested, teacher, monkeypatch):
        calls = []
        monkeypatch.setattr(
            booking.directory, "lock_teachers", lambda ids: calls.append(("lock", list(ids)))
        )
        ensure_capacity = booking.capacity_service.ensure_capacity

        def counting(teacher_id, *args, **kwargs):
            calls.append(("count", teacher_id))
            return ensure_capacity(teacher_id, *args, **kwargs)

        monkeypatch.setattr(booking.capacity_service, "ensure_capacity", counting)

        booking.accept_session(teacher, requested.id)

        assert calls[:2] == [("lock", [teacher.id]), ("count", teacher.id)]

    def test_accept_respects_buffer(
        self, booking, make_session, focus_one, cohort, teacher, student
    ):
        make_session(cohort, at(BOOKING_DAY, "10:00"), teacher=teacher, subject_id=CHEMISTRY)
        pending = make_session(
            focus_one, at(BOOKING_DAY, "11:10"), status=REQUESTED, requested_by=student
        )
        with pytest.raises(TimeConflictException):
            booking.accept_session(teacher, pending.id)

    def test_accept_ignores_other_pending_requests(
        self, booking, make_session, focus_one, teacher, student, other_student, make_program
    ):
        other = make_program(
            "Olive FocusOne", student=other_student, assignments=((teacher, MATH),)
        )
        make_session(
            other, at(BOOKING_DAY, "10:30"), status=REQUESTED, requested_by=other_student
        )
        pending = make_session(
            focus_one, at(BOOKING_DAY, "10:00"), status=REQUESTED, requested_by=student
        )

        accepted = booking.accept_session(teacher, pending.id)

        assert accepted.status == SessionStatus.SCHEDULED.value

    def test_meeting_link_failure_commits_nothing(self, db, requested, teacher):
        provider = Mock()
        provider.create_meeting_link.side_effect = RuntimeError("provider down")
        booking = SessionBookingService(db, meeting_link_service=MeetingLinkService(provider))

        with pytest.raises(DependencyException):
            booking.accept_session(teacher, requested.id)

        db.refresh(requested)
        assert requested.status == SessionStatus.REQUESTED.value
        assert requested.teacher_id is None
        assert requested.version == 1
        assert [h.action for h in booking.repository.get_history(requested.id)] == ["requested"]


class TestAutoRejectionCascade:
    @pytest.fixture
    def busy_day(self, make_session, make_program, make_user, focus_one, teacher, second_teacher):
        """Tara holds three sessions; four requests are pending around her."""
        for clock in ("09:00", "11:00", "13:00"):
            make_session(focus_one, at(BOOKING_DAY, clock), teacher=teacher, subject_id=PHYSICS)

        pia = make_user("Pia Pupil", RoleName.STUDENT)
        quinn = make_user("Quinn Pupil", RoleName.STUDENT)
        pia_program = make_program("Pia FocusOne", student=pia, assignments=((teacher, MATH),))
        quinn_program = make_program(
            "Quinn FocusOne", student=quinn, assignments=((second_teacher, MATH),)
        )
        return {
            "trigger": make_session(
                focus_one, at(BOOKING_DAY, "15:00"), status=SessionStatus.REQUESTED
            ),
            "eligible": make_session(
                pia_program, at(BOOKING_DAY, "17:00"), status=REQUESTED, requested_by=pia
            ),
            "other_teacher": make_session(
                quinn_program, at(BOOKING_DAY, "17:00"), status=SessionStatus.REQUESTED
            ),
            "other_day": make_session(
                pia_program, at(NEXT_DAY, "10:00"), status=SessionStatus.REQUESTED
            ),
        }

    def test_fourth_accept_rejects_teachers_pending_requests(
        self, db, booking, busy_day, teacher
    ):
        trigger = busy_day["trigger"]
        booking.accept_session(teacher, trigger.id)

        eligible = busy_day["eligible"]
        db.refresh(eligible)
        assert eligible.status == SessionStatus.REJECTED.value
        assert eligible.rejected_by is None
        assert eligible.rejection_reason == AUTO_REASON
        assert eligible.version == 2

        entry = booking.repository.get_history(eligible.id)[-1]
        assert entry.action == "auto_rejected"
        assert entry.performed_by is None
        assert entry.changed_fields == {
            "saturated_teacher_id": teacher.id,
            "trigger_session_id": trigger.id,
        }

        rows = events(db, eligible.id, SessionEventType.AUTO_REJECTED)
        assert len(rows) == 1
        assert rows[0].payload["context"]["reason"] == AUTO_REASON

    def test_cascade_leaves_other_teachers_and_days_alone(
        self, db, booking, busy_day, teacher
    ):
        booking.accept_session(teacher, busy_day["trigger"].id)

        for key in ("other_teacher", "other_day"):
            db.refresh(busy_day[key])
            assert busy_day[key].status == SessionStatus.REQUESTED.value

    def test_no_cascade_below_capacity(self, db, booking, busy_day, teacher, student, focus_one):
        booking.cancel_session(
            student,
            db.query(TutoringSession)
            .filter_by(focus_one_id=focus_one.id, teacher_id=teacher.id)
            .first()
            .id,
            "No longer needed",
        )
        booking.accept_session(teacher, busy_day["trigger"].id)

        db.refresh(busy_day["eligible"])
        assert busy_day["eligible"].status == SessionStatus.REQUESTED.value

    def test_cascade_failure_is_queued_for_retry(self, booking, busy_day, teacher):
        with patch.object(
            booking.auto_rejection_service, "run", side_effect=RuntimeError("db gone")
        ), patch.object(booking, "_queue_cascade_retry") as queue_retry:
            accepted = booking.accept_session(teacher, busy_day["trigger"].id)

        assert accepted.status == SessionStatus.SCHEDULED.value
        queue_retry.assert_called_once_with(teacher.id, BOOKING_DAY)


class TestRejectSession:
    def test_teacher_rejects_with_reason(self, db, booking, requested, teacher, student):
        rejected = booking.reject_session(teacher, requested.id, "  Not available that week ")

        assert rejected.status == SessionStatus.REJECTED.value
        assert rejected.rejected_by == teacher.id
        assert rejected.rejection_reason == "Not available that week"
        assert booking.repository.get_history(rejected.id)[-1].notes == "Not available that week"
        rows = events(db, rejected.id, SessionEventType.REJECTED)
        assert [row.payload["recipient_id"] for row in rows] == [student.id]

    def test_reason_is_required(self, booking, requested, teacher):
        with pytest.raises(ValidationException) as exc_info:
            booking.reject_session(teacher, requested.id, "   ")
        assert exc_info.value.code == "REASON_REQUIRED"

    def test_unassigned_teacher_cannot_reject(self, booking, requested, outside_teacher):
        with pytest.raises(ForbiddenException):
            booking.reject_session(outside_teacher, requested.id, "No")

    def test_only_requests_can_be_rejected(self, booking, scheduled, teacher):
        with pytest.raises(SessionStatusConflictException):
            booking.reject_session(teacher, scheduled.id, "Too late")


class TestCancelSession:
    def test_student_cancels_own_request(self, booking, requested, student):
        cancelled = booking.cancel_session(student, requested.id, "Exam moved")

        assert cancelled.status == SessionStatus.CANCELLED.value
        assert cancelled.cancelled_by == student.id
        assert cancelled.cancellation_reason == "Exam moved"
        entry = booking.repository.get_history(cancelled.id)[-1]
        assert (entry.action, entry.previous_status, entry.new_status) == (
            "cancelled",
            "requested",
            "cancelled",
        )

    def test_teacher_cancel_notifies_student(self, db, booking, scheduled, teacher, student):
        booking.cancel_session(teacher, scheduled.id, "Sick")
        rows = events(db, scheduled.id, SessionEventType.CANCELLED)
        assert [row.payload["recipient_id"] for row in rows] == [student.id]

    def test_student_cancel_notifies_teacher(self, db, booking, scheduled, teacher, student):
        booking.cancel_session(student, scheduled.id, "Sick")
        rows = events(db, scheduled.id, SessionEventType.CANCELLED)
        assert [row.payload["recipient_id"] for row in rows] == [teacher.id]

    def test_eligible_teacher_may_cancel_unassigned_request(
        self, booking, requested, second_teacher
    ):
        cancelled = booking.cancel_session(second_teacher, requested.id, "Duplicate request")
        assert cancelled.status == SessionStatus.CANCELLED.value

    def test_cohort_member_may_cancel(self, booking, make_session, cohort, teacher, other_student):
        session = make_session(
            cohort, at(BOOKING_DAY, "16:00"), teacher=teacher, subject_id=CHEMISTRY
        )
        assert booking.cancel_session(other_student, session.id, "Holiday").status == "cancelled"

    def test_ongoing_session_can_be_cancelled(self, booking, make_session, focus_one, teacher):
        session = make_session(
            focus_one, at(BOOKING_DAY, "10:00"), teacher=teacher, status=SessionStatus.ONGOING
        )
        assert booking.cancel_session(teacher, session.id, "Power cut").status == "cancelled"

    @pytest.mark.parametrize("actor_name", ["other_student", "outside_teacher"])
    def test_strangers_cannot_cancel(self, request, booking, scheduled, actor_name):
        with pytest.raises(ForbiddenException):
            booking.cancel_session(request.getfixturevalue(actor_name), scheduled.id, "Because")

    def test_reason_is_required(self, booking, scheduled, teacher):
        with pytest.raises(ValidationException):
            booking.cancel_session(teacher, scheduled.id, "")

    @pytest.mark.parametrize(
        "status", [SessionStatus.COMPLETED, SessionStatus.CANCELLED, SessionStatus.REJECTED]
    )
    def test_terminal_sessions_cannot_be_cancelled(
        self, booking, make_session, focus_one, teacher, status
    ):
        session = make_session(focus_one, at(BOOKING_DAY, "10:00"), teacher=teacher, status=status)
        with pytest.raises(SessionStatusConflictException):
            booking.cancel_session(teacher, session.id, "Again")


class TestRescheduleSession:
    def test_move_within_own_buffer(self, booking, scheduled, teacher):
        moved = booking.reschedule_session(
            teacher,
            scheduled.id,
            move(at(BOOKING_DAY, "10:30"), at(BOOKING_DAY, "11:30"), "Traffic"),
        )

        assert moved.start_time == at(BOOKING_DAY, "10:30")
        assert moved.end_time == at(BOOKING_DAY, "11:30")
        assert moved.status == SessionStatus.SCHEDULED.value
        assert moved.version == 2

        entry = booking.repository.get_history(moved.id)[-1]
        assert entry.action == "rescheduled"
        assert entry.notes == "Traffic"
        assert entry.changed_fields == {
            "start_time": {"from": "2030-01-08T10:00:00", "to": "2030-01-08T10:30:00"},
            "end_time": {"from": "2030-01-08T11:00:00", "to": "2030-01-08T11:30:00"},
        }

    def test_reschedule_notifies_other_party(self, db, booking, scheduled, teacher, student):
        booking.reschedule_session(
            teacher, scheduled.id, move(at(BOOKING_DAY, "14:00"), at(BOOKING_DAY, "15:00"))
        )
        rows = events(db, scheduled.id, SessionEventType.RESCHEDULED)
        assert [row.payload["recipient_id"] for row in rows] == [student.id]
        assert rows[0].payload["context"]["previous_start"] == "10:00"

    def test_move_into_conflict(self, booking, make_session, scheduled, focus_one, teacher):
        make_session(focus_one, at(BOOKING_DAY, "12:00"), teacher=teacher, subject_id=PHYSICS)
        with pytest.raises(TimeConflictException):
            booking.reschedule_session(
                teacher, scheduled.id, move(at(BOOKING_DAY, "11:30"), at(BOOKING_DAY, "12:30"))
            )

    def test_move_to_saturated_day(self, booking, make_session, scheduled, cohort, teacher):
        for clock in ("09:00", "11:00", "13:00", "15:00"):
            make_session(cohort, at(NEXT_DAY, clock), teacher=teacher, subject_id=CHEMISTRY)
        with pytest.raises(TeacherCapacityException):
            booking.reschedule_session(
                teacher, scheduled.id, move(at(NEXT_DAY, "17:00"), at(NEXT_DAY, "18:00"))
            )

    def test_saturated_source_day_does_not_block_same_day_move(
        self, booking, make_session, scheduled, cohort, teacher
    ):
        for clock in ("12:00", "14:00", "16:00"):
            make_session(cohort, at(BOOKING_DAY, clock), teacher=teacher, subject_id=CHEMISTRY)
        moved = booking.reschedule_session(
            teacher, scheduled.id, move(at(BOOKING_DAY, "18:00"), at(BOOKING_DAY, "19:00"))
        )
        assert moved.start_time == at(BOOKING_DAY, "18:00")

    def test_same_window_is_rejected(self, booking, scheduled, teacher):
        with pytest.raises(ValidationException) as exc_info:
            booking.reschedule_session(
                teacher, scheduled.id, move(at(BOOKING_DAY, "10:00"), at(BOOKING_DAY, "11:00"))
            )
        assert exc_info.value.code == "RESCHEDULE_NO_CHANGE"

    def test_sunday_is_rejected(self, booking, scheduled, teacher):
        with pytest.raises(SessionWindowException):
            booking.reschedule_session(
                teacher, scheduled.id, move(at(SUNDAY, "10:00"), at(SUNDAY, "11:00"))
            )

    def test_student_moves_pending_request(self, booking, requested, student):
        moved = booking.reschedule_session(
            student, requested.id, move(at(BOOKING_DAY, "14:00"), at(BOOKING_DAY, "15:00"))
        )
        assert moved.status == SessionStatus.REQUESTED.value
        assert moved.start_time == at(BOOKING_DAY, "14:00")

    def test_pending_request_keeps_program_rules(
        self, booking, make_session, requested, student, focus_one
    ):
        make_session(
            focus_one, at(NEXT_DAY, "10:00"), status=REQUESTED, requested_by=student
        )
        with pytest.raises(DuplicateSessionException):
            booking.reschedule_session(
                student, requested.id, move(at(NEXT_DAY, "14:00"), at(NEXT_DAY, "15:00"))
            )

    def test_scheduled_move_keeps_one_subject_per_day(
        self, booking, make_session, scheduled, focus_one, teacher, student
    ):
        make_session(focus_one, at(NEXT_DAY, "10:00"), status=REQUESTED, requested_by=student)

        with pytest.raises(DuplicateSessionException):
            booking.reschedule_session(
                teacher, scheduled.id, move(at(NEXT_DAY, "14:00"), at(NEXT_DAY, "15:00"))
            )

        assert booking.repository.get_live(scheduled.id).start_time == at(BOOKING_DAY, "10:00")

    def test_scheduled_move_respects_student_daily_limit(
        self, booking, make_session, scheduled, focus_one, teacher
    ):
        for clock in ("09:00", "12:00", "15:00"):
            make_session(focus_one, at(NEXT_DAY, clock), status=REQUESTED, subject_id=None)

        with pytest.raises(StudentDailyLimitException):
            booking.reschedule_session(
                teacher, scheduled.id, move(at(NEXT_DAY, "17:00"), at(NEXT_DAY, "18:00"))
            )

    def test_pending_request_needs_a_free_teacher(
        self, booking, make_session, requested, student, cohort, teacher, second_teacher
    ):
        for busy in (teacher, second_teacher):
            make_session(cohort, at(BOOKING_DAY, "15:00"), teacher=busy, subject_id=CHEMISTRY)
        with pytest.raises(TimeConflictException):
            booking.reschedule_session(
                student, requested.id, move(at(BOOKING_DAY, "15:00"), at(BOOKING_DAY, "16:00"))
            )

    def test_stranger_cannot_reschedule(self, booking, scheduled, other_student):
        with pytest.raises(ForbiddenException):
            booking.reschedule_session(
                other_student,
                scheduled.id,
                move(at(BOOKING_DAY, "14:00"), at(BOOKING_DAY, "15:00")),
            )

    def test_ongoing_cannot_be_rescheduled(self, booking, make_session, focus_one, teacher):
        session = make_session(
            focus_one, at(BOOKING_DAY, "10:00"), teacher=teacher, status=SessionStatus.ONGOING
        )
        with pytest.raises(SessionStatusConflictException):
            booking.reschedule_session(
                teacher, session.id, move(at(BOOKING_DAY, "14:00"), at(BOOKING_DAY, "15:00"))
            )


class TestProgressSession:
    def test_start_then_complete(self, booking, scheduled, teacher):
        started = booking.start_session(teacher, scheduled.id)
        assert started.status == SessionStatus.ONGOING.value

        completed = booking.complete_session(teacher, scheduled.id)
        assert completed.status == SessionStatus.COMPLETED.value
        assert [h.action for h in booking.repository.get_history(scheduled.id)] == [
            "started",
            "completed",
        ]

    def test_admin_may_start(self, booking, scheduled, admin):
        assert booking.start_session(admin, scheduled.id).status == "ongoing"

    def test_other_teacher_cannot_start(self, booking, scheduled, second_teacher):
        with pytest.raises(ForbiddenException):
            booking.start_session(second_teacher, scheduled.id)

    def test_cannot_complete_before_start(self, booking, scheduled, teacher):
        with pytest.raises(SessionStatusConflictException):
            booking.complete_session(teacher, scheduled.id)

    def test_completed_session_frees_capacity(self, db, booking, scheduled, teacher):
        booking.start_session(teacher, scheduled.id)
        assert booking.capacity_service.committed_count(teacher.id, BOOKING_DAY) == 1
        booking.complete_session(teacher, scheduled.id)
        assert booking.capacity_service.committed_count(teacher.id, BOOKING_DAY) == 0
