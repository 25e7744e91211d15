"""
Repository queries the booking rules are built on.
"""

from datetime import datetime

import pytest

from conftest import BOOKING_DAY, CHEMISTRY, MATH, NEXT_DAY, PHYSICS, at
from sessionbook.core.enums import RoleName
from sessionbook.models.session import SessionStatus
from sessionbook.models.user import User
from sessionbook.repositories.factory import RepositoryFactory


@pytest.fixture
def repository(db):
    return RepositoryFactory.create_session_repository(db)


class TestTransition:
    def test_matching_precondition_bumps_version(self, repository, make_session, focus_one):
        pending = make_session(focus_one, at(BOOKING_DAY, "10:00"), status=SessionStatus.REQUESTED)

        updated = repository.transition(
            pending.id, ["requested"], 1, status=SessionStatus.CANCELLED.value
        )

        assert updated is not None
        assert updated.status == "cancelled"
        assert updated.version == 2

    def test_stale_version_does_not_match(self, repository, make_session, focus_one):
        pending = make_session(focus_one, at(BOOKING_DAY, "10:00"), status=SessionStatus.REQUESTED)
        assert repository.transition(pending.id, ["requested"], 7, status="cancelled") is None

    def test_wrong_status_does_not_match(self, repository, make_session, focus_one, teacher):
        scheduled = make_session(focus_one, at(BOOKING_DAY, "10:00"), teacher=teacher)
        assert repository.transition(scheduled.id, ["requested"], 1, status="rejected") is None

    def test_deleted_rows_do_not_match(self, db, repository, make_session, focus_one, admin):
        pending = make_session(focus_one, at(BOOKING_DAY, "10:00"), status=SessionStatus.REQUESTED)
        repository.set_deleted(pending, datetime(2030, 1, 7, 9, 0), admin.id)
        db.commit()

        assert repository.transition(pending.id, ["requested"], 1, status="cancelled") is None
        assert repository.get_live(pending.id) is None
        assert repository.get_deleted(pending.id) is not None


class TestTeacherDayQueries:
    def test_commitments_skip_terminal_and_other_days(
        self, repository, make_session, focus_one, teacher
    ):
        kept = [
            make_session(focus_one, at(BOOKING_DAY, "09:00"), teacher=teacher),
            make_session(
                focus_one,
                at(BOOKING_DAY, "11:00"),
                teacher=teacher,
                status=SessionStatus.ONGOING,
                subject_id=PHYSICS,
            ),
        ]
        make_session(
            focus_one, at(BOOKING_DAY, "13:00"), teacher=teacher, status=SessionStatus.COMPLETED
        )
        make_session(focus_one, at(NEXT_DAY, "09:00"), teacher=teacher)

        commitments = repository.get_teacher_commitments(teacher.id, BOOKING_DAY)

        assert [s.id for s in commitments] == [s.id for s in kept]
        assert repository.get_teacher_commitments(
            teacher.id, BOOKING_DAY, exclude_session_id=kept[0].id
        ) == [kept[1]]

    def test_claimable_requests_follow_subject_mapping(
        self, repository, make_session, focus_one, cohort, teacher, second_teacher
    ):
        math = make_session(focus_one, at(BOOKING_DAY, "09:00"), status=SessionStatus.REQUESTED)
        make_session(
            cohort, at(BOOKING_DAY, "11:00"), status=SessionStatus.REQUESTED, subject_id=CHEMISTRY
        )

        assert repository.get_claimable_requests(teacher.id, BOOKING_DAY, MATH) == [math]
        assert repository.get_claimable_requests(second_teacher.id, BOOKING_DAY, CHEMISTRY) == []

    def test_program_day_counters(self, repository, make_session, focus_one, teacher):
        make_session(focus_one, at(BOOKING_DAY, "09:00"), teacher=teacher)
        make_session(focus_one, at(BOOKING_DAY, "11:00"), status=SessionStatus.REQUESTED)
        make_session(
            focus_one, at(BOOKING_DAY, "13:00"), status=SessionStatus.CANCELLED, subject_id=PHYSICS
        )

        assert repository.count_program_sessions_for_day(focus_one.id, BOOKING_DAY) == 2
        assert repository.has_active_subject_session(focus_one.id, MATH, BOOKING_DAY)
        assert not repository.has_active_subject_session(focus_one.id, PHYSICS, BOOKING_DAY)


class TestBaseRepository:
    def test_generic_helpers(self, db, make_user):
        users = RepositoryFactory.create_user_repository(db)
        active = make_user("Ana Active", RoleName.STUDENT)
        make_user("Ivan Inactive", RoleName.STUDENT, is_active=False)

        assert users.count() == 2
        assert users.exists(email="ana.active@example.com")
        assert [u.id for u in users.find_by(is_active=True)] == [active.id]

        renamed = users.update(active.id, full_name="Ana Renamed", not_a_column="ignored")
        assert isinstance(renamed, User)
        assert renamed.full_name == "Ana Renamed"
        assert users.update("01HZZZZZZZZZZZZZZZZZZZZZZZ", full_name="Nobody") is None

    def test_active_lookup_and_emails(self, db, make_user):
        users = RepositoryFactory.create_user_repository(db)
        active = make_user("Ana Active", RoleName.TEACHER)
        inactive = make_user("Ivan Inactive", RoleName.TEACHER, is_active=False)

        assert users.get_active(inactive.id) is None
        assert users.get_emails([active.id, inactive.id, None]) == {
            active.id: "ana.active@example.com"
        }

    def test_lock_for_scheduling_returns_rows_in_id_order(self, db, make_user):
        users = RepositoryFactory.create_user_repository(db)
        bea = make_user("Bea Teacher", RoleName.TEACHER)
        abe = make_user("Abe Teacher", RoleName.TEACHER)

        locked = users.lock_for_scheduling([bea.id, None, abe.id, bea.id])

        assert [u.id for u in locked] == sorted([abe.id, bea.id])
        assert users.lock_for_scheduling([]) == []
