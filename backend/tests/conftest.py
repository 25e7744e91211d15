# backend/tests/conftest.py
"""
Shared fixtures for the booking engine test suite.

Every test runs inside an outer transaction on a single in-memory SQLite
connection. Services commit to a SAVEPOINT, so commits and rollbacks in the
code under test behave normally and the outer rollback wipes everything
afterwards.

The clock is pinned to Monday 2030-01-07 10:00 booking-timezone wall-clock,
which makes Tuesday 2030-01-08 the first bookable day.
"""

import os

# Settings are read at import time; configure before importing the package.
os.environ["CI"] = "1"
os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SCHEDULE_LOCK_ENABLED"] = "false"
os.environ["NOTIFICATIONS_ENABLED"] = "true"

from datetime import date, datetime, time, timedelta
from typing import Callable, Iterator, Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.engine import Connection
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from sessionbook import models  # noqa: F401 - registers tables on Base.metadata
from sessionbook.api.dependencies import get_db
from sessionbook.core import timezone_utils
from sessionbook.core.config import settings
from sessionbook.core.enums import ProgramKind, ProgramStatus, RoleName
from sessionbook.database import Base, configure_sqlite
from sessionbook.main import app
from sessionbook.models.program import Program, ProgramMember, ProgramTeacherAssignment
from sessionbook.models.session import SessionStatus, TutoringSession
from sessionbook.models.user import User, UserRole

FROZEN_NOW = datetime(2030, 1, 7, 10, 0)  # Monday
TODAY = FROZEN_NOW.date()
BOOKING_DAY = date(2030, 1, 8)  # Tuesday
NEXT_DAY = date(2030, 1, 9)
SUNDAY = date(2030, 1, 13)

MATH = "subj-math"
PHYSICS = "subj-physics"
CHEMISTRY = "subj-chemistry"
SUBJECT_NAMES = {MATH: "Mathematics", PHYSICS: "Physics", CHEMISTRY: "Chemistry"}


def at(day: date, clock: str) -> datetime:
    """``at(BOOKING_DAY, "10:30")`` -> naive wall-clock datetime."""
    hour, minute = (int(part) for part in clock.split(":"))
    return datetime.combine(day, time(hour, minute))


test_engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
configure_sqlite(test_engine)
Base.metadata.create_all(bind=test_engine)


# ============================================================================
# DATABASE
# ============================================================================


@pytest.fixture
def connection() -> Iterator[Connection]:
    conn = test_engine.connect()
    outer = conn.begin()
    try:
        yield conn
    finally:
        outer.rollback()
        conn.close()


@pytest.fixture
def session_factory(connection: Connection) -> sessionmaker:
    """Sessions joined to the test connection; ``commit`` releases a SAVEPOINT."""
    return sessionmaker(
        bind=connection,
        join_transaction_mode="create_savepoint",
        autoflush=False,
        expire_on_commit=False,
    )


@pytest.fixture
def db(session_factory: sessionmaker) -> Iterator[Session]:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(autouse=True)
def frozen_clock(monkeypatch: pytest.MonkeyPatch) -> datetime:
    monkeypatch.setattr(timezone_utils, "get_local_now", lambda: FROZEN_NOW)
    return FROZEN_NOW


@pytest.fixture(autouse=True)
def no_schedule_lock(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(settings, "schedule_lock_enabled", False)


# ============================================================================
# FACTORIES
# ============================================================================


@pytest.fixture
def make_user(db: Session) -> Callable[..., User]:
    def _make(full_name: str, *roles: RoleName, is_active: bool = True) -> User:
        user = User(
            full_name=full_name,
            email=f"{full_name.lower().replace(' ', '.')}@example.com",
            is_active=is_active,
        )
        user.roles = [UserRole(role=role.value) for role in roles]
        db.add(user)
        db.commit()
        return user

    return _make


@pytest.fixture
def make_program(db: Session) -> Callable[..., Program]:
    def _make(
        name: str,
        *,
        kind: ProgramKind = ProgramKind.FOCUS_ONE,
        student: Optional[User] = None,
        members: tuple = (),
        assignments: tuple = (),
        status: ProgramStatus = ProgramStatus.ACTIVE,
    ) -> Program:
        program = Program(
            kind=kind.value,
            name=name,
            student_id=student.id if student is not None else None,
            status=status.value,
        )
        for teacher, subject_id in assignments:
            program.assignments.append(
                ProgramTeacherAssignment(teacher_id=teacher.id, subject_id=subject_id)
            )
        for member in members:
            program.members.append(ProgramMember(student_id=member.id))
        db.add(program)
        db.commit()
        return program

    return _make


@pytest.fixture
def make_session(db: Session) -> Callable[..., TutoringSession]:
    """Insert a session row directly, bypassing the booking rules."""

    def _make(
        program: Program,
        start: datetime,
        minutes: int = 60,
        *,
        status: SessionStatus = SessionStatus.SCHEDULED,
        teacher: Optional[User] = None,
        subject_id: Optional[str] = MATH,
        requested_by: Optional[User] = None,
        title: Optional[str] = None,
    ) -> TutoringSession:
        session = TutoringSession(
            title=title or f"{SUBJECT_NAMES.get(subject_id, 'Tutoring')} at {start:%H:%M}",
            start_time=start,
            end_time=start + timedelta(minutes=minutes),
            focus_one_id=program.id if program.is_focus_one else None,
            cohort_id=None if program.is_focus_one else program.id,
            subject_id=subject_id,
            subject_name=SUBJECT_NAMES.get(subject_id),
            teacher_id=teacher.id if teacher is not None else None,
            status=status.value,
            requested_by=requested_by.id if requested_by is not None else None,
        )
        db.add(session)
        db.commit()
        return session

    return _make


# ============================================================================
# PEOPLE AND PROGRAMS
# ============================================================================


@pytest.fixture
def admin(make_user) -> User:
    return make_user("Ada Admin", RoleName.ADMIN)


@pytest.fixture
def teacher(make_user) -> User:
    return make_user("Tara Teacher", RoleName.TEACHER)


@pytest.fixture
def second_teacher(make_user) -> User:
    return make_user("Theo Teacher", RoleName.TEACHER)


@pytest.fixture
def outside_teacher(make_user) -> User:
    """A teacher with no mapping onto the default programs."""
    return make_user("Olga Outsider", RoleName.TEACHER)


@pytest.fixture
def student(make_user) -> User:
    return make_user("Sam Student", RoleName.STUDENT)


@pytest.fixture
def other_student(make_user) -> User:
    return make_user("Olive Student", RoleName.STUDENT)


@pytest.fixture
def focus_one(make_program, student, teacher, second_teacher) -> Program:
    """Sam's FocusOne: Math with both teachers, Physics with Tara only."""
    return make_program(
        "Sam FocusOne",
        student=student,
        assignments=((teacher, MATH), (second_teacher, MATH), (teacher, PHYSICS)),
    )


@pytest.fixture
def cohort(make_program, student, other_student, teacher) -> Program:
    return make_program(
        "Evening Cohort",
        kind=ProgramKind.COHORT,
        members=(student, other_student),
        assignments=((teacher, CHEMISTRY),),
    )


# ============================================================================
# API
# ============================================================================


@pytest.fixture
def client(db: Session) -> Iterator[TestClient]:
    def override_get_db() -> Iterator[Session]:
        yield db

    app.dependency_overrides[get_db] = override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def auth_headers(user: User) -> dict:
    return {"X-User-Id": user.id}
