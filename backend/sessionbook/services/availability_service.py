# backend/sessionbook/services/availability_service.py
"""
Availability Calculator.

Produces bookable start times for a teacher (or a pool of teachers) on a
day. Slots are never cached: every call reloads the teacher's day, so a
cancellation is visible to the next query.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
import heapq
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence

from sqlalchemy.orm import Session

from ..core import timezone_utils
from ..core.config import settings
from ..core.enums import ProgramKind
from ..core.exceptions import ForbiddenException, ValidationException
from ..domain.session_window import validate_session_date
from ..domain.time_window import TimeWindow
from ..models.user import User
from ..repositories.factory import RepositoryFactory
from ..repositories.session_repository import SessionRepository
from .base import BaseService
from .capacity_service import CapacityService
from .conflict_checker import ConflictChecker, ConflictReport, has_conflict
from .directory_service import DirectoryService


@dataclass
class PoolAvailability:
    """Result of checking one window against every teacher in a pool."""

    available_teacher_ids: List[str] = field(default_factory=list)
    reports: List[ConflictReport] = field(default_factory=list)

    @property
    def available(self) -> bool:
        return bool(self.available_teacher_ids)


def merge_slot_streams(streams: Iterable[Iterable[TimeWindow]]) -> List[TimeWindow]:
    """Union of several sorted slot sequences, deduplicated by start time."""
    merged: List[TimeWindow] = []
    for slot in heapq.merge(*streams):
        if merged and merged[-1].start == slot.start:
            continue
        merged.append(slot)
    return merged


class AvailabilityService(BaseService):
    def __init__(
        self,
        db: Session,
        repository: Optional[SessionRepository] = None,
        conflict_checker: Optional[ConflictChecker] = None,
        capacity_service: Optional[CapacityService] = None,
        directory: Optional[DirectoryService] = None,
    ):
        super().__init__(db)
        self.repository = repository or RepositoryFactory.create_session_repository(db)
        self.conflict_checker = conflict_checker or ConflictChecker(db, self.repository)
        self.capacity_service = capacity_service or CapacityService(db, self.repository)
        self.directory = directory or DirectoryService(db)

    def _latest_start(self, day: date, duration: timedelta) -> datetime:
        closing = datetime.combine(day, settings.working_day_end)
        latest = datetime.combine(day, settings.latest_session_start)
        return min(closing - duration, latest)

    def generate_slots(
        self,
        teacher_id: str,
        subject_id: Optional[str],
        day: date,
        slot_duration_minutes: int,
    ) -> Iterator[TimeWindow]:
        """
        Lazily yield free ``slot_duration_minutes`` windows on the grid.

        Candidates start at the opening hour and step by the grid interval;
        a candidate may end exactly at closing time but not after. Nothing is
        yielded when the teacher is already at daily capacity.
        """
        if self.capacity_service.is_saturated(teacher_id, day):
            return

        existing = [
            s.window
            for s in self.conflict_checker.get_existing_sessions(teacher_id, day, subject_id)
        ]
        duration = timedelta(minutes=slot_duration_minutes)
        step = timedelta(minutes=settings.slot_step_minutes)
        cursor = datetime.combine(day, settings.working_day_start)
        latest = self._latest_start(day, duration)

        while cursor <= latest:
            candidate = TimeWindow(cursor, cursor + duration)
            if not has_conflict(candidate, existing):
                yield candidate
            cursor += step

    def generate_pool_slots(
        self,
        teacher_ids: Sequence[str],
        subject_id: Optional[str],
        day: date,
        slot_duration_minutes: int,
    ) -> List[TimeWindow]:
        """Slots where at least one teacher of the pool is free."""
        return merge_slot_streams(
            self.generate_slots(teacher_id, subject_id, day, slot_duration_minutes)
            for teacher_id in dict.fromkeys(teacher_ids)
        )

    def check_teacher_availability(
        self,
        teacher_id: str,
        window: TimeWindow,
        subject_id: Optional[str] = None,
        exclude_session_id: Optional[str] = None,
    ) -> ConflictReport:
        committed = self.capacity_service.committed_count(
            teacher_id, window.day, exclude_session_id
        )
        maximum = self.capacity_service.daily_maximum
        if committed >= maximum:
            return ConflictReport(
                teacher_id=teacher_id,
                available=False,
                committed_count=committed,
                reason=(
                    f"Teacher already has {committed} sessions on this day (maximum: {maximum})"
                ),
            )
        return self.conflict_checker.check_conflict(
            teacher_id, window, subject_id, exclude_session_id
        )

    @BaseService.measure_operation("check_pool_availability")
    def check_pool_availability(
        self,
        teacher_ids: Sequence[str],
        window: TimeWindow,
        subject_id: Optional[str] = None,
        exclude_session_id: Optional[str] = None,
    ) -> PoolAvailability:
        result = PoolAvailability()
        for teacher_id in dict.fromkeys(teacher_ids):
            report = self.check_teacher_availability(
                teacher_id, window, subject_id, exclude_session_id
            )
            result.reports.append(report)
            if report.available:
                result.available_teacher_ids.append(teacher_id)
        return result

    @BaseService.measure_operation("get_available_slots")
    def get_available_slots(
        self,
        actor: User,
        program_id: str,
        subject_id: str,
        day: date,
        slot_duration_minutes: Optional[int] = None,
    ) -> Dict[str, Any]:
        """
        Bookable slots for a program's subject on ``day``.

        Returns ``{date, slot_duration_minutes, slots, total_slots}`` with
        slots sorted by start time and unique per start.
        """
        duration = slot_duration_minutes or settings.default_slot_duration_minutes
        if not (
            settings.min_slot_duration_minutes <= duration <= settings.max_slot_duration_minutes
        ):
            raise ValidationException(
                f"Slot duration must be between {settings.min_slot_duration_minutes} and "
                f"{settings.max_slot_duration_minutes} minutes",
                code="INVALID_DURATION",
                details={"duration": duration},
            )
        validate_session_date(day, timezone_utils.get_local_today())

        program = self.directory.get_program(program_id)
        if not actor.is_admin and not self.directory.is_program_student(actor.id, program):
            label = "Focus One" if program.kind == ProgramKind.FOCUS_ONE.value else "cohort"
            raise ForbiddenException(f"You do not have access to this {label}")

        teacher_ids = self.directory.teacher_pool(program, subject_id)
        if not teacher_ids:
            raise ValidationException(
                "No teachers assigned to this subject for this program",
                code="NO_TEACHERS_FOR_SUBJECT",
                details={"program_id": program_id, "subject_id": subject_id},
            )

        slots = self.generate_pool_slots(teacher_ids, subject_id, day, duration)
        self.log_operation(
            "get_available_slots",
            program_id=program_id,
            subject_id=subject_id,
            date=day.isoformat(),
            total_slots=len(slots),
        )
        return {
            "date": day,
            "slot_duration_minutes": duration,
            "slots": slots,
            "total_slots": len(slots),
        }
