# backend/sessionbook/services/conflict_checker.py
"""
Conflict detection for teacher schedules.

The rules themselves are pure functions over ``TimeWindow`` lists so the
availability calculator can evaluate many candidates against one loaded
day. ``ConflictChecker`` loads a teacher's day from the repository and
applies them.

Two independent sources make a candidate unavailable:

1. Buffer overlap: the candidate overlaps an existing session once the
   break buffer is added on both sides of that session.
2. Rest period: when two existing sessions are back-to-back (the second
   starts no later than one buffer after the first ends), the teacher is
   also unavailable for the blackout period after the second one ends.
"""

from dataclasses import dataclass, field
from datetime import date, timedelta
import logging
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy.orm import Session

from ..core.config import settings
from ..domain.time_window import TimeWindow
from ..models.session import TutoringSession
from ..repositories.factory import RepositoryFactory
from ..repositories.session_repository import SessionRepository
from .base import BaseService

logger = logging.getLogger(__name__)


def _default_buffer() -> timedelta:
    return timedelta(minutes=settings.break_buffer_minutes)


def _default_blackout() -> timedelta:
    return timedelta(minutes=settings.back_to_back_blackout_minutes)


def find_back_to_back_pairs(
    existing: Iterable[TimeWindow],
    buffer: Optional[timedelta] = None,
) -> List[Tuple[TimeWindow, TimeWindow]]:
    """Consecutive pairs (by start time) separated by no more than ``buffer``."""
    buffer = _default_buffer() if buffer is None else buffer
    ordered = sorted(existing)
    return [
        (first, second)
        for first, second in zip(ordered, ordered[1:])
        if second.start <= first.end + buffer
    ]


def blackout_windows(
    existing: Iterable[TimeWindow],
    buffer: Optional[timedelta] = None,
    blackout: Optional[timedelta] = None,
) -> List[TimeWindow]:
    """Rest periods that follow every back-to-back pair."""
    blackout = _default_blackout() if blackout is None else blackout
    if blackout <= timedelta(0):
        return []
    return [
        TimeWindow(second.end, second.end + blackout)
        for _first, second in find_back_to_back_pairs(existing, buffer)
    ]


def has_conflict(
    candidate: TimeWindow,
    existing: Sequence[TimeWindow],
    buffer: Optional[timedelta] = None,
    blackout: Optional[timedelta] = None,
) -> bool:
    """
    Whether ``candidate`` collides with ``existing``.

    Pure: the result depends only on the arguments. The rest periods are
    derived from the full ``existing`` list on every call.
    """
    buffer = _default_buffer() if buffer is None else buffer
    for window in existing:
        if candidate.start < window.end + buffer and candidate.end > window.start - buffer:
            return True
    return any(candidate.overlaps(rest) for rest in blackout_windows(existing, buffer, blackout))


@dataclass
class ConflictReport:
    """Outcome of checking one candidate window for one teacher."""

    teacher_id: str
    available: bool
    committed_count: int
    reason: Optional[str] = None
    conflicting_session_ids: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, object]:
        return {
            "teacher_id": self.teacher_id,
            "available": self.available,
            "committed_count": self.committed_count,
            "reason": self.reason,
            "conflicting_session_ids": self.conflicting_session_ids,
        }


class ConflictChecker(BaseService):
    """Loads a teacher's day and applies the conflict rules to it."""

    def __init__(self, db: Session, repository: Optional[SessionRepository] = None):
        super().__init__(db)
        self.repository = repository or RepositoryFactory.create_session_repository(db)

    def get_existing_sessions(
        self,
        teacher_id: str,
        day: date,
        subject_id: Optional[str] = None,
        exclude_session_id: Optional[str] = None,
    ) -> List[TutoringSession]:
        """
        Sessions that block the teacher on ``day``.

        Always the teacher's own requested/scheduled/ongoing sessions. With a
        subject, also unassigned same-subject requests from programs where the
        teacher could still claim them.
        """
        sessions: Dict[str, TutoringSession] = {
            s.id: s
            for s in self.repository.get_teacher_commitments(teacher_id, day, exclude_session_id)
        }
        if subject_id:
            for pending in self.repository.get_claimable_requests(
                teacher_id, day, subject_id, exclude_session_id
            ):
                sessions.setdefault(pending.id, pending)
        return sorted(sessions.values(), key=lambda s: (s.start_time, s.id))

    @BaseService.measure_operation("check_conflict")
    def check_conflict(
        self,
        teacher_id: str,
        candidate: TimeWindow,
        subject_id: Optional[str] = None,
        exclude_session_id: Optional[str] = None,
    ) -> ConflictReport:
        existing = self.get_existing_sessions(
            teacher_id, candidate.day, subject_id, exclude_session_id
        )
        committed = sum(1 for s in existing if s.teacher_id == teacher_id and s.is_committed)
        windows = [s.window for s in existing]
        if not has_conflict(candidate, windows):
            return ConflictReport(teacher_id=teacher_id, available=True, committed_count=committed)

        buffer = _default_buffer()
        overlapping = [
            s.id for s in existing if candidate.overlaps(s.window.expanded(buffer))
        ]
        return ConflictReport(
            teacher_id=teacher_id,
            available=False,
            committed_count=committed,
            reason=(
                "This time slot conflicts with an existing session, does not keep the "
                "required break, or falls inside the rest period after back-to-back sessions"
            ),
            conflicting_session_ids=overlapping,
        )
