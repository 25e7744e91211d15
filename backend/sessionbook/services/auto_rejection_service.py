# backend/sessionbook/services/auto_rejection_service.py
"""
Cascading auto-rejection.

Runs after a transition has committed that may have saturated a teacher's
day. Every still-requested, unassigned session that teacher could have
served on that day is rejected with the system reason. Each session is
handled in its own transaction with a conditional update, so the batch
can be re-run at any time: sessions that already moved on are skipped,
and one failure never stops the rest.
"""

from datetime import date
from typing import Optional

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.enums import HistoryAction
from ..core.timezone_utils import utc_now
from ..models.event_outbox import SessionEventType
from ..models.session import SessionStatus, TutoringSession
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.factory import RepositoryFactory
from ..repositories.session_repository import SessionRepository
from .base import BaseService
from .capacity_service import CapacityService
from .notification_service import NotificationService, student_recipient_ids


class AutoRejectionService(BaseService):
    def __init__(
        self,
        db: Session,
        repository: Optional[SessionRepository] = None,
        capacity_service: Optional[CapacityService] = None,
        notification_service: Optional[NotificationService] = None,
    ):
        super().__init__(db)
        self.repository = repository or RepositoryFactory.create_session_repository(db)
        self.capacity_service = capacity_service or CapacityService(db, self.repository)
        self.notification_service = notification_service or NotificationService(db)

    @property
    def rejection_reason(self) -> str:
        return settings.auto_rejection_reason.format(
            max_sessions=self.capacity_service.daily_maximum
        )

    @BaseService.measure_operation("auto_reject_pending")
    def run(self, teacher_id: str, day: date, trigger_session_id: Optional[str] = None) -> int:
        """
        Reject the pending requests blocked by ``teacher_id`` being full on ``day``.

        Returns the number of sessions rejected by this call. Does nothing
        while the teacher still has capacity.
        """
        if not self.capacity_service.is_saturated(teacher_id, day):
            return 0

        pending = self.repository.find_pending_for_teacher_day(teacher_id, day)
        if not pending:
            return 0

        reason = self.rejection_reason
        rejected = 0
        for session in pending:
            try:
                if self._reject_one(session, teacher_id, reason, trigger_session_id):
                    rejected += 1
                    prometheus_metrics.record_auto_rejection("rejected")
                else:
                    prometheus_metrics.record_auto_rejection("skipped")
            except Exception as exc:
                prometheus_metrics.record_auto_rejection("error")
                self.logger.error(
                    "Auto-rejection failed for session %s (teacher %s, %s): %s",
                    session.id,
                    teacher_id,
                    day.isoformat(),
                    exc,
                )

        self.log_operation(
            "auto_reject_pending",
            teacher_id=teacher_id,
            date=day.isoformat(),
            candidates=len(pending),
            rejected=rejected,
        )
        return rejected

    def _reject_one(
        self,
        session: TutoringSession,
        teacher_id: str,
        reason: str,
        trigger_session_id: Optional[str],
    ) -> bool:
        now = utc_now()
        with self.transaction():
            updated = self.repository.transition(
                session.id,
                [SessionStatus.REQUESTED.value],
                session.version,
                status=SessionStatus.REJECTED.value,
                rejected_at=now,
                rejected_by=None,
                rejection_reason=reason,
            )
            if updated is None:
                self.logger.info("Session %s no longer pending, skipping", session.id)
                return False

            changed = {"saturated_teacher_id": teacher_id}
            if trigger_session_id:
                changed["trigger_session_id"] = trigger_session_id
            self.repository.append_history(
                updated,
                action=HistoryAction.AUTO_REJECTED.value,
                performed_by=None,
                performed_at=now,
                previous_status=SessionStatus.REQUESTED.value,
                new_status=SessionStatus.REJECTED.value,
                notes=reason,
                changed_fields=changed,
            )
            self.notification_service.notify_session_event(
                updated,
                SessionEventType.AUTO_REJECTED,
                student_recipient_ids(updated),
                "student_session_auto_rejected",
                {"reason": reason},
            )
        return True
