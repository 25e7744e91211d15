# backend/sessionbook/services/notification_service.py
"""
Writes notification intents to the outbox.

Called inside the booking workflow's transaction so an intent is stored
exactly when its transition commits. Each enqueue runs in its own
savepoint; a failure is logged and never aborts the booking operation.
"""

from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from ..core.config import settings
from ..models.event_outbox import SessionEventType
from ..models.session import TutoringSession
from ..repositories.event_outbox_repository import EventOutboxRepository
from ..repositories.factory import RepositoryFactory
from .base import BaseService
from .directory_service import DirectoryService


def session_context(session: TutoringSession) -> Dict[str, Any]:
    """Template variables shared by every session notification."""
    teacher = session.teacher
    return {
        "session_id": session.id,
        "title": session.title,
        "subject_name": session.subject_name or "",
        "date": session.start_time.date().isoformat(),
        "start": session.start_time.strftime("%H:%M"),
        "end": session.end_time.strftime("%H:%M"),
        "status": session.status,
        "meeting_link": session.meeting_link or "",
        "teacher_name": teacher.full_name if teacher is not None else "",
    }


def student_recipient_ids(session: TutoringSession) -> List[str]:
    """The requesting student, or every student of the program for direct bookings."""
    if session.requested_by:
        return [session.requested_by]
    program = session.focus_one or session.cohort
    return program.student_ids() if program is not None else []


class NotificationService(BaseService):
    def __init__(
        self,
        db: Session,
        outbox_repository: Optional[EventOutboxRepository] = None,
        directory: Optional[DirectoryService] = None,
    ):
        super().__init__(db)
        self.outbox_repository = (
            outbox_repository or RepositoryFactory.create_event_outbox_repository(db)
        )
        self.directory = directory or DirectoryService(db)

    def notify_session_event(
        self,
        session: TutoringSession,
        event_type: SessionEventType,
        recipient_ids: Iterable[Optional[str]],
        template_key: str,
        extra_context: Optional[Dict[str, Any]] = None,
    ) -> int:
        """
        Enqueue one outbox row per recipient. Returns how many were stored.

        The idempotency key includes the session version, so retrying the
        same transition never produces a duplicate notification.
        """
        if not settings.notifications_enabled:
            return 0

        try:
            emails = self.directory.emails_for(recipient_ids)
        except Exception as exc:
            self.logger.warning(
                "Could not resolve recipients for %s on session %s: %s",
                event_type.value,
                session.id,
                exc,
            )
            return 0

        context = session_context(session)
        context.update(extra_context or {})

        stored = 0
        for user_id, email in emails.items():
            key = f"{event_type.value}:{session.id}:v{session.version}:{user_id}"
            try:
                with self.db.begin_nested():
                    self.outbox_repository.enqueue(
                        event_type=event_type.value,
                        aggregate_id=session.id,
                        payload={
                            "recipient_id": user_id,
                            "recipient_email": email,
                            "template_key": template_key,
                            "context": context,
                        },
                        idempotency_key=key,
                    )
                stored += 1
            except Exception as exc:
                self.logger.error(
                    "Failed to enqueue %s notification for session %s to %s: %s",
                    event_type.value,
                    session.id,
                    user_id,
                    exc,
                )
        return stored
