# backend/sessionbook/tasks/booking_tasks.py
"""
Background entry point for the auto-rejection batch.

The booking workflow runs the cascade inline after a commit. If that run
failed part-way, this task can be queued to finish it; the batch skips
sessions that already left ``requested``.
"""

from datetime import date

from celery.utils.log import get_task_logger

from ..database import SessionLocal
from ..services.auto_rejection_service import AutoRejectionService
from .celery_app import celery_app

logger = get_task_logger(__name__)


@celery_app.task(
    name="sessions.auto_reject_pending",
    autoretry_for=(Exception,),
    retry_backoff=True,
    retry_kwargs={"max_retries": 3},
)
def auto_reject_pending(teacher_id: str, day: str) -> int:
    session = SessionLocal()
    try:
        rejected = AutoRejectionService(session).run(teacher_id, date.fromisoformat(day))
        logger.info("Auto-rejected %s sessions for teacher %s on %s", rejected, teacher_id, day)
        return rejected
    finally:
        session.close()
