# backend/sessionbook/tasks/notification_tasks.py
"""
Celery tasks for dispatching notification outbox events.

Implements a two-step workflow:
1. `outbox.dispatch_pending` periodically enqueues delivery tasks.
2. `outbox.deliver_event` renders and hands one event to the dispatcher,
   retrying with backoff until it succeeds or runs out of attempts.
"""

from __future__ import annotations

from contextlib import contextmanager
from time import monotonic
from typing import Any, Iterator, Optional

from celery.app.task import Task  # noqa: F401 - used for type hints
from celery.utils.log import get_task_logger
from sqlalchemy.orm import Session

from ..core.config import settings
from ..database import SessionLocal
from ..monitoring.prometheus_metrics import PrometheusMetrics
from ..repositories.event_outbox_repository import EventOutboxRepository
from ..services.notification_dispatcher import (
    NotificationDispatchTemporaryError,
    get_notification_dispatcher,
)
from .celery_app import celery_app

logger = get_task_logger(__name__)

MAX_DELIVERY_ATTEMPTS = 5
BACKOFF_SECONDS = [30, 120, 600, 1800, 7200]


def _next_backoff(attempt_number: int) -> int:
    """Return backoff delay for the given attempt (1-indexed)."""
    index = max(0, min(attempt_number - 1, len(BACKOFF_SECONDS) - 1))
    return BACKOFF_SECONDS[index]


@contextmanager
def _session_scope() -> Iterator[Session]:
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


@celery_app.task(name="outbox.dispatch_pending", max_retries=0)
def dispatch_pending() -> int:
    """Enqueue a delivery task per due event. Returns how many were scheduled."""
    with _session_scope() as session:
        pending = EventOutboxRepository(session).fetch_pending(limit=settings.outbox_batch_size)
        for event in pending:
            deliver_event.apply_async((event.id,))
        if pending:
            logger.info("Scheduled %s outbox events for delivery", len(pending))
        return len(pending)


@celery_app.task(name="outbox.deliver_event", bind=True, max_retries=MAX_DELIVERY_ATTEMPTS)
def deliver_event(self: "Task[Any, Any]", event_id: str) -> Optional[str]:
    """Deliver a single outbox event."""
    dispatcher = get_notification_dispatcher()
    session = SessionLocal()
    start: Optional[float] = None

    try:
        repo = EventOutboxRepository(session)
        event = repo.get_by_id(event_id)
        if event is None:
            logger.warning("Outbox event %s missing; skipping", event_id)
            return None

        attempt_number = event.attempt_count + 1
        PrometheusMetrics.record_notification_attempt(event.event_type)

        recipient = event.recipient_email
        if not recipient:
            repo.mark_failed(
                event.id,
                attempt_count=attempt_number,
                backoff_seconds=0,
                error="missing recipient_email",
                terminal=True,
            )
            session.commit()
            PrometheusMetrics.record_notification_outcome(event.event_type, "failed")
            logger.error("Outbox event %s has no recipient; marked failed", event.id)
            return None

        try:
            start = monotonic()
            dispatcher.notify(recipient, event.template_key, event.payload.get("context") or {})
            PrometheusMetrics.observe_notification_dispatch(event.event_type, monotonic() - start)
            repo.mark_sent(event.id, attempt_number)
            session.commit()
            PrometheusMetrics.record_notification_outcome(event.event_type, "sent")
            logger.info(
                "Delivered outbox event %s type=%s attempts=%s",
                event.id,
                event.event_type,
                attempt_number,
            )
            return str(event.id)
        except Exception as exc:
            duration = (monotonic() - start) if start is not None else 0.0
            PrometheusMetrics.observe_notification_dispatch(event.event_type, duration)
            backoff = _next_backoff(attempt_number)
            terminal = attempt_number >= MAX_DELIVERY_ATTEMPTS
            repo.mark_failed(
                event.id,
                attempt_count=attempt_number,
                backoff_seconds=backoff,
                error=str(exc),
                terminal=terminal,
            )
            session.commit()
            if terminal:
                PrometheusMetrics.record_notification_outcome(event.event_type, "failed")
                logger.error(
                    "Outbox event %s failed permanently after %s attempts",
                    event.id,
                    attempt_number,
                )
                raise
            if isinstance(exc, NotificationDispatchTemporaryError):
                logger.warning(
                    "Retrying outbox event %s attempt=%s backoff=%ss",
                    event.id,
                    attempt_number,
                    backoff,
                )
            else:
                logger.exception(
                    "Error delivering outbox event %s; retrying in %ss", event.id, backoff
                )
            raise self.retry(countdown=backoff, exc=exc)
    finally:
        session.close()
