# backend/sessionbook/repositories/event_outbox_repository.py
"""
Repository for the notification outbox.

Rows are inserted in the caller's transaction and are idempotent on
``idempotency_key``: re-enqueueing the same intent returns the existing row.
"""

from __future__ import annotations

from datetime import datetime, timedelta
import logging
from typing import Any, Optional, cast

from sqlalchemy import insert, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.orm import Session
import ulid

from ..core.timezone_utils import utc_now
from ..database import get_dialect_name
from ..models.event_outbox import EventOutbox, EventOutboxStatus

logger = logging.getLogger(__name__)


class EventOutboxRepository:
    """Data access helpers for event outbox rows."""

    def __init__(self, db: Session):
        self.db = db
        self._dialect = get_dialect_name(db, default="postgresql").lower()

    def enqueue(
        self,
        event_type: str,
        aggregate_id: str,
        payload: dict[str, Any],
        idempotency_key: str,
    ) -> EventOutbox:
        """Insert a PENDING row unless one already exists for the key."""
        event_id = str(ulid.ULID())
        values = dict(
            id=event_id,
            event_type=event_type,
            aggregate_id=aggregate_id,
            payload=payload,
            idempotency_key=idempotency_key,
            status=EventOutboxStatus.PENDING.value,
            attempt_count=0,
            next_attempt_at=utc_now(),
        )

        if self._dialect == "postgresql":
            stmt = (
                pg_insert(EventOutbox)
                .values(**values)
                .on_conflict_do_nothing(index_elements=["idempotency_key"])
            )
        else:
            stmt = insert(EventOutbox).values(**values)
            if self._dialect == "sqlite":
                stmt = stmt.prefix_with("OR IGNORE")

        result = self.db.execute(stmt)
        if getattr(result, "rowcount", 0):
            self.db.flush()
            row = cast(Optional[EventOutbox], self.db.get(EventOutbox, event_id))
            if row is None:
                raise RuntimeError("Inserted outbox row could not be reloaded")
            return row

        existing = self.db.execute(
            select(EventOutbox).where(EventOutbox.idempotency_key == idempotency_key)
        ).scalar_one_or_none()
        if existing is None:
            raise RuntimeError("Outbox row not found after enqueue conflict")
        return cast(EventOutbox, existing)

    def fetch_pending(self, limit: int = 200) -> list[EventOutbox]:
        """Pending events due for delivery, oldest first."""
        stmt = (
            select(EventOutbox)
            .where(EventOutbox.status == EventOutboxStatus.PENDING.value)
            .where(EventOutbox.next_attempt_at <= utc_now())
            .order_by(EventOutbox.next_attempt_at.asc(), EventOutbox.id.asc())
            .limit(limit)
        )
        if self._dialect == "postgresql":
            stmt = stmt.with_for_update(skip_locked=True)
        return cast(list[EventOutbox], self.db.execute(stmt).scalars().all())

    def get_by_id(self, event_id: str) -> Optional[EventOutbox]:
        return cast(Optional[EventOutbox], self.db.get(EventOutbox, event_id))

    def mark_sent(self, event_id: str, attempt_count: int) -> None:
        now = utc_now()
        self._update(
            event_id,
            status=EventOutboxStatus.SENT.value,
            attempt_count=attempt_count,
            last_error=None,
            next_attempt_at=now,
            updated_at=now,
        )

    def mark_failed(
        self,
        event_id: str,
        *,
        attempt_count: int,
        backoff_seconds: int,
        error: str | None = None,
        terminal: bool = False,
    ) -> None:
        """Record a failed attempt; terminal failures leave the row FAILED."""
        now = utc_now()
        next_attempt: datetime = now
        status = EventOutboxStatus.FAILED.value
        if not terminal:
            status = EventOutboxStatus.PENDING.value
            next_attempt = now + timedelta(seconds=max(backoff_seconds, 1))
        self._update(
            event_id,
            status=status,
            attempt_count=attempt_count,
            last_error=error[:1000] if error else None,
            next_attempt_at=next_attempt,
            updated_at=now,
        )

    def _update(self, event_id: str, **values: Any) -> None:
        self.db.execute(update(EventOutbox).where(EventOutbox.id == event_id).values(**values))
        self.db.flush()
