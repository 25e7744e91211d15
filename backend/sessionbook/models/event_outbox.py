# backend/sessionbook/models/event_outbox.py
"""
Notification outbox rows.

Booking transitions write their notification intents here inside the same
transaction as the status change; Celery workers deliver them afterwards.
"""

from __future__ import annotations

from enum import Enum

from sqlalchemy import Column, DateTime, Integer, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.sql import func
from sqlalchemy.types import JSON
import ulid

from ..database import Base


class EventOutboxStatus(str, Enum):
    """Lifecycle states for an outbox event."""

    PENDING = "PENDING"
    SENT = "SENT"
    FAILED = "FAILED"


class SessionEventType(str, Enum):
    """Notification events emitted by the booking workflow."""

    REQUESTED = "session.requested"
    SCHEDULED = "session.scheduled"
    ACCEPTED = "session.accepted"
    REJECTED = "session.rejected"
    AUTO_REJECTED = "session.auto_rejected"
    CANCELLED = "session.cancelled"
    RESCHEDULED = "session.rescheduled"


class EventOutbox(Base):
    """Transactional outbox entry pending delivery."""

    __tablename__ = "event_outbox"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    event_type = Column(String(100), nullable=False, index=True)
    aggregate_id = Column(String(64), nullable=False, index=True)
    idempotency_key = Column(String(255), nullable=False)
    payload = Column(
        JSONB(astext_type=Text()).with_variant(JSON(), "sqlite"),
        nullable=False,
        default=dict,
    )
    status = Column(String(20), nullable=False, default=EventOutboxStatus.PENDING.value, index=True)
    attempt_count = Column(Integer, nullable=False, default=0)
    next_attempt_at = Column(DateTime(timezone=True), nullable=True, index=True)
    last_error = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    __table_args__ = (UniqueConstraint("idempotency_key", name="uq_event_outbox_idempotency_key"),)

    @property
    def recipient_email(self) -> str | None:
        return (self.payload or {}).get("recipient_email")

    @property
    def template_key(self) -> str:
        return (self.payload or {}).get("template_key") or self.event_type
