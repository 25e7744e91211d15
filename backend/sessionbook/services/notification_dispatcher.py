# backend/sessionbook/services/notification_dispatcher.py
"""
Notification dispatchers used by the outbox delivery task.

Delivery is best-effort: dispatchers raise
``NotificationDispatchTemporaryError`` for failures worth retrying and any
other exception for failures that still count against the attempt budget.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, Protocol

from ..core.config import settings
from .notification_templates import get_template

logger = logging.getLogger(__name__)


class NotificationDispatchTemporaryError(RuntimeError):
    """Transient delivery failure; the outbox will retry with backoff."""


class NotificationDispatcher(Protocol):
    def notify(self, recipient_email: str, template_key: str, context: Mapping[str, Any]) -> None:
        ...


class LoggingNotificationDispatcher:
    """Renders the template and writes it to the application log."""

    def notify(self, recipient_email: str, template_key: str, context: Mapping[str, Any]) -> None:
        message = get_template(template_key).render(context)
        logger.info(
            "Notification to %s [%s]: %s",
            recipient_email,
            template_key,
            message["subject"],
        )


class ConsoleNotificationDispatcher:
    """Prints rendered notifications; handy for local development."""

    def notify(self, recipient_email: str, template_key: str, context: Mapping[str, Any]) -> None:
        message = get_template(template_key).render(context)
        print(f"To: {recipient_email}\nSubject: {message['subject']}\n\n{message['body']}\n")


def get_notification_dispatcher() -> NotificationDispatcher:
    if settings.notification_provider == "console":
        return ConsoleNotificationDispatcher()
    return LoggingNotificationDispatcher()
