# backend/sessionbook/tasks/celery_app.py
"""
Celery application configuration for the booking engine.

Redis is both broker and result backend. Workers deliver notification
outbox rows and re-run auto-rejection batches.
"""

import logging
from typing import Any, Type, cast

from celery import Celery, Task
from celery.signals import setup_logging

from ..core.config import settings

OUTBOX_DISPATCH_INTERVAL_SECONDS = 30.0


def create_celery_app() -> Celery:
    """Create and configure the Celery application."""
    broker_url = settings.broker_url

    celery_app = Celery("sessionbook", broker=broker_url, backend=broker_url)
    celery_app.conf.update(
        task_serializer="json",
        accept_content=["json"],
        result_serializer="json",
        timezone=settings.booking_timezone,
        enable_utc=True,
        worker_prefetch_multiplier=4,
        worker_max_tasks_per_child=1000,
        task_soft_time_limit=120,
        task_time_limit=300,
        task_acks_late=True,
        task_reject_on_worker_lost=True,
        worker_hijack_root_logger=False,
        broker_transport_options={"visibility_timeout": 3600},
    )
    celery_app.conf.imports = (
        "sessionbook.tasks.notification_tasks",
        "sessionbook.tasks.booking_tasks",
    )
    celery_app.conf.task_routes = {
        "outbox.*": {"queue": "notifications"},
        "sessions.*": {"queue": "booking"},
    }
    celery_app.conf.beat_schedule = {
        "dispatch-notification-outbox": {
            "task": "outbox.dispatch_pending",
            "schedule": OUTBOX_DISPATCH_INTERVAL_SECONDS,
        },
    }
    return celery_app


@setup_logging.connect  # type: ignore[misc]
def config_loggers(*args: Any, **kwargs: Any) -> None:
    """Use the application's logging format inside workers."""
    logging.basicConfig(
        level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )


celery_app = create_celery_app()


class BaseTask(Task):  # type: ignore[misc]
    """Base task that logs failures and retries with task context."""

    def on_failure(self, exc: Exception, task_id: str, args: Any, kwargs: Any, einfo: Any) -> None:
        logging.getLogger(__name__).error(
            f"Task {self.name}[{task_id}] failed with exception: {exc}",
            extra={"task_id": task_id, "task_name": self.name, "task_args": str(args)},
        )
        super().on_failure(exc, task_id, args, kwargs, einfo)

    def on_retry(self, exc: Exception, task_id: str, args: Any, kwargs: Any, einfo: Any) -> None:
        logging.getLogger(__name__).warning(
            f"Task {self.name}[{task_id}] retry {self.request.retries} due to: {exc}",
            extra={"task_id": task_id, "task_name": self.name},
        )
        super().on_retry(exc, task_id, args, kwargs, einfo)


celery_app.Task = cast(Type[Task], BaseTask)
