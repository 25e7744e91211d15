"""
Prometheus metrics for the session booking engine.

Service operation metrics are fed by ``BaseService.measure_operation``;
the remaining helpers are called from the booking workflow, the schedule
lock and the outbox tasks.
"""

from typing import Optional, cast

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

# Custom registry so test runs and multiple app instances do not collide
REGISTRY = CollectorRegistry()

service_operation_duration_seconds = Histogram(
    "sessionbook_service_operation_duration_seconds",
    "Service operation duration in seconds",
    ["service", "operation"],
    registry=REGISTRY,
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
)

service_operations_total = Counter(
    "sessionbook_service_operations_total",
    "Total number of service operations",
    ["service", "operation", "status"],
    registry=REGISTRY,
)

errors_total = Counter(
    "sessionbook_errors_total",
    "Total number of errors",
    ["service", "operation", "error_type"],
    registry=REGISTRY,
)

session_transitions_total = Counter(
    "sessionbook_session_transitions_total",
    "Session status transitions by target status",
    ["action", "status"],
    registry=REGISTRY,
)

auto_rejections_total = Counter(
    "sessionbook_auto_rejections_total",
    "Requested sessions rejected because a teacher reached daily capacity",
    ["outcome"],
    registry=REGISTRY,
)

schedule_lock_total = Counter(
    "sessionbook_schedule_lock_total",
    "Teacher-day schedule lock operations",
    ["action", "outcome"],
    registry=REGISTRY,
)

notifications_outbox_total = Counter(
    "sessionbook_notifications_outbox_total",
    "Total notification outbox events by terminal status",
    ["status", "event_type"],
    registry=REGISTRY,
)

notifications_outbox_attempt_total = Counter(
    "sessionbook_notifications_outbox_attempt_total",
    "Number of notification outbox delivery attempts",
    ["event_type"],
    registry=REGISTRY,
)

notifications_dispatch_seconds = Histogram(
    "sessionbook_notifications_dispatch_seconds",
    "Notification dispatch duration in seconds",
    ["event_type"],
    registry=REGISTRY,
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)


class PrometheusMetrics:
    """Manages Prometheus metrics collection and exposure."""

    @staticmethod
    def record_service_operation(
        service: str,
        operation: str,
        duration: float,
        status: str = "success",
        error_type: Optional[str] = None,
    ) -> None:
        """
        Record service operation metrics from @measure_operation decorator.

        Args:
            service: Service name (e.g., 'SessionBookingService')
            operation: Operation name (e.g., 'accept_session')
            duration: Operation duration in seconds
            status: Operation status ('success' or 'error')
            error_type: Type of error if status is 'error'
        """
        service_operation_duration_seconds.labels(service=service, operation=operation).observe(
            duration
        )
        service_operations_total.labels(service=service, operation=operation, status=status).inc()
        if status == "error" and error_type:
            errors_total.labels(service=service, operation=operation, error_type=error_type).inc()

    @staticmethod
    def record_transition(action: str, status: str) -> None:
        session_transitions_total.labels(action=action, status=status).inc()

    @staticmethod
    def record_auto_rejection(outcome: str) -> None:
        """outcome: rejected | skipped | error"""
        auto_rejections_total.labels(outcome=outcome).inc()

    @staticmethod
    def record_schedule_lock(action: str, outcome: str) -> None:
        schedule_lock_total.labels(action=action, outcome=outcome).inc()

    @staticmethod
    def record_notification_attempt(event_type: str) -> None:
        notifications_outbox_attempt_total.labels(event_type=event_type).inc()

    @staticmethod
    def record_notification_outcome(event_type: str, status: str) -> None:
        notifications_outbox_total.labels(status=status, event_type=event_type).inc()

    @staticmethod
    def observe_notification_dispatch(event_type: str, duration: float) -> None:
        notifications_dispatch_seconds.labels(event_type=event_type).observe(max(duration, 0.0))

    @staticmethod
    def get_metrics() -> bytes:
        """Generate Prometheus metrics in exposition format."""
        return cast(bytes, generate_latest(REGISTRY))

    @staticmethod
    def get_content_type() -> str:
        return cast(str, CONTENT_TYPE_LATEST)


# Singleton instance
prometheus_metrics = PrometheusMetrics()
