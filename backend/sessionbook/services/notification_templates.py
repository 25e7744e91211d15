from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping


class _SafeContext(dict):
    def __missing__(self, key: str) -> str:
        return "{" + key + "}"


@dataclass(frozen=True)
class NotificationTemplate:
    key: str
    audience: str
    subject_template: str
    body_template: str

    def render(self, context: Mapping[str, Any]) -> Dict[str, str]:
        values = _SafeContext(context)
        return {
            "subject": self.subject_template.format_map(values),
            "body": self.body_template.format_map(values),
        }


# Teacher templates
TEACHER_SESSION_REQUESTED = NotificationTemplate(
    key="teacher_session_requested",
    audience="teacher",
    subject_template="New session request: {title}",
    body_template=(
        "{student_name} requested {subject_name} on {date} from {start} to {end}. "
        "Accept or reject the request from your dashboard."
    ),
)

# Student templates
STUDENT_SESSION_ACCEPTED = NotificationTemplate(
    key="student_session_accepted",
    audience="student",
    subject_template="Session confirmed: {title}",
    body_template=(
        "{teacher_name} accepted your session on {date} from {start} to {end}. "
        "Join here: {meeting_link}"
    ),
)

STUDENT_SESSION_SCHEDULED = NotificationTemplate(
    key="student_session_scheduled",
    audience="student",
    subject_template="New session scheduled: {title}",
    body_template="{teacher_name} scheduled {title} on {date} from {start} to {end}.",
)

STUDENT_SESSION_REJECTED = NotificationTemplate(
    key="student_session_rejected",
    audience="student",
    subject_template="Session request declined: {title}",
    body_template="Your session request for {date} at {start} was declined. Reason: {reason}",
)

STUDENT_SESSION_AUTO_REJECTED = NotificationTemplate(
    key="student_session_auto_rejected",
    audience="student",
    subject_template="Session request could not be scheduled: {title}",
    body_template="Your session request for {date} at {start} was declined. Reason: {reason}",
)

# Either party
SESSION_CANCELLED = NotificationTemplate(
    key="session_cancelled",
    audience="any",
    subject_template="Session cancelled: {title}",
    body_template="The session on {date} at {start} was cancelled. Reason: {reason}",
)

SESSION_RESCHEDULED = NotificationTemplate(
    key="session_rescheduled",
    audience="any",
    subject_template="Session rescheduled: {title}",
    body_template=(
        "The session moved from {previous_date} {previous_start} to {date} {start}-{end}."
    ),
)

TEMPLATES: Dict[str, NotificationTemplate] = {
    template.key: template
    for template in (
        TEACHER_SESSION_REQUESTED,
        STUDENT_SESSION_ACCEPTED,
        STUDENT_SESSION_SCHEDULED,
        STUDENT_SESSION_REJECTED,
        STUDENT_SESSION_AUTO_REJECTED,
        SESSION_CANCELLED,
        SESSION_RESCHEDULED,
    )
}


def get_template(key: str) -> NotificationTemplate:
    try:
        return TEMPLATES[key]
    except KeyError:
        raise KeyError(f"Unknown notification template: {key}") from None
