import logging

import pytest

from sessionbook.services import notification_dispatcher
from sessionbook.services.notification_dispatcher import (
    ConsoleNotificationDispatcher,
    LoggingNotificationDispatcher,
    get_notification_dispatcher,
)
from sessionbook.services.notification_templates import TEMPLATES, get_template

CONTEXT = {
    "title": "Mathematics Session - 2030-01-08 at 10:00",
    "subject_name": "Mathematics",
    "date": "2030-01-08",
    "start": "10:00",
    "end": "11:00",
    "teacher_name": "Tara Teacher",
    "student_name": "Sam Student",
    "meeting_link": "https://meet.jit.si/sessionbook-abc",
    "reason": "Number of classes exceeded for this teacher on this day.",
}


class TestTemplates:
    def test_every_workflow_template_is_registered(self):
        assert set(TEMPLATES) == {
            "teacher_session_requested",
            "student_session_accepted",
            "student_session_scheduled",
            "student_session_rejected",
            "student_session_auto_rejected",
            "session_cancelled",
            "session_rescheduled",
        }

    def test_accepted_template_includes_link(self):
        message = get_template("student_session_accepted").render(CONTEXT)
        assert message["subject"] == "Session confirmed: Mathematics Session - 2030-01-08 at 10:00"
        assert "https://meet.jit.si/sessionbook-abc" in message["body"]

    def test_missing_values_render_as_placeholders(self):
        message = get_template("session_rescheduled").render(CONTEXT)
        assert "{previous_date}" in message["body"]

    def test_unknown_template(self):
        with pytest.raises(KeyError, match="Unknown notification template"):
            get_template("nope")


class TestDispatchers:
    def test_logging_dispatcher_writes_subject(self, caplog):
        with caplog.at_level(logging.INFO, logger=notification_dispatcher.__name__):
            LoggingNotificationDispatcher().notify(
                "sam.student@example.com", "student_session_auto_rejected", CONTEXT
            )
        assert "sam.student@example.com" in caplog.text
        assert "could not be scheduled" in caplog.text

    def test_console_dispatcher_prints_body(self, capsys):
        ConsoleNotificationDispatcher().notify(
            "tara.teacher@example.com", "teacher_session_requested", CONTEXT
        )
        out = capsys.readouterr().out
        assert "To: tara.teacher@example.com" in out
        assert "Sam Student requested Mathematics" in out

    def test_provider_setting_selects_dispatcher(self, monkeypatch):
        monkeypatch.setattr(notification_dispatcher.settings, "notification_provider", "console")
        assert isinstance(get_notification_dispatcher(), ConsoleNotificationDispatcher)
        monkeypatch.setattr(notification_dispatcher.settings, "notification_provider", "log")
        assert isinstance(get_notification_dispatcher(), LoggingNotificationDispatcher)
