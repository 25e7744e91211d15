from datetime import datetime
from unittest.mock import Mock

import pytest

from sessionbook.core.exceptions import DependencyException
from sessionbook.domain.time_window import TimeWindow
from sessionbook.services.meeting_link_service import (
    JitsiMeetingLinkProvider,
    MeetingLinkService,
    slugify,
)

WINDOW = TimeWindow(datetime(2030, 1, 8, 10, 0), datetime(2030, 1, 8, 11, 0))


class TestSlugify:
    def test_lowercases_and_joins_words(self):
        assert slugify("Mathematics Session - 2030-01-08 at 10:00") == (
            "mathematics-session-2030-01-08-at-10-00"
        )

    def test_trims_to_max_length_without_trailing_dash(self):
        assert slugify("abc def", max_length=4) == "abc"

    def test_symbols_only(self):
        assert slugify("!!!") == ""


class TestJitsiProvider:
    def test_builds_room_url(self):
        provider = JitsiMeetingLinkProvider(domain="meet.example.org", prefix="tutoring")
        link = provider.create_meeting_link("Algebra Review", WINDOW, ["a@example.com"])
        assert link.startswith("https://meet.example.org/tutoring-algebra-review-")
        assert len(link.rsplit("-", 1)[1]) == 8

    def test_rooms_are_unique(self):
        provider = JitsiMeetingLinkProvider()
        first = provider.create_meeting_link("Algebra", WINDOW, [])
        second = provider.create_meeting_link("Algebra", WINDOW, [])
        assert first != second

    def test_falls_back_to_timestamp_slug(self):
        link = JitsiMeetingLinkProvider(prefix="sb").create_meeting_link("***", WINDOW, [])
        assert "/sb-203001081000-" in link


class TestMeetingLinkService:
    def test_provider_error_becomes_dependency_error(self):
        provider = Mock()
        provider.create_meeting_link.side_effect = RuntimeError("provider down")
        service = MeetingLinkService(provider)

        with pytest.raises(DependencyException) as exc_info:
            service.create_link("Algebra", WINDOW, [])

        assert exc_info.value.code == "MEETING_LINK_FAILED"
        assert exc_info.value.to_http_exception().status_code == 502

    def test_empty_link_is_a_failure(self):
        provider = Mock()
        provider.create_meeting_link.return_value = ""
        with pytest.raises(DependencyException):
            MeetingLinkService(provider).create_link("Algebra", WINDOW, [])

    def test_best_effort_returns_none(self):
        provider = Mock()
        provider.create_meeting_link.side_effect = RuntimeError("provider down")
        assert MeetingLinkService(provider).try_create_link("Algebra", WINDOW, []) is None

    def test_passes_participants_to_provider(self):
        provider = Mock()
        provider.create_meeting_link.return_value = "https://meet.example.org/room"
        service = MeetingLinkService(provider)

        assert service.create_link("Algebra", WINDOW, ["s@example.com"]) == (
            "https://meet.example.org/room"
        )
        provider.create_meeting_link.assert_called_once_with("Algebra", WINDOW, ["s@example.com"])
        assert service.platform == "jitsi-meet"
