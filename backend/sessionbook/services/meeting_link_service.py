# backend/sessionbook/services/meeting_link_service.py
"""
Meeting-link providers.

The booking workflow treats a meeting link as an opaque string. Accept
requires one and surfaces provider failures as ``DependencyException``;
direct scheduling asks for one but carries on without it.
"""

import logging
import re
import secrets
from typing import Optional, Protocol, Sequence

from ..core.config import settings
from ..core.exceptions import DependencyException
from ..domain.time_window import TimeWindow

logger = logging.getLogger(__name__)

_SLUG_RE = re.compile(r"[^a-z0-9]+")


class MeetingLinkProvider(Protocol):
    def create_meeting_link(
        self, session_title: str, window: TimeWindow, participant_emails: Sequence[str]
    ) -> str:
        ...


def slugify(value: str, max_length: int = 60) -> str:
    return _SLUG_RE.sub("-", value.lower()).strip("-")[:max_length].rstrip("-")


class JitsiMeetingLinkProvider:
    """Builds public Jitsi Meet room URLs; no account or API call involved."""

    def __init__(self, domain: Optional[str] = None, prefix: Optional[str] = None):
        self.domain = domain or settings.jitsi_domain
        self.prefix = prefix or settings.meeting_room_prefix

    def create_meeting_link(
        self, session_title: str, window: TimeWindow, participant_emails: Sequence[str]
    ) -> str:
        suffix = secrets.token_hex(4)
        slug = slugify(session_title) or window.start.strftime("%Y%m%d%H%M")
        room = f"{self.prefix}-{slug}-{suffix}"
        logger.debug("Generated meeting room %s for %d participants", room, len(participant_emails))
        return f"https://{self.domain}/{room}"


class MeetingLinkService:
    """Wraps a provider and normalizes its failures."""

    def __init__(self, provider: Optional[MeetingLinkProvider] = None):
        self.provider = provider or JitsiMeetingLinkProvider()

    @property
    def platform(self) -> str:
        return settings.meeting_platform

    def create_link(
        self, session_title: str, window: TimeWindow, participant_emails: Sequence[str]
    ) -> str:
        """Return a link or raise ``DependencyException``."""
        try:
            link = self.provider.create_meeting_link(session_title, window, participant_emails)
        except Exception as exc:
            logger.error("Meeting link creation failed: %s", exc)
            raise DependencyException(
                f"Failed to create meeting link: {exc}",
                code="MEETING_LINK_FAILED",
            ) from exc
        if not link:
            raise DependencyException(
                "Meeting link provider returned an empty link", code="MEETING_LINK_FAILED"
            )
        return link

    def try_create_link(
        self, session_title: str, window: TimeWindow, participant_emails: Sequence[str]
    ) -> Optional[str]:
        """Best-effort variant: logs and returns ``None`` on failure."""
        try:
            return self.create_link(session_title, window, participant_emails)
        except DependencyException as exc:
            logger.warning("Continuing without meeting link: %s", exc.message)
            return None
