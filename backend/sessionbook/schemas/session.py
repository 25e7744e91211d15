# backend/sessionbook/schemas/session.py
"""
Request schemas for the session booking API.

Windows are accepted as ISO datetimes. Timezone-aware values are converted
to booking-timezone wall-clock by the service; naive values are taken as
wall-clock already. Working-day and date rules are enforced in the service
so every entry point (API, tasks, scripts) shares them.
"""

from datetime import datetime
from typing import Optional

from pydantic import Field, field_validator, model_validator

from ..core.enums import ProgramKind
from .base import StrictRequestModel


def _strip(value: Optional[str]) -> Optional[str]:
    return value.strip() if isinstance(value, str) else value


class ProgramRefMixin(StrictRequestModel):
    """Exactly one of ``focus_one_id`` or ``cohort_id``."""

    focus_one_id: Optional[str] = Field(None, description="FocusOne program id")
    cohort_id: Optional[str] = Field(None, description="Cohort program id")

    @model_validator(mode="after")
    def _single_program(self) -> "ProgramRefMixin":
        if bool(self.focus_one_id) == bool(self.cohort_id):
            raise ValueError("Provide exactly one of focus_one_id or cohort_id")
        return self

    @property
    def program_id(self) -> str:
        return self.focus_one_id or self.cohort_id  # type: ignore[return-value]

    @property
    def program_kind(self) -> ProgramKind:
        return ProgramKind.FOCUS_ONE if self.focus_one_id else ProgramKind.COHORT


class WindowMixin(StrictRequestModel):
    start_time: datetime
    end_time: datetime


class SessionDirectCreate(ProgramRefMixin, WindowMixin):
    """Admin creates an already scheduled session for a teacher."""

    teacher_id: str
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=5000)
    subject_id: Optional[str] = None
    subject_name: Optional[str] = Field(None, max_length=200)
    meeting_link: Optional[str] = Field(None, max_length=500)

    @field_validator("title", "description", "subject_name", "meeting_link")
    @classmethod
    def _clean_text(cls, v: Optional[str]) -> Optional[str]:
        return _strip(v)


class TeacherScheduleCreate(ProgramRefMixin, WindowMixin):
    """A teacher schedules a session directly in one of their programs."""

    title: str = Field(..., max_length=200)
    description: str = Field(..., max_length=5000)
    subject_id: Optional[str] = None
    subject_name: Optional[str] = Field(None, max_length=200)

    @field_validator("title", "description", "subject_name")
    @classmethod
    def _clean_text(cls, v: Optional[str]) -> Optional[str]:
        return _strip(v)


class SessionRequestCreate(ProgramRefMixin, WindowMixin):
    """A student asks the program's teacher pool for a session."""

    subject_id: str = Field(..., min_length=1)
    subject_name: Optional[str] = Field(None, max_length=200)
    title: Optional[str] = Field(None, max_length=200)
    description: Optional[str] = Field(None, max_length=5000)

    @field_validator("title", "description", "subject_name")
    @classmethod
    def _blank_to_none(cls, v: Optional[str]) -> Optional[str]:
        return _strip(v) or None


class SessionAccept(StrictRequestModel):
    title: Optional[str] = Field(None, max_length=200)
    description: Optional[str] = Field(None, max_length=5000)


class SessionReasonRequest(StrictRequestModel):
    """Body for reject and cancel; emptiness is checked by the service."""

    reason: str = Field("", max_length=1000)


class SessionReschedule(WindowMixin):
    reason: Optional[str] = Field(None, max_length=1000)


class SessionUpdate(StrictRequestModel):
    """Admin edit of descriptive fields. Status and window are not editable here."""

    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=5000)
    meeting_link: Optional[str] = Field(None, max_length=500)

    @field_validator("title")
    @classmethod
    def _title_not_blank(cls, v: Optional[str]) -> str:
        # Omit title to keep it; an explicit null or blank cannot clear it.
        cleaned = _strip(v)
        if not cleaned:
            raise ValueError("title cannot be null or blank")
        return cleaned
