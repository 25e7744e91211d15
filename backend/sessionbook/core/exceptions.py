# backend/sessionbook/core/exceptions.py
"""
Domain-specific exceptions for the session booking engine.

These exceptions provide clear, business-focused error messages
that can be caught and handled appropriately at the API layer.
"""

from typing import Any, Dict, Optional

from fastapi import HTTPException, status

HTTP_422_UNPROCESSABLE: int = getattr(status, "HTTP_422_UNPROCESSABLE_CONTENT", 422)


class DomainException(Exception):
    """Base exception for all domain-specific errors."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=self.status_code,
            detail={
                "message": self.message,
                "code": self.code,
                "details": self.details,
            },
        )


class ValidationException(DomainException):
    """Raised when input is malformed or violates a window rule."""

    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundException(DomainException):
    """Raised when a requested resource is not found."""

    status_code = status.HTTP_404_NOT_FOUND


class ConflictException(DomainException):
    """Raised when the request conflicts with current store state."""

    status_code = status.HTTP_409_CONFLICT


class BusinessRuleException(DomainException):
    """Raised when a business rule is violated."""

    status_code = HTTP_422_UNPROCESSABLE


class UnauthorizedException(DomainException):
    """Raised when the acting user cannot be resolved."""

    status_code = status.HTTP_401_UNAUTHORIZED


class ForbiddenException(DomainException):
    """Raised when user lacks the role or assignment for an action."""

    status_code = status.HTTP_403_FORBIDDEN


class DependencyException(DomainException):
    """Raised when an external collaborator fails on a required path."""

    status_code = status.HTTP_502_BAD_GATEWAY


class ServiceException(DomainException):
    """Raised when a service operation fails."""

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={
                "message": self.message or "An error occurred processing your request",
                "code": self.code,
                "details": self.details if self.details else {},
            },
        )


# Specific business exceptions


class SessionWindowException(ValidationException):
    """Raised when a session window breaks the working-day rules."""

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None):
        super().__init__(message=message, code="INVALID_SESSION_WINDOW", details=details)


class SessionStatusConflictException(ConflictException):
    """Raised when a transition finds the session in the wrong status."""

    def __init__(
        self,
        session_id: str,
        current_status: Optional[str],
        expected: str,
    ):
        super().__init__(
            message=f"Session is not in {expected} status",
            code="INVALID_STATUS_TRANSITION",
            details={
                "session_id": session_id,
                "current_status": current_status,
                "expected_status": expected,
            },
        )


class TeacherCapacityException(ConflictException):
    """Raised when a teacher already holds the daily maximum."""

    def __init__(self, teacher_id: str, day: str, committed: int, maximum: int):
        super().__init__(
            message=(
                f"Teacher already has {committed} sessions on this day (maximum: {maximum})"
            ),
            code="TEACHER_CAPACITY_EXCEEDED",
            details={
                "teacher_id": teacher_id,
                "date": day,
                "committed": committed,
                "maximum": maximum,
            },
        )


class TimeConflictException(ConflictException):
    """Raised when a window collides with a teacher's existing sessions."""

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=message
            or (
                "This time slot conflicts with an existing session, does not keep the "
                "required break, or falls inside the rest period after back-to-back sessions"
            ),
            code="SESSION_TIME_CONFLICT",
            details=details or {},
        )


class DuplicateSessionException(ConflictException):
    """Raised when the program already has an active session for the subject that day."""

    def __init__(self, program_id: str, subject_id: str, day: str):
        super().__init__(
            message="An active session for this subject already exists on this day",
            code="DUPLICATE_SUBJECT_SESSION",
            details={"program_id": program_id, "subject_id": subject_id, "date": day},
        )


class StudentDailyLimitException(ConflictException):
    """Raised when the program has reached its daily session limit."""

    def __init__(self, program_id: str, day: str, maximum: int):
        super().__init__(
            message=f"Maximum of {maximum} sessions per day allowed",
            code="STUDENT_DAILY_LIMIT",
            details={"program_id": program_id, "date": day, "maximum": maximum},
        )


class ProgramInactiveException(BusinessRuleException):
    """Raised when a program is paused, cancelled or deactivated."""

    def __init__(self, program_id: str, program_status: str):
        super().__init__(
            message=f"Program is {program_status}; sessions cannot be booked",
            code="PROGRAM_INACTIVE",
            details={"program_id": program_id, "status": program_status},
        )


class RepositoryException(Exception):
    """
    Exception raised for repository layer errors.

    This exception is used when data access operations fail,
    such as database connection issues, query failures, or
    constraint violations.
    """
