# backend/sessionbook/routes/v1/sessions.py
"""
Session booking routes - API v1

Versioned session endpoints under /api/v1/sessions.
All business logic delegated to SessionBookingService and AvailabilityService.

Endpoints:
    POST / - Admin creates a scheduled session for a teacher
    GET / - List sessions visible to the caller
    GET /deleted - Admin list of soft-deleted sessions
    POST /request - Student requests a session from the teacher pool
    GET /available-slots - Bookable slots for a program subject on a day
    GET /teacher/requests - Requests a teacher could serve
    POST /teacher/schedule - Teacher schedules a session directly
    GET /{session_id} - Session details with history
    PUT /{session_id} - Admin edits title/description/meeting link
    DELETE /{session_id} - Admin soft delete
    PATCH /{session_id}/restore - Admin restore
    POST /{session_id}/accept - Teacher accepts a request
    POST /{session_id}/reject - Teacher rejects a request
    POST /{session_id}/cancel - Cancel a session
    POST /{session_id}/reschedule - Move a session to a new window
    POST /{session_id}/start - Mark a scheduled session ongoing
    POST /{session_id}/complete - Mark an ongoing session completed
"""

import asyncio
from datetime import date
import logging
from typing import Any, Dict, NoReturn, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query, status
from fastapi.params import Path

from ...api.dependencies import (
    get_availability_service,
    get_booking_service,
    get_current_user,
)
from ...core.exceptions import DomainException
from ...models.user import User
from ...schemas.session import (
    SessionAccept,
    SessionDirectCreate,
    SessionReasonRequest,
    SessionRequestCreate,
    SessionReschedule,
    SessionUpdate,
    TeacherScheduleCreate,
)
from ...schemas.session_responses import (
    AvailableSlotsResponse,
    SessionDetailResponse,
    SessionListResponse,
    SessionResponse,
)
from ...services.availability_service import AvailabilityService
from ...services.booking_service import SessionBookingService

logger = logging.getLogger(__name__)

# V1 router - no prefix here, will be added when mounting in main.py
router = APIRouter(tags=["sessions-v1"])

ULID_PATH_PATTERN = r"^[0-9A-HJKMNP-TV-Z]{26}$"


def handle_domain_exception(exc: DomainException) -> NoReturn:
    """Convert domain exceptions to HTTP exceptions."""
    if hasattr(exc, "to_http_exception"):
        raise exc.to_http_exception()
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


def _list_response(result: Dict[str, Any]) -> SessionListResponse:
    return SessionListResponse(
        items=[SessionResponse.model_validate(s) for s in result["items"]],
        total=result["total"],
        page=result["page"],
        limit=result["limit"],
        pages=result["pages"],
    )


# ============================================================================
# SECTION 1: Static routes (no path parameters)
# ============================================================================


@router.post("/", response_model=SessionResponse, status_code=status.HTTP_201_CREATED)
async def create_session(
    payload: SessionDirectCreate = Body(...),
    current_user: User = Depends(get_current_user),
    booking_service: SessionBookingService = Depends(get_booking_service),
) -> SessionResponse:
    """Admin creates a session that starts out scheduled."""
    try:
        session = await asyncio.to_thread(booking_service.create_direct, current_user, payload)
        return SessionResponse.model_validate(session)
    except DomainException as e:
        handle_domain_exception(e)


@router.get("/", response_model=SessionListResponse)
async def list_sessions(
    focus_one_id: Optional[str] = Query(None),
    cohort_id: Optional[str] = Query(None),
    teacher_id: Optional[str] = Query(None),
    status_filter: Optional[str] = Query(None, alias="status"),
    subject_id: Optional[str] = Query(None),
    session_date: Optional[date] = Query(None, alias="date"),
    search: Optional[str] = Query(None, max_length=200),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    booking_service: SessionBookingService = Depends(get_booking_service),
) -> SessionListResponse:
    try:
        result = await asyncio.to_thread(
            booking_service.list_sessions,
            current_user,
            focus_one_id=focus_one_id,
            cohort_id=cohort_id,
            teacher_id=teacher_id,
            status=status_filter,
            subject_id=subject_id,
            day=session_date,
            search=search,
            page=page,
            limit=limit,
        )
        return _list_response(result)
    except DomainException as e:
        handle_domain_exception(e)


@router.get("/deleted", response_model=SessionListResponse)
async def list_deleted_sessions(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    booking_service: SessionBookingService = Depends(get_booking_service),
) -> SessionListResponse:
    try:
        result = await asyncio.to_thread(
            booking_service.list_deleted, current_user, page=page, limit=limit
        )
        return _list_response(result)
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/request", response_model=SessionResponse, status_code=status.HTTP_201_CREATED)
async def request_session(
    payload: SessionRequestCreate = Body(...),
    current_user: User = Depends(get_current_user),
    booking_service: SessionBookingService = Depends(get_booking_service),
) -> SessionResponse:
    """Student request; the program's teacher pool is notified."""
    try:
        session = await asyncio.to_thread(booking_service.request_session, current_user, payload)
        return SessionResponse.model_validate(session)
    except DomainException as e:
        handle_domain_exception(e)


@router.get("/available-slots", response_model=AvailableSlotsResponse)
async def get_available_slots(
    subject_id: str = Query(...),
    slot_date: date = Query(..., alias="date"),
    focus_one_id: Optional[str] = Query(None),
    cohort_id: Optional[str] = Query(None),
    duration: Optional[int] = Query(None, description="Slot length in minutes"),
    current_user: User = Depends(get_current_user),
    availability_service: AvailabilityService = Depends(get_availability_service),
) -> AvailableSlotsResponse:
    if bool(focus_one_id) == bool(cohort_id):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Provide exactly one of focus_one_id or cohort_id",
        )
    try:
        result = await asyncio.to_thread(
            availability_service.get_available_slots,
            current_user,
            focus_one_id or cohort_id,
            subject_id,
            slot_date,
            duration,
        )
        return AvailableSlotsResponse(
            date=result["date"],
            slot_duration_minutes=result["slot_duration_minutes"],
            slots=[slot.to_dict() for slot in result["slots"]],
            total_slots=result["total_slots"],
        )
    except DomainException as e:
        handle_domain_exception(e)


@router.get("/teacher/requests", response_model=SessionListResponse)
async def list_teacher_requests(
    status_filter: Optional[str] = Query("requested", alias="status"),
    subject_id: Optional[str] = Query(None),
    session_date: Optional[date] = Query(None, alias="date"),
    search: Optional[str] = Query(None, max_length=200),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    booking_service: SessionBookingService = Depends(get_booking_service),
) -> SessionListResponse:
    try:
        result = await asyncio.to_thread(
            booking_service.list_teacher_requests,
            current_user,
            status=status_filter,
            subject_id=subject_id,
            day=session_date,
            search=search,
            page=page,
            limit=limit,
        )
        return _list_response(result)
    except DomainException as e:
        handle_domain_exception(e)


@router.post(
    "/teacher/schedule", response_model=SessionResponse, status_code=status.HTTP_201_CREATED
)
async def teacher_schedule_session(
    payload: TeacherScheduleCreate = Body(...),
    current_user: User = Depends(get_current_user),
    booking_service: SessionBookingService = Depends(get_booking_service),
) -> SessionResponse:
    try:
        session = await asyncio.to_thread(booking_service.teacher_schedule, current_user, payload)
        return SessionResponse.model_validate(session)
    except DomainException as e:
        handle_domain_exception(e)


# ============================================================================
# SECTION 2: Session-scoped routes
# ============================================================================


@router.get("/{session_id}", response_model=SessionDetailResponse)
async def get_session(
    session_id: str = Path(..., description="Session ULID", pattern=ULID_PATH_PATTERN),
    current_user: User = Depends(get_current_user),
    booking_service: SessionBookingService = Depends(get_booking_service),
) -> SessionDetailResponse:
    try:
        session = await asyncio.to_thread(booking_service.get_session, current_user, session_id)
        return SessionDetailResponse.model_validate(session)
    except DomainException as e:
        handle_domain_exception(e)


@router.put("/{session_id}", response_model=SessionResponse)
async def update_session(
    session_id: str = Path(..., description="Session ULID", pattern=ULID_PATH_PATTERN),
    payload: SessionUpdate = Body(...),
    current_user: User = Depends(get_current_user),
    booking_service: SessionBookingService = Depends(get_booking_service),
) -> SessionResponse:
    try:
        session = await asyncio.to_thread(
            booking_service.update_details, current_user, session_id, payload
        )
        return SessionResponse.model_validate(session)
    except DomainException as e:
        handle_domain_exception(e)


@router.delete("/{session_id}", response_model=SessionResponse)
async def delete_session(
    session_id: str = Path(..., description="Session ULID", pattern=ULID_PATH_PATTERN),
    current_user: User = Depends(get_current_user),
    booking_service: SessionBookingService = Depends(get_booking_service),
) -> SessionResponse:
    try:
        session = await asyncio.to_thread(booking_service.delete_session, current_user, session_id)
        return SessionResponse.model_validate(session)
    except DomainException as e:
        handle_domain_exception(e)


@router.patch("/{session_id}/restore", response_model=SessionResponse)
async def restore_session(
    session_id: str = Path(..., description="Session ULID", pattern=ULID_PATH_PATTERN),
    current_user: User = Depends(get_current_user),
    booking_service: SessionBookingService = Depends(get_booking_service),
) -> SessionResponse:
    try:
        session = await asyncio.to_thread(
            booking_service.restore_session, current_user, session_id
        )
        return SessionResponse.model_validate(session)
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/{session_id}/accept", response_model=SessionResponse)
async def accept_session(
    session_id: str = Path(..., description="Session ULID", pattern=ULID_PATH_PATTERN),
    payload: Optional[SessionAccept] = Body(None),
    current_user: User = Depends(get_current_user),
    booking_service: SessionBookingService = Depends(get_booking_service),
) -> SessionResponse:
    """Teacher claims a requested session; may cascade auto-rejections."""
    try:
        session = await asyncio.to_thread(
            booking_service.accept_session, current_user, session_id, payload
        )
        return SessionResponse.model_validate(session)
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/{session_id}/reject", response_model=SessionResponse)
async def reject_session(
    session_id: str = Path(..., description="Session ULID", pattern=ULID_PATH_PATTERN),
    payload: SessionReasonRequest = Body(...),
    current_user: User = Depends(get_current_user),
    booking_service: SessionBookingService = Depends(get_booking_service),
) -> SessionResponse:
    try:
        session = await asyncio.to_thread(
            booking_service.reject_session, current_user, session_id, payload.reason
        )
        return SessionResponse.model_validate(session)
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/{session_id}/cancel", response_model=SessionResponse)
async def cancel_session(
    session_id: str = Path(..., description="Session ULID", pattern=ULID_PATH_PATTERN),
    payload: SessionReasonRequest = Body(...),
    current_user: User = Depends(get_current_user),
    booking_service: SessionBookingService = Depends(get_booking_service),
) -> SessionResponse:
    try:
        session = await asyncio.to_thread(
            booking_service.cancel_session, current_user, session_id, payload.reason
        )
        return SessionResponse.model_validate(session)
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/{session_id}/reschedule", response_model=SessionResponse)
async def reschedule_session(
    session_id: str = Path(..., description="Session ULID", pattern=ULID_PATH_PATTERN),
    payload: SessionReschedule = Body(...),
    current_user: User = Depends(get_current_user),
    booking_service: SessionBookingService = Depends(get_booking_service),
) -> SessionResponse:
    try:
        session = await asyncio.to_thread(
            booking_service.reschedule_session, current_user, session_id, payload
        )
        return SessionResponse.model_validate(session)
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/{session_id}/start", response_model=SessionResponse)
async def start_session(
    session_id: str = Path(..., description="Session ULID", pattern=ULID_PATH_PATTERN),
    current_user: User = Depends(get_current_user),
    booking_service: SessionBookingService = Depends(get_booking_service),
) -> SessionResponse:
    try:
        session = await asyncio.to_thread(booking_service.start_session, current_user, session_id)
        return SessionResponse.model_validate(session)
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/{session_id}/complete", response_model=SessionResponse)
async def complete_session(
    session_id: str = Path(..., description="Session ULID", pattern=ULID_PATH_PATTERN),
    current_user: User = Depends(get_current_user),
    booking_service: SessionBookingService = Depends(get_booking_service),
) -> SessionResponse:
    try:
        session = await asyncio.to_thread(
            booking_service.complete_session, current_user, session_id
        )
        return SessionResponse.model_validate(session)
    except DomainException as e:
        handle_domain_exception(e)
