# backend/tutorlink/routes/v1/sessions.py
"""
Tutoring session routes - API v1

Versioned session endpoints under /api/v1/sessions.
All business logic delegated to SchedulingService and SessionDashboardService.

Endpoints:
    POST /book - Tutee requests a session with a tutor
    POST /accept - Tutor accepts a requested session
    POST /reject - Tutor declines a requested session
    POST /complete - Either party confirms completion
    POST /cancel - Either party cancels (penalty once scheduled)
    GET /pending-requests - Tutor's incoming requests
    GET /upcoming - Upcoming scheduled sessions
    GET /notification-count - Session badge count
    GET / - The caller's sessions, optionally filtered by status
    GET /{session_id} - Session detail (participants only)
"""

import asyncio
import logging
from typing import Any, Callable, NoReturn, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Path, Query, status
from fastapi.responses import JSONResponse

from ...api.dependencies import (
    get_current_user,
    get_scheduling_service,
    get_session_dashboard_service,
)
from ...core.constants import DEFAULT_UPCOMING_LIMIT, MAX_UPCOMING_LIMIT
from ...core.exceptions import (
    DomainException,
    RepositoryException,
    SessionNotFoundException,
    raise_503_if_pool_exhaustion,
)
from ...core.ulid_helper import ULID_PATTERN
from ...models.tutoring_session import SessionStatus
from ...models.user import User
from ...schemas.tutoring_session import (
    BookSessionRequest,
    NotificationCountResponse,
    PendingRequestsResponse,
    SessionActionRequest,
    SessionActionResult,
    SessionListResponse,
    SessionView,
)
from ...services.scheduling_service import SchedulingService
from ...services.session_dashboard_service import SessionDashboardService

logger = logging.getLogger(__name__)

# V1 router - no prefix here, will be added when mounting in main.py
router = APIRouter(tags=["sessions-v1"])

_ERROR_STATUS = {
    "SESSION_NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "UNAUTHORIZED": status.HTTP_403_FORBIDDEN,
    "TIME_CONFLICT": status.HTTP_409_CONFLICT,
    "INTERNAL_ERROR": status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def handle_domain_exception(exc: DomainException) -> NoReturn:
    """Convert domain exceptions to HTTP exceptions."""
    if hasattr(exc, "to_http_exception"):
        raise exc.to_http_exception()
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


def _action_response(result: SessionActionResult) -> JSONResponse:
    """Serialize an action result with a status code derived from its error code."""
    if result.success:
        status_code = status.HTTP_200_OK
    else:
        status_code = _ERROR_STATUS.get(result.error_code or "", status.HTTP_400_BAD_REQUEST)
    return JSONResponse(status_code=status_code, content=result.model_dump(mode="json"))


async def _run_action(call: Callable[..., SessionActionResult], *args: Any) -> JSONResponse:
    try:
        result: SessionActionResult = await asyncio.to_thread(call, *args)
    except Exception as exc:
        raise_503_if_pool_exhaustion(exc)
        raise
    return _action_response(result)


# ============================================================================
# SECTION 1: Lifecycle actions
# ============================================================================


@router.post("/book", response_model=SessionActionResult)
async def book_session(
    payload: BookSessionRequest = Body(...),
    current_user: User = Depends(get_current_user),
    scheduling_service: SchedulingService = Depends(get_scheduling_service),
) -> JSONResponse:
    """Request a session with a tutor. The caller is the tutee."""
    return await _run_action(
        scheduling_service.book_session,
        current_user.id,
        payload.tutor_id,
        payload.skill_id,
        payload.scheduled_time,
        payload.point_cost,
    )


@router.post("/accept", response_model=SessionActionResult)
async def accept_session(
    payload: SessionActionRequest = Body(...),
    current_user: User = Depends(get_current_user),
    scheduling_service: SchedulingService = Depends(get_scheduling_service),
) -> JSONResponse:
    return await _run_action(scheduling_service.accept_session, payload.session_id, current_user.id)


@router.post("/reject", response_model=SessionActionResult)
async def reject_session(
    payload: SessionActionRequest = Body(...),
    current_user: User = Depends(get_current_user),
    scheduling_service: SchedulingService = Depends(get_scheduling_service),
) -> JSONResponse:
    return await _run_action(scheduling_service.reject_session, payload.session_id, current_user.id)


@router.post("/complete", response_model=SessionActionResult)
async def complete_session(
    payload: SessionActionRequest = Body(...),
    current_user: User = Depends(get_current_user),
    scheduling_service: SchedulingService = Depends(get_scheduling_service),
) -> JSONResponse:
    """
    Confirm the session took place.

    Points settle once both parties have confirmed; until then the result
    carries awaiting_other_party=true.
    """
    return await _run_action(
        scheduling_service.complete_session, payload.session_id, current_user.id
    )


@router.post("/cancel", response_model=SessionActionResult)
async def cancel_session(
    payload: SessionActionRequest = Body(...),
    current_user: User = Depends(get_current_user),
    scheduling_service: SchedulingService = Depends(get_scheduling_service),
) -> JSONResponse:
    """Cancel a session. Cancelling a scheduled session costs the caller a penalty."""
    return await _run_action(
        scheduling_service.cancel_session,
        payload.session_id,
        current_user.id,
        payload.reason,
    )


# ============================================================================
# SECTION 2: Dashboard readers (static paths before /{session_id})
# ============================================================================


@router.get("/pending-requests", response_model=PendingRequestsResponse)
async def get_pending_requests(
    current_user: User = Depends(get_current_user),
    dashboard_service: SessionDashboardService = Depends(get_session_dashboard_service),
) -> PendingRequestsResponse:
    """Requested sessions awaiting the caller's answer as tutor."""
    try:
        sessions = await asyncio.to_thread(dashboard_service.get_pending_requests, current_user.id)
    except RepositoryException as exc:
        raise_503_if_pool_exhaustion(exc)
        raise
    views = [SessionView.model_validate(s) for s in sessions]
    return PendingRequestsResponse(sessions=views, count=len(views))


@router.get("/upcoming", response_model=SessionListResponse)
async def get_upcoming_sessions(
    limit: int = Query(DEFAULT_UPCOMING_LIMIT, ge=1, le=MAX_UPCOMING_LIMIT),
    current_user: User = Depends(get_current_user),
    dashboard_service: SessionDashboardService = Depends(get_session_dashboard_service),
) -> SessionListResponse:
    try:
        sessions = await asyncio.to_thread(
            dashboard_service.get_upcoming_sessions, current_user.id, limit
        )
    except RepositoryException as exc:
        raise_503_if_pool_exhaustion(exc)
        raise
    return SessionListResponse(sessions=[SessionView.model_validate(s) for s in sessions])


@router.get("/notification-count", response_model=NotificationCountResponse)
async def get_notification_count(
    current_user: User = Depends(get_current_user),
    dashboard_service: SessionDashboardService = Depends(get_session_dashboard_service),
) -> NotificationCountResponse:
    counts = await asyncio.to_thread(dashboard_service.get_notification_count, current_user.id)
    return NotificationCountResponse(**counts)


@router.get("", response_model=SessionListResponse)
async def list_my_sessions(
    status_filter: Optional[SessionStatus] = Query(None, alias="status"),
    current_user: User = Depends(get_current_user),
    dashboard_service: SessionDashboardService = Depends(get_session_dashboard_service),
) -> SessionListResponse:
    """All sessions the caller takes part in, newest first."""
    sessions = await asyncio.to_thread(
        dashboard_service.list_sessions_for_user, current_user.id, status_filter
    )
    return SessionListResponse(sessions=[SessionView.model_validate(s) for s in sessions])


# ============================================================================
# SECTION 3: Routes with path parameters
# ============================================================================


@router.get("/{session_id}", response_model=SessionView)
async def get_session(
    session_id: str = Path(..., pattern=ULID_PATTERN),
    current_user: User = Depends(get_current_user),
    dashboard_service: SessionDashboardService = Depends(get_session_dashboard_service),
) -> SessionView:
    """Session detail, visible to its tutor and tutee only."""
    try:
        session = await asyncio.to_thread(
            dashboard_service.get_session_for_participant, session_id, current_user.id
        )
        if session is None:
            raise SessionNotFoundException()
        return SessionView.model_validate(session)
    except DomainException as e:
        handle_domain_exception(e)
