# backend/tutorlink/schemas/tutoring_session.py
"""
Tutoring session schemas for the TutorLink platform.

Every lifecycle operation answers with a SessionActionResult. Failures carry
a display-ready message plus a stable error code; the HTTP layer picks the
status code from that code.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import ConfigDict, Field, field_validator

from .base import StandardizedModel, StrictModel, StrictRequestModel


class SessionView(StandardizedModel):
    """Serialized tutoring session."""

    model_config = ConfigDict(from_attributes=True, use_enum_values=True, populate_by_name=True)

    id: str
    tutor_id: str
    tutee_id: str
    skill_id: str
    status: str
    scheduled_time: datetime
    completed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    point_cost: int
    tutor_confirmed: bool = False
    tutee_confirmed: bool = False


class SessionActionResult(StandardizedModel):
    """Outcome of book/accept/reject/complete/cancel."""

    success: bool
    session: Optional[SessionView] = None
    message: Optional[str] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    awaiting_other_party: bool = Field(
        default=False,
        description="True when the caller confirmed completion and the other party has not yet",
    )

    @classmethod
    def ok(
        cls,
        session: Optional[SessionView] = None,
        message: Optional[str] = None,
        *,
        awaiting_other_party: bool = False,
    ) -> "SessionActionResult":
        return cls(
            success=True,
            session=session,
            message=message,
            awaiting_other_party=awaiting_other_party,
        )

    @classmethod
    def failure(cls, error: str, error_code: str) -> "SessionActionResult":
        return cls(success=False, error=error, error_code=error_code)


class BookSessionRequest(StrictRequestModel):
    """Book a session with a tutor. The caller is the tutee."""

    tutor_id: str = Field(..., min_length=1, description="Tutor to book")
    skill_id: str = Field(..., min_length=1, description="Skill the session covers")
    scheduled_time: str = Field(..., description="ISO-8601 start instant")
    point_cost: Optional[int] = Field(
        None, description="Points charged on completion; defaults to the platform setting"
    )

    @field_validator("tutor_id", "skill_id")
    @classmethod
    def _strip_identifiers(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("must not be blank")
        return stripped


class SessionActionRequest(StrictRequestModel):
    """Act on an existing session."""

    session_id: str = Field(..., min_length=1)
    reason: Optional[str] = Field(None, max_length=500, description="Cancellation reason")


class NotificationCountResponse(StrictModel):
    pending_requests: int
    awaiting_confirmation: int
    total: int


class PendingRequestsResponse(StrictModel):
    sessions: List[SessionView]
    count: int


class SessionListResponse(StrictModel):
    sessions: List[SessionView]


class PointsBalanceResponse(StrictModel):
    user_id: str
    points_balance: int
