from .tutoring_session import (
    BookSessionRequest,
    NotificationCountResponse,
    PendingRequestsResponse,
    PointsBalanceResponse,
    SessionActionRequest,
    SessionActionResult,
    SessionListResponse,
    SessionView,
)

__all__ = [
    "BookSessionRequest",
    "NotificationCountResponse",
    "PendingRequestsResponse",
    "PointsBalanceResponse",
    "SessionActionRequest",
    "SessionActionResult",
    "SessionListResponse",
    "SessionView",
]
