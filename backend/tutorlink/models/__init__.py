"""SQLAlchemy models. Importing this package registers every table on Base.metadata."""

from .tutoring_session import (
    ACTIVE_STATUSES,
    TERMINAL_STATUSES,
    SessionParty,
    SessionStatus,
    TutoringSession,
)
from .user import User

__all__ = [
    "ACTIVE_STATUSES",
    "TERMINAL_STATUSES",
    "SessionParty",
    "SessionStatus",
    "TutoringSession",
    "User",
]
