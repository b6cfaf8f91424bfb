# backend/tutorlink/services/session_dashboard_service.py
"""
Read-only session queries backing the dashboard and notification badge.
"""

import logging
from typing import List, Optional

from sqlalchemy.orm import Session

from ..core.constants import DEFAULT_UPCOMING_LIMIT, MAX_UPCOMING_LIMIT
from ..core.timezone_utils import utc_now
from ..models.tutoring_session import SessionStatus, TutoringSession
from ..repositories.factory import RepositoryFactory
from ..repositories.tutoring_session_repository import TutoringSessionRepository
from ..repositories.user_repository import UserRepository
from .base import BaseService

logger = logging.getLogger(__name__)


class SessionDashboardService(BaseService):
    """Upcoming sessions, pending tutor requests and confirmation reminders."""

    def __init__(
        self,
        db: Session,
        session_repository: Optional[TutoringSessionRepository] = None,
        user_repository: Optional[UserRepository] = None,
    ):
        super().__init__(db)
        self.session_repository = (
            session_repository or RepositoryFactory.create_tutoring_session_repository(db)
        )
        self.user_repository = user_repository or RepositoryFactory.create_user_repository(db)

    @BaseService.measure_operation("get_upcoming_sessions")
    def get_upcoming_sessions(
        self, user_id: str, limit: int = DEFAULT_UPCOMING_LIMIT
    ) -> List[TutoringSession]:
        """Scheduled sessions still ahead of now for either party, soonest first."""
        bounded = max(1, min(limit, MAX_UPCOMING_LIMIT))
        return self.session_repository.get_upcoming_for_user(
            user_id, now=utc_now(), limit=bounded
        )

    def get_pending_requests(self, tutor_id: str) -> List[TutoringSession]:
        return self.session_repository.find_by_tutor_id(
            tutor_id, status=SessionStatus.REQUESTED.value
        )

    def count_pending_requests(self, tutor_id: str) -> int:
        return self.session_repository.count_by_tutor_and_status(
            tutor_id, SessionStatus.REQUESTED
        )

    def count_awaiting_confirmation(self, user_id: str) -> int:
        """Scheduled sessions the other party marked complete and this user has not."""
        return self.session_repository.count_awaiting_confirmation(user_id)

    @BaseService.measure_operation("get_notification_count")
    def get_notification_count(self, user_id: str) -> dict[str, int]:
        """
        Badge count for the session menu.

        Pending requests only count for tutors; everyone gets the
        awaiting-confirmation reminders.
        """
        user = self.user_repository.get_by_id(user_id)
        pending = self.count_pending_requests(user_id) if user and user.is_tutor else 0
        awaiting = self.count_awaiting_confirmation(user_id)
        return {
            "pending_requests": pending,
            "awaiting_confirmation": awaiting,
            "total": pending + awaiting,
        }

    def list_sessions_for_user(
        self, user_id: str, status: Optional[SessionStatus] = None
    ) -> List[TutoringSession]:
        """All sessions the user takes part in, newest first."""
        return self.session_repository.find_by_user_id(
            user_id, status=status.value if status else None
        )

    def get_session_for_participant(self, session_id: str, user_id: str) -> Optional[TutoringSession]:
        """The session if the user is one of its parties, otherwise None."""
        session = self.session_repository.get_by_id(session_id)
        if session is None or session.party_of(user_id) is None:
            return None
        return session
