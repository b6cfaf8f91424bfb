# backend/tutorlink/repositories/factory.py
"""
Repository Factory for the TutorLink platform.

Provides centralized creation of repository instances, ensuring consistent
initialization and making it easy to swap implementations in tests.
"""

from typing import TYPE_CHECKING

from sqlalchemy.orm import Session

# Avoid circular imports
if TYPE_CHECKING:
    from .tutoring_session_repository import TutoringSessionRepository
    from .user_repository import UserRepository


class RepositoryFactory:
    """Factory class for creating repository instances."""

    @staticmethod
    def create_user_repository(db: Session) -> "UserRepository":
        """Create repository for user lookups and balance writes."""
        from .user_repository import UserRepository

        return UserRepository(db)

    @staticmethod
    def create_tutoring_session_repository(db: Session) -> "TutoringSessionRepository":
        """Create repository for tutoring session lifecycle queries."""
        from .tutoring_session_repository import TutoringSessionRepository

        return TutoringSessionRepository(db)
