"""
Repository layer for the TutorLink platform.

Repositories own data access; services own transactions and business rules.
"""

from .base_repository import BaseRepository
from .factory import RepositoryFactory
from .tutoring_session_repository import TutoringSessionRepository
from .user_repository import UserRepository

__all__ = [
    "BaseRepository",
    "RepositoryFactory",
    "TutoringSessionRepository",
    "UserRepository",
]
