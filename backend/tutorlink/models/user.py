"""
User model for the TutorLink platform.

Only the columns the session engine relies on live here: the points balance
and the capability flags. Profiles, credentials, and skills belong to the
account subsystem.
"""

from sqlalchemy import Boolean, Column, Integer, String
from sqlalchemy.sql import func

from ..core.constants import STARTING_POINTS_BALANCE
from ..core.ulid_helper import generate_ulid
from ..database import Base
from .types import UTCDateTime


class User(Base):
    """
    Platform user. A single account can act as tutee and, when `is_tutor`
    is set, as tutor.

    Attributes:
        id: ULID primary key
        email: Unique login email
        display_name: Name shown to the other party of a session
        points_balance: Spendable points; the engine refuses debits that would
            take it below zero, except for cancellation penalties
        is_tutor: Whether the user can receive booking requests
        is_admin: Moderation capability
        banned: Banned users can neither book nor be booked
    """

    __tablename__ = "users"

    id = Column(String(26), primary_key=True, index=True, default=generate_ulid)
    email = Column(String, unique=True, index=True, nullable=False)
    display_name = Column(String(100), nullable=False)
    points_balance = Column(Integer, nullable=False, default=STARTING_POINTS_BALANCE)
    is_tutor = Column(Boolean, nullable=False, default=False)
    is_admin = Column(Boolean, nullable=False, default=False)
    banned = Column(Boolean, nullable=False, default=False)
    created_at = Column(UTCDateTime, server_default=func.now())
    updated_at = Column(UTCDateTime, onupdate=func.now())

    def __repr__(self) -> str:
        return f"<User {self.id}: tutor={self.is_tutor} balance={self.points_balance}>"

