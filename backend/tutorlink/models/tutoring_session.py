"""
Tutoring session model for the TutorLink platform.

A session is a single booked engagement between a tutor and a tutee for one
skill at one instant. Its lifecycle:

    requested -> scheduled -> completed
    requested -> cancelled
    scheduled -> cancelled
    requested -> completed   (both parties confirmed before acceptance)

`completed` and `cancelled` are terminal; after reaching either only the
cancellation audit columns may change. Points move only on completion, and
`point_cost` is fixed at booking time.
"""

from enum import Enum

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from ..core.constants import ACTIVE_SLOT_INDEX_NAME
from ..core.ulid_helper import generate_ulid
from ..database import Base
from .types import UTCDateTime


class SessionStatus(str, Enum):
    """Tutoring session lifecycle statuses."""

    REQUESTED = "requested"  # Tutee asked, tutor has not responded
    SCHEDULED = "scheduled"  # Tutor accepted
    COMPLETED = "completed"  # Both parties confirmed, points settled
    CANCELLED = "cancelled"  # Rejected or cancelled


class SessionParty(str, Enum):
    TUTOR = "tutor"
    TUTEE = "tutee"


ACTIVE_STATUSES = (SessionStatus.REQUESTED.value, SessionStatus.SCHEDULED.value)
TERMINAL_STATUSES = (SessionStatus.COMPLETED.value, SessionStatus.CANCELLED.value)


class TutoringSession(Base):
    """Booked tutoring engagement between a tutor and a tutee."""

    __tablename__ = "tutoring_sessions"

    id = Column(String(26), primary_key=True, index=True, default=generate_ulid)

    tutor_id = Column(String(26), ForeignKey("users.id"), nullable=False, index=True)
    tutee_id = Column(String(26), ForeignKey("users.id"), nullable=False, index=True)
    skill_id = Column(String(64), nullable=False)

    status = Column(String(20), nullable=False, default=SessionStatus.REQUESTED.value, index=True)
    scheduled_time = Column(UTCDateTime, nullable=False, index=True)
    point_cost = Column(Integer, nullable=False, default=10)

    # Mutual completion confirmation
    tutor_confirmed = Column(Boolean, nullable=False, default=False)
    tutee_confirmed = Column(Boolean, nullable=False, default=False)

    # Timestamps
    created_at = Column(UTCDateTime, server_default=func.now())
    updated_at = Column(UTCDateTime, onupdate=func.now())
    completed_at = Column(UTCDateTime, nullable=True)
    cancelled_at = Column(UTCDateTime, nullable=True)

    # Cancellation audit
    cancelled_by_id = Column(String(26), ForeignKey("users.id"), nullable=True)
    cancellation_reason = Column(Text, nullable=True)
    penalty_points = Column(Integer, nullable=False, default=0)

    tutor = relationship("User", foreign_keys=[tutor_id])
    tutee = relationship("User", foreign_keys=[tutee_id])
    cancelled_by = relationship("User", foreign_keys=[cancelled_by_id])

    __table_args__ = (
        CheckConstraint(
            "status IN ('requested', 'scheduled', 'completed', 'cancelled')",
            name="ck_tutoring_sessions_status",
        ),
        CheckConstraint("point_cost >= 0", name="ck_tutoring_sessions_point_cost_non_negative"),
        CheckConstraint("tutor_id <> tutee_id", name="ck_tutoring_sessions_distinct_parties"),
        CheckConstraint("penalty_points >= 0", name="ck_tutoring_sessions_penalty_non_negative"),
    )

    def __repr__(self) -> str:
        return (
            f"<TutoringSession {self.id}: tutor={self.tutor_id}, tutee={self.tutee_id}, "
            f"time={self.scheduled_time}, status={self.status}>"
        )

    @property
    def is_finished(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def party_of(self, user_id: str) -> "SessionParty | None":
        """Return which side of the session the user is on, if any."""
        if user_id == self.tutor_id:
            return SessionParty.TUTOR
        if user_id == self.tutee_id:
            return SessionParty.TUTEE
        return None


# One active (requested/scheduled) session per tutor per instant. Book and
# accept both rely on this to reject double-bookings under concurrency.
_active_slot_clause = TutoringSession.status.in_(ACTIVE_STATUSES)

Index(
    ACTIVE_SLOT_INDEX_NAME,
    TutoringSession.tutor_id,
    TutoringSession.scheduled_time,
    unique=True,
    postgresql_where=_active_slot_clause,
    sqlite_where=_active_slot_clause,
)

Index(
    "ix_tutoring_sessions_tutee_status",
    TutoringSession.tutee_id,
    TutoringSession.status,
)
