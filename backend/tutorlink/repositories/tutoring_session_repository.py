"""
Tutoring Session Repository for the TutorLink platform.

State changes are expressed as conditional UPDATEs whose WHERE clause encodes
the expected prior state, so a transition applied by a concurrent request
shows up here as "0 rows updated" instead of being silently overwritten.
"""

from datetime import datetime
import logging
from typing import Any, Iterable, List, Optional, cast

from sqlalchemy import and_, func, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..core.timezone_utils import utc_now
from ..models.tutoring_session import (
    ACTIVE_STATUSES,
    SessionParty,
    SessionStatus,
    TutoringSession,
)
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class TutoringSessionRepository(BaseRepository[TutoringSession]):
    """Repository for tutoring session persistence and lifecycle updates."""

    def __init__(self, db: Session):
        super().__init__(db, TutoringSession)
        self.logger = logging.getLogger(__name__)

    # Lookups

    def get_for_update(self, session_id: str) -> Optional[TutoringSession]:
        """
        Load a session holding a row lock for the rest of the transaction.

        On backends without row locks (SQLite) this degrades to a plain read;
        the conditional updates below still reject stale transitions.
        """
        try:
            return cast(
                Optional[TutoringSession],
                self.db.query(TutoringSession)
                .filter(TutoringSession.id == session_id)
                .with_for_update()
                .populate_existing()
                .first(),
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error locking session {session_id}: {str(e)}")
            raise RepositoryException(f"Failed to lock session: {str(e)}") from e

    def find_by_user_id(
        self, user_id: str, *, status: Optional[str] = None
    ) -> List[TutoringSession]:
        """Sessions where the user is either party, newest first."""
        query = self.db.query(TutoringSession).filter(
            or_(TutoringSession.tutor_id == user_id, TutoringSession.tutee_id == user_id)
        )
        if status:
            query = query.filter(TutoringSession.status == status)
        query = query.order_by(TutoringSession.created_at.desc(), TutoringSession.id.desc())
        return self._execute_query(query)

    def find_by_tutor_id(
        self, tutor_id: str, *, status: Optional[str] = None
    ) -> List[TutoringSession]:
        """Sessions taught by the tutor, newest first."""
        query = self.db.query(TutoringSession).filter(TutoringSession.tutor_id == tutor_id)
        if status:
            query = query.filter(TutoringSession.status == status)
        query = query.order_by(TutoringSession.created_at.desc(), TutoringSession.id.desc())
        return self._execute_query(query)

    def has_time_conflict(
        self,
        tutor_id: str,
        scheduled_time: datetime,
        exclude_session_id: Optional[str] = None,
    ) -> bool:
        """
        Whether the tutor already has an active session at exactly this instant.

        Matching is on timestamp equality; sessions carry no duration.
        """
        query = self.db.query(TutoringSession.id).filter(
            TutoringSession.tutor_id == tutor_id,
            TutoringSession.status.in_(ACTIVE_STATUSES),
            TutoringSession.scheduled_time == scheduled_time,
        )
        if exclude_session_id:
            query = query.filter(TutoringSession.id != exclude_session_id)
        try:
            return query.first() is not None
        except SQLAlchemyError as e:
            self.logger.error(f"Error checking time conflict: {str(e)}")
            raise RepositoryException(f"Failed to check time conflict: {str(e)}") from e

    # Conditional lifecycle updates

    def transition_status(
        self,
        session_id: str,
        *,
        from_statuses: Iterable[str],
        to_status: SessionStatus,
        **fields: Any,
    ) -> bool:
        """
        Move a session to `to_status` only if it is currently in one of
        `from_statuses`. Extra column values in `fields` are written alongside.

        Returns:
            True if the transition was applied

        Raises:
            RepositoryException: On database errors, including the active slot
                unique index rejecting the new state
        """
        values: dict[Any, Any] = {TutoringSession.status: to_status.value}
        for key, value in fields.items():
            values[getattr(TutoringSession, key)] = value
        try:
            updated = (
                self.db.query(TutoringSession)
                .filter(
                    TutoringSession.id == session_id,
                    TutoringSession.status.in_(list(from_statuses)),
                )
                .update(values, synchronize_session=False)
            )
        except IntegrityError as exc:
            self.logger.warning("Integrity error transitioning session %s: %s", session_id, exc)
            raise RepositoryException(f"Integrity constraint violated: {exc}") from exc
        except SQLAlchemyError as exc:
            self.logger.error("Failed to transition session %s: %s", session_id, exc)
            raise RepositoryException("Failed to update session status") from exc
        self._expire_cached(session_id)
        return bool(updated)

    def mark_party_confirmed(self, session_id: str, party: SessionParty) -> bool:
        """
        Set the caller's confirmation flag while the session is still active.

        Re-confirming is a no-op that still reports success.
        """
        column = (
            TutoringSession.tutor_confirmed
            if party is SessionParty.TUTOR
            else TutoringSession.tutee_confirmed
        )
        try:
            updated = (
                self.db.query(TutoringSession)
                .filter(
                    TutoringSession.id == session_id,
                    TutoringSession.status.in_(ACTIVE_STATUSES),
                )
                .update({column: True}, synchronize_session=False)
            )
        except SQLAlchemyError as exc:
            self.logger.error(
                "Failed to record %s confirmation on %s: %s", party.value, session_id, exc
            )
            raise RepositoryException("Failed to record confirmation") from exc
        self._expire_cached(session_id)
        return bool(updated)

    def claim_completion(self, session_id: str) -> bool:
        """
        Flip an active session to completed iff both parties have confirmed.

        At most one caller can ever observe True for a given session, which
        is what makes it the trigger for settling points.
        """
        try:
            updated = (
                self.db.query(TutoringSession)
                .filter(
                    TutoringSession.id == session_id,
                    TutoringSession.status.in_(ACTIVE_STATUSES),
                    TutoringSession.tutor_confirmed.is_(True),
                    TutoringSession.tutee_confirmed.is_(True),
                )
                .update(
                    {
                        TutoringSession.status: SessionStatus.COMPLETED.value,
                        TutoringSession.completed_at: utc_now(),
                    },
                    synchronize_session=False,
                )
            )
        except SQLAlchemyError as exc:
            self.logger.error("Failed to claim completion of %s: %s", session_id, exc)
            raise RepositoryException("Failed to complete session") from exc
        self._expire_cached(session_id)
        return bool(updated)

    # Dashboard readers

    def get_upcoming_for_user(
        self, user_id: str, *, now: datetime, limit: int
    ) -> List[TutoringSession]:
        """Scheduled sessions in the future for either party, soonest first."""
        query = (
            self.db.query(TutoringSession)
            .filter(
                or_(TutoringSession.tutor_id == user_id, TutoringSession.tutee_id == user_id),
                TutoringSession.status == SessionStatus.SCHEDULED.value,
                TutoringSession.scheduled_time > now,
            )
            .order_by(TutoringSession.scheduled_time.asc(), TutoringSession.id.asc())
            .limit(limit)
        )
        return self._execute_query(query)

    def count_by_tutor_and_status(self, tutor_id: str, status: SessionStatus) -> int:
        query = self.db.query(func.count(TutoringSession.id)).filter(
            TutoringSession.tutor_id == tutor_id,
            TutoringSession.status == status.value,
        )
        return int(self._execute_scalar(query) or 0)

    def count_awaiting_confirmation(self, user_id: str) -> int:
        """
        Scheduled sessions where the other party has confirmed completion
        and this user has not.
        """
        awaiting_as_tutor = and_(
            TutoringSession.tutor_id == user_id,
            TutoringSession.tutee_confirmed.is_(True),
            TutoringSession.tutor_confirmed.is_(False),
        )
        awaiting_as_tutee = and_(
            TutoringSession.tutee_id == user_id,
            TutoringSession.tutor_confirmed.is_(True),
            TutoringSession.tutee_confirmed.is_(False),
        )
        query = self.db.query(func.count(TutoringSession.id)).filter(
            TutoringSession.status == SessionStatus.SCHEDULED.value,
            or_(awaiting_as_tutor, awaiting_as_tutee),
        )
        return int(self._execute_scalar(query) or 0)
