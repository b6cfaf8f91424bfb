# backend/tutorlink/services/scheduling_service.py
"""
Scheduling Service for the TutorLink platform.

Drives the tutoring session state machine:

    requested -> scheduled -> completed
    requested | scheduled -> cancelled
    requested -> completed  (both parties confirmed before acceptance)

Points only move on mutual completion. Each public operation runs as one
unit of work and answers with a SessionActionResult; domain errors raised by
the internal steps are converted to failure results at that boundary, and
unexpected store faults become a generic failure with INTERNAL_ERROR.
"""

from __future__ import annotations

from contextlib import ExitStack
from datetime import datetime
import logging
from typing import Any, Callable, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.constants import (
    ACCEPT_CONFLICT_MESSAGE,
    ACTIVE_SLOT_INDEX_NAME,
    DEFAULT_CANCELLATION_REASON,
    REJECTION_REASON,
    SESSION_CANCELLED_MESSAGE,
    SESSION_COMPLETED_MESSAGE,
    TIME_CONFLICT_MESSAGE,
    WAITING_FOR_OTHER_PARTY_MESSAGE,
)
from ..core.exceptions import (
    DomainException,
    InsufficientPointsException,
    InvalidScheduleException,
    InvalidStateTransitionException,
    InvalidTuteeException,
    InvalidTutorException,
    RepositoryException,
    ServiceException,
    SessionAlreadyFinishedException,
    SessionNotFoundException,
    SessionUnauthorizedException,
    SessionValidationException,
    TimeConflictException,
    TransferFailedException,
)
from ..core.session_lock import SessionSlotLock
from ..core.timezone_utils import parse_iso_datetime, utc_now
from ..models.tutoring_session import (
    ACTIVE_STATUSES,
    SessionParty,
    SessionStatus,
    TutoringSession,
)
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.factory import RepositoryFactory
from ..repositories.tutoring_session_repository import TutoringSessionRepository
from ..repositories.user_repository import UserRepository
from ..schemas.tutoring_session import SessionActionResult, SessionView
from .base import BaseService
from .points_ledger import PointsLedger, create_points_ledger

logger = logging.getLogger(__name__)

INTERNAL_ERROR_CODE = "INTERNAL_ERROR"

# SQLite reports unique index violations by column list, not index name.
_SQLITE_ACTIVE_SLOT_MARKER = "tutoring_sessions.tutor_id, tutoring_sessions.scheduled_time"


def _is_active_slot_violation(exc: BaseException) -> bool:
    """Whether an exception chain bottoms out in the active-slot unique index."""
    current: Optional[BaseException] = exc
    while current is not None:
        if isinstance(current, IntegrityError):
            orig = getattr(current, "orig", None)
            diag = getattr(orig, "diag", None)
            constraint_name = getattr(diag, "constraint_name", "") or ""
            text = str(orig) if orig is not None else str(current)
            return (
                constraint_name == ACTIVE_SLOT_INDEX_NAME
                or ACTIVE_SLOT_INDEX_NAME in text
                or _SQLITE_ACTIVE_SLOT_MARKER in text
            )
        current = current.__cause__
    return False


class SchedulingService(BaseService):
    """
    Service layer for the tutoring session lifecycle.

    Collaborators are injected so tests and alternative stores can be
    substituted; by default they are built from the request's DB session.
    """

    def __init__(
        self,
        db: Session,
        ledger: Optional[PointsLedger] = None,
        session_repository: Optional[TutoringSessionRepository] = None,
        user_repository: Optional[UserRepository] = None,
        slot_lock: Optional[SessionSlotLock] = None,
    ):
        super().__init__(db)
        self.session_repository = (
            session_repository or RepositoryFactory.create_tutoring_session_repository(db)
        )
        self.user_repository = user_repository or RepositoryFactory.create_user_repository(db)
        self.ledger = ledger or create_points_ledger(db, user_repository=self.user_repository)
        self.slot_lock = slot_lock or SessionSlotLock()

    # Public operations

    @BaseService.measure_operation("book_session")
    def book_session(
        self,
        tutee_id: str,
        tutor_id: str,
        skill_id: str,
        scheduled_time: Any,
        point_cost: Any = None,
    ) -> SessionActionResult:
        """
        Create a session request from a tutee to a tutor.

        The tutee's balance is checked against the cost but nothing is debited
        until both parties confirm completion.
        """
        self.log_operation(
            "book_session",
            tutee_id=tutee_id,
            tutor_id=tutor_id,
            skill_id=skill_id,
            scheduled_time=str(scheduled_time),
        )
        return self._execute(
            "book",
            lambda locks: self._book(locks, tutee_id, tutor_id, skill_id, scheduled_time, point_cost),
        )

    @BaseService.measure_operation("accept_session")
    def accept_session(self, session_id: str, caller_id: str) -> SessionActionResult:
        """Tutor accepts a requested session, moving it to scheduled."""
        self.log_operation("accept_session", session_id=session_id, caller_id=caller_id)
        return self._execute("accept", lambda locks: self._accept(locks, session_id, caller_id))

    @BaseService.measure_operation("reject_session")
    def reject_session(self, session_id: str, caller_id: str) -> SessionActionResult:
        """Tutor declines a requested session. No points move."""
        self.log_operation("reject_session", session_id=session_id, caller_id=caller_id)
        return self._execute("reject", lambda locks: self._reject(session_id, caller_id))

    @BaseService.measure_operation("complete_session")
    def complete_session(self, session_id: str, caller_id: str) -> SessionActionResult:
        """
        Record the caller's completion confirmation.

        The confirmation that makes both flags true completes the session and
        settles points: a paid session transfers point_cost from tutee to
        tutor, a free one credits the tutor a fixed bonus. Until then the
        result has awaiting_other_party set.
        """
        self.log_operation("complete_session", session_id=session_id, caller_id=caller_id)
        return self._execute("complete", lambda locks: self._complete(session_id, caller_id))

    @BaseService.measure_operation("cancel_session")
    def cancel_session(
        self, session_id: str, caller_id: str, reason: Optional[str] = None
    ) -> SessionActionResult:
        """
        Cancel a session that has not finished.

        Cancelling after the tutor accepted costs the cancelling party a
        penalty taken from their own balance, which may go negative.
        """
        self.log_operation("cancel_session", session_id=session_id, caller_id=caller_id)
        return self._execute(
            "cancel", lambda locks: self._cancel(session_id, caller_id, reason)
        )

    # Unit of work

    def _execute(
        self, action: str, operation: Callable[[ExitStack], SessionActionResult]
    ) -> SessionActionResult:
        """
        Run one lifecycle operation inside a transaction.

        Slot locks entered by the operation are registered on `locks` and are
        released only after the transaction has committed or rolled back.
        """
        try:
            with ExitStack() as locks:
                with self.transaction():
                    result = operation(locks)
        except (ServiceException, RepositoryException) as exc:
            if _is_active_slot_violation(exc):
                message = TIME_CONFLICT_MESSAGE if action == "book" else ACCEPT_CONFLICT_MESSAGE
                self.logger.info("Active slot index rejected %s: %s", action, exc)
                prometheus_metrics.record_session_transition(action, "TIME_CONFLICT")
                return SessionActionResult.failure(message, TimeConflictException().code)
            self.logger.error("Failed to %s session: %s", action, exc, exc_info=True)
            prometheus_metrics.record_session_transition(action, INTERNAL_ERROR_CODE)
            return SessionActionResult.failure(f"Failed to {action} session", INTERNAL_ERROR_CODE)
        except DomainException as exc:
            self.logger.info("Session %s refused: %s (%s)", action, exc.message, exc.code)
            prometheus_metrics.record_session_transition(action, exc.code)
            return SessionActionResult.failure(exc.message, exc.code)
        except Exception:
            # Unexpected faults never reach the caller; the transaction was rolled back.
            self.logger.exception("Unexpected error during %s session", action)
            prometheus_metrics.record_session_transition(action, INTERNAL_ERROR_CODE)
            return SessionActionResult.failure(f"Failed to {action} session", INTERNAL_ERROR_CODE)

        prometheus_metrics.record_session_transition(
            action, "awaiting_other_party" if result.awaiting_other_party else "success"
        )
        return result

    # Operation steps (raise domain exceptions)

    def _book(
        self,
        locks: ExitStack,
        tutee_id: str,
        tutor_id: str,
        skill_id: str,
        scheduled_time: Any,
        point_cost: Any,
    ) -> SessionActionResult:
        when = self._parse_schedule(scheduled_time)

        if not tutee_id or not tutor_id or not skill_id:
            raise SessionValidationException("Missing required fields")
        cost = self._resolve_point_cost(point_cost)
        if tutor_id == tutee_id:
            raise SessionValidationException("Tutor and tutee cannot be the same user")

        tutor = self.user_repository.get_by_id(tutor_id)
        if not tutor or not tutor.is_tutor or tutor.banned:
            raise InvalidTutorException()
        tutee = self.user_repository.get_by_id(tutee_id)
        if not tutee or tutee.banned:
            raise InvalidTuteeException()

        if cost > 0 and tutee.points_balance < cost:
            raise InsufficientPointsException(required=cost, available=tutee.points_balance)

        self._hold_slot(locks, tutor_id, when, TIME_CONFLICT_MESSAGE)
        if self.session_repository.has_time_conflict(tutor_id, when):
            raise TimeConflictException(
                TIME_CONFLICT_MESSAGE,
                details={"tutor_id": tutor_id, "scheduled_time": when.isoformat()},
            )

        session = self.session_repository.create(
            tutor_id=tutor_id,
            tutee_id=tutee_id,
            skill_id=skill_id,
            status=SessionStatus.REQUESTED.value,
            scheduled_time=when,
            point_cost=cost,
            tutor_confirmed=False,
            tutee_confirmed=False,
        )
        self.logger.info(
            "Session %s requested: tutee=%s tutor=%s at %s for %s points",
            session.id,
            tutee_id,
            tutor_id,
            when.isoformat(),
            cost,
        )
        return SessionActionResult.ok(self._view(session))

    def _accept(self, locks: ExitStack, session_id: str, caller_id: str) -> SessionActionResult:
        session = self._load_for_update(session_id)
        if session.tutor_id != caller_id:
            raise SessionUnauthorizedException()
        if session.status != SessionStatus.REQUESTED.value:
            raise InvalidStateTransitionException(
                "Session cannot be accepted in current status", current_status=session.status
            )

        self._hold_slot(locks, session.tutor_id, session.scheduled_time, ACCEPT_CONFLICT_MESSAGE)
        if self.session_repository.has_time_conflict(
            session.tutor_id, session.scheduled_time, exclude_session_id=session.id
        ):
            raise TimeConflictException(ACCEPT_CONFLICT_MESSAGE)

        self._apply_transition(
            session,
            "accepted",
            actor_id=caller_id,
            from_statuses=[SessionStatus.REQUESTED.value],
            to_status=SessionStatus.SCHEDULED,
        )
        return SessionActionResult.ok(self._reload_view(session_id))

    def _reject(self, session_id: str, caller_id: str) -> SessionActionResult:
        session = self._load_for_update(session_id)
        if session.tutor_id != caller_id:
            raise SessionUnauthorizedException(
                "Unauthorized - only the tutor can reject this request"
            )
        if session.status != SessionStatus.REQUESTED.value:
            raise InvalidStateTransitionException(
                "Session cannot be rejected in current status", current_status=session.status
            )

        self._apply_transition(
            session,
            "rejected",
            actor_id=caller_id,
            from_statuses=[SessionStatus.REQUESTED.value],
            to_status=SessionStatus.CANCELLED,
            cancelled_by_id=caller_id,
            cancellation_reason=REJECTION_REASON,
            cancelled_at=utc_now(),
            penalty_points=0,
            tutor_confirmed=False,
            tutee_confirmed=False,
        )
        return SessionActionResult.ok(self._reload_view(session_id))

    def _complete(self, session_id: str, caller_id: str) -> SessionActionResult:
        session = self._load_for_update(session_id)
        party = session.party_of(caller_id)
        if party is None:
            raise SessionUnauthorizedException()
        if session.status not in ACTIVE_STATUSES:
            raise InvalidStateTransitionException(
                "Session cannot be completed in current status", current_status=session.status
            )

        if not self.session_repository.mark_party_confirmed(session_id, party):
            raise InvalidStateTransitionException(
                "Session cannot be completed in current status", current_status=session.status
            )

        # Only the caller whose confirmation completes the pair wins the claim.
        if not self.session_repository.claim_completion(session_id):
            self.logger.info("Session %s confirmed by %s, waiting", session_id, party.value)
            return SessionActionResult.ok(
                self._reload_view(session_id),
                WAITING_FOR_OTHER_PARTY_MESSAGE,
                awaiting_other_party=True,
            )

        message = self._settle_completion(session)
        self.logger.info(
            "Session %s completed",
            session_id,
            extra={"session_id": session_id, "actor_id": caller_id, "to_status": "completed"},
        )
        return SessionActionResult.ok(self._reload_view(session_id), message)

    def _cancel(
        self, session_id: str, caller_id: str, reason: Optional[str]
    ) -> SessionActionResult:
        session = self._load_for_update(session_id)
        if session.party_of(caller_id) is None:
            raise SessionUnauthorizedException()
        if session.is_finished:
            raise SessionAlreadyFinishedException()

        penalty = (
            settings.cancellation_penalty_points
            if session.status == SessionStatus.SCHEDULED.value
            else 0
        )
        self._apply_transition(
            session,
            "cancelled",
            actor_id=caller_id,
            from_statuses=[session.status],
            to_status=SessionStatus.CANCELLED,
            cancelled_by_id=caller_id,
            cancellation_reason=(reason or "").strip() or DEFAULT_CANCELLATION_REASON,
            cancelled_at=utc_now(),
            penalty_points=penalty,
            tutor_confirmed=False,
            tutee_confirmed=False,
        )

        if penalty <= 0:
            return SessionActionResult.ok(self._reload_view(session_id), SESSION_CANCELLED_MESSAGE)

        charged = self.ledger.deduct_penalty(caller_id, penalty)
        if not charged.success:
            raise TransferFailedException(charged.error or "Failed to apply cancellation penalty")
        self.logger.info(
            "Session %s cancelled by %s with %s point penalty", session_id, caller_id, penalty
        )
        return SessionActionResult.ok(
            self._reload_view(session_id),
            f"Session cancelled. {penalty} points penalty applied.",
        )

    # Helpers

    def _parse_schedule(self, scheduled_time: Any) -> datetime:
        try:
            when = parse_iso_datetime(scheduled_time)
        except (TypeError, ValueError, OverflowError) as exc:
            raise InvalidScheduleException("Invalid date format") from exc
        if when <= utc_now():
            raise InvalidScheduleException("Scheduled time cannot be in the past")
        return when

    def _resolve_point_cost(self, point_cost: Any) -> int:
        if point_cost is None:
            return settings.default_point_cost
        if isinstance(point_cost, bool) or not isinstance(point_cost, int) or point_cost < 0:
            raise SessionValidationException("Point cost must be a non-negative integer")
        return point_cost

    def _hold_slot(
        self, locks: ExitStack, tutor_id: str, when: datetime, conflict_message: str
    ) -> None:
        if not locks.enter_context(self.slot_lock.hold(tutor_id, when)):
            raise TimeConflictException(conflict_message)

    def _load_for_update(self, session_id: str) -> TutoringSession:
        if not session_id:
            raise SessionValidationException("Session ID is required")
        session = self.session_repository.get_for_update(session_id)
        if session is None:
            raise SessionNotFoundException()
        return session

    def _apply_transition(
        self,
        session: TutoringSession,
        verb: str,
        *,
        actor_id: str,
        from_statuses: list[str],
        to_status: SessionStatus,
        **fields: Any,
    ) -> None:
        """Conditional status write; losing a race reads as a stale transition."""
        previous = session.status
        if not self.session_repository.transition_status(
            session.id, from_statuses=from_statuses, to_status=to_status, **fields
        ):
            raise InvalidStateTransitionException(
                f"Session cannot be {verb} in current status", current_status=previous
            )
        self.logger.info(
            "Session %s: %s -> %s",
            session.id,
            previous,
            to_status.value,
            extra={
                "session_id": session.id,
                "actor_id": actor_id,
                "from_status": previous,
                "to_status": to_status.value,
            },
        )

    def _settle_completion(self, session: TutoringSession) -> str:
        """Move points for a session that has just been claimed as completed."""
        if session.point_cost > 0:
            transferred = self.ledger.transfer(session.tutee_id, session.tutor_id, session.point_cost)
            if not transferred.success:
                self.logger.warning(
                    "Completion of %s aborted, transfer failed: %s", session.id, transferred.error
                )
                raise TransferFailedException(transferred.error or "Failed to transfer points")
            return SESSION_COMPLETED_MESSAGE

        bonus = settings.free_session_tutor_bonus
        if bonus <= 0:
            return SESSION_COMPLETED_MESSAGE
        credited = self.ledger.add_points(session.tutor_id, bonus)
        if not credited.success:
            # Nothing was owed on a free session; completion stands.
            self.logger.error(
                "Free session bonus for tutor %s on %s failed: %s",
                session.tutor_id,
                session.id,
                credited.error,
            )
            return SESSION_COMPLETED_MESSAGE
        return (
            f"{SESSION_COMPLETED_MESSAGE}. Tutor received {bonus} bonus points for the free session."
        )

    def _reload_view(self, session_id: str) -> SessionView:
        session = self.session_repository.get_by_id(session_id)
        if session is None:
            raise SessionNotFoundException()
        return self._view(session)

    @staticmethod
    def _view(session: TutoringSession) -> SessionView:
        return SessionView.model_validate(session)
