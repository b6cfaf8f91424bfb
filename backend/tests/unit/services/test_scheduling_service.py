# backend/tests/unit/services/test_scheduling_service.py
"""
Unit tests for SchedulingService.

Runs the real service, repositories and ledger against an in-memory SQLite
database; collaborators are patched only to simulate store failures.
"""

from contextlib import contextmanager
import logging
from unittest.mock import MagicMock, patch

import pytest

from helpers.sessions import balance_of, future_iso, past_iso, reload_session
from tutorlink.core.exceptions import RepositoryException
from tutorlink.core.session_lock import SessionSlotLock
from tutorlink.models.tutoring_session import SessionStatus
from tutorlink.services.points_ledger import LedgerResult
from tutorlink.services.scheduling_service import SchedulingService


class TestBookSession:
    def test_book_creates_requested_session(self, scheduling_service, db, tutor, tutee):
        when = future_iso(48)
        result = scheduling_service.book_session(tutee.id, tutor.id, "calculus-1", when, 30)

        assert result.success is True
        assert result.error is None
        view = result.session
        assert view.status == SessionStatus.REQUESTED.value
        assert view.tutor_id == tutor.id
        assert view.tutee_id == tutee.id
        assert view.skill_id == "calculus-1"
        assert view.point_cost == 30
        assert view.tutor_confirmed is False
        assert view.tutee_confirmed is False
        assert view.completed_at is None
        assert view.scheduled_time.isoformat() == when

    def test_booking_does_not_debit_the_tutee(self, scheduling_service, db, tutor, tutee):
        scheduling_service.book_session(tutee.id, tutor.id, "calculus-1", future_iso(), 30)

        assert balance_of(db, tutee.id) == 100
        assert balance_of(db, tutor.id) == 100

    def test_point_cost_defaults_to_ten(self, scheduling_service, tutor, tutee):
        result = scheduling_service.book_session(tutee.id, tutor.id, "calculus-1", future_iso())

        assert result.success is True
        assert result.session.point_cost == 10

    def test_zero_cost_session_skips_balance_check(self, scheduling_service, user_factory, tutor):
        broke = user_factory(balance=0)

        result = scheduling_service.book_session(broke.id, tutor.id, "calculus-1", future_iso(), 0)

        assert result.success is True
        assert result.session.point_cost == 0

    @pytest.mark.parametrize("cost", [-1, 2.5, "10", True])
    def test_invalid_point_cost(self, scheduling_service, tutor, tutee, cost):
        result = scheduling_service.book_session(tutee.id, tutor.id, "calculus-1", future_iso(), cost)

        assert result.success is False
        assert result.error_code == "VALIDATION_ERROR"

    def test_past_time_is_invalid_schedule(self, scheduling_service, tutor, tutee):
        result = scheduling_service.book_session(tutee.id, tutor.id, "calculus-1", past_iso(), 30)

        assert result.success is False
        assert result.error_code == "INVALID_SCHEDULE"
        assert result.error == "Scheduled time cannot be in the past"

    def test_past_time_wins_over_other_invalid_inputs(self, scheduling_service, tutee):
        result = scheduling_service.book_session(tutee.id, "missing", "", past_iso(), -5)

        assert result.error_code == "INVALID_SCHEDULE"

    @pytest.mark.parametrize("raw", ["not-a-date", "", "2030-13-45T25:00:00Z", None])
    def test_unparsable_time_is_invalid_schedule(self, scheduling_service, tutor, tutee, raw):
        result = scheduling_service.book_session(tutee.id, tutor.id, "calculus-1", raw, 30)

        assert result.success is False
        assert result.error_code == "INVALID_SCHEDULE"
        assert result.error == "Invalid date format"

    def test_offset_pushing_past_max_year_is_invalid_schedule(
        self, scheduling_service, tutor, tutee
    ):
        result = scheduling_service.book_session(
            tutee.id, tutor.id, "calculus-1", "9999-12-31T23:00:00-05:00", 10
        )

        assert result.success is False
        assert result.error_code == "INVALID_SCHEDULE"
        assert result.error == "Invalid date format"

    def test_missing_skill_is_validation_error(self, scheduling_service, tutor, tutee):
        result = scheduling_service.book_session(tutee.id, tutor.id, "", future_iso(), 30)

        assert result.error_code == "VALIDATION_ERROR"
        assert result.error == "Missing required fields"

    def test_cannot_book_yourself(self, scheduling_service, tutor):
        result = scheduling_service.book_session(tutor.id, tutor.id, "calculus-1", future_iso(), 0)

        assert result.error_code == "VALIDATION_ERROR"
        assert result.error == "Tutor and tutee cannot be the same user"

    def test_unknown_tutor(self, scheduling_service, tutee):
        result = scheduling_service.book_session(
            tutee.id, "01J0000000000000000000000Z", "calculus-1", future_iso(), 30
        )

        assert result.error_code == "INVALID_TUTOR"
        assert result.error == "Invalid tutor"

    def test_user_without_tutor_capability_is_invalid_tutor(
        self, scheduling_service, user_factory, tutee
    ):
        not_a_tutor = user_factory(is_tutor=False)

        result = scheduling_service.book_session(
            tutee.id, not_a_tutor.id, "calculus-1", future_iso(), 30
        )

        assert result.error_code == "INVALID_TUTOR"

    def test_banned_tutor_is_invalid_tutor(self, scheduling_service, user_factory, tutee):
        banned = user_factory(is_tutor=True, banned=True)

        result = scheduling_service.book_session(tutee.id, banned.id, "calculus-1", future_iso(), 30)

        assert result.error_code == "INVALID_TUTOR"

    def test_unknown_tutee(self, scheduling_service, tutor):
        result = scheduling_service.book_session(
            "01J0000000000000000000000Z", tutor.id, "calculus-1", future_iso(), 30
        )

        assert result.error_code == "INVALID_TUTEE"
        assert result.error == "Invalid tutee"

    def test_banned_tutee_is_invalid_tutee(self, scheduling_service, user_factory, tutor):
        banned = user_factory(banned=True)

        result = scheduling_service.book_session(banned.id, tutor.id, "calculus-1", future_iso(), 30)

        assert result.error_code == "INVALID_TUTEE"

    def test_insufficient_points(self, scheduling_service, user_factory, tutor):
        poor = user_factory(balance=20)

        result = scheduling_service.book_session(poor.id, tutor.id, "calculus-1", future_iso(), 30)

        assert result.success is False
        assert result.error_code == "INSUFFICIENT_POINTS"
        assert result.error == "Insufficient points. Required: 30, Available: 20"

    def test_same_tutor_same_instant_conflicts(self, scheduling_service, user_factory, tutor, tutee):
        other_tutee = user_factory()
        when = future_iso(30)
        first = scheduling_service.book_session(tutee.id, tutor.id, "calculus-1", when, 10)

        second = scheduling_service.book_session(other_tutee.id, tutor.id, "physics", when, 10)

        assert first.success is True
        assert second.success is False
        assert second.error_code == "TIME_CONFLICT"
        assert second.error == "Tutor is already booked at this time"

    def test_z_suffix_names_the_same_instant(
        self, scheduling_service, user_factory, tutor, tutee
    ):
        other_tutee = user_factory()
        base = future_iso(30)
        scheduling_service.book_session(tutee.id, tutor.id, "calculus-1", base, 10)
        shifted = base.replace("+00:00", "Z")

        result = scheduling_service.book_session(other_tutee.id, tutor.id, "physics", shifted, 10)

        assert result.error_code == "TIME_CONFLICT"

    def test_nearby_instant_does_not_conflict(self, scheduling_service, user_factory, tutor, tutee):
        other_tutee = user_factory()
        scheduling_service.book_session(tutee.id, tutor.id, "calculus-1", future_iso(30), 10)

        result = scheduling_service.book_session(
            other_tutee.id, tutor.id, "physics", future_iso(30, minutes=15), 10
        )

        assert result.success is True

    def test_cancelled_session_frees_the_slot(
        self, scheduling_service, user_factory, tutor, tutee
    ):
        other_tutee = user_factory()
        when = future_iso(30)
        first = scheduling_service.book_session(tutee.id, tutor.id, "calculus-1", when, 10)
        scheduling_service.cancel_session(first.session.id, tutee.id)

        result = scheduling_service.book_session(other_tutee.id, tutor.id, "physics", when, 10)

        assert result.success is True

    def test_unique_index_reports_time_conflict(
        self, scheduling_service, user_factory, tutor, tutee
    ):
        other_tutee = user_factory()
        when = future_iso(30)
        scheduling_service.book_session(tutee.id, tutor.id, "calculus-1", when, 10)

        # Simulate a racing request that passed the conflict check first.
        with patch.object(
            scheduling_service.session_repository, "has_time_conflict", return_value=False
        ):
            result = scheduling_service.book_session(other_tutee.id, tutor.id, "physics", when, 10)

        assert result.success is False
        assert result.error_code == "TIME_CONFLICT"
        assert result.error == "Tutor is already booked at this time"

    def test_held_slot_lock_reports_time_conflict(self, db, tutor, tutee):
        redis_client = MagicMock()
        redis_client.set.return_value = False
        service = SchedulingService(
            db, slot_lock=SessionSlotLock(enabled=True, client=redis_client)
        )

        result = service.book_session(tutee.id, tutor.id, "calculus-1", future_iso(), 10)

        assert result.error_code == "TIME_CONFLICT"
        redis_client.delete.assert_not_called()

    def test_slot_lock_released_after_commit(self, db, tutor, tutee):
        redis_client = MagicMock()
        redis_client.set.return_value = True
        redis_client.delete.return_value = 1
        service = SchedulingService(
            db, slot_lock=SessionSlotLock(enabled=True, client=redis_client)
        )

        result = service.book_session(tutee.id, tutor.id, "calculus-1", future_iso(), 10)

        assert result.success is True
        redis_client.set.assert_called_once()
        redis_client.delete.assert_called_once()

    def test_store_fault_maps_to_generic_failure(self, scheduling_service, db, tutor, tutee):
        with patch.object(
            scheduling_service.session_repository,
            "create",
            side_effect=RepositoryException("connection reset"),
        ):
            result = scheduling_service.book_session(
                tutee.id, tutor.id, "calculus-1", future_iso(), 10
            )

        assert result.success is False
        assert result.error_code == "INTERNAL_ERROR"
        assert result.error == "Failed to book session"
        assert "connection reset" not in result.error

    def test_unexpected_error_maps_to_generic_failure(self, scheduling_service, db, tutor, tutee):
        with patch.object(
            scheduling_service.session_repository,
            "create",
            side_effect=RuntimeError("driver exploded"),
        ):
            result = scheduling_service.book_session(
                tutee.id, tutor.id, "calculus-1", future_iso(), 10
            )

        assert result.success is False
        assert result.error_code == "INTERNAL_ERROR"
        assert result.error == "Failed to book session"
        assert scheduling_service.session_repository.find_by_user_id(tutee.id) == []


class TestAcceptAndReject:
    def test_tutor_accepts_requested_session(self, scheduling_service, session_factory, tutor):
        session = session_factory()

        result = scheduling_service.accept_session(session.id, tutor.id)

        assert result.success is True
        assert result.session.status == SessionStatus.SCHEDULED.value

    def test_tutee_cannot_accept(self, scheduling_service, db, session_factory, tutee):
        session = session_factory()

        result = scheduling_service.accept_session(session.id, tutee.id)

        assert result.error_code == "UNAUTHORIZED"
        assert result.error == "Unauthorized"
        assert reload_session(db, session.id).status == SessionStatus.REQUESTED.value

    def test_accept_unknown_session(self, scheduling_service, tutor):
        result = scheduling_service.accept_session("01J0000000000000000000000Z", tutor.id)

        assert result.error_code == "SESSION_NOT_FOUND"
        assert result.error == "Session not found"

    @pytest.mark.parametrize(
        "status", [SessionStatus.SCHEDULED, SessionStatus.COMPLETED, SessionStatus.CANCELLED]
    )
    def test_accept_requires_requested_status(
        self, scheduling_service, session_factory, tutor, status
    ):
        session = session_factory(status=status)

        result = scheduling_service.accept_session(session.id, tutor.id)

        assert result.error_code == "INVALID_STATE_TRANSITION"
        assert result.error == "Session cannot be accepted in current status"

    def test_accept_rechecks_conflicts(self, scheduling_service, db, session_factory, tutor):
        session = session_factory()

        with patch.object(
            scheduling_service.session_repository, "has_time_conflict", return_value=True
        ) as conflict_check:
            result = scheduling_service.accept_session(session.id, tutor.id)

        assert result.error_code == "TIME_CONFLICT"
        assert result.error == "Time conflict detected"
        conflict_check.assert_called_once()
        assert conflict_check.call_args.kwargs["exclude_session_id"] == session.id
        assert reload_session(db, session.id).status == SessionStatus.REQUESTED.value

    def test_tutor_rejects_request(self, scheduling_service, db, session_factory, tutor, tutee):
        session = session_factory()

        result = scheduling_service.reject_session(session.id, tutor.id)

        assert result.success is True
        assert result.session.status == SessionStatus.CANCELLED.value
        stored = reload_session(db, session.id)
        assert stored.cancelled_by_id == tutor.id
        assert stored.cancellation_reason == "Rejected by tutor"
        assert stored.penalty_points == 0
        assert stored.cancelled_at is not None
        assert balance_of(db, tutor.id) == 100
        assert balance_of(db, tutee.id) == 100

    def test_only_tutor_can_reject(self, scheduling_service, session_factory, tutee):
        session = session_factory()

        result = scheduling_service.reject_session(session.id, tutee.id)

        assert result.error_code == "UNAUTHORIZED"
        assert result.error == "Unauthorized - only the tutor can reject this request"

    def test_cannot_reject_scheduled_session(self, scheduling_service, session_factory, tutor):
        session = session_factory(status=SessionStatus.SCHEDULED)

        result = scheduling_service.reject_session(session.id, tutor.id)

        assert result.error_code == "INVALID_STATE_TRANSITION"
        assert result.error == "Session cannot be rejected in current status"

    def test_reject_clears_early_confirmation(
        self, scheduling_service, db, session_factory, tutor
    ):
        session = session_factory(tutee_confirmed=True)

        scheduling_service.reject_session(session.id, tutor.id)

        stored = reload_session(db, session.id)
        assert stored.status == SessionStatus.CANCELLED.value
        assert stored.tutee_confirmed is False
        assert stored.tutor_confirmed is False


class TestCompleteSession:
    def test_single_confirmation_waits(self, scheduling_service, db, session_factory, tutor, tutee):
        session = session_factory(status=SessionStatus.SCHEDULED)

        result = scheduling_service.complete_session(session.id, tutee.id)

        assert result.success is True
        assert result.awaiting_other_party is True
        assert result.message == "Confirmation received. Waiting for other party to confirm."
        assert result.session.status == SessionStatus.SCHEDULED.value
        assert result.session.tutee_confirmed is True
        assert result.session.tutor_confirmed is False
        assert balance_of(db, tutee.id) == 100
        assert balance_of(db, tutor.id) == 100

    def test_reconfirmation_is_idempotent(self, scheduling_service, db, session_factory, tutee):
        session = session_factory(status=SessionStatus.SCHEDULED)

        first = scheduling_service.complete_session(session.id, tutee.id)
        second = scheduling_service.complete_session(session.id, tutee.id)
        third = scheduling_service.complete_session(session.id, tutee.id)

        for result in (first, second, third):
            assert result.awaiting_other_party is True
            assert result.session.status == SessionStatus.SCHEDULED.value
        assert balance_of(db, tutee.id) == 100

    @pytest.mark.parametrize("first_party", ["tutor", "tutee"])
    def test_paid_session_transfers_points_once(
        self, scheduling_service, db, session_factory, tutor, tutee, first_party
    ):
        session = session_factory(status=SessionStatus.SCHEDULED, point_cost=30)
        order = [tutor, tutee] if first_party == "tutor" else [tutee, tutor]

        waiting = scheduling_service.complete_session(session.id, order[0].id)
        done = scheduling_service.complete_session(session.id, order[1].id)

        assert waiting.awaiting_other_party is True
        assert done.success is True
        assert done.awaiting_other_party is False
        assert done.message == "Session completed successfully"
        assert done.session.status == SessionStatus.COMPLETED.value
        assert done.session.tutor_confirmed is True
        assert done.session.tutee_confirmed is True
        assert done.session.completed_at is not None
        assert balance_of(db, tutee.id) == 70
        assert balance_of(db, tutor.id) == 130

    def test_complete_after_completion_moves_nothing(
        self, scheduling_service, db, session_factory, tutor, tutee
    ):
        session = session_factory(status=SessionStatus.SCHEDULED, point_cost=30)
        scheduling_service.complete_session(session.id, tutor.id)
        scheduling_service.complete_session(session.id, tutee.id)

        again = scheduling_service.complete_session(session.id, tutee.id)

        assert again.success is False
        assert again.error_code == "INVALID_STATE_TRANSITION"
        assert again.error == "Session cannot be completed in current status"
        assert balance_of(db, tutee.id) == 70
        assert balance_of(db, tutor.id) == 130

    def test_requested_session_can_complete_directly(
        self, scheduling_service, db, session_factory, tutor, tutee
    ):
        session = session_factory(status=SessionStatus.REQUESTED, point_cost=20)

        scheduling_service.complete_session(session.id, tutor.id)
        result = scheduling_service.complete_session(session.id, tutee.id)

        assert result.session.status == SessionStatus.COMPLETED.value
        assert balance_of(db, tutee.id) == 80

    def test_free_session_awards_tutor_bonus(
        self, scheduling_service, db, session_factory, tutor, tutee
    ):
        session = session_factory(status=SessionStatus.SCHEDULED, point_cost=0)

        scheduling_service.complete_session(session.id, tutee.id)
        result = scheduling_service.complete_session(session.id, tutor.id)

        assert result.success is True
        assert result.message == (
            "Session completed successfully. Tutor received 50 bonus points for the free session."
        )
        assert balance_of(db, tutor.id) == 150
        assert balance_of(db, tutee.id) == 100

    def test_free_session_completes_when_bonus_fails(
        self, scheduling_service, db, session_factory, tutor, tutee
    ):
        session = session_factory(status=SessionStatus.SCHEDULED, point_cost=0)
        scheduling_service.complete_session(session.id, tutee.id)

        with patch.object(
            scheduling_service.ledger,
            "add_points",
            return_value=LedgerResult.failed("Failed to update points"),
        ):
            result = scheduling_service.complete_session(session.id, tutor.id)

        assert result.success is True
        assert result.message == "Session completed successfully"
        assert reload_session(db, session.id).status == SessionStatus.COMPLETED.value
        assert balance_of(db, tutor.id) == 100
        assert balance_of(db, tutee.id) == 100

    def test_bonus_store_fault_is_contained_to_its_own_write(
        self, scheduling_service, db, session_factory, tutor, tutee
    ):
        session = session_factory(status=SessionStatus.SCHEDULED, point_cost=0)
        scheduling_service.complete_session(session.id, tutee.id)
        users = scheduling_service.ledger.user_repository
        real_credit = users.credit

        def credit_then_fail(user_id, amount):
            real_credit(user_id, amount)
            raise RepositoryException("statement timeout")

        with patch.object(users, "credit", side_effect=credit_then_fail):
            result = scheduling_service.complete_session(session.id, tutor.id)

        assert result.success is True
        assert result.message == "Session completed successfully"
        db.expire_all()
        stored = reload_session(db, session.id)
        assert stored.status == SessionStatus.COMPLETED.value
        assert stored.completed_at is not None
        assert balance_of(db, tutor.id) == 100

    def test_failed_transfer_leaves_no_partial_state(
        self, scheduling_service, db, session_factory, tutor, tutee
    ):
        session = session_factory(status=SessionStatus.SCHEDULED, point_cost=30)
        scheduling_service.complete_session(session.id, tutee.id)

        with patch.object(
            scheduling_service.ledger,
            "transfer",
            return_value=LedgerResult.failed("Failed to transfer points"),
        ):
            result = scheduling_service.complete_session(session.id, tutor.id)

        assert result.success is False
        assert result.error_code == "TRANSFER_FAILED"
        stored = reload_session(db, session.id)
        assert stored.status == SessionStatus.SCHEDULED.value
        assert stored.tutee_confirmed is True
        assert stored.tutor_confirmed is False
        assert stored.completed_at is None
        assert balance_of(db, tutee.id) == 100
        assert balance_of(db, tutor.id) == 100

    def test_tutee_spent_points_before_completion(
        self, scheduling_service, db, session_factory, tutor, tutee
    ):
        session = session_factory(status=SessionStatus.SCHEDULED, point_cost=30)
        scheduling_service.ledger.user_repository.set_balance(tutee.id, 10)
        db.commit()
        scheduling_service.complete_session(session.id, tutor.id)

        result = scheduling_service.complete_session(session.id, tutee.id)

        assert result.error_code == "TRANSFER_FAILED"
        assert result.error == "Insufficient points balance"
        assert reload_session(db, session.id).status == SessionStatus.SCHEDULED.value
        assert balance_of(db, tutee.id) == 10
        assert balance_of(db, tutor.id) == 100

    def test_outsider_cannot_complete(self, scheduling_service, session_factory, user_factory):
        session = session_factory(status=SessionStatus.SCHEDULED)
        outsider = user_factory()

        result = scheduling_service.complete_session(session.id, outsider.id)

        assert result.error_code == "UNAUTHORIZED"

    def test_cancelled_session_cannot_complete(self, scheduling_service, session_factory, tutee):
        session = session_factory(status=SessionStatus.CANCELLED)

        result = scheduling_service.complete_session(session.id, tutee.id)

        assert result.error_code == "INVALID_STATE_TRANSITION"


class TestCancelSession:
    def test_cancel_requested_session_has_no_penalty(
        self, scheduling_service, db, session_factory, tutor, tutee
    ):
        session = session_factory(status=SessionStatus.REQUESTED)

        result = scheduling_service.cancel_session(session.id, tutee.id)

        assert result.success is True
        assert result.message == "Session cancelled successfully."
        assert result.session.status == SessionStatus.CANCELLED.value
        stored = reload_session(db, session.id)
        assert stored.penalty_points == 0
        assert stored.cancellation_reason == "User cancelled"
        assert stored.cancelled_by_id == tutee.id
        assert balance_of(db, tutee.id) == 100
        assert balance_of(db, tutor.id) == 100

    def test_tutor_cancelling_scheduled_session_pays_penalty(
        self, scheduling_service, db, session_factory, tutor, tutee
    ):
        session = session_factory(status=SessionStatus.SCHEDULED)

        result = scheduling_service.cancel_session(session.id, tutor.id, "Exam clash")

        assert result.success is True
        assert result.message == "Session cancelled. 50 points penalty applied."
        stored = reload_session(db, session.id)
        assert stored.status == SessionStatus.CANCELLED.value
        assert stored.cancelled_by_id == tutor.id
        assert stored.cancellation_reason == "Exam clash"
        assert stored.penalty_points == 50
        assert balance_of(db, tutor.id) == 50
        assert balance_of(db, tutee.id) == 100

    def test_penalty_can_take_balance_negative(
        self, scheduling_service, db, session_factory, user_factory, tutor
    ):
        broke_tutee = user_factory(balance=20)
        session = session_factory(status=SessionStatus.SCHEDULED, tutee_user=broke_tutee)

        result = scheduling_service.cancel_session(session.id, broke_tutee.id)

        assert result.success is True
        assert balance_of(db, broke_tutee.id) == -30
        assert balance_of(db, tutor.id) == 100

    @pytest.mark.parametrize("status", [SessionStatus.COMPLETED, SessionStatus.CANCELLED])
    def test_finished_sessions_cannot_be_cancelled(
        self, scheduling_service, db, session_factory, tutee, status
    ):
        session = session_factory(status=status)

        result = scheduling_service.cancel_session(session.id, tutee.id)

        assert result.error_code == "ALREADY_FINISHED"
        assert balance_of(db, tutee.id) == 100

    def test_outsider_cannot_cancel(self, scheduling_service, session_factory, user_factory):
        session = session_factory()
        outsider = user_factory()

        result = scheduling_service.cancel_session(session.id, outsider.id)

        assert result.error_code == "UNAUTHORIZED"

    def test_failed_penalty_rolls_back_cancellation(
        self, scheduling_service, db, session_factory, tutor
    ):
        session = session_factory(status=SessionStatus.SCHEDULED)

        with patch.object(
            scheduling_service.ledger,
            "deduct_penalty",
            return_value=LedgerResult.failed("Failed to update points"),
        ):
            result = scheduling_service.cancel_session(session.id, tutor.id)

        assert result.error_code == "TRANSFER_FAILED"
        assert reload_session(db, session.id).status == SessionStatus.SCHEDULED.value
        assert balance_of(db, tutor.id) == 100

    def test_cancel_clears_pending_confirmations(
        self, scheduling_service, db, session_factory, tutee
    ):
        session = session_factory(status=SessionStatus.SCHEDULED)
        scheduling_service.complete_session(session.id, tutee.id)

        result = scheduling_service.cancel_session(session.id, tutee.id)

        assert result.session.tutee_confirmed is False
        assert result.session.tutor_confirmed is False
        stored = reload_session(db, session.id)
        assert stored.status == SessionStatus.CANCELLED.value
        assert stored.tutee_confirmed is False


class TestScenarios:
    def test_paid_session_end_to_end(self, scheduling_service, db, tutor, tutee):
        booked = scheduling_service.book_session(tutee.id, tutor.id, "calculus-1", future_iso(), 30)
        accepted = scheduling_service.accept_session(booked.session.id, tutor.id)
        scheduling_service.complete_session(booked.session.id, tutor.id)
        completed = scheduling_service.complete_session(booked.session.id, tutee.id)

        assert accepted.session.status == SessionStatus.SCHEDULED.value
        assert completed.session.status == SessionStatus.COMPLETED.value
        assert balance_of(db, tutee.id) == 70
        assert balance_of(db, tutor.id) == 130

    def test_free_session_end_to_end(self, scheduling_service, db, tutor, tutee):
        booked = scheduling_service.book_session(tutee.id, tutor.id, "calculus-1", future_iso(), 0)
        scheduling_service.accept_session(booked.session.id, tutor.id)
        scheduling_service.complete_session(booked.session.id, tutee.id)
        completed = scheduling_service.complete_session(booked.session.id, tutor.id)

        assert completed.session.status == SessionStatus.COMPLETED.value
        assert balance_of(db, tutor.id) == 150
        assert balance_of(db, tutee.id) == 100

    def test_cancel_before_acceptance(self, scheduling_service, db, tutor, tutee):
        booked = scheduling_service.book_session(tutee.id, tutor.id, "calculus-1", future_iso(), 30)
        cancelled = scheduling_service.cancel_session(booked.session.id, tutee.id)

        assert cancelled.session.status == SessionStatus.CANCELLED.value
        assert balance_of(db, tutee.id) == 100
        assert balance_of(db, tutor.id) == 100

    def test_tutor_cancels_after_acceptance(self, scheduling_service, db, tutor, tutee):
        booked = scheduling_service.book_session(tutee.id, tutor.id, "calculus-1", future_iso(), 30)
        scheduling_service.accept_session(booked.session.id, tutor.id)
        cancelled = scheduling_service.cancel_session(booked.session.id, tutor.id)

        assert cancelled.session.status == SessionStatus.CANCELLED.value
        assert balance_of(db, tutor.id) == 50
        assert balance_of(db, tutee.id) == 100

    def test_observed_transitions_stay_on_the_lifecycle(
        self, scheduling_service, db, session_factory, tutor, tutee
    ):
        allowed = {
            ("requested", "scheduled"),
            ("requested", "cancelled"),
            ("scheduled", "cancelled"),
            ("requested", "completed"),
            ("scheduled", "completed"),
        }
        session = session_factory()
        seen = [reload_session(db, session.id).status]
        calls = [
            lambda: scheduling_service.complete_session(session.id, tutee.id),
            lambda: scheduling_service.accept_session(session.id, tutor.id),
            lambda: scheduling_service.reject_session(session.id, tutor.id),
            lambda: scheduling_service.accept_session(session.id, tutor.id),
            lambda: scheduling_service.complete_session(session.id, tutor.id),
            lambda: scheduling_service.cancel_session(session.id, tutee.id),
            lambda: scheduling_service.complete_session(session.id, tutee.id),
        ]
        for call in calls:
            call()
            current = reload_session(db, session.id).status
            if current != seen[-1]:
                assert (seen[-1], current) in allowed
                seen.append(current)

        assert seen == ["requested", "scheduled", "completed"]


class TestServiceMetrics:
    def test_operations_are_measured(self, scheduling_service, tutor, tutee):
        scheduling_service.reset_metrics()

        scheduling_service.book_session(tutee.id, tutor.id, "calculus-1", future_iso(), 10)

        metrics = scheduling_service.get_metrics()
        assert metrics["book_session"]["count"] == 1
        assert metrics["book_session"]["success_count"] == 1


class TestTransitionLogging:
    def test_transitions_log_at_info_with_context(
        self, scheduling_service, session_factory, tutor, caplog
    ):
        session = session_factory()

        with caplog.at_level(logging.INFO, logger="SchedulingService"):
            scheduling_service.accept_session(session.id, tutor.id)

        records = [r for r in caplog.records if getattr(r, "to_status", None) == "scheduled"]
        assert len(records) == 1
        assert records[0].levelno == logging.INFO
        assert records[0].session_id == session.id
        assert records[0].actor_id == tutor.id
        assert records[0].from_status == "requested"

    def test_completion_logs_actor(
        self, scheduling_service, session_factory, tutor, tutee, caplog
    ):
        session = session_factory(status=SessionStatus.SCHEDULED)
        scheduling_service.complete_session(session.id, tutee.id)

        with caplog.at_level(logging.INFO, logger="SchedulingService"):
            scheduling_service.complete_session(session.id, tutor.id)

        records = [r for r in caplog.records if getattr(r, "to_status", None) == "completed"]
        assert [(r.session_id, r.actor_id) for r in records] == [(session.id, tutor.id)]


@contextmanager
def _noop():
    yield True


def test_slot_lock_wraps_failed_booking(db, tutor, tutee):
    slot_lock = MagicMock()
    slot_lock.hold.side_effect = lambda *_: _noop()
    service = SchedulingService(db, slot_lock=slot_lock)

    with patch.object(
        service.session_repository, "create", side_effect=RepositoryException("boom")
    ):
        result = service.book_session(tutee.id, tutor.id, "calculus-1", future_iso(), 10)

    assert result.error_code == "INTERNAL_ERROR"
    slot_lock.hold.assert_called_once()
    assert slot_lock.hold.call_args.args[0] == tutor.id
