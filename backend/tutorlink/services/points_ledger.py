"""
Points ledger operations for the TutorLink platform.

The ledger moves points between user balances. Callers get a LedgerResult
back and never an exception: a transfer either fully happens or reports
failure with both balances unchanged.

Two implementations share the PointsLedger contract:

- CompensatingPointsLedger issues the debit and the credit as separate
  writes. If the credit fails after the debit succeeded, a reversing credit
  restores the payer. If that reversal also fails the ledger is left
  inconsistent; this is logged at CRITICAL for manual reconciliation.
- TransactionalPointsLedger wraps both writes in a SAVEPOINT and simply rolls
  it back, so no reversal path exists.

The scheduling engine depends only on PointsLedger, so a durable backend can
be swapped in through create_points_ledger without touching it.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
import logging
from typing import Callable, Optional

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.exceptions import RepositoryException
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.factory import RepositoryFactory
from ..repositories.user_repository import UserRepository
from .base import BaseService

logger = logging.getLogger(__name__)

NON_POSITIVE_TRANSFER = "Transfer amount must be positive"
NON_POSITIVE_AMOUNT = "Amount must be positive"
USERS_NOT_FOUND = "One or both users not found"
USER_NOT_FOUND = "User not found"
INSUFFICIENT_BALANCE = "Insufficient points balance"
TRANSFER_FAILED = "Failed to transfer points"
UPDATE_FAILED = "Failed to update points"


@dataclass(frozen=True)
class LedgerResult:
    """Outcome of a ledger operation."""

    success: bool
    error: Optional[str] = None

    @classmethod
    def ok(cls) -> "LedgerResult":
        return cls(success=True)

    @classmethod
    def failed(cls, error: str) -> "LedgerResult":
        return cls(success=False, error=error)


class PointsLedger(BaseService, ABC):
    """Balance transfer, bonus credit and penalty debit on top of the user store."""

    def __init__(self, db: Session, user_repository: Optional[UserRepository] = None):
        super().__init__(db)
        self.user_repository = user_repository or RepositoryFactory.create_user_repository(db)

    @BaseService.measure_operation("points_transfer")
    def transfer(self, from_user_id: str, to_user_id: str, amount: int) -> LedgerResult:
        """
        Move `amount` points from one user to another.

        Preconditions checked before any write: amount > 0, both users exist,
        and the payer's balance covers the amount.
        """
        if amount <= 0:
            return LedgerResult.failed(NON_POSITIVE_TRANSFER)

        try:
            from_user = self.user_repository.get_by_id(from_user_id)
            to_user = self.user_repository.get_by_id(to_user_id)
            if not from_user or not to_user:
                return LedgerResult.failed(USERS_NOT_FOUND)
            if from_user.points_balance < amount:
                return LedgerResult.failed(INSUFFICIENT_BALANCE)

            result = self._move(from_user_id, to_user_id, amount)
        except RepositoryException as exc:
            self.logger.error(
                "Points transfer failed",
                extra={
                    "from_user_id": from_user_id,
                    "to_user_id": to_user_id,
                    "amount": amount,
                    "error": str(exc),
                },
            )
            return LedgerResult.failed(TRANSFER_FAILED)

        if result.success:
            prometheus_metrics.record_points_moved("transfer", amount)
            self.logger.info(
                "Transferred %s points from %s to %s", amount, from_user_id, to_user_id
            )
        return result

    @BaseService.measure_operation("points_credit")
    def add_points(self, user_id: str, amount: int) -> LedgerResult:
        """Credit a single balance."""
        if amount <= 0:
            return LedgerResult.failed(NON_POSITIVE_AMOUNT)
        try:
            credited = self._write(lambda: self.user_repository.credit(user_id, amount))
        except RepositoryException as exc:
            self.logger.error("Failed to credit %s points to %s: %s", amount, user_id, exc)
            return LedgerResult.failed(UPDATE_FAILED)
        if not credited:
            return LedgerResult.failed(USER_NOT_FOUND)
        prometheus_metrics.record_points_moved("credit", amount)
        return LedgerResult.ok()

    @BaseService.measure_operation("points_penalty")
    def deduct_penalty(self, user_id: str, amount: int) -> LedgerResult:
        """Debit a penalty. The balance is allowed to go negative."""
        if amount <= 0:
            return LedgerResult.failed(NON_POSITIVE_AMOUNT)
        try:
            debited = self._write(
                lambda: self.user_repository.debit(user_id, amount, allow_negative=True)
            )
        except RepositoryException as exc:
            self.logger.error("Failed to apply %s point penalty to %s: %s", amount, user_id, exc)
            return LedgerResult.failed(UPDATE_FAILED)
        if not debited:
            return LedgerResult.failed(USER_NOT_FOUND)
        prometheus_metrics.record_points_moved("penalty", amount)
        return LedgerResult.ok()

    def get_balance(self, user_id: str) -> int:
        """Current balance; unknown users read as 0."""
        balance = self.user_repository.get_balance(user_id)
        return balance if balance is not None else 0

    def _write(self, statement: Callable[[], bool]) -> bool:
        """
        Run one balance UPDATE inside its own SAVEPOINT.

        A failed statement rolls back only this savepoint, so the enclosing
        request transaction stays usable (PostgreSQL aborts the whole
        transaction on any statement error otherwise).
        """
        savepoint = self.db.begin_nested()
        try:
            applied = statement()
        except Exception:
            savepoint.rollback()
            raise
        savepoint.commit()
        return applied

    @abstractmethod
    def _move(self, from_user_id: str, to_user_id: str, amount: int) -> LedgerResult:
        """Perform the debit and credit once preconditions have been checked."""


class CompensatingPointsLedger(PointsLedger):
    """Debit, then credit, then reverse the debit if the credit did not land."""

    def _move(self, from_user_id: str, to_user_id: str, amount: int) -> LedgerResult:
        # Conditional debit: loses cleanly to a concurrent spend of the same points.
        if not self._write(lambda: self.user_repository.debit(from_user_id, amount)):
            return LedgerResult.failed(INSUFFICIENT_BALANCE)

        try:
            credited = self._write(lambda: self.user_repository.credit(to_user_id, amount))
        except RepositoryException as exc:
            self.logger.error("Credit of %s points to %s failed: %s", amount, to_user_id, exc)
            credited = False

        if credited:
            return LedgerResult.ok()

        self._reverse_debit(from_user_id, to_user_id, amount)
        return LedgerResult.failed(TRANSFER_FAILED)

    def _reverse_debit(self, from_user_id: str, to_user_id: str, amount: int) -> None:
        try:
            reversed_ok = self._write(lambda: self.user_repository.credit(from_user_id, amount))
        except RepositoryException as exc:
            self.logger.error("Reversing credit to %s raised: %s", from_user_id, exc)
            reversed_ok = False

        if reversed_ok:
            prometheus_metrics.record_ledger_compensation("reversed")
            self.logger.warning(
                "Reversed %s point debit from %s after failed credit to %s",
                amount,
                from_user_id,
                to_user_id,
            )
            return

        prometheus_metrics.record_ledger_compensation("reconciliation_required")
        self.logger.critical(
            "points_ledger_reconciliation_required",
            extra={
                "from_user_id": from_user_id,
                "to_user_id": to_user_id,
                "amount": amount,
                "detail": "debit applied, credit failed, reversal failed",
            },
        )


class TransactionalPointsLedger(PointsLedger):
    """Debit and credit inside one SAVEPOINT; failure rolls both back."""

    def _move(self, from_user_id: str, to_user_id: str, amount: int) -> LedgerResult:
        savepoint = self.db.begin_nested()
        try:
            if not self.user_repository.debit(from_user_id, amount):
                savepoint.rollback()
                return LedgerResult.failed(INSUFFICIENT_BALANCE)
            if not self.user_repository.credit(to_user_id, amount):
                savepoint.rollback()
                return LedgerResult.failed(TRANSFER_FAILED)
        except RepositoryException:
            savepoint.rollback()
            raise
        savepoint.commit()
        return LedgerResult.ok()


def create_points_ledger(
    db: Session,
    mode: Optional[str] = None,
    *,
    user_repository: Optional[UserRepository] = None,
) -> PointsLedger:
    """Build the ledger implementation selected by `mode` (defaults to settings)."""
    selected = (mode or settings.points_ledger_mode).lower()
    if selected == "transactional":
        return TransactionalPointsLedger(db, user_repository)
    if selected == "compensating":
        return CompensatingPointsLedger(db, user_repository)
    raise ValueError(f"Unknown points ledger mode: {selected}")
