"""
User Repository for the TutorLink platform.

Balance writes are single conditional UPDATE statements so that concurrent
transfers, bonuses and penalties touching the same user never lose updates.
"""

import logging
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.user import User
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class UserRepository(BaseRepository[User]):
    """Repository for user lookups and points balance mutation."""

    def __init__(self, db: Session):
        super().__init__(db, User)
        self.logger = logging.getLogger(__name__)

    def get_balance(self, user_id: str) -> Optional[int]:
        """Return the stored balance, or None when the user does not exist."""
        query = self.db.query(User.points_balance).filter(User.id == user_id)
        balance = self._execute_scalar(query)
        return int(balance) if balance is not None else None

    def set_balance(
        self, user_id: str, new_balance: int, *, expected_balance: Optional[int] = None
    ) -> bool:
        """
        Overwrite a balance.

        When `expected_balance` is given the write is a compare-and-set and
        only succeeds if the stored balance still equals it.

        Returns:
            True if a row was updated
        """
        try:
            query = self.db.query(User).filter(User.id == user_id)
            if expected_balance is not None:
                query = query.filter(User.points_balance == expected_balance)
            updated = query.update({User.points_balance: new_balance}, synchronize_session=False)
        except SQLAlchemyError as exc:
            self.logger.error("Failed to set balance for user %s: %s", user_id, exc)
            raise RepositoryException("Failed to set points balance") from exc
        self._expire_cached(user_id)
        return bool(updated)

    def debit(self, user_id: str, amount: int, *, allow_negative: bool = False) -> bool:
        """
        Atomically subtract `amount` from a balance.

        Unless `allow_negative` is set, the row is only touched when the
        balance covers the amount.

        Returns:
            True if the debit was applied, False if the user is missing or
            the balance was insufficient
        """
        try:
            query = self.db.query(User).filter(User.id == user_id)
            if not allow_negative:
                query = query.filter(User.points_balance >= amount)
            updated = query.update(
                {User.points_balance: User.points_balance - amount}, synchronize_session=False
            )
        except SQLAlchemyError as exc:
            self.logger.error("Failed to debit %s points from user %s: %s", amount, user_id, exc)
            raise RepositoryException("Failed to debit points") from exc
        self._expire_cached(user_id)
        return bool(updated)

    def credit(self, user_id: str, amount: int) -> bool:
        """
        Atomically add `amount` to a balance.

        Returns:
            True if the credit was applied, False if the user is missing
        """
        try:
            updated = (
                self.db.query(User)
                .filter(User.id == user_id)
                .update(
                    {User.points_balance: User.points_balance + amount},
                    synchronize_session=False,
                )
            )
        except SQLAlchemyError as exc:
            self.logger.error("Failed to credit %s points to user %s: %s", amount, user_id, exc)
            raise RepositoryException("Failed to credit points") from exc
        self._expire_cached(user_id)
        return bool(updated)
