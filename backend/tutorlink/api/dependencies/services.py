# backend/tutorlink/api/dependencies/services.py
"""
Service layer dependencies for dependency injection.

Each request gets services bound to its own DB session.
"""

from functools import lru_cache
import logging

from fastapi import Depends
from sqlalchemy.orm import Session

from ...core.session_lock import SessionSlotLock
from ...services.points_ledger import PointsLedger, create_points_ledger
from ...services.scheduling_service import SchedulingService
from ...services.session_dashboard_service import SessionDashboardService
from .database import get_db

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_session_slot_lock() -> SessionSlotLock:
    """Process-wide slot lock so the Redis client is shared."""
    return SessionSlotLock()


def get_points_ledger(db: Session = Depends(get_db)) -> PointsLedger:
    return create_points_ledger(db)


def get_scheduling_service(
    db: Session = Depends(get_db),
    ledger: PointsLedger = Depends(get_points_ledger),
) -> SchedulingService:
    """
    Get scheduling service instance with all dependencies.

    Args:
        db: Database session
        ledger: Points ledger bound to the same session

    Returns:
        SchedulingService instance
    """
    return SchedulingService(db, ledger=ledger, slot_lock=get_session_slot_lock())


def get_session_dashboard_service(db: Session = Depends(get_db)) -> SessionDashboardService:
    return SessionDashboardService(db)
