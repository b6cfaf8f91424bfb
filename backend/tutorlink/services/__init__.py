from .base import BaseService
from .points_ledger import (
    CompensatingPointsLedger,
    LedgerResult,
    PointsLedger,
    TransactionalPointsLedger,
    create_points_ledger,
)
from .scheduling_service import SchedulingService
from .session_dashboard_service import SessionDashboardService

__all__ = [
    "BaseService",
    "CompensatingPointsLedger",
    "LedgerResult",
    "PointsLedger",
    "SchedulingService",
    "SessionDashboardService",
    "TransactionalPointsLedger",
    "create_points_ledger",
]
